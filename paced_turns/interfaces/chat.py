"""Chat response types and the continuation transport interface."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class FunctionCall:
    """Function name and JSON-encoded arguments of a tool call."""
    name: str = ""
    arguments: str = ""


@dataclass
class ToolCall:
    """A tool call requested by the model.

    Attributes:
        id: Identifier assigned by the upstream (None until seen in a stream).
        type: Tool type, "function" unless the upstream says otherwise.
        function: Name and raw argument string.
    """
    id: str | None = None
    type: str = "function"
    function: FunctionCall = field(default_factory=FunctionCall)

    @property
    def name(self) -> str:
        return self.function.name

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode the argument string.

        Raises:
            json.JSONDecodeError: If the accumulated arguments are not valid JSON.
        """
        if not self.function.arguments:
            return {}
        return json.loads(self.function.arguments)

    def to_dict(self) -> dict:
        """OpenAI wire format."""
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.function.name, "arguments": self.function.arguments},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ToolCall":
        function = data.get("function") or {}
        arguments = function.get("arguments", "")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return cls(
            id=data.get("id"),
            type=data.get("type") or "function",
            function=FunctionCall(name=function.get("name") or "", arguments=arguments),
        )


@dataclass
class ChatResponse:
    """A complete upstream chat response.

    Attributes:
        content: Response text; None when the model only requested tools.
        tool_calls: Tool calls attached to the response.
        turns: Upstream-suggested split of the content, if provided.
        has_next: Whether the upstream expects to continue with a follow-up.
        image_prompt: Prompt for an image to deliver after the text.
        violations: Compliance violations reported by the upstream.
        reasoning: Reasoning text, if the model exposed it.
        usage: Token usage statistics (if available).
        finish_reason: Why the response ended ("stop", "tool_calls", etc).
    """
    content: str | None
    tool_calls: list[ToolCall] = field(default_factory=list)
    turns: list[str] | None = None
    has_next: bool = False
    image_prompt: str | None = None
    violations: list[str] = field(default_factory=list)
    reasoning: str | None = None
    usage: dict | None = None
    finish_reason: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    @classmethod
    def from_completion(cls, data: dict) -> "ChatResponse":
        """Parse a non-streaming chat completions body.

        Besides the standard fields this reads the `turns`, `next` and
        `image_prompt` message extensions and top-level
        `compliance_violations`.
        """
        choices = data.get("choices") or [{}]
        choice = choices[0]
        message = choice.get("message") or {}

        turns = message.get("turns")
        if turns is not None:
            turns = [str(turn) for turn in turns]

        return cls(
            content=message.get("content"),
            tool_calls=[ToolCall.from_dict(tc) for tc in message.get("tool_calls") or []],
            turns=turns,
            has_next=bool(message.get("next", False)),
            image_prompt=message.get("image_prompt"),
            violations=list(data.get("compliance_violations") or []),
            reasoning=message.get("reasoning"),
            usage=data.get("usage"),
            finish_reason=choice.get("finish_reason"),
        )


class ContinuationTransport(ABC):
    """Issues the follow-up request that continues a conversation.

    Implementations build the request from their own view of the
    conversation; the caller only decides when to ask.
    """

    @abstractmethod
    async def request_continuation(self) -> ChatResponse:
        """Request the next part of the conversation.

        Raises:
            Exception: If the request fails. The follow-up scheduler reports
                the failure on its error event.
        """
        pass
