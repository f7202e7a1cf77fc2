"""In-memory conversation history that understands paced groups.

Each delivered turn is stored as its own assistant message, in delivery
order. When the history is sent upstream, the turns of a group are
collapsed back into the single message the model originally produced.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from paced_turns.interfaces.chat import ToolCall
from paced_turns.interfaces.events import GroupMetadata
from paced_turns.logging_config import get_logger

logger = get_logger(__name__)

_THINK_RE = re.compile(r"<think>(.*?)</think>", re.DOTALL)

# Placeholder user turn some clients send to request a continuation
CONTINUE_MARKER = "[CONTINUE]"


@dataclass
class HistoryMessage:
    """One stored message.

    Attributes:
        role: "user", "assistant" or "tool".
        content: Message text (None for tool-call-only assistant messages).
        timestamp: Epoch seconds; assistant turns use their delivery time.
        reasoning: Model reasoning, if any.
        tool_calls: Tool calls made by an assistant message.
        violations: Compliance violations reported for the message.
        tool_call_id: For tool results, the call they answer.
        group_id: Group the turn belongs to, for paced turns.
        message_index: Position of the turn within its group.
        total_in_group: Size of the group.
        group_created_at: When the group was built.
    """
    role: str
    content: Optional[str]
    timestamp: float
    reasoning: Optional[str] = None
    tool_calls: List[ToolCall] = field(default_factory=list)
    violations: List[str] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    group_id: Optional[str] = None
    message_index: Optional[int] = None
    total_in_group: Optional[int] = None
    group_created_at: Optional[float] = None

    @property
    def is_grouped(self) -> bool:
        return self.group_id is not None and self.message_index is not None

    def to_request_dict(self) -> dict:
        """Message in chat completions request format."""
        message = {"role": self.role, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            message["tool_call_id"] = self.tool_call_id
        return message


def split_reasoning(content: str) -> tuple[str, Optional[str]]:
    """Remove the first <think>...</think> block, returning (content, reasoning)."""
    match = _THINK_RE.search(content)
    if not match:
        return content.strip(), None
    reasoning = match.group(1).strip() or None
    cleaned = (content[:match.start()] + content[match.end():]).strip()
    cleaned = re.sub(r"\s{2,}", " ", cleaned)
    return cleaned, reasoning


def reconstruct_grouped_messages(messages: List[HistoryMessage]) -> List[HistoryMessage]:
    """Collapse the turns of each group into one message.

    The merged message sits where the group's first stored turn sat. Its
    content is the turns' text joined by single spaces in message_index
    order, its timestamp the group's creation time, its reasoning that of
    the first turn, and its violations and tool calls those of the last.
    Groups cut short by cancellation are merged from the turns that were
    delivered.
    """
    groups: dict[str, List[HistoryMessage]] = {}
    order: List[object] = []

    for message in messages:
        if message.is_grouped:
            if message.group_id not in groups:
                groups[message.group_id] = []
                order.append(message.group_id)
            groups[message.group_id].append(message)
        else:
            order.append(message)

    result = []
    for entry in order:
        if isinstance(entry, HistoryMessage):
            result.append(entry)
            continue

        members = sorted(groups[entry], key=lambda m: m.message_index)
        first, last = members[0], members[-1]
        texts = [m.content for m in members if m.content]
        result.append(HistoryMessage(
            role=first.role,
            content=" ".join(texts) if texts else None,
            timestamp=first.group_created_at if first.group_created_at is not None else first.timestamp,
            reasoning=first.reasoning,
            tool_calls=list(last.tool_calls),
            violations=list(last.violations),
        ))
    return result


class ChatHistory:
    """Bounded, chronologically ordered message history.

    Attributes:
        max_size: Messages kept; 0 disables history.
    """

    def __init__(self, max_size: int = 30, clock: Callable[[], float] = time.time):
        self.max_size = max_size
        self._clock = clock
        self._messages: List[HistoryMessage] = []

    def __len__(self) -> int:
        return len(self._messages)

    def messages(self) -> List[HistoryMessage]:
        return list(self._messages)

    def add_user_message(self, content: str, timestamp: Optional[float] = None) -> bool:
        if content == CONTINUE_MARKER:
            return False
        return self._insert(HistoryMessage(
            role="user",
            content=content,
            timestamp=timestamp if timestamp is not None else self._clock(),
        ))

    def add_tool_result(self, tool_call_id: str, content: str, timestamp: Optional[float] = None) -> bool:
        if not content or not tool_call_id:
            return False
        return self._insert(HistoryMessage(
            role="tool",
            content=content,
            timestamp=timestamp if timestamp is not None else self._clock(),
            tool_call_id=tool_call_id,
        ))

    def add_assistant_response(
        self,
        content: Optional[str],
        violations: Optional[List[str]] = None,
        tool_calls: Optional[List[ToolCall]] = None,
        metadata: Optional[GroupMetadata] = None,
        reasoning: Optional[str] = None,
    ) -> bool:
        """Store an assistant message or one paced turn of it.

        Messages without text, reasoning or tool calls are not stored.
        Paced turns are inserted by their delivery time.

        Returns:
            True if the message was stored.
        """
        if violations:
            logger.warning(f"Assistant response has compliance violations: {', '.join(violations)}")

        text = content or ""
        if text:
            text, think = split_reasoning(text)
            reasoning = reasoning or think

        if not text and not reasoning and not tool_calls:
            return False

        message = HistoryMessage(
            role="assistant",
            content=text or None,
            timestamp=metadata.delivered_at if metadata else self._clock(),
            reasoning=reasoning,
            tool_calls=list(tool_calls or []),
            violations=list(violations or []),
        )
        if metadata is not None:
            message.group_id = metadata.group_id
            message.message_index = metadata.message_index
            message.total_in_group = metadata.total_in_group
            message.group_created_at = metadata.group_created_at
        return self._insert(message)

    def as_request_messages(self, limit: Optional[int] = None) -> List[dict]:
        """Most recent messages, groups collapsed, in request format."""
        messages = self._messages
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return [m.to_request_dict() for m in reconstruct_grouped_messages(messages)]

    def clear(self) -> int:
        count = len(self._messages)
        self._messages = []
        return count

    def _insert(self, message: HistoryMessage) -> bool:
        if self.max_size <= 0:
            return False

        index = len(self._messages)
        while index > 0 and self._messages[index - 1].timestamp > message.timestamp:
            index -= 1
        self._messages.insert(index, message)

        if len(self._messages) > self.max_size:
            self._messages = self._messages[-self.max_size:]
        return True
