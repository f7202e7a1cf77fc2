"""Delivery records and lifecycle events emitted while pacing turns."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol

from paced_turns.interfaces.chat import ToolCall


class TurnEvent(str, Enum):
    """Lifecycle event names passed to the event emitter."""
    MESSAGE_START = "message_start"
    MESSAGE_COMPLETE = "message_complete"
    QUEUE_COMPLETE = "queue_complete"
    MESSAGES_CANCELED = "messages_canceled"
    MESSAGE_ERROR = "message_error"
    MESSAGE_TOKENS = "message_tokens"
    FOLLOW_UP_START = "follow_up_start"


class MessageKind(Enum):
    """What a delivered item carries."""
    TEXT = "text"
    IMAGE = "image"


EventEmitter = Callable[[str, dict], None]


@dataclass
class GroupMetadata:
    """Where a delivered item sits within its group.

    Attributes:
        group_id: Identifier shared by all items from one response.
        message_index: 0-based position in the group.
        total_in_group: Number of items in the group, image included.
        group_created_at: Epoch seconds when the group was built.
        delivered_at: Epoch seconds when this item fired.
    """
    group_id: str
    message_index: int
    total_in_group: int
    group_created_at: float
    delivered_at: float

    @property
    def is_last(self) -> bool:
        return self.message_index == self.total_in_group - 1


@dataclass
class Delivery:
    """One message handed to the delivery sink."""
    content: str
    violations: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    metadata: GroupMetadata | None = None
    kind: MessageKind = MessageKind.TEXT
    image_prompt: str | None = None
    has_next: bool = False
    reasoning: str | None = None


class DeliverySink(Protocol):
    """Receives each message when it is due."""

    def __call__(self, delivery: Delivery) -> Any:
        ...
