"""Interfaces shared between the pacing components and their collaborators."""

from paced_turns.interfaces.chat import ChatResponse, ContinuationTransport, FunctionCall, ToolCall
from paced_turns.interfaces.events import (
    Delivery,
    DeliverySink,
    EventEmitter,
    GroupMetadata,
    MessageKind,
    TurnEvent,
)

__all__ = [
    # Chat
    "ChatResponse",
    "ContinuationTransport",
    "FunctionCall",
    "ToolCall",
    # Delivery
    "Delivery",
    "DeliverySink",
    "EventEmitter",
    "GroupMetadata",
    "MessageKind",
    "TurnEvent",
]
