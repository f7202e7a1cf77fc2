"""Paced conversational turns.

Splits model responses into several human-paced messages, delivers them
with simulated typing delays, and requests automatic follow-ups when the
model signals that more content is coming.
"""

from paced_turns.config import ClientConfig, PacedTurnsConfig, TurnsConfig, coerce_config, load_config
from paced_turns.conversation import PacedConversation
from paced_turns.errors import ConfigValidationError, PacedTurnsError, StreamParseError, TransportError
from paced_turns.follow_up import FollowUpScheduler
from paced_turns.history import ChatHistory
from paced_turns.interfaces import (
    ChatResponse,
    ContinuationTransport,
    Delivery,
    GroupMetadata,
    MessageKind,
    ToolCall,
    TurnEvent,
)
from paced_turns.message_queue import MessageQueue, QueuedItem
from paced_turns.orchestrator import TurnOrchestrator
from paced_turns.streaming import StreamingChunkAccumulator, StreamingHandler
from paced_turns.text_processing import calculate_delay, extract_sentences
from paced_turns.turn_limiter import TurnLimiter

__version__ = "0.1.0"

__all__ = [
    # Config
    "ClientConfig",
    "PacedTurnsConfig",
    "TurnsConfig",
    "coerce_config",
    "load_config",
    # Errors
    "ConfigValidationError",
    "PacedTurnsError",
    "StreamParseError",
    "TransportError",
    # Pipeline
    "ChatHistory",
    "FollowUpScheduler",
    "MessageQueue",
    "PacedConversation",
    "QueuedItem",
    "StreamingChunkAccumulator",
    "StreamingHandler",
    "TurnLimiter",
    "TurnOrchestrator",
    # Interfaces
    "ChatResponse",
    "ContinuationTransport",
    "Delivery",
    "GroupMetadata",
    "MessageKind",
    "ToolCall",
    "TurnEvent",
    # Text
    "calculate_delay",
    "extract_sentences",
]
