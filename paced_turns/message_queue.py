"""Timed FIFO delivery of paced turns.

Each item waits its own delay after the previous item was delivered. The
head item stays in the FIFO while its delay counts down and is removed
only when it fires, so cancel_remaining() drops everything that has not
been delivered yet and never touches an item whose delivery is running.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Iterable, List, Optional, Set

from paced_turns.interfaces.chat import ToolCall
from paced_turns.interfaces.events import Delivery, DeliverySink, EventEmitter, GroupMetadata, MessageKind, TurnEvent
from paced_turns.logging_config import get_logger
from paced_turns.scheduling import AsyncioScheduler, ScheduledHandle, Scheduler

logger = get_logger(__name__)


@dataclass
class QueuedItem:
    """A turn waiting for delivery.

    Attributes:
        content: Turn text; empty only for the synthetic image item.
        delay_ms: Wait before delivery, measured from the previous delivery.
        turn_index: 0-based position among the group's items.
        total_turns: Number of items in the group.
        group_id: Identifier shared by every item from one response.
        message_index: 0-based position in the group.
        total_in_group: Number of items in the group, image included.
        group_created_at: Epoch seconds when the group was built.
        violations: Compliance violations, last item only.
        tool_calls: Tool calls, last item only.
        has_next: Follow-up flag, last item only.
        kind: Text or image.
        image_prompt: Prompt for the image item.
        reasoning: Model reasoning, first item only.
    """
    content: str
    delay_ms: float
    turn_index: int
    total_turns: int
    group_id: str
    message_index: int
    total_in_group: int
    group_created_at: float
    violations: List[str] = field(default_factory=list)
    tool_calls: List[ToolCall] = field(default_factory=list)
    has_next: bool = False
    kind: MessageKind = MessageKind.TEXT
    image_prompt: Optional[str] = None
    reasoning: Optional[str] = None

    @property
    def item_id(self) -> str:
        return f"{self.group_id}_{self.message_index}"

    @property
    def is_last(self) -> bool:
        return self.message_index == self.total_in_group - 1

    def to_delivery(self, delivered_at: float) -> Delivery:
        return Delivery(
            content=self.content,
            violations=list(self.violations),
            tool_calls=list(self.tool_calls),
            metadata=GroupMetadata(
                group_id=self.group_id,
                message_index=self.message_index,
                total_in_group=self.total_in_group,
                group_created_at=self.group_created_at,
                delivered_at=delivered_at,
            ),
            kind=self.kind,
            image_prompt=self.image_prompt,
            has_next=self.has_next,
            reasoning=self.reasoning,
        )


@dataclass
class QueueStatus:
    """Snapshot of the queue."""
    length: int
    is_processing: bool
    processed_count: int


class MessageQueue:
    """Delivers queued turns one at a time, each after its delay.

    Usage:
        queue = MessageQueue(deliver=sink, emit=on_event)
        queue.enqueue(items)
        ...
        dropped = queue.cancel_remaining()

    The delivery callback is called synchronously with a Delivery whose
    metadata carries the fire-time timestamp. The event emitter receives
    (event_name, payload); emitter failures are logged and ignored.
    """

    def __init__(
        self,
        deliver: DeliverySink,
        scheduler: Optional[Scheduler] = None,
        emit: Optional[EventEmitter] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._deliver = deliver
        self._scheduler = scheduler or AsyncioScheduler()
        self._emitter = emit
        self._clock = clock

        self._queue: Deque[QueuedItem] = deque()
        self._canceled: Set[str] = set()
        self._handle: Optional[ScheduledHandle] = None
        self._processing = False
        self._processed_count = 0
        self._current_group_id: Optional[str] = None

    @property
    def current_group_id(self) -> Optional[str]:
        """Group of the item most recently started."""
        return self._current_group_id

    @property
    def processed_count(self) -> int:
        return self._processed_count

    def enqueue(self, items: Iterable[QueuedItem]) -> None:
        """Append items; starts delivery if the queue was idle."""
        items = list(items)
        if not items:
            return
        self._queue.extend(items)
        logger.debug(f"Enqueued {len(items)} item(s), queue length {len(self._queue)}")
        if not self._processing:
            self._processing = True
            self._schedule_head()

    def cancel_remaining(self) -> int:
        """Drop every item that has not fired yet.

        Returns:
            Number of items dropped.
        """
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

        dropped = len(self._queue)
        self._queue.clear()
        self._processing = False

        if dropped:
            logger.info(f"Canceled {dropped} pending message(s)")
            self._emit(TurnEvent.MESSAGES_CANCELED, {"count": dropped})
        return dropped

    def clear(self) -> None:
        """Cancel everything and reset counters for a fresh conversation."""
        self.cancel_remaining()
        self._canceled.clear()
        self._processed_count = 0
        self._processing = False
        self._current_group_id = None

    def mark_canceled(self, item_ids: Iterable[str]) -> None:
        """Skip these items if they fire later; skipped items count as processed.

        Marks stay registered until the item fires or clear() is called.
        """
        self._canceled.update(item_ids)

    def is_canceled(self, item_id: str) -> bool:
        return item_id in self._canceled

    def consume_canceled(self, item_id: str) -> bool:
        """Remove a mark; True if the item was marked canceled."""
        if item_id in self._canceled:
            self._canceled.discard(item_id)
            return True
        return False

    def pending_item_ids(self) -> List[str]:
        return [item.item_id for item in self._queue]

    def pending_group_ids(self) -> Set[str]:
        return {item.group_id for item in self._queue}

    def status(self) -> QueueStatus:
        return QueueStatus(
            length=len(self._queue),
            is_processing=self._processing,
            processed_count=self._processed_count,
        )

    def is_active(self) -> bool:
        """True while items are waiting or being delivered."""
        return self._processing or len(self._queue) > 0

    def _schedule_head(self) -> None:
        head = self._queue[0]
        self._current_group_id = head.group_id
        self._handle = self._scheduler.call_later(head.delay_ms / 1000.0, self._fire)

    def _fire(self) -> None:
        self._handle = None
        if not self._queue:
            self._processing = False
            return

        item = self._queue.popleft()
        if self.consume_canceled(item.item_id):
            self._processed_count += 1
            logger.debug(f"Skipped canceled item {item.item_id}")
        else:
            self._deliver_item(item)

        self._advance()

    def _deliver_item(self, item: QueuedItem) -> None:
        delivered_at = self._clock()
        payload = {
            "group_id": item.group_id,
            "message_index": item.message_index,
            "total_in_group": item.total_in_group,
            "turn_index": item.turn_index,
            "total_turns": item.total_turns,
            "kind": item.kind.value,
            "content": item.content,
        }

        self._emit(TurnEvent.MESSAGE_START, payload)
        try:
            self._deliver(item.to_delivery(delivered_at))
        except Exception as e:
            logger.exception(f"Delivery of {item.item_id} failed")
            self._emit(TurnEvent.MESSAGE_ERROR, {**payload, "error": str(e)})
        self._processed_count += 1
        logger.delivery(item.group_id, item.message_index, item.total_in_group, item.delay_ms, len(item.content))
        self._emit(TurnEvent.MESSAGE_COMPLETE, payload)

    def _advance(self) -> None:
        # Canceled during delivery, or restarted by an enqueue from the sink
        if not self._processing or self._handle is not None:
            return
        if self._queue:
            self._schedule_head()
            return
        self._processing = False
        self._emit(TurnEvent.QUEUE_COMPLETE, {"processed_count": self._processed_count})

    def _emit(self, event: TurnEvent, payload: dict) -> None:
        if self._emitter is None:
            return
        try:
            self._emitter(event.value, payload)
        except Exception:
            logger.exception(f"Event handler failed for {event.value}")
