"""Automatic continuation requests when a response expects more content.

When the last delivered turn of a response carries has_next, the
scheduler arms a delayed continuation request. The response to that
request goes back through the normal pipeline and may arm the next one,
up to max_sequential_follow_ups before the user speaks again.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from paced_turns.config import TurnsConfig
from paced_turns.interfaces.chat import ChatResponse, ContinuationTransport
from paced_turns.interfaces.events import EventEmitter, TurnEvent
from paced_turns.logging_config import get_logger
from paced_turns.scheduling import AsyncioScheduler, ScheduledHandle, Scheduler

logger = get_logger(__name__)


@dataclass
class PendingFollowUp:
    """An armed continuation, correlated with the group that asked for it."""
    group_id: str
    handle: Optional[ScheduledHandle] = None


class FollowUpScheduler:
    """Arms, fires and cancels continuation requests.

    Guards, checked in order when more content is expected:
    1. the sequential counter has reached max_sequential_follow_ups
    2. an image was generated just before (one-shot, cleared when checked)
    3. a continuation is already pending

    The sequential counter only resets on reset_sequential_count(), which
    callers invoke for a new user message.

    Attributes:
        config: Turns configuration (follow_up_delay_ms, max_sequential_follow_ups).
        sequential_count: Continuations armed since the last user message.
    """

    def __init__(
        self,
        transport: ContinuationTransport,
        config: TurnsConfig,
        handle_response: Callable[[ChatResponse], Awaitable[Any]],
        scheduler: Optional[Scheduler] = None,
        emit: Optional[EventEmitter] = None,
        group_id_source: Optional[Callable[[], Optional[str]]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.transport = transport
        self.config = config
        self._handle_response = handle_response
        self._scheduler = scheduler or AsyncioScheduler()
        self._emitter = emit
        self._group_id_source = group_id_source
        self._clock = clock

        self.sequential_count = 0
        self._just_generated_image = False
        self._pending: Optional[PendingFollowUp] = None
        self._in_flight = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    @property
    def pending_group_id(self) -> Optional[str]:
        return self._pending.group_id if self._pending else None

    @property
    def in_progress(self) -> bool:
        """True while a continuation request is awaiting its response."""
        return self._in_flight > 0

    def on_more_content_expected(self) -> bool:
        """Arm a continuation unless a guard suppresses it.

        Returns:
            True if a continuation was scheduled.
        """
        if self.sequential_count >= self.config.max_sequential_follow_ups:
            logger.info(
                f"Follow-up suppressed: {self.sequential_count} sequential follow-up(s) "
                f"(max {self.config.max_sequential_follow_ups})"
            )
            return False

        if self._just_generated_image:
            self._just_generated_image = False
            logger.info("Follow-up suppressed: image was just generated")
            return False

        if self._pending is not None:
            logger.debug(f"Follow-up already pending for {self._pending.group_id}")
            return False

        self.sequential_count += 1
        group_id = None
        if self._group_id_source is not None:
            group_id = self._group_id_source()
        if not group_id:
            group_id = f"followup_{int(self._clock() * 1000)}"

        pending = PendingFollowUp(group_id=group_id)
        self._pending = pending
        pending.handle = self._scheduler.call_later(
            self.config.follow_up_delay_ms / 1000.0,
            lambda: self._start(pending),
        )
        logger.event(
            "follow_up_armed",
            f"Follow-up {self.sequential_count}/{self.config.max_sequential_follow_ups} "
            f"in {self.config.follow_up_delay_ms:.0f}ms",
            group_id=group_id,
        )
        return True

    def cancel_for_group(self, group_id: Optional[str]) -> bool:
        """Cancel the pending continuation if it belongs to group_id.

        A continuation whose request is already in flight is discarded when
        its response arrives.
        """
        if self._pending is None or group_id is None or self._pending.group_id != group_id:
            return False
        return self.cancel()

    def cancel(self) -> bool:
        """Cancel whatever continuation is pending."""
        pending = self._pending
        if pending is None:
            return False
        if pending.handle is not None:
            pending.handle.cancel()
        self._pending = None
        logger.info(f"Canceled follow-up for {pending.group_id}")
        return True

    def mark_image_generated(self) -> None:
        """Suppress the next continuation check once."""
        self._just_generated_image = True

    def reset_sequential_count(self) -> None:
        """Reset the counter; call for a new user message only."""
        self.sequential_count = 0

    async def wait_idle(self) -> None:
        """Wait until no continuation request is running."""
        while self._task is not None and not self._task.done():
            await self._task

    def _start(self, pending: PendingFollowUp) -> None:
        if self._pending is not pending:
            return
        pending.handle = None
        self._task = asyncio.get_running_loop().create_task(self._fire(pending))

    async def _fire(self, pending: PendingFollowUp) -> None:
        if self._pending is not pending:
            return

        self._in_flight += 1
        self._emit(TurnEvent.FOLLOW_UP_START, {
            "group_id": pending.group_id,
            "sequential_count": self.sequential_count,
        })
        start_time = time.time()
        try:
            response = await self.transport.request_continuation()
            logger.latency("follow_up", (time.time() - start_time) * 1000, group_id=pending.group_id)

            if self._pending is not pending:
                logger.info(f"Discarding follow-up response for canceled group {pending.group_id}")
                return

            # Release the slot first so the response may arm the next follow-up
            self._pending = None
            await self._handle_response(response)
        except Exception as e:
            logger.error(f"Follow-up request failed for {pending.group_id}: {e}", exc_info=True)
            self._emit(TurnEvent.MESSAGE_ERROR, {"group_id": pending.group_id, "error": str(e)})
        finally:
            if self._pending is pending:
                self._pending = None
            self._in_flight -= 1

    def _emit(self, event: TurnEvent, payload: dict) -> None:
        if self._emitter is None:
            return
        try:
            self._emitter(event.value, payload)
        except Exception:
            logger.exception(f"Event handler failed for {event.value}")
