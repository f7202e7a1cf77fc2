"""One conversation's pacing pipeline, wired together.

PacedConversation connects the orchestrator, message queue, follow-up
scheduler, streaming handler and history:

    response -> orchestrator -> queue -> delivery sink + history
                                      -> image generator (image items)
                                      -> follow-up scheduler (has_next)
    follow-up response -> back into handle_response()
"""

import asyncio
import inspect
import random
import time
from typing import Any, AsyncIterable, AsyncIterator, Callable, Dict, Optional, Set

from paced_turns.config import TurnsConfig, coerce_config
from paced_turns.follow_up import FollowUpScheduler
from paced_turns.history import ChatHistory
from paced_turns.interfaces.chat import ChatResponse, ContinuationTransport
from paced_turns.interfaces.events import Delivery, DeliverySink, EventEmitter, MessageKind, TurnEvent
from paced_turns.logging_config import get_logger
from paced_turns.orchestrator import TurnOrchestrator
from paced_turns.scheduling import Scheduler
from paced_turns.streaming import StreamingHandler

logger = get_logger(__name__)


class PacedConversation:
    """Paces responses for one conversation.

    Usage:
        conversation = PacedConversation(
            config={"enabled": True, "max_turns": 3},
            sink=render_message,
            transport=client,
            history=client.history,
        )
        conversation.on_user_message("hi")
        async for chunk in conversation.process_stream(client.stream(messages)):
            ...

    Attributes:
        config: Active turns configuration.
        history: Where delivered messages are recorded.
        orchestrator: Splits responses and owns the message queue.
        follow_ups: Continuation scheduler, None without a transport.
        streaming: Turns byte streams into responses.
    """

    def __init__(
        self,
        config: TurnsConfig | dict | bool | None = None,
        sink: Optional[DeliverySink] = None,
        transport: Optional[ContinuationTransport] = None,
        history: Optional[ChatHistory] = None,
        scheduler: Optional[Scheduler] = None,
        emit: Optional[EventEmitter] = None,
        image_generator: Optional[Callable[[str], Any]] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = coerce_config(config)
        self.history = history if history is not None else ChatHistory(clock=clock)
        self._sink = sink
        self._emitter = emit
        self._image_generator = image_generator
        self._background: Set[asyncio.Future] = set()

        self.orchestrator = TurnOrchestrator(
            self.config,
            deliver=self._on_delivery,
            scheduler=scheduler,
            emit=emit,
            rng=rng,
            clock=clock,
        )
        self.follow_ups: Optional[FollowUpScheduler] = None
        if transport is not None:
            self.follow_ups = FollowUpScheduler(
                transport,
                self.config,
                handle_response=self.handle_response,
                scheduler=scheduler,
                emit=emit,
                group_id_source=self.orchestrator.get_current_group_id,
                clock=clock,
            )
        self.streaming = StreamingHandler(on_complete=self.handle_response, emit=emit)

    async def handle_response(self, response: ChatResponse) -> bool:
        """Deliver a complete response, paced if it splits.

        Returns:
            True if the response was queued as paced turns, False if it
            was delivered immediately as one message.
        """
        if self.orchestrator.process(
            response.content,
            violations=response.violations,
            tool_calls=response.tool_calls,
            upstream_turns=response.turns,
            image_prompt=response.image_prompt,
            has_next=response.has_next,
            reasoning=response.reasoning,
        ):
            return True

        delivery = Delivery(
            content=response.content or "",
            violations=list(response.violations),
            tool_calls=list(response.tool_calls),
            image_prompt=response.image_prompt,
            has_next=response.has_next,
            reasoning=response.reasoning,
        )
        self._on_delivery(delivery)
        self._emit(TurnEvent.MESSAGE_COMPLETE, {
            "group_id": None,
            "content": delivery.content,
            "has_next": delivery.has_next,
        })
        return False

    def process_stream(self, source: AsyncIterable[bytes | str]) -> AsyncIterator[dict]:
        """Yield parsed chunks from a stream; the finished response is delivered."""
        return self.streaming.process_stream(source)

    async def consume_stream(self, source: AsyncIterable[bytes | str]) -> None:
        """Read a stream to the end and deliver the response."""
        async for _ in self.process_stream(source):
            pass

    def on_user_message(self, content: str) -> int:
        """A new user message: cancel pending turns and follow-ups, reset the counter.

        Returns:
            Number of pending turns canceled.
        """
        canceled = self.cancel_pending_messages()
        if self.follow_ups is not None:
            self.follow_ups.cancel()
            self.follow_ups.reset_sequential_count()
        self.history.add_user_message(content)
        return canceled

    def cancel_pending_messages(self) -> int:
        """Drop undelivered turns and the follow-up armed by their group."""
        group_id = self.orchestrator.get_current_group_id()
        canceled = self.orchestrator.cancel_pending_messages()
        if self.follow_ups is not None and group_id is not None:
            self.follow_ups.cancel_for_group(group_id)
        return canceled

    def is_active(self) -> bool:
        if self.orchestrator.is_active():
            return True
        return self.follow_ups is not None and (self.follow_ups.has_pending or self.follow_ups.in_progress)

    def get_status(self) -> Dict[str, Any]:
        status = self.orchestrator.get_status()
        if self.follow_ups is not None:
            status["follow_up_pending"] = self.follow_ups.has_pending
            status["sequential_follow_ups"] = self.follow_ups.sequential_count
        return status

    def update_config(self, config: TurnsConfig | dict | bool | None) -> None:
        """Apply a new configuration; pending turns are discarded."""
        new_config = coerce_config(config)
        self.orchestrator.update_config(new_config)
        if self.follow_ups is not None:
            self.follow_ups.config = new_config
        self.config = new_config

    async def wait_idle(self) -> None:
        """Wait for the running follow-up request and image generations."""
        if self.follow_ups is not None:
            await self.follow_ups.wait_idle()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _on_delivery(self, delivery: Delivery) -> None:
        if delivery.kind is MessageKind.TEXT or delivery.violations or delivery.tool_calls:
            self.history.add_assistant_response(
                delivery.content,
                violations=delivery.violations,
                tool_calls=delivery.tool_calls,
                metadata=delivery.metadata,
                reasoning=delivery.reasoning,
            )

        if self._sink is not None:
            self._sink(delivery)

        if delivery.image_prompt:
            self._generate_image(delivery.image_prompt)

        if delivery.has_next and (delivery.metadata is None or delivery.metadata.is_last):
            if self.follow_ups is not None:
                self.follow_ups.on_more_content_expected()

    def _generate_image(self, prompt: str) -> None:
        if self.follow_ups is not None:
            self.follow_ups.mark_image_generated()
        if self._image_generator is None:
            return
        result = self._image_generator(prompt)
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._background.add(future)
            future.add_done_callback(self._on_background_done)

    def _on_background_done(self, future: asyncio.Future) -> None:
        self._background.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"Image generation failed: {error}")
            self._emit(TurnEvent.MESSAGE_ERROR, {"error": str(error), "kind": MessageKind.IMAGE.value})

    def _emit(self, event: TurnEvent, payload: dict) -> None:
        if self._emitter is None:
            return
        try:
            self._emitter(event.value, payload)
        except Exception:
            logger.exception(f"Event handler failed for {event.value}")
