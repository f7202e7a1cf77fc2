"""Turns one upstream response into a paced group of messages."""

import random
import string
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from paced_turns.config import TurnsConfig, coerce_config
from paced_turns.interfaces.chat import ToolCall
from paced_turns.interfaces.events import Delivery, DeliverySink, EventEmitter, MessageKind
from paced_turns.logging_config import get_logger
from paced_turns.message_queue import MessageQueue, QueuedItem
from paced_turns.scheduling import Scheduler
from paced_turns.text_processing import calculate_delay
from paced_turns.turn_limiter import TurnLimiter, select_candidate_turns

logger = get_logger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits


def make_group_id(rng: Optional[random.Random] = None, clock: Callable[[], float] = time.time) -> str:
    """group_<epoch ms>_<9 random base36 chars>"""
    rng = rng or random.Random()
    suffix = "".join(rng.choice(_ID_ALPHABET) for _ in range(9))
    return f"group_{int(clock() * 1000)}_{suffix}"


class TurnOrchestrator:
    """Splits responses into groups and feeds them to the message queue.

    process() returns False when a response should be delivered as a
    single ordinary message (feature disabled, no content, or the split
    decision says no); the caller then delivers it itself.

    Attributes:
        config: Active turns configuration.
        queue: The MessageQueue paced groups are delivered through.
    """

    def __init__(
        self,
        config: TurnsConfig | dict | bool | None,
        deliver: DeliverySink,
        scheduler: Optional[Scheduler] = None,
        emit: Optional[EventEmitter] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.config = coerce_config(config)
        self._deliver = deliver
        self._rng = rng or random.Random()
        self._clock = clock
        self._id_factory = id_factory or (lambda: make_group_id(self._rng, self._clock))
        self.limiter = TurnLimiter(self.config, self._rng)
        self.queue = MessageQueue(
            deliver=self._deliver_unless_canceled,
            scheduler=scheduler,
            emit=emit,
            clock=clock,
        )

    def process(
        self,
        content: Optional[str],
        violations: Optional[Sequence[str]] = None,
        tool_calls: Optional[Sequence[ToolCall]] = None,
        upstream_turns: Optional[Sequence[str]] = None,
        image_prompt: Optional[str] = None,
        has_next: Optional[bool] = None,
        reasoning: Optional[str] = None,
    ) -> bool:
        """Split a response into paced turns and enqueue them.

        Args:
            content: Response text.
            violations: Compliance violations, attached to the last item.
            tool_calls: Tool calls, attached to the last item.
            upstream_turns: Upstream-suggested split of the content.
            image_prompt: If set, an image item follows the text items.
            has_next: Follow-up flag, attached to the last item.
            reasoning: Model reasoning, attached to the first item.

        Returns:
            True if the response was enqueued as a group, False if the
            caller should deliver it as one message.
        """
        if not self.config.enabled or not content:
            return False

        candidates = select_candidate_turns(content, upstream_turns)
        if candidates is None:
            return False

        turns = self.limiter.limit(candidates, has_next=bool(has_next))
        if not turns:
            return False

        group_id = self._id_factory()
        created_at = self._clock()
        total = len(turns) + (1 if image_prompt else 0)

        items: List[QueuedItem] = [
            QueuedItem(
                content=turn.content,
                delay_ms=turn.delay_ms,
                turn_index=turn.turn_index,
                total_turns=total,
                group_id=group_id,
                message_index=turn.turn_index,
                total_in_group=total,
                group_created_at=created_at,
            )
            for turn in turns
        ]

        items[0].reasoning = reasoning
        last_text = items[-1]
        last_text.violations = list(violations or [])
        last_text.tool_calls = list(tool_calls or [])

        if image_prompt:
            image_delay = calculate_delay(
                "",
                self.config.base_typing_speed,
                self.config.speed_variation,
                self.config.min_delay_ms,
                self.config.max_delay_ms,
                rng=self._rng,
            )
            items.append(QueuedItem(
                content="",
                delay_ms=image_delay,
                turn_index=len(turns),
                total_turns=total,
                group_id=group_id,
                message_index=len(turns),
                total_in_group=total,
                group_created_at=created_at,
                kind=MessageKind.IMAGE,
                image_prompt=image_prompt,
            ))
            # The image now closes the group
            items[-1].violations, last_text.violations = last_text.violations, []
            items[-1].tool_calls, last_text.tool_calls = last_text.tool_calls, []

        items[-1].has_next = bool(has_next)

        logger.event(
            "group_created",
            f"Split response into {len(turns)} turn(s)" + (" + image" if image_prompt else ""),
            group_id=group_id,
            extra_data={"total_in_group": total, "has_next": bool(has_next)},
        )
        self.queue.enqueue(items)
        return True

    def cancel_pending_messages(self) -> int:
        """Drop every undelivered item; returns how many were dropped.

        The dropped ids stay registered as canceled, so an item that still
        fires for one of them never reaches the delivery sink.
        """
        self.queue.mark_canceled(self.queue.pending_item_ids())
        return self.queue.cancel_remaining()

    def get_current_group_id(self) -> Optional[str]:
        return self.queue.current_group_id

    def is_active(self) -> bool:
        return self.queue.is_active()

    def get_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.config.enabled,
            "queue_status": self.queue.status(),
        }

    def update_config(self, config: TurnsConfig | dict | bool | None) -> None:
        """Swap the configuration; pending messages are discarded.

        Raises:
            ConfigValidationError: If the new configuration is invalid. The
                current configuration and queue are left untouched.
        """
        new_config = coerce_config(config)
        self.queue.clear()
        self.config = new_config
        self.limiter = TurnLimiter(new_config, self._rng)
        logger.info(f"Turns config updated (enabled={new_config.enabled}, max_turns={new_config.max_turns})")

    def clear(self) -> None:
        self.queue.clear()

    def _deliver_unless_canceled(self, delivery: Delivery) -> None:
        metadata = delivery.metadata
        if metadata is not None:
            item_id = f"{metadata.group_id}_{metadata.message_index}"
            if self.queue.consume_canceled(item_id):
                logger.debug(f"Suppressed canceled message {item_id}")
                return
        self._deliver(delivery)
