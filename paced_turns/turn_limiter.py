"""Deciding how a response is split into turns, and bounding the turn count.

select_candidate_turns() applies the split decision to a raw response.
TurnLimiter.limit() then merges adjacent candidates so that the number of
delivered turns, plus one for a pending follow-up, never exceeds the
configured maximum.
"""

import math
import random
from dataclasses import dataclass
from typing import List, Optional, Sequence

from paced_turns.config import TurnsConfig
from paced_turns.logging_config import get_logger
from paced_turns.text_processing import calculate_delay

logger = get_logger(__name__)


@dataclass
class SplitTurn:
    """One deliverable turn with its typing delay.

    Attributes:
        content: Text of the turn, possibly several candidates joined.
        delay_ms: Delay before this turn is delivered (0 for the first).
        turn_index: 0-based position in the response.
        total_turns: Number of turns the response was split into.
    """
    content: str
    delay_ms: float
    turn_index: int
    total_turns: int


def select_candidate_turns(
    content: str | None,
    upstream_turns: Optional[Sequence[str]] = None,
) -> Optional[List[str]]:
    """Decide whether and how a response splits.

    1. Text containing a line break, when a turns hint was supplied (even
       an empty one), splits on line breaks; the hint itself is ignored.
    2. Otherwise a hint with more than one element is used as-is.
    3. Otherwise the response is not split.

    Lines are stripped and blank lines discarded. Fewer than two resulting
    pieces means the response stays whole.

    Returns:
        The candidate turns, or None when the response should not split.
    """
    if not content:
        return None

    if upstream_turns is not None and "\n" in content:
        lines = [line.strip() for line in content.splitlines()]
        lines = [line for line in lines if line]
        if len(lines) > 1:
            return lines
        return None

    if upstream_turns is not None and len(upstream_turns) > 1:
        return list(upstream_turns)

    return None


def group_sizes(count: int, target: int) -> List[int]:
    """Sizes of target contiguous groups covering count items as evenly as possible.

    Every group gets count // target items; the first count % target
    groups get one extra.
    """
    if count <= 0:
        return []
    target = max(1, min(target, count))
    base, extra = divmod(count, target)
    return [base + 1 if i < extra else base for i in range(target)]


def concatenate_turns(turns: Sequence[str], target: int) -> List[str]:
    """Merge turns into target contiguous groups joined by single spaces."""
    merged = []
    start = 0
    for size in group_sizes(len(turns), target):
        merged.append(" ".join(turns[start:start + size]))
        start += size
    return merged


class TurnLimiter:
    """Bounds the number of turns a response is delivered in.

    A pending follow-up (has_next) counts as one turn. When the total
    exceeds max_turns the candidates are always concatenated; when it
    equals max_turns they are concatenated with probability
    max_turn_concat_probability; below that they pass through unchanged.
    """

    def __init__(self, config: TurnsConfig, rng: Optional[random.Random] = None):
        self.config = config
        self.rng = rng or random.Random()

    def should_concatenate(self, count: int, has_next: bool) -> bool:
        total = count + (1 if has_next else 0)
        if total > self.config.max_turns:
            return True
        if total == self.config.max_turns:
            return self.rng.random() < self.config.max_turn_concat_probability
        return False

    def target_count(self, count: int, has_next: bool) -> int:
        """Pick a turn count uniformly in [1, max_possible]."""
        limit = self.config.max_turns - 1 if has_next else self.config.max_turns
        max_possible = max(1, min(count, limit))
        return max(1, math.ceil(self.rng.random() * max_possible))

    def limit(self, turns: Sequence[str], has_next: bool = False) -> List[SplitTurn]:
        """Turn candidate texts into timed turns within the configured maximum.

        Args:
            turns: Candidate turns in delivery order.
            has_next: Whether a follow-up will be requested after these turns.

        Returns:
            Timed turns; the first has zero delay, later ones a typing delay
            computed from their own content.
        """
        pieces = list(turns)
        if not pieces:
            return []

        if self.should_concatenate(len(pieces), has_next):
            target = self.target_count(len(pieces), has_next)
            logger.debug(
                f"Concatenating {len(pieces)} turns into {target} "
                f"(max_turns={self.config.max_turns}, has_next={has_next})"
            )
            pieces = concatenate_turns(pieces, target)

        total = len(pieces)
        result = []
        for index, content in enumerate(pieces):
            if index == 0:
                delay_ms = 0.0
            else:
                delay_ms = calculate_delay(
                    content,
                    self.config.base_typing_speed,
                    self.config.speed_variation,
                    self.config.min_delay_ms,
                    self.config.max_delay_ms,
                    rng=self.rng,
                )
            result.append(SplitTurn(content=content, delay_ms=delay_ms, turn_index=index, total_turns=total))
        return result
