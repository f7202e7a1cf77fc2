"""Tests for the split decision and turn limiting."""

import random

import pytest

from paced_turns.config import TurnsConfig
from paced_turns.turn_limiter import (
    TurnLimiter,
    concatenate_turns,
    group_sizes,
    select_candidate_turns,
)


class TestSelectCandidateTurns:
    """Tests for select_candidate_turns()."""

    def test_newlines_split_when_hint_present(self):
        assert select_candidate_turns("First\nSecond\nThird", []) == ["First", "Second", "Third"]

    def test_newline_split_ignores_hint_content(self):
        assert select_candidate_turns("A\nB", ["something", "else", "entirely"]) == ["A", "B"]

    def test_lines_stripped_and_blanks_dropped(self):
        assert select_candidate_turns("  A  \n\n   \nB ", []) == ["A", "B"]

    def test_single_line_after_cleanup_does_not_split(self):
        assert select_candidate_turns("Hello\n\n", []) is None

    def test_no_hint_never_splits(self):
        assert select_candidate_turns("First\nSecond", None) is None

    def test_multi_element_hint_used(self):
        assert select_candidate_turns("Hi there. How are you?", ["Hi there.", "How are you?"]) == [
            "Hi there.",
            "How are you?",
        ]

    def test_single_candidate_without_newline(self):
        """Test one upstream turn and no line break keeps the response whole."""
        assert select_candidate_turns("Hello", ["Hello"]) is None

    def test_empty_content(self):
        assert select_candidate_turns("", ["a", "b"]) is None
        assert select_candidate_turns(None, ["a", "b"]) is None


class TestGrouping:
    """Tests for group_sizes() and concatenate_turns()."""

    @pytest.mark.parametrize("count,target,expected", [
        (4, 3, [2, 1, 1]),
        (5, 2, [3, 2]),
        (4, 1, [4]),
        (3, 3, [1, 1, 1]),
        (2, 5, [1, 1]),
        (0, 2, []),
    ])
    def test_group_sizes(self, count, target, expected):
        assert group_sizes(count, target) == expected

    def test_concatenate_turns_joins_with_space(self):
        assert concatenate_turns(["a", "b", "c", "d"], 3) == ["a b", "c", "d"]

    def test_concatenate_to_one(self):
        assert concatenate_turns(["a", "b", "c"], 1) == ["a b c"]


class TestTurnLimiter:
    """Tests for TurnLimiter."""

    def test_below_max_passes_through(self, fixed_random):
        limiter = TurnLimiter(TurnsConfig(max_turns=3), fixed_random(0.5))
        turns = limiter.limit(["a", "b"])
        assert [t.content for t in turns] == ["a", "b"]

    def test_four_turns_with_max_three(self, fixed_random):
        """Test four candidates are merged into at most three turns."""
        limiter = TurnLimiter(TurnsConfig(max_turns=3), fixed_random(0.99))
        turns = limiter.limit(["a", "b", "c", "d"])
        assert [t.content for t in turns] == ["a b", "c", "d"]
        assert all(t.total_turns == 3 for t in turns)

    def test_pending_follow_up_counts_as_turn(self, fixed_random):
        limiter = TurnLimiter(TurnsConfig(max_turns=3), fixed_random(0.99))
        turns = limiter.limit(["a", "b", "c", "d"], has_next=True)
        assert [t.content for t in turns] == ["a b", "c d"]

    def test_max_turns_one(self, fixed_random):
        limiter = TurnLimiter(TurnsConfig(max_turns=1), fixed_random(0.7))
        turns = limiter.limit(["A", "B", "C"])
        assert len(turns) == 1
        assert turns[0].content == "A B C"
        assert turns[0].delay_ms == 0

    def test_max_turns_one_with_follow_up(self, fixed_random):
        limiter = TurnLimiter(TurnsConfig(max_turns=1), fixed_random(0.7))
        turns = limiter.limit(["A", "B"], has_next=True)
        assert [t.content for t in turns] == ["A B"]

    def test_at_max_with_zero_probability_never_merges(self, fixed_random):
        limiter = TurnLimiter(TurnsConfig(max_turns=3, max_turn_concat_probability=0.0), fixed_random(0.0))
        assert limiter.should_concatenate(3, has_next=False) is False
        assert len(limiter.limit(["a", "b", "c"])) == 3

    def test_at_max_with_full_probability_merges(self, fixed_random):
        limiter = TurnLimiter(TurnsConfig(max_turns=3, max_turn_concat_probability=1.0), fixed_random(0.5))
        assert limiter.should_concatenate(3, has_next=False) is True
        turns = limiter.limit(["a", "b", "c"])
        assert [t.content for t in turns] == ["a b", "c"]

    def test_over_max_always_merges(self, fixed_random):
        limiter = TurnLimiter(TurnsConfig(max_turns=2), fixed_random(0.5))
        assert limiter.should_concatenate(3, has_next=False) is True
        assert limiter.should_concatenate(2, has_next=True) is True

    def test_target_count_range(self):
        limiter = TurnLimiter(TurnsConfig(max_turns=3), random.Random(7))
        for _ in range(200):
            assert 1 <= limiter.target_count(10, has_next=False) <= 3
            assert 1 <= limiter.target_count(10, has_next=True) <= 2

    def test_target_count_zero_draw(self, fixed_random):
        limiter = TurnLimiter(TurnsConfig(max_turns=3), fixed_random(0.0))
        assert limiter.target_count(5, has_next=False) == 1

    def test_delays(self):
        """Test the first turn has no delay and later ones stay within bounds."""
        config = TurnsConfig(max_turns=5, min_delay_ms=500, max_delay_ms=2500)
        limiter = TurnLimiter(config, random.Random(3))
        turns = limiter.limit(["First turn here", "second one", "and a third"])
        assert turns[0].delay_ms == 0
        for turn in turns[1:]:
            assert 500 <= turn.delay_ms <= 2500

    def test_turn_indices(self, fixed_random):
        limiter = TurnLimiter(TurnsConfig(max_turns=5), fixed_random(0.5))
        turns = limiter.limit(["a", "b", "c"])
        assert [t.turn_index for t in turns] == [0, 1, 2]
        assert all(t.total_turns == 3 for t in turns)

    def test_empty_input(self):
        assert TurnLimiter(TurnsConfig()).limit([]) == []

    def test_bound_holds_for_random_inputs(self):
        """Test delivered turns plus a pending follow-up never exceed max_turns."""
        rng = random.Random(11)
        for max_turns in range(1, 6):
            limiter = TurnLimiter(TurnsConfig(max_turns=max_turns, max_turn_concat_probability=0.5), rng)
            for count in range(1, 10):
                for has_next in (False, True):
                    turns = limiter.limit([f"t{i}" for i in range(count)], has_next=has_next)
                    assert 1 <= len(turns)
                    assert len(turns) + (1 if has_next else 0) <= max(max_turns, 1 + (1 if has_next else 0))
