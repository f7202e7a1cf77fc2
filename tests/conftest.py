"""Shared test fixtures for paced turn tests."""
import random

import pytest

from paced_turns.interfaces.chat import ChatResponse, ContinuationTransport
from paced_turns.scheduling import VirtualScheduler


class FixedRandom(random.Random):
    """Random source whose random() replays the given draws.

    The last draw repeats once the list is exhausted. choice() draws
    from random() too, so ids built from it are deterministic.
    """

    def __init__(self, *draws: float, seed: int = 0):
        super().__init__(seed)
        self._draws = list(draws) or [0.5]

    def random(self) -> float:
        if len(self._draws) > 1:
            return self._draws.pop(0)
        return self._draws[0]


class EventRecorder:
    """Event emitter that records (name, payload) pairs."""

    def __init__(self):
        self.events = []

    def __call__(self, name: str, payload: dict) -> None:
        self.events.append((name, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, name: str) -> list[dict]:
        return [payload for event, payload in self.events if event == name]


class FakeTransport(ContinuationTransport):
    """Continuation transport returning canned responses."""

    def __init__(self, *responses: ChatResponse, error: Exception | None = None):
        self.responses = list(responses) or [ChatResponse(content="More.")]
        self.error = error
        self.calls = 0
        self.gate = None

    async def request_continuation(self) -> ChatResponse:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


@pytest.fixture
def scheduler():
    """Manual clock scheduler."""
    return VirtualScheduler()


@pytest.fixture
def events():
    return EventRecorder()


@pytest.fixture
def delivered():
    """List that doubles as a delivery sink via its append method."""
    return []


@pytest.fixture
def fixed_random():
    """Factory for random sources that replay the given draws."""
    return FixedRandom


@pytest.fixture
def rng():
    """Random source that always draws 0.5."""
    return FixedRandom(0.5)


@pytest.fixture
def fake_transport():
    """Factory for continuation transports returning canned responses."""
    return FakeTransport
