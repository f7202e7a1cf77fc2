"""Cancelable delayed callbacks.

The queue and the follow-up scheduler only need "run this callback after
N seconds, unless canceled". AsyncioScheduler does that on the running
event loop; VirtualScheduler does it on a manual clock for tests.
"""

import asyncio
import heapq
import itertools
from typing import Callable, List, Protocol, Tuple


class ScheduledHandle(Protocol):
    """Handle for a scheduled callback."""

    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Schedules callbacks after a delay in seconds."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledHandle:
        ...

    def time(self) -> float:
        ...


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), callback)

    def time(self) -> float:
        return asyncio.get_running_loop().time()


class VirtualHandle:
    """Handle returned by VirtualScheduler."""

    def __init__(self, when: float):
        self.when = when
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler:
    """Deterministic scheduler driven by advance().

    Callbacks run in due-time order, ties in scheduling order. A callback
    scheduled with zero delay during advance() runs within the same call.

    Usage:
        scheduler = VirtualScheduler()
        queue = MessageQueue(deliver, scheduler=scheduler)
        queue.enqueue(items)
        scheduler.advance(2.5)
    """

    def __init__(self):
        self._now = 0.0
        self._counter = itertools.count()
        self._timers: List[Tuple[float, int, VirtualHandle, Callable[[], None]]] = []

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> VirtualHandle:
        handle = VirtualHandle(self._now + max(0.0, delay))
        heapq.heappush(self._timers, (handle.when, next(self._counter), handle, callback))
        return handle

    @property
    def pending(self) -> int:
        """Number of scheduled, uncanceled callbacks."""
        return sum(1 for _, _, handle, _ in self._timers if not handle.cancelled)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running every callback that becomes due.

        Returns:
            Number of callbacks run.
        """
        deadline = self._now + seconds
        ran = 0
        while self._timers and self._timers[0][0] <= deadline:
            when, _, handle, callback = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            self._now = when
            callback()
            ran += 1
        self._now = deadline
        return ran

    def run_all(self) -> int:
        """Run callbacks until nothing is scheduled."""
        ran = 0
        while self._timers:
            when, _, handle, callback = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            self._now = max(self._now, when)
            callback()
            ran += 1
        return ran
