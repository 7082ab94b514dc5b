"""
Clock abstraction for the agent.

SystemClock reads wall time. VirtualClock is driven explicitly by tests and
dry runs: sleepers are woken in timestamp order as the clock advances.
"""

import asyncio
import heapq
import itertools
import time
from typing import Protocol


class Clock(Protocol):
    """Clock interface (duck-typed)."""

    def now(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall-clock time (epoch seconds)."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class VirtualClock:
    """
    Deterministic clock for tests and simulated runs.

    With auto_advance=True, sleep() jumps the clock forward immediately
    (useful for driving a single coroutine through timed steps). Otherwise
    sleepers block until advance()/advance_to() moves time past their
    deadline.

    Example:
        >>> clock = VirtualClock(start=1_700_000_000.0)
        >>> await clock.advance(60)
        >>> clock.now()
        1700000060.0
    """

    def __init__(self, start: float = 1_700_000_000.0, auto_advance: bool = False):
        self._now = float(start)
        self.auto_advance = auto_advance
        self._sleepers: list[tuple[float, int, asyncio.Future]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        deadline = self._now + max(0.0, seconds)
        if self.auto_advance:
            self._now = max(self._now, deadline)
            await asyncio.sleep(0)
            return

        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (deadline, next(self._seq), future))
        await future

    async def advance(self, seconds: float) -> None:
        """Move time forward by `seconds`, waking due sleepers in order."""
        await self.advance_to(self._now + seconds)

    async def advance_to(self, target: float) -> None:
        """Move time forward to `target`, waking due sleepers in order."""
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self._now = max(self._now, deadline)
            if not future.done():
                future.set_result(None)
            # Let the woken task run up to its next suspension point
            for _ in range(3):
                await asyncio.sleep(0)

        self._now = max(self._now, target)
        await asyncio.sleep(0)

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, f in self._sleepers if not f.done())
