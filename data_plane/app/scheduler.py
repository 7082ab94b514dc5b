"""
Scheduler - a single owner for every periodic job.

Analyzer cadences, decision ticks, mark-to-market, monitoring, feedback,
retraining and persistence all run as named jobs. Jobs are first-class and
testable: with a VirtualClock, run_for() walks virtual time job by job;
with a SystemClock, start() runs each job on its own timed loop.

A job never overlaps itself. Job exceptions are logged and counted; the job
keeps its schedule.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from shared.clock import Clock, VirtualClock

logger = logging.getLogger(__name__)

JobFn = Callable[[], Awaitable[None]]


@dataclass
class Job:
    """Periodic job state."""
    name: str
    interval_s: float
    fn: JobFn
    next_run: float
    runs: int = 0
    errors: int = 0
    skipped: int = 0
    last_run: Optional[float] = None
    last_error: Optional[str] = None
    running: bool = False
    enabled: bool = True


class Scheduler:
    """
    Periodic job scheduler with virtual-clock support.

    Example:
        >>> clock = VirtualClock()
        >>> scheduler = Scheduler(clock)
        >>> scheduler.add_job("decision", 5.0, engine_tick)
        >>> await scheduler.run_for(60)   # 12 decision ticks, instantly
    """

    def __init__(self, clock: Clock):
        self.clock = clock
        self.jobs: dict[str, Job] = {}
        self._tasks: list[asyncio.Task] = []
        self._running = False

    def add_job(self, name: str, interval_s: float, fn: JobFn, initial_delay_s: float = 0.0) -> Job:
        if name in self.jobs:
            raise ValueError(f"Job already registered: {name}")
        if interval_s <= 0:
            raise ValueError(f"Job interval must be positive: {name}={interval_s}")
        job = Job(name=name, interval_s=interval_s, fn=fn, next_run=self.clock.now() + initial_delay_s)
        self.jobs[name] = job
        logger.debug(f"Job registered: {name} every {interval_s}s")
        return job

    def remove_job(self, name: str) -> None:
        self.jobs.pop(name, None)

    async def _run_job(self, job: Job) -> None:
        if job.running:
            job.skipped += 1
            return
        job.running = True
        job.last_run = self.clock.now()
        try:
            await job.fn()
            job.runs += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            job.errors += 1
            job.last_error = str(e)
            logger.error(f"Job {job.name} failed: {e}", exc_info=True)
        finally:
            job.running = False

    # ------------------------------------------------------------------
    # Virtual-time driving
    # ------------------------------------------------------------------

    async def run_pending(self) -> int:
        """Run every enabled job that is due at clock.now(). Returns jobs run."""
        now = self.clock.now()
        due = sorted(
            (j for j in self.jobs.values() if j.enabled and j.next_run <= now),
            key=lambda j: (j.next_run, j.name),
        )
        for job in due:
            # Catch up to the next slot after now; missed slots are not replayed
            while job.next_run <= now:
                job.next_run += job.interval_s
            await self._run_job(job)
        return len(due)

    def next_due(self) -> Optional[float]:
        enabled = [j.next_run for j in self.jobs.values() if j.enabled]
        return min(enabled) if enabled else None

    async def run_for(self, duration_s: float) -> None:
        """
        Advance a VirtualClock through `duration_s`, running jobs as they
        come due. Feed tasks sleeping on the clock are woken along the way.
        """
        if not isinstance(self.clock, VirtualClock):
            raise TypeError("run_for() requires a VirtualClock")

        end = self.clock.now() + duration_s
        await self.run_pending()
        while True:
            next_ts = self.next_due()
            if next_ts is None or next_ts > end:
                await self.clock.advance_to(end)
                break
            await self.clock.advance_to(next_ts)
            await self.run_pending()

    # ------------------------------------------------------------------
    # Real-time driving
    # ------------------------------------------------------------------

    async def _loop(self, job: Job) -> None:
        while self._running:
            delay = job.next_run - self.clock.now()
            if delay > 0:
                await self.clock.sleep(delay)
            if not self._running:
                break
            job.next_run = max(job.next_run + job.interval_s, self.clock.now())
            if job.enabled:
                await self._run_job(job)

    async def start(self) -> None:
        """Run every job on its own timed loop until stop()."""
        self._running = True
        for job in self.jobs.values():
            self._tasks.append(asyncio.create_task(self._loop(job), name=f"job:{job.name}"))
        logger.info(f"Scheduler started with {len(self.jobs)} jobs")

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Scheduler stopped")

    def stats(self) -> dict[str, dict]:
        return {
            name: {
                "runs": job.runs,
                "errors": job.errors,
                "skipped": job.skipped,
                "last_run": job.last_run,
                "interval_s": job.interval_s,
            }
            for name, job in self.jobs.items()
        }
