"""
In-process Assessment Bus.

Publish/subscribe keyed by analyzer domain, retaining a bounded recent
window per (domain, symbol).

Guarantees:
- latest(domain, symbol) returns the Assessment with the largest ts seen;
  on equal ts the first arrival wins (re-publishing is a no-op)
- Out-of-order arrivals (ts older than latest) are dropped and counted as
  late_drops; they are never delivered
- At least the last W_domain seconds are retained per (domain, symbol)
- publish() never blocks: each subscription has its own bounded queue and
  dispatcher task, and a failing handler cannot stall publishers
"""

import asyncio
import inspect
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from shared.metrics import AgentMetrics
from shared.models import Assessment, Domain

logger = logging.getLogger(__name__)

Handler = Callable[[Assessment], Union[None, Awaitable[None]]]


@dataclass
class Subscription:
    """A subscriber's queue, dispatcher task and delivery counters."""
    domain: Domain
    handler: Handler
    queue: asyncio.Queue
    task: Optional[asyncio.Task] = None
    delivered: int = 0
    dropped: int = 0
    errors: int = 0
    active: bool = True


@dataclass
class BusStats:
    published: int = 0
    late_drops: int = 0
    duplicates: int = 0
    evicted: int = 0
    subscriber_drops: int = 0
    handler_errors: int = 0
    late_drops_by_key: dict = field(default_factory=lambda: defaultdict(int))


class AssessmentBus:
    """
    Assessment Bus (single writer per (domain, symbol), many readers).

    Usage:
        bus = AssessmentBus(retention_s={"volatility": 3600}, default_retention_s=600)
        bus.subscribe(Domain.VOLATILITY, on_volatility)
        bus.publish(assessment)
        bus.latest(Domain.VOLATILITY, "PEPE")
    """

    def __init__(
        self,
        retention_s: Optional[dict[str, float]] = None,
        default_retention_s: float = 3_600.0,
        queue_size: int = 1_000,
        metrics: Optional[AgentMetrics] = None,
    ):
        self.retention_s = dict(retention_s or {})
        self.default_retention_s = default_retention_s
        self.queue_size = queue_size
        self.metrics = metrics

        self._latest: dict[tuple[Domain, str], Assessment] = {}
        self._history: dict[tuple[Domain, str], deque] = defaultdict(deque)
        self._subscribers: dict[Domain, list[Subscription]] = defaultdict(list)
        self.stats = BusStats()

    def retention_for(self, domain: Domain) -> float:
        return self.retention_s.get(domain.value, self.default_retention_s)

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(self, assessment: Assessment) -> bool:
        """
        Publish an Assessment.

        Returns:
            True if accepted, False if dropped as late or duplicate
        """
        key = (assessment.domain, assessment.symbol)
        current = self._latest.get(key)

        if current is not None and assessment.ts < current.ts:
            self.stats.late_drops += 1
            self.stats.late_drops_by_key[key] += 1
            if self.metrics:
                self.metrics.inc("bus_drops", domain=assessment.domain.value, reason="late")
            logger.debug(
                f"Late assessment dropped: {assessment.domain.value}/{assessment.symbol} "
                f"ts={assessment.ts} < latest={current.ts}"
            )
            return False

        if current is not None and assessment.ts == current.ts:
            self.stats.duplicates += 1
            if self.metrics:
                self.metrics.inc("bus_drops", domain=assessment.domain.value, reason="duplicate")
            return False

        self._latest[key] = assessment
        history = self._history[key]
        history.append(assessment)

        horizon = assessment.ts - self.retention_for(assessment.domain)
        while history and history[0].ts < horizon:
            history.popleft()
            self.stats.evicted += 1

        self.stats.published += 1
        if self.metrics:
            self.metrics.inc("assessments_published", domain=assessment.domain.value)

        for sub in self._subscribers.get(assessment.domain, ()):
            if sub.active:
                self._enqueue(sub, assessment)
        return True

    def _enqueue(self, sub: Subscription, assessment: Assessment) -> None:
        try:
            sub.queue.put_nowait(assessment)
        except asyncio.QueueFull:
            # Drop the oldest undelivered item to make room
            try:
                sub.queue.get_nowait()
                sub.queue.task_done()
            except asyncio.QueueEmpty:
                pass
            sub.dropped += 1
            self.stats.subscriber_drops += 1
            sub.queue.put_nowait(assessment)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def latest(self, domain: Domain, symbol: str) -> Optional[Assessment]:
        return self._latest.get((domain, symbol))

    def window(self, domain: Domain, symbol: str, duration_s: float) -> list[Assessment]:
        """Assessments within `duration_s` of the newest one for (domain, symbol)."""
        history = self._history.get((domain, symbol))
        if not history:
            return []
        since = history[-1].ts - duration_s
        return [a for a in history if a.ts >= since]

    def snapshot(self, symbol: str, domains: Iterable[Domain]) -> dict[Domain, Assessment]:
        """
        Latest Assessment per domain for a symbol.

        Runs without suspension points, so it is atomic with respect to
        publishes on the same event loop.
        """
        out = {}
        for domain in domains:
            a = self._latest.get((domain, symbol))
            if a is not None:
                out[domain] = a
        return out

    def late_drops(self, domain: Optional[Domain] = None, symbol: Optional[str] = None) -> int:
        if domain is None:
            return self.stats.late_drops
        return self.stats.late_drops_by_key.get((domain, symbol), 0)

    # ------------------------------------------------------------------
    # Subscribe
    # ------------------------------------------------------------------

    def subscribe(self, domain: Domain, handler: Handler) -> Subscription:
        """
        Register a handler for a domain.

        Must be called from a running event loop; the dispatcher task runs
        the handler for each Assessment in per-(domain, symbol) ts order.
        """
        sub = Subscription(domain=domain, handler=handler, queue=asyncio.Queue(maxsize=self.queue_size))
        sub.task = asyncio.get_running_loop().create_task(self._dispatch(sub))
        self._subscribers[domain].append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        sub.active = False
        if sub.task:
            sub.task.cancel()
        if sub in self._subscribers.get(sub.domain, []):
            self._subscribers[sub.domain].remove(sub)

    async def _dispatch(self, sub: Subscription) -> None:
        while True:
            assessment = await sub.queue.get()
            try:
                result: Any = sub.handler(assessment)
                if inspect.isawaitable(result):
                    await result
                sub.delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                sub.errors += 1
                self.stats.handler_errors += 1
                logger.error(
                    f"Bus handler failed for {assessment.domain.value}/{assessment.symbol}: {e}",
                    exc_info=True,
                )
            finally:
                sub.queue.task_done()

    async def drain(self) -> None:
        """Wait until every subscriber queue is empty."""
        for subs in list(self._subscribers.values()):
            for sub in subs:
                await sub.queue.join()

    async def close(self) -> None:
        tasks = []
        for subs in self._subscribers.values():
            for sub in subs:
                sub.active = False
                if sub.task:
                    sub.task.cancel()
                    tasks.append(sub.task)
        await asyncio.gather(*tasks, return_exceptions=True)
        self._subscribers.clear()

    def summary(self) -> dict[str, int]:
        return {
            "published": self.stats.published,
            "late_drops": self.stats.late_drops,
            "duplicates": self.stats.duplicates,
            "evicted": self.stats.evicted,
            "subscriber_drops": self.stats.subscriber_drops,
            "handler_errors": self.stats.handler_errors,
        }
