"""
Feed hub: pumps feed streams into bounded per-symbol buffers.

Responsibilities:
- Validate incoming records (malformed -> dropped, counted)
- Enforce per-stream timestamp monotonicity (late -> dropped, counted)
- Apply backpressure: drop oldest samples beyond the retention window or
  the capacity bound, counting each drop
- Serve windows of recent data to analyzers
"""

import asyncio
import logging
from collections import deque
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from pydantic import ValidationError

from data_plane.adapters.feeds import MarketFeed, SocialFeed
from shared.clock import Clock
from shared.metrics import AgentMetrics
from shared.models import MarketSnapshot, SocialSample, SocialSource

logger = logging.getLogger(__name__)

T = TypeVar("T", MarketSnapshot, SocialSample)


class FeedBuffer(Generic[T]):
    """
    Bounded, time-ordered buffer for one stream.

    Records must arrive with non-decreasing `ts`; equal or older records are
    dropped as out-of-order.
    """

    def __init__(self, name: str, retention_s: float, max_samples: int):
        self.name = name
        self.retention_s = retention_s
        self.max_samples = max_samples
        self._records: deque = deque()
        self.backpressure_drops = 0
        self.out_of_order_drops = 0

    def __len__(self) -> int:
        return len(self._records)

    @property
    def last_ts(self) -> Optional[float]:
        return self._records[-1].ts if self._records else None

    def append(self, record: T) -> bool:
        last = self.last_ts
        if last is not None and record.ts <= last:
            self.out_of_order_drops += 1
            return False

        self._records.append(record)

        horizon = record.ts - self.retention_s
        while self._records and self._records[0].ts < horizon:
            self._records.popleft()
            self.backpressure_drops += 1
        while len(self._records) > self.max_samples:
            self._records.popleft()
            self.backpressure_drops += 1
        return True

    def latest(self) -> Optional[T]:
        return self._records[-1] if self._records else None

    def window(self, since: Optional[float] = None) -> list[T]:
        if since is None:
            return list(self._records)
        return [r for r in self._records if r.ts >= since]


class FeedHub:
    """
    Owns all feed buffers and the tasks pumping feed streams into them.

    Usage:
        hub = FeedHub(clock, retention_s=3600, max_samples=5000)
        hub.add_market_feed(SyntheticMarketFeed(clock))
        await hub.start(["PEPE", "WIF"])
        snapshots = hub.market_window("PEPE", 600)
    """

    def __init__(
        self,
        clock: Clock,
        retention_s: float = 3_600.0,
        max_samples: int = 5_000,
        metrics: Optional[AgentMetrics] = None,
    ):
        self.clock = clock
        self.retention_s = retention_s
        self.max_samples = max_samples
        self.metrics = metrics

        self.market_feeds: list[MarketFeed] = []
        self.social_feeds: list[SocialFeed] = []
        self._market: dict[str, FeedBuffer[MarketSnapshot]] = {}
        self._social: dict[tuple[SocialSource, str], FeedBuffer[SocialSample]] = {}
        self._listeners: list[Callable[[MarketSnapshot], None]] = []
        self._tasks: list[asyncio.Task] = []

        self.invalid_drops = 0
        self.feed_errors = 0

    def add_market_feed(self, feed: MarketFeed) -> None:
        self.market_feeds.append(feed)

    def add_social_feed(self, feed: SocialFeed) -> None:
        self.social_feeds.append(feed)

    def add_listener(self, fn: Callable[[MarketSnapshot], None]) -> None:
        """Register a synchronous callback for every accepted market snapshot."""
        self._listeners.append(fn)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def _market_buffer(self, symbol: str) -> FeedBuffer[MarketSnapshot]:
        if symbol not in self._market:
            self._market[symbol] = FeedBuffer(f"market:{symbol}", self.retention_s, self.max_samples)
        return self._market[symbol]

    def _social_buffer(self, source: SocialSource, symbol: str) -> FeedBuffer[SocialSample]:
        key = (source, symbol)
        if key not in self._social:
            self._social[key] = FeedBuffer(f"social:{source.value}:{symbol}", self.retention_s, self.max_samples)
        return self._social[key]

    def _drop(self, feed: str, reason: str) -> None:
        if self.metrics:
            self.metrics.inc("feed_drops", feed=feed, reason=reason)

    def ingest_market(self, record: Union[MarketSnapshot, dict[str, Any]]) -> bool:
        """Validate and buffer a market snapshot. Returns False if dropped."""
        if not isinstance(record, MarketSnapshot):
            try:
                record = MarketSnapshot.model_validate(record)
            except ValidationError as e:
                self.invalid_drops += 1
                self._drop("market", "invalid")
                logger.warning(f"Dropped invalid market record: {e.error_count()} errors")
                return False

        buffer = self._market_buffer(record.symbol)
        before = buffer.backpressure_drops
        if not buffer.append(record):
            self._drop("market", "out_of_order")
            return False
        if buffer.backpressure_drops > before:
            self._drop("market", "backpressure")

        for listener in self._listeners:
            try:
                listener(record)
            except Exception as e:
                logger.error(f"Market listener failed for {record.symbol}: {e}", exc_info=True)
        return True

    def ingest_social(self, record: Union[SocialSample, dict[str, Any]]) -> bool:
        """Validate and buffer a social sample. Returns False if dropped."""
        if not isinstance(record, SocialSample):
            try:
                record = SocialSample.model_validate(record)
            except ValidationError as e:
                self.invalid_drops += 1
                self._drop("social", "invalid")
                logger.warning(f"Dropped invalid social record: {e.error_count()} errors")
                return False

        buffer = self._social_buffer(record.source, record.symbol)
        before = buffer.backpressure_drops
        if not buffer.append(record):
            self._drop("social", "out_of_order")
            return False
        if buffer.backpressure_drops > before:
            self._drop("social", "backpressure")
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def latest_market(self, symbol: str) -> Optional[MarketSnapshot]:
        buffer = self._market.get(symbol)
        return buffer.latest() if buffer else None

    def market_window(self, symbol: str, duration_s: Optional[float] = None) -> list[MarketSnapshot]:
        buffer = self._market.get(symbol)
        if buffer is None:
            return []
        since = self.clock.now() - duration_s if duration_s is not None else None
        return buffer.window(since)

    def social_window(self, symbol: str, duration_s: Optional[float] = None) -> list[SocialSample]:
        since = self.clock.now() - duration_s if duration_s is not None else None
        samples: list[SocialSample] = []
        for (source, sym), buffer in self._social.items():
            if sym == symbol:
                samples.extend(buffer.window(since))
        samples.sort(key=lambda s: s.ts)
        return samples

    def symbols(self) -> list[str]:
        return sorted(self._market)

    def stats(self) -> dict[str, int]:
        buffers = list(self._market.values()) + list(self._social.values())
        return {
            "backpressure_drops": sum(b.backpressure_drops for b in buffers),
            "out_of_order_drops": sum(b.out_of_order_drops for b in buffers),
            "invalid_drops": self.invalid_drops,
            "feed_errors": self.feed_errors,
            "buffers": len(buffers),
        }

    # ------------------------------------------------------------------
    # Pumps
    # ------------------------------------------------------------------

    async def _pump(self, name: str, stream, ingest: Callable[[Any], bool]) -> None:
        try:
            async for record in stream:
                ingest(record)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # A failing source is tolerated: its domain goes absent downstream
            self.feed_errors += 1
            logger.error(f"Feed {name} stopped: {e}", exc_info=True)

    async def start(self, symbols: list[str]) -> None:
        """Start pumping every configured feed for every symbol."""
        for symbol in symbols:
            for feed in self.market_feeds:
                self._tasks.append(asyncio.create_task(
                    self._pump(f"market:{symbol}", feed.market(symbol), self.ingest_market)
                ))
            for feed in self.social_feeds:
                for source in SocialSource:
                    self._tasks.append(asyncio.create_task(
                        self._pump(f"social:{source.value}:{symbol}", feed.social(source, symbol), self.ingest_social)
                    ))
        logger.info(f"FeedHub started {len(self._tasks)} streams for {len(symbols)} symbols")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
