"""Synthetic market and social feeds for dry runs and tests."""

import math
from typing import AsyncIterator, Optional

import numpy as np

from shared.clock import Clock, VirtualClock
from shared.models import (
    BookLevel, BookSide, MarketSnapshot, SocialSample, SocialSource, TradePrint, TradeSide,
)

_BULLISH_TEXT = [
    "{sym} looking bullish, whales accumulating, strong breakout soon",
    "just bought more {sym}, this is going to moon",
    "{sym} volume is pumping, great momentum and solid team",
    "huge buy pressure on {sym}, rally incoming",
]
_BEARISH_TEXT = [
    "{sym} is dumping hard, devs selling, looks like a rug",
    "sold all my {sym}, scared this crashes to zero",
    "{sym} bearish breakdown, panic selling everywhere",
    "{sym} weak chart, heavy sell pressure, avoid",
]
_NEUTRAL_TEXT = [
    "anyone watching {sym} today?",
    "{sym} chart update, ranging for now",
    "what is the roadmap for {sym}",
]


class SyntheticMarketFeed:
    """
    Synthetic market snapshot generator.

    Generates a geometric random walk per symbol with:
    - Regime drift that flips occasionally (trending behavior)
    - Order book levels around mid with random sizes
    - Trade prints whose aggressor side leans with the drift
    """

    def __init__(
        self,
        clock: Clock,
        interval_s: float = 1.0,
        initial_price: float = 1.0,
        volatility: float = 0.004,
        seed: int = 42,
        limit: Optional[int] = None,
    ):
        self.clock = clock
        self.interval_s = interval_s
        self.initial_price = initial_price
        self.volatility = volatility
        self.seed = seed
        self.limit = limit

    async def market(self, symbol: str) -> AsyncIterator[MarketSnapshot]:
        """Generate synthetic snapshots (async generator)."""
        rng = np.random.default_rng(self.seed + sum(map(ord, symbol)))
        price = self.initial_price * float(rng.uniform(0.5, 2.0))
        drift = float(rng.normal(0, self.volatility / 4))
        emitted = 0

        while self.limit is None or emitted < self.limit:
            if rng.random() < 0.01:
                drift = float(rng.normal(0, self.volatility / 4))

            price *= math.exp(drift + float(rng.normal(0, self.volatility)))
            spread = price * float(rng.uniform(0.0005, 0.002))
            bid, ask = price - spread / 2, price + spread / 2

            depth = []
            for i in range(5):
                step = spread * i
                depth.append(BookLevel(price=bid - step, size=float(rng.uniform(50, 500)) / price, side=BookSide.BID))
                depth.append(BookLevel(price=ask + step, size=float(rng.uniform(50, 500)) / price, side=BookSide.ASK))

            ts = self.clock.now()
            buy_prob = min(0.9, max(0.1, 0.5 + drift / self.volatility))
            trades = tuple(
                TradePrint(
                    ts=ts,
                    price=price * (1 + float(rng.normal(0, self.volatility / 4))),
                    size=float(rng.lognormal(3, 1)) / price,
                    side=TradeSide.BUY if rng.random() < buy_prob else TradeSide.SELL,
                )
                for _ in range(int(rng.integers(3, 15)))
            )
            volume_1m = sum(t.size for t in trades) * 60 / max(self.interval_s, 1e-9)

            yield MarketSnapshot(
                symbol=symbol,
                ts=ts,
                price=price,
                bid=bid,
                ask=ask,
                depth=tuple(depth),
                volume_1m=volume_1m,
                volume_1h=volume_1m * 60,
                funding_rate=float(rng.normal(0.0001, 0.0002)),
                trades=trades,
            )
            emitted += 1
            await self.clock.sleep(self.interval_s)


class SyntheticSocialFeed:
    """
    Synthetic social sample generator.

    Text polarity follows a slowly drifting mood per (source, symbol), so
    the sentiment family produces non-trivial, changing readings.
    """

    def __init__(
        self,
        clock: Clock,
        interval_s: float = 5.0,
        seed: int = 42,
        limit: Optional[int] = None,
        sources: Optional[list[SocialSource]] = None,
    ):
        self.clock = clock
        self.interval_s = interval_s
        self.seed = seed
        self.limit = limit
        self.sources = set(sources) if sources is not None else set(SocialSource)

    async def social(self, source: SocialSource, symbol: str) -> AsyncIterator[SocialSample]:
        if source not in self.sources:
            return

        rng = np.random.default_rng(self.seed + sum(map(ord, symbol + source.value)))
        mood = float(rng.uniform(-0.5, 0.5))
        emitted = 0

        while self.limit is None or emitted < self.limit:
            mood = max(-1.0, min(1.0, mood + float(rng.normal(0, 0.1))))
            roll = rng.random()
            if roll < (1 + mood) / 3:
                template = _BULLISH_TEXT[int(rng.integers(len(_BULLISH_TEXT)))]
            elif roll < 2 / 3:
                template = _NEUTRAL_TEXT[int(rng.integers(len(_NEUTRAL_TEXT)))]
            else:
                template = _BEARISH_TEXT[int(rng.integers(len(_BEARISH_TEXT)))]

            yield SocialSample(
                source=source,
                symbol=symbol,
                ts=self.clock.now(),
                text=template.format(sym=symbol),
                reach=float(rng.lognormal(7, 1.5)),
                author_weight=float(rng.uniform(0.1, 1.0)),
            )
            emitted += 1
            await self.clock.sleep(self.interval_s)


def make_virtual_feeds(clock: VirtualClock, seed: int, market_interval_s: float, social_interval_s: float):
    """Build the synthetic feed pair used by dry runs."""
    return (
        SyntheticMarketFeed(clock, interval_s=market_interval_s, seed=seed),
        SyntheticSocialFeed(clock, interval_s=social_interval_s, seed=seed),
    )
