"""
Fixture Management Module

Provides utilities for:
- Loading deterministic random seeds
- Building market snapshots, price histories, social samples and
  assessments for tests and dry runs
"""

from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import yaml

from shared.models import (
    Assessment,
    BookLevel,
    BookSide,
    Domain,
    MarketSnapshot,
    SocialSample,
    SocialSource,
    TradePrint,
    TradeSide,
)

# Fixture base directory
FIXTURES_DIR = Path(__file__).parent

BASE_TS = 1_700_000_000.0


def load_seeds() -> Dict[str, Any]:
    """Load random seeds from seeds.yaml."""
    seeds_file = FIXTURES_DIR / "seeds.yaml"
    with open(seeds_file) as f:
        return yaml.safe_load(f)


def market_snapshot(
    symbol: str = "PEPE",
    price: float = 1.0,
    ts: float = BASE_TS,
    spread: float = 0.001,
    depth_size: float = 100_000.0,
    levels: int = 5,
    volume_1m: float = 50_000.0,
    volume_1h: Optional[float] = None,
    funding_rate: float = 0.0,
    trades: Sequence[TradePrint] = (),
) -> MarketSnapshot:
    """
    Symmetric book around `price`.

    Args:
        spread: Relative spread (ask - bid) / mid
        depth_size: Base size resting at each level on each side
        levels: Levels per side, 0.2% apart
    """
    half = price * spread / 2
    bid, ask = price - half, price + half
    depth = []
    for i in range(levels):
        step = price * 0.002 * i
        depth.append(BookLevel(price=bid - step, size=depth_size, side=BookSide.BID))
        depth.append(BookLevel(price=ask + step, size=depth_size, side=BookSide.ASK))
    return MarketSnapshot(
        symbol=symbol,
        ts=ts,
        price=price,
        bid=bid,
        ask=ask,
        depth=tuple(depth),
        volume_1m=volume_1m,
        volume_1h=volume_1h if volume_1h is not None else volume_1m * 60,
        funding_rate=funding_rate,
        trades=tuple(trades),
    )


def price_history(
    prices: Sequence[float],
    symbol: str = "PEPE",
    start_ts: float = BASE_TS,
    step_s: float = 1.0,
    volumes: Optional[Sequence[float]] = None,
    trade_side: Optional[TradeSide] = None,
    trades_per_snapshot: int = 0,
) -> list[MarketSnapshot]:
    """One snapshot per price, `step_s` apart, optionally with same-side prints."""
    history = []
    for i, price in enumerate(prices):
        ts = start_ts + i * step_s
        prints = ()
        if trade_side is not None:
            prints = tuple(
                TradePrint(ts=ts, price=price, size=100.0 + 10.0 * j, side=trade_side)
                for j in range(trades_per_snapshot)
            )
        history.append(market_snapshot(
            symbol=symbol,
            price=price,
            ts=ts,
            volume_1m=volumes[i] if volumes is not None else 50_000.0,
            trades=prints,
        ))
    return history


def social_samples(
    texts: Sequence[str],
    count: int,
    symbol: str = "PEPE",
    start_ts: float = BASE_TS,
    step_s: float = 1.0,
    source: SocialSource = SocialSource.TWITTER,
) -> list[SocialSample]:
    """`count` samples cycling through `texts`."""
    return [
        SocialSample(
            symbol=symbol,
            source=source,
            ts=start_ts + i * step_s,
            text=texts[i % len(texts)],
            reach=100.0,
        )
        for i in range(count)
    ]


def assessment(
    domain: Domain,
    score: float,
    confidence: float = 0.8,
    symbol: str = "PEPE",
    ts: float = BASE_TS,
    state: Optional[str] = None,
    **components: float,
) -> Assessment:
    """Assessment with named components (e.g. bias=0.5, intensity=0.3)."""
    return Assessment(
        domain=domain,
        symbol=symbol,
        ts=ts,
        score=score,
        confidence=confidence,
        components=dict(components),
        state=state,
    )


# Expose key functions
__all__ = [
    "BASE_TS",
    "FIXTURES_DIR",
    "assessment",
    "load_seeds",
    "market_snapshot",
    "price_history",
    "social_samples",
]
