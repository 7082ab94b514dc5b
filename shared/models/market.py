"""
Market and social data models.

Defines:
- MarketSnapshot: price, top of book, depth, volumes, funding and recent trades
- BookLevel / TradePrint: order book level and trade tape print
- SocialSample: text/engagement sample tagged by source

Snapshots and samples are immutable once published. Per-symbol timestamp
monotonicity is enforced by the feed buffers, not by the models.
"""

from enum import Enum
from typing import Annotated

from pydantic import Field, field_validator, model_validator

from shared.models.base import BaseModel, SymbolMixin, ensure_finite


class BookSide(str, Enum):
    BID = "bid"
    ASK = "ask"


class TradeSide(str, Enum):
    """Aggressor side of a print."""
    BUY = "buy"
    SELL = "sell"


class SocialSource(str, Enum):
    """Fixed set of social sources."""
    TWITTER = "twitter"
    REDDIT = "reddit"
    TELEGRAM = "telegram"
    NEWS = "news"


class BookLevel(BaseModel):
    """Single order book level."""

    price: Annotated[float, Field(gt=0, description="Level price")]
    size: Annotated[float, Field(ge=0, description="Resting size in base units")]
    side: BookSide

    @property
    def notional(self) -> float:
        return self.price * self.size


class TradePrint(BaseModel):
    """Trade tape print."""

    ts: Annotated[float, Field(description="Print time (epoch seconds)")]
    price: Annotated[float, Field(gt=0)]
    size: Annotated[float, Field(gt=0, description="Size in base units")]
    side: TradeSide

    @field_validator("ts")
    @classmethod
    def validate_ts(cls, v: float) -> float:
        return ensure_finite(v, "ts")


class MarketSnapshot(BaseModel, SymbolMixin):
    """
    Time-stamped market snapshot.

    Example:
        MarketSnapshot(
            symbol='PEPE',
            ts=1700000000.0,
            price=1.02,
            bid=1.019,
            ask=1.021,
            depth=[BookLevel(price=1.019, size=5000, side=BookSide.BID)],
            volume_1m=12000.0,
            volume_1h=640000.0,
            funding_rate=0.0001,
        )
    """

    ts: Annotated[float, Field(description="Snapshot time (epoch seconds)")]
    price: Annotated[float, Field(gt=0, description="Last/mark price")]
    bid: Annotated[float, Field(gt=0, description="Best bid")]
    ask: Annotated[float, Field(gt=0, description="Best ask")]
    depth: Annotated[
        tuple[BookLevel, ...],
        Field(default=(), description="Order book levels (both sides)")
    ]
    volume_1m: Annotated[float, Field(ge=0, description="Base volume over the last minute")]
    volume_1h: Annotated[float, Field(ge=0, description="Base volume over the last hour")]
    funding_rate: Annotated[float, Field(default=0.0, description="Perpetual funding rate")]
    trades: Annotated[
        tuple[TradePrint, ...],
        Field(default=(), description="Trade prints since the previous snapshot")
    ]

    @field_validator("ts", "funding_rate")
    @classmethod
    def validate_finite(cls, v: float, info) -> float:
        return ensure_finite(v, info.field_name)

    @model_validator(mode="after")
    def validate_book(self) -> "MarketSnapshot":
        if self.bid > self.ask:
            raise ValueError(f"Crossed book: bid {self.bid} > ask {self.ask}")
        return self

    @property
    def mid(self) -> float:
        return (self.bid + self.ask) / 2.0

    @property
    def spread(self) -> float:
        """Relative spread (ask - bid) / mid."""
        return (self.ask - self.bid) / self.mid

    def side_depth(self, side: BookSide) -> tuple[BookLevel, ...]:
        return tuple(level for level in self.depth if level.side == side)

    def depth_notional(self, band: float = 0.02) -> float:
        """Total resting notional within +/- band of mid."""
        lo, hi = self.mid * (1 - band), self.mid * (1 + band)
        return sum(level.notional for level in self.depth if lo <= level.price <= hi)


class SocialSample(BaseModel, SymbolMixin):
    """
    Time-stamped text/engagement sample.

    author_weight expresses source credibility in [0, 1]; reach is the
    audience size (followers, subscribers, views).
    """

    source: SocialSource
    ts: Annotated[float, Field(description="Sample time (epoch seconds)")]
    text: Annotated[str, Field(max_length=10_000)]
    reach: Annotated[float, Field(ge=0, default=0.0)]
    author_weight: Annotated[float, Field(ge=0, le=1, default=0.5)]

    @field_validator("ts")
    @classmethod
    def validate_ts(cls, v: float) -> float:
        return ensure_finite(v, "ts")
