"""
Execution models.

Defines:
- ExecutionPlan / Slice: sized, leveraged, time-sliced execution schedule
- Fill: exchange fill for a slice
- Position: mirrored position state
- OrderRequest / ExchangeEvent: exchange adapter contract payloads
"""

from enum import Enum
from typing import Annotated, Any, Optional

from pydantic import Field, field_validator, model_validator

from shared.models.base import BaseModel, SymbolMixin, ensure_finite
from shared.models.intent import Side


class SliceStyle(str, Enum):
    IMMEDIATE = "IMMEDIATE"
    TWAP = "TWAP"
    VWAP = "VWAP"
    ADAPTIVE = "ADAPTIVE"


class SliceState(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    PARTIAL = "PARTIAL"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self in (SliceState.FILLED, SliceState.CANCELLED, SliceState.REJECTED)


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class TimeInForce(str, Enum):
    IOC = "IOC"
    GTC = "GTC"
    FOK = "FOK"


class Slice(BaseModel):
    """One scheduled child order of a plan (size in base units)."""

    slice_id: str
    size: Annotated[float, Field(gt=0)]
    scheduled_ts: float
    style: SliceStyle


class ExecutionPlan(BaseModel, SymbolMixin):
    """
    Execution schedule for an admitted intent.

    stop_loss / take_profit are absolute prices; for CLOSE plans they are
    None. `side` is the order side (BUY or SELL) actually sent.
    """

    plan_id: str
    intent_id: str
    side: Side
    slices: Annotated[tuple[Slice, ...], Field(min_length=1)]
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    max_slippage: Annotated[float, Field(gt=0)]
    leverage: Annotated[int, Field(ge=1)]
    reference_price: Annotated[float, Field(gt=0)]
    reduce_only: bool = False

    @model_validator(mode="after")
    def validate_side(self) -> "ExecutionPlan":
        if self.side == Side.CLOSE:
            raise ValueError("ExecutionPlan.side must be the order side (BUY or SELL)")
        return self

    @property
    def total_size(self) -> float:
        return sum(s.size for s in self.slices)

    @property
    def style(self) -> SliceStyle:
        return self.slices[0].style


class Fill(BaseModel):
    """Fill reported by the exchange for a slice."""

    slice_id: str
    ts: float
    filled_size: Annotated[float, Field(gt=0)]
    avg_price: Annotated[float, Field(gt=0)]
    fees: Annotated[float, Field(ge=0, default=0.0)]
    order_id: Optional[str] = None

    @field_validator("ts", "avg_price")
    @classmethod
    def validate_finite(cls, v: float, info) -> float:
        return ensure_finite(v, info.field_name)


class Position(BaseModel, SymbolMixin):
    """
    Position state (signed size in base units; negative = short).

    Authoritative values come from the exchange adapter; the local book
    mirrors them.
    """

    size: float = 0.0
    entry_vwap: Annotated[float, Field(ge=0, default=0.0)]
    leverage: Annotated[int, Field(ge=1, default=1)]
    margin: Annotated[float, Field(ge=0, default=0.0)]
    unrealized_pnl: float = 0.0

    @property
    def is_flat(self) -> bool:
        return abs(self.size) < 1e-12

    @property
    def notional(self) -> float:
        return abs(self.size) * self.entry_vwap

    @property
    def direction(self) -> Optional[Side]:
        if self.is_flat:
            return None
        return Side.BUY if self.size > 0 else Side.SELL


class OrderRequest(BaseModel, SymbolMixin):
    """Order sent through the exchange adapter."""

    client_id: str
    side: Side
    size: Annotated[float, Field(gt=0, description="Size in base units")]
    type: OrderType = OrderType.MARKET
    leverage: Annotated[int, Field(ge=1, default=1)]
    tif: TimeInForce = TimeInForce.IOC
    limit_price: Optional[float] = None
    reduce_only: bool = False


class ExchangeEventKind(str, Enum):
    ORDERBOOK = "orderbook"
    TRADE = "trade"
    POSITION = "position"
    FUNDING = "funding"


class ExchangeEvent(BaseModel):
    """
    Event from the exchange event stream.

    `trade` events for our own orders carry order_id / client_id, price,
    size and fees in `data`.
    """

    kind: ExchangeEventKind
    symbol: str
    ts: float
    data: dict[str, Any] = Field(default_factory=dict)
