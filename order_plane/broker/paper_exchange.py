"""
Paper exchange.

In-process ExchangeAdapter for dry and paper runs. Market orders fill
immediately around the latest mid with Gaussian noise; positions are kept
per symbol at VWAP. Fault injection hooks (rejects, delays, disconnects)
drive the retry, timeout and reconnect paths in tests.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional
from uuid import uuid4

import numpy as np

from order_plane.app.positions import fold_fill
from shared.clock import Clock, SystemClock
from shared.errors import ExchangeDisconnected, ExchangeError, OrderRejected
from shared.models import (
    ExchangeEvent,
    ExchangeEventKind,
    MarketSnapshot,
    OrderRequest,
    Position,
    Side,
)

logger = logging.getLogger(__name__)

_DISCONNECT = object()


@dataclass
class TrackedOrder:
    """Paper order state."""
    order_id: str
    client_id: str
    symbol: str
    side: Side
    size: float
    ts: float
    status: str = "NEW"
    filled_size: float = 0.0
    avg_price: float = 0.0
    fees: float = 0.0


@dataclass
class _Reject:
    remaining: int
    match: Optional[str]
    error: type


class PaperExchange:
    """
    Simulated exchange.

    Usage:
        exchange = PaperExchange(clock, seed=42)
        exchange.set_price("PEPE", 1.02)
        await exchange.connect()
        order_id = await exchange.place_order(order)
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        fee_rate: float = 0.0005,
        slippage_std: float = 0.0005,
        seed: int = 42,
        partial_fill_ratio: float = 1.0,
    ):
        self.clock = clock or SystemClock()
        self.fee_rate = fee_rate
        self.slippage_std = slippage_std
        self.partial_fill_ratio = partial_fill_ratio
        self.rng = np.random.default_rng(seed)

        self._connected = False
        self._connect_failures = 0
        self._prices: dict[str, float] = {}
        self._positions: dict[str, Position] = {}
        self._orders: dict[str, TrackedOrder] = {}
        self._subscriptions: set[str] = set()
        self._events: asyncio.Queue = asyncio.Queue()
        self._rejects: list[_Reject] = []
        self._delays: list[float] = []

        self.realized_pnl: dict[str, float] = {}
        self.placed: list[OrderRequest] = []
        self.connects = 0

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    def on_snapshot(self, snapshot: MarketSnapshot) -> None:
        self._prices[snapshot.symbol] = snapshot.mid

    def set_price(self, symbol: str, price: float) -> None:
        self._prices[symbol] = price

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def inject_rejects(self, count: int, match: Optional[str] = None, error: type = OrderRejected) -> None:
        """Reject the next `count` orders (whose base client id equals `match`, if given)."""
        self._rejects.append(_Reject(count, match, error))

    def inject_delay(self, seconds: float, count: int = 1) -> None:
        """Delay the next `count` calls by `seconds` of real time."""
        self._delays.extend([seconds] * count)

    def fail_connects(self, count: int) -> None:
        self._connect_failures += count

    def disconnect(self) -> None:
        """Drop the transport; in-flight event readers see ExchangeDisconnected."""
        self._connected = False
        self._events.put_nowait(_DISCONNECT)

    async def _maybe_delay(self) -> None:
        if self._delays:
            await asyncio.sleep(self._delays.pop(0))

    def _check_connected(self) -> None:
        if not self._connected:
            raise ExchangeDisconnected("Paper exchange not connected")

    def _take_reject(self, order: OrderRequest) -> Optional[type]:
        base_id = order.client_id.split("#")[0]
        for reject in self._rejects:
            if reject.remaining > 0 and (reject.match is None or reject.match == base_id):
                reject.remaining -= 1
                return reject.error
        return None

    # ------------------------------------------------------------------
    # Adapter interface
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        await self._maybe_delay()
        if self._connect_failures > 0:
            self._connect_failures -= 1
            raise ExchangeDisconnected("Paper exchange connect refused")
        self._connected = True
        self.connects += 1
        logger.info("Paper exchange connected")

    async def subscribe_orderbook(self, symbol: str) -> None:
        self._check_connected()
        self._subscriptions.add(symbol)

    async def place_order(self, order: OrderRequest) -> str:
        await self._maybe_delay()
        self._check_connected()
        self.placed.append(order)

        order_id = f"paper-{uuid4().hex[:12]}"
        now = self.clock.now()
        tracked = TrackedOrder(order_id, order.client_id, order.symbol, order.side, order.size, now)
        self._orders[order_id] = tracked

        error = self._take_reject(order)
        if error is not None:
            tracked.status = "REJECTED"
            logger.info(f"Paper order {order.client_id} rejected (injected)")
            raise error(f"Order {order.client_id} rejected", order_id=order_id)

        mid = self._prices.get(order.symbol)
        if mid is None:
            tracked.status = "REJECTED"
            raise OrderRejected(f"No price for {order.symbol}", order_id=order_id)

        current = self._positions.get(order.symbol)
        size = order.size
        if order.reduce_only:
            held = current.size if current else 0.0
            reducing = (held > 0 and order.side == Side.SELL) or (held < 0 and order.side == Side.BUY)
            if not reducing:
                tracked.status = "REJECTED"
                raise OrderRejected(f"reduce_only order {order.client_id} would open a position", order_id=order_id)
            size = min(size, abs(held))

        filled = size * self.partial_fill_ratio
        sign = 1.0 if order.side == Side.BUY else -1.0
        price = mid * (1.0 + sign * float(self.rng.normal(0.0, self.slippage_std)))
        fees = filled * price * self.fee_rate

        position, realized = fold_fill(current, order.symbol, order.side, filled, price, order.leverage)
        self._positions[order.symbol] = position
        if realized:
            self.realized_pnl[order.symbol] = self.realized_pnl.get(order.symbol, 0.0) + realized

        tracked.filled_size = filled
        tracked.avg_price = price
        tracked.fees = fees
        tracked.status = "FILLED" if filled >= order.size - 1e-12 else "PARTIAL"

        self._events.put_nowait(ExchangeEvent(
            kind=ExchangeEventKind.TRADE,
            symbol=order.symbol,
            ts=now,
            data={
                "order_id": order_id,
                "client_id": order.client_id,
                "price": price,
                "size": filled,
                "fees": fees,
                "remaining": max(0.0, order.size - filled),
                "realized_pnl": realized,
                "side": order.side.value,
                "leverage": order.leverage,
            },
        ))
        self._events.put_nowait(ExchangeEvent(
            kind=ExchangeEventKind.POSITION,
            symbol=order.symbol,
            ts=now,
            data=position.model_dump(mode="json"),
        ))
        return order_id

    async def cancel(self, order_id: str) -> bool:
        await self._maybe_delay()
        self._check_connected()
        tracked = self._orders.get(order_id)
        if tracked is None:
            raise ExchangeError(f"Unknown order {order_id}", order_id=order_id)
        if tracked.status in ("FILLED", "REJECTED", "CANCELLED"):
            return False
        tracked.status = "CANCELLED"
        return True

    async def positions(self) -> list[Position]:
        await self._maybe_delay()
        self._check_connected()
        return [p for p in self._positions.values() if not p.is_flat]

    async def events(self) -> AsyncIterator[ExchangeEvent]:
        while True:
            event = await self._events.get()
            if event is _DISCONNECT:
                raise ExchangeDisconnected("Paper exchange event stream dropped")
            yield event

    async def close(self) -> None:
        self._connected = False
        logger.info("Paper exchange closed")

    def order(self, order_id: str) -> Optional[TrackedOrder]:
        return self._orders.get(order_id)
