"""
Position book.

Mirrors exchange positions locally. Updates for a symbol are applied by a
single worker per symbol (one queue each), so fills, marks and reconcile
replays for the same symbol never interleave. Different symbols proceed
in parallel.
"""

import asyncio
import logging
import math
from typing import Callable, Optional

from shared.errors import InvariantViolation
from shared.models import Position, Side

logger = logging.getLogger(__name__)

Update = Callable[[Optional[Position]], Position]


def fold_fill(
    position: Optional[Position],
    symbol: str,
    side: Side,
    size: float,
    price: float,
    leverage: int,
) -> tuple[Position, float]:
    """
    Fold a fill into a position.

    Adds at VWAP when increasing, realizes P&L on the closed quantity when
    reducing, and re-enters at the fill price when the fill flips the side.

    Returns:
        (new position, realized pnl of this fill)
    """
    if side == Side.CLOSE:
        raise ValueError("fill side must be BUY or SELL")
    if size <= 0 or not math.isfinite(size) or price <= 0 or not math.isfinite(price):
        raise InvariantViolation(f"invalid fill {size}@{price}", symbol=symbol)

    old_size = position.size if position else 0.0
    old_vwap = position.entry_vwap if position else 0.0
    old_leverage = position.leverage if position else leverage
    delta = size if side == Side.BUY else -size
    new_size = old_size + delta
    realized = 0.0

    if abs(old_size) < 1e-12 or (old_size > 0) == (delta > 0):
        vwap = (abs(old_size) * old_vwap + size * price) / (abs(old_size) + size)
        new_leverage = leverage
    else:
        closed = min(abs(old_size), size)
        realized = closed * (price - old_vwap) * (1 if old_size > 0 else -1)
        flipped = abs(new_size) >= 1e-12 and (new_size > 0) != (old_size > 0)
        if abs(new_size) < 1e-12:
            new_size, vwap = 0.0, 0.0
        else:
            vwap = price if flipped else old_vwap
        new_leverage = leverage if flipped else old_leverage

    new_leverage = max(1, int(new_leverage))
    margin = abs(new_size) * vwap / new_leverage
    if not (math.isfinite(new_size) and math.isfinite(vwap) and math.isfinite(realized)):
        raise InvariantViolation(f"non-finite position state for {symbol}", symbol=symbol)

    updated = Position(
        symbol=symbol,
        size=new_size,
        entry_vwap=vwap,
        leverage=new_leverage,
        margin=margin,
        unrealized_pnl=new_size * (price - vwap),
    )
    return updated, realized


class PositionBook:
    """
    Local position mirror with per-symbol serialized updates.

    Usage:
        book = PositionBook()
        position, realized = await book.apply_fill("PEPE", Side.BUY, 100.0, 1.02, leverage=5)
        await book.reconcile(await exchange.positions())
    """

    def __init__(self, on_realized: Optional[Callable[[str, float], None]] = None):
        self.on_realized = on_realized
        self._positions: dict[str, Position] = {}
        self._queues: dict[str, asyncio.Queue] = {}
        self._workers: dict[str, asyncio.Task] = {}
        self.reconciles = 0

    def get(self, symbol: str) -> Optional[Position]:
        """Open position for symbol (None when flat)."""
        position = self._positions.get(symbol)
        if position is None or position.is_flat:
            return None
        return position

    def all(self) -> dict[str, Position]:
        return {s: p for s, p in self._positions.items() if not p.is_flat}

    def exposures(self) -> dict[str, float]:
        return {s: p.notional for s, p in self.all().items()}

    def _queue(self, symbol: str) -> asyncio.Queue:
        queue = self._queues.get(symbol)
        if queue is None:
            queue = asyncio.Queue()
            self._queues[symbol] = queue
            self._workers[symbol] = asyncio.create_task(self._worker(symbol, queue))
        return queue

    async def _worker(self, symbol: str, queue: asyncio.Queue) -> None:
        while True:
            update, future = await queue.get()
            try:
                result = update(self._positions.get(symbol))
                self._positions[symbol] = result
                if not future.done():
                    future.set_result(result)
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            finally:
                queue.task_done()

    async def submit(self, symbol: str, update: Update) -> Position:
        """Run `update` on the symbol's worker and return the new position."""
        future = asyncio.get_running_loop().create_future()
        await self._queue(symbol).put((update, future))
        return await future

    async def apply_fill(
        self, symbol: str, side: Side, size: float, price: float, leverage: int = 1
    ) -> tuple[Position, float]:
        realized = 0.0

        def update(position: Optional[Position]) -> Position:
            nonlocal realized
            result, realized = fold_fill(position, symbol, side, size, price, leverage)
            return result

        position = await self.submit(symbol, update)
        if realized and self.on_realized:
            self.on_realized(symbol, realized)
        return position, realized

    async def mark(self, prices: dict[str, float]) -> float:
        """Mark open positions to `prices`; returns total unrealized P&L."""
        total = 0.0
        for symbol, position in list(self.all().items()):
            price = prices.get(symbol)
            if price is None:
                total += position.unrealized_pnl
                continue

            def update(current: Optional[Position], price=price) -> Position:
                if current is None or current.is_flat:
                    return current or Position(symbol=symbol)
                return current.model_copy(update={"unrealized_pnl": current.size * (price - current.entry_vwap)})

            marked = await self.submit(symbol, update)
            total += marked.unrealized_pnl
        return total

    async def replace(self, position: Position) -> Position:
        return await self.submit(position.symbol, lambda _: position)

    async def reconcile(self, positions: list[Position]) -> None:
        """Replace the local view with the exchange's authoritative list."""
        seen = set()
        for position in positions:
            seen.add(position.symbol)
            local = self._positions.get(position.symbol)
            if local is not None and abs(local.size - position.size) > 1e-9:
                logger.warning(
                    f"Position drift on {position.symbol}: local {local.size:.6f} "
                    f"exchange {position.size:.6f}; taking exchange view"
                )
            await self.replace(position)
        for symbol in list(self._positions):
            if symbol not in seen and not self._positions[symbol].is_flat:
                logger.warning(f"Position on {symbol} not reported by exchange; flattening local view")
                await self.replace(Position(symbol=symbol))
        self.reconciles += 1

    def restore(self, positions: list[Position]) -> None:
        """Seed the book from persisted state (before any worker runs)."""
        for position in positions:
            self._positions[position.symbol] = position

    async def close(self) -> None:
        for task in self._workers.values():
            task.cancel()
        await asyncio.gather(*self._workers.values(), return_exceptions=True)
        self._workers.clear()
        self._queues.clear()
