"""
Exchange adapter contract and resilient wrapper.

Any venue adapter implements ExchangeAdapter. ResilientExchange wraps one
and adds:
- a bounded timeout (rest.timeout) on every call
- reconnect with exponential backoff on ExchangeDisconnected
- position replay after (re)connect, before orders are accepted again
- retries with backoff for idempotent calls (positions, cancel)

place_order is never retried here: a timed-out placement may still fill,
so the timeout surfaces to the engine, which cancels and reconciles.
"""

import asyncio
import logging
import time
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol, TypeVar

from shared.config import ExchangeConfig
from shared.errors import ExchangeDisconnected, ExchangeTimeout, TransientError
from shared.models import ExchangeEvent, OrderRequest, Position

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExchangeAdapter(Protocol):
    """Exchange adapter interface (duck-typed)."""

    async def connect(self) -> None: ...

    async def subscribe_orderbook(self, symbol: str) -> None: ...

    async def place_order(self, order: OrderRequest) -> str: ...

    async def cancel(self, order_id: str) -> bool: ...

    async def positions(self) -> list[Position]: ...

    def events(self) -> AsyncIterator[ExchangeEvent]: ...

    async def close(self) -> None: ...


class ResilientExchange:
    """
    Timeout / reconnect / replay wrapper around an ExchangeAdapter.

    Usage:
        exchange = ResilientExchange(PaperExchange(clock), config.exchange, on_replay=book.reconcile)
        await exchange.connect()
        order_id = await exchange.place_order(order)
    """

    def __init__(
        self,
        inner: ExchangeAdapter,
        config: Optional[ExchangeConfig] = None,
        on_replay: Optional[Callable[[list[Position]], Awaitable[None]]] = None,
        on_latency: Optional[Callable[[float], None]] = None,
    ):
        self.inner = inner
        self.config = config or ExchangeConfig()
        self.on_replay = on_replay
        self.on_latency = on_latency
        self.timeout_s = self.config.rest.timeout / 1000.0

        self._ready = asyncio.Event()
        self._connect_lock = asyncio.Lock()
        self._subscriptions: set[str] = set()
        self.reconnects = 0
        self.timeouts = 0
        self.replayed_positions: list[Position] = []

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    def _backoff(self, attempt: int) -> float:
        return min(self.config.backoff_base_s * (2 ** attempt), self.config.backoff_max_s)

    async def _timed(self, name: str, fn: Callable[[], Awaitable[T]]) -> T:
        started = time.perf_counter()
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            self.timeouts += 1
            raise ExchangeTimeout(f"{name} timed out after {self.timeout_s:.3f}s") from e
        finally:
            if self.on_latency:
                self.on_latency((time.perf_counter() - started) * 1000.0)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Connect (or reconnect) and replay positions.

        Raises:
            ExchangeDisconnected: reconnect_attempts exhausted
        """
        async with self._connect_lock:
            if self._ready.is_set():
                return
            last_error: Optional[Exception] = None
            for attempt in range(self.config.reconnect_attempts):
                try:
                    await self._timed("connect", self.inner.connect)
                    for symbol in sorted(self._subscriptions):
                        await self._timed("subscribe_orderbook", lambda s=symbol: self.inner.subscribe_orderbook(s))
                    positions = await self._timed("positions", self.inner.positions)
                    self.replayed_positions = positions
                    if self.on_replay:
                        await self.on_replay(positions)
                    self._ready.set()
                    if attempt or self.reconnects:
                        logger.info(f"Exchange reconnected after {attempt + 1} attempts; {len(positions)} positions replayed")
                    return
                except TransientError as e:
                    last_error = e
                    delay = self._backoff(attempt)
                    logger.warning(f"Exchange connect attempt {attempt + 1} failed: {e}; retrying in {delay:.1f}s")
                    await asyncio.sleep(delay)
            raise ExchangeDisconnected(
                f"Exchange unreachable after {self.config.reconnect_attempts} attempts: {last_error}"
            )

    async def _reconnect(self) -> None:
        self._ready.clear()
        self.reconnects += 1
        await self.connect()

    async def _ensure_ready(self) -> None:
        if not self._ready.is_set():
            await self.connect()

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def _idempotent(self, name: str, fn: Callable[[], Awaitable[T]]) -> T:
        last_error: Optional[Exception] = None
        for attempt in range(self.config.retries + 1):
            await self._ensure_ready()
            try:
                return await self._timed(name, fn)
            except ExchangeDisconnected as e:
                last_error = e
                await self._reconnect()
            except TransientError as e:
                last_error = e
                await asyncio.sleep(self._backoff(attempt))
        raise last_error

    async def subscribe_orderbook(self, symbol: str) -> None:
        self._subscriptions.add(symbol)
        await self._idempotent("subscribe_orderbook", lambda: self.inner.subscribe_orderbook(symbol))

    async def place_order(self, order: OrderRequest) -> str:
        await self._ensure_ready()
        try:
            return await self._timed("place_order", lambda: self.inner.place_order(order))
        except ExchangeDisconnected:
            # Not retried: the engine decides after the book is replayed
            await self._reconnect()
            raise

    async def cancel(self, order_id: str) -> bool:
        return await self._idempotent("cancel", lambda: self.inner.cancel(order_id))

    async def positions(self) -> list[Position]:
        return await self._idempotent("positions", self.inner.positions)

    async def events(self) -> AsyncIterator[ExchangeEvent]:
        """Event stream that survives disconnects."""
        while True:
            await self._ensure_ready()
            try:
                async for event in self.inner.events():
                    yield event
                return
            except ExchangeDisconnected as e:
                logger.warning(f"Exchange event stream dropped: {e}")
                await self._reconnect()

    async def close(self) -> None:
        self._ready.clear()
        await self.inner.close()
