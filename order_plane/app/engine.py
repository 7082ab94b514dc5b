"""
Execution Engine

Runs ExecutionPlans slice by slice against the exchange adapter:
1. Wait for the slice's scheduled time
2. Pre-send slippage check against the current book
3. Send a market order keyed by the slice id (retries get "#<attempt>")
4. Await the fill from the exchange event stream
5. Fold fills into the PositionBook, track slippage and retries

Flow:
  ExecutionPlan → execute() → place_order → exchange
                                  ↓
          event pump (trade / position events) → PositionBook
                                  ↓
                    per-slice fill futures → PlanResult

Failure handling:
- Rejects and transient errors retry the slice up to `retries` times
- A partial fill resends the remainder (counts as a retry)
- An order without a fill inside fill_timeout_s is cancelled at the
  exchange before the slice is resent
- A slice that exhausts its retries aborts the plan and the position
  view is reconciled from the exchange
- cancel(plan_id) cancels the in-flight order at the exchange, marks the
  remaining slices CANCELLED and returns once the plan is closed
- Slippage breaches (pre-send estimate, or `slippage_breach_limit`
  consecutive fills above max_slippage) re-plan the remainder as ADAPTIVE
  once; a second breach aborts
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from order_plane.app.positions import PositionBook
from order_plane.planner import ExecutionPlanner, estimate_slippage, side_sign
from shared.clock import Clock, SystemClock
from shared.config import ExecutionConfig
from shared.errors import ExchangeError, ExchangeTimeout, TransientError
from shared.metrics import AgentMetrics
from shared.models import (
    ExchangeEvent,
    ExchangeEventKind,
    ExecutionPlan,
    Fill,
    MarketSnapshot,
    OrderRequest,
    Position,
    Side,
    Slice,
    SliceState,
)

logger = logging.getLogger(__name__)

EPS = 1e-12


@dataclass
class SliceReport:
    """Outcome of one slice."""
    slice_id: str
    size: float
    state: SliceState = SliceState.PENDING
    filled_size: float = 0.0
    avg_price: float = 0.0
    fees: float = 0.0
    attempts: int = 0
    slippage: Optional[float] = None
    error: Optional[str] = None


@dataclass
class PlanResult:
    """Outcome of an executed plan."""
    plan_id: str
    intent_id: str
    symbol: str
    side: Side
    planned_size: float
    reference_price: float
    leverage: int = 1
    slices: list[SliceReport] = field(default_factory=list)
    fills: list[Fill] = field(default_factory=list)
    retries_used: int = 0
    status: str = "completed"
    replanned: bool = False
    abort_reason: Optional[str] = None
    realized_pnl: float = 0.0
    _slippage_weighted: float = 0.0

    @property
    def filled_size(self) -> float:
        return sum(f.filled_size for f in self.fills)

    @property
    def avg_price(self) -> float:
        size = self.filled_size
        if size <= 0:
            return 0.0
        return sum(f.filled_size * f.avg_price for f in self.fills) / size

    @property
    def fees(self) -> float:
        return sum(f.fees for f in self.fills)

    @property
    def fill_ratio(self) -> float:
        if self.planned_size <= 0:
            return 0.0
        return min(1.0, self.filled_size / self.planned_size)

    @property
    def slippage(self) -> float:
        """Size-weighted mean signed slippage (positive = adverse)."""
        size = self.filled_size
        return self._slippage_weighted / size if size > 0 else 0.0

    @property
    def attempts(self) -> int:
        return sum(s.attempts for s in self.slices)


@dataclass
class _PlanControl:
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)
    closed: asyncio.Event = field(default_factory=asyncio.Event)


class ExecutionEngine:
    """
    Executes plans and mirrors fills into the PositionBook.

    Usage:
        engine = ExecutionEngine(exchange, positions, planner, config.execution, clock=clock)
        await engine.start()
        result = await engine.execute(plan)
    """

    def __init__(
        self,
        exchange,
        positions: PositionBook,
        planner: Optional[ExecutionPlanner] = None,
        config: Optional[ExecutionConfig] = None,
        clock: Optional[Clock] = None,
        metrics: Optional[AgentMetrics] = None,
        snapshot_provider: Optional[Callable[[str], Optional[MarketSnapshot]]] = None,
        on_fill: Optional[Callable[[ExecutionPlan, Fill], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ):
        self.exchange = exchange
        self.positions = positions
        self.planner = planner
        self.config = config or ExecutionConfig()
        self.clock = clock or SystemClock()
        self.metrics = metrics
        self.snapshot_provider = snapshot_provider
        self.on_fill = on_fill
        self.on_error = on_error

        self._pending: dict[str, asyncio.Future] = {}
        self._realized: dict[str, float] = {}
        self._active: dict[str, _PlanControl] = {}
        self._pump_task: Optional[asyncio.Task] = None
        self.unmatched_fills = 0

    # ------------------------------------------------------------------
    # Event pump
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        async for event in self.exchange.events():
            try:
                await self._handle_event(event)
            except Exception as e:
                logger.error(f"Error handling exchange event {event.kind.value} {event.symbol}: {e}", exc_info=True)
                if self.on_error:
                    self.on_error(event.symbol)

    async def _handle_event(self, event: ExchangeEvent) -> None:
        if event.kind == ExchangeEventKind.TRADE:
            data = event.data
            client_id = data.get("client_id")
            size = float(data.get("size", 0.0))
            realized = 0.0
            if size > 0:
                _, realized = await self.positions.apply_fill(
                    event.symbol, Side(data["side"]), size, float(data["price"]), int(data.get("leverage", 1)),
                )
            future = self._pending.pop(client_id, None) if client_id else None
            if future is not None and not future.done():
                future.set_result((event, realized))
            elif client_id:
                self.unmatched_fills += 1
                logger.warning(f"Fill for unknown or expired order {client_id} on {event.symbol}")
        elif event.kind == ExchangeEventKind.POSITION:
            await self.positions.replace(Position.model_validate(event.data))

    async def stop(self) -> None:
        if self._pump_task is not None:
            self._pump_task.cancel()
            await asyncio.gather(self._pump_task, return_exceptions=True)
            self._pump_task = None
        for future in self._pending.values():
            if not future.done():
                future.cancel()
        self._pending.clear()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def cancel(self, plan_id: str) -> bool:
        """
        Cancel an in-flight plan.

        The live order (if any) is cancelled at the exchange and the
        remaining slices are marked CANCELLED. Returns once the plan is
        closed; False if the plan is not in flight.
        """
        control = self._active.get(plan_id)
        if control is None:
            return False
        logger.info(f"Cancel requested for plan {plan_id}")
        control.cancelled.set()
        await control.closed.wait()
        return True

    async def _cancel_order(self, order_id: Optional[str], client_id: str) -> bool:
        """Cancel a live order at the exchange; False if it was already terminal or the call failed."""
        if order_id is None:
            return False
        try:
            confirmed = await self.exchange.cancel(order_id)
        except (ExchangeError, TransientError) as e:
            logger.warning(f"Cancel of order {client_id} ({order_id}) failed: {e}")
            return False
        logger.info(f"Order {client_id} ({order_id}) cancel {'confirmed' if confirmed else 'too late, already terminal'}")
        return confirmed

    def _reference_price(self, plan: ExecutionPlan) -> float:
        if self.snapshot_provider is not None:
            snapshot = self.snapshot_provider(plan.symbol)
            if snapshot is not None:
                return snapshot.mid
        return plan.reference_price

    async def _wait_until(self, ts: float, cancelled: asyncio.Event) -> None:
        delay = ts - self.clock.now()
        if delay <= 0:
            return
        sleeper = asyncio.create_task(self.clock.sleep(delay))
        waiter = asyncio.create_task(cancelled.wait())
        done, pending = await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def _presend_breach(self, plan: ExecutionPlan, slice_: Slice) -> Optional[float]:
        if self.snapshot_provider is None:
            return None
        snapshot = self.snapshot_provider(plan.symbol)
        if snapshot is None:
            return None
        estimate = estimate_slippage(snapshot, plan.side, slice_.size * snapshot.mid)
        return estimate if estimate > plan.max_slippage else None

    async def execute(self, plan: ExecutionPlan) -> PlanResult:
        """
        Execute a plan to completion, cancellation or abort.

        Returns:
            PlanResult with fills, slippage, retries and terminal status
        """
        await self.start()
        result = PlanResult(
            plan_id=plan.plan_id,
            intent_id=plan.intent_id,
            symbol=plan.symbol,
            side=plan.side,
            planned_size=plan.total_size,
            reference_price=plan.reference_price,
            leverage=plan.leverage,
        )
        control = _PlanControl()
        self._active[plan.plan_id] = control
        cancelled = control.cancelled
        queue = list(plan.slices)
        current = plan
        consecutive_breaches = 0

        try:
            while queue:
                slice_ = queue[0]
                await self._wait_until(slice_.scheduled_ts, cancelled)
                if cancelled.is_set():
                    result.status = "cancelled"
                    break

                estimate = self._presend_breach(current, slice_)
                if estimate is not None:
                    logger.warning(
                        f"Pre-send slippage estimate {estimate:.4%} exceeds {current.max_slippage:.4%} "
                        f"for {slice_.slice_id}"
                    )
                    replanned = self._replan(current, queue, result)
                    if replanned is None:
                        break
                    current, queue = replanned, list(replanned.slices)
                    consecutive_breaches = 0
                    continue

                queue.pop(0)
                report = await self._run_slice(current, slice_, result, cancelled)
                result.slices.append(report)

                if cancelled.is_set():
                    result.status = "cancelled"
                    break

                if report.state == SliceState.REJECTED:
                    result.abort_reason = "slice_rejected"
                    await self._reconcile()
                    break

                if report.slippage is not None and report.slippage > current.max_slippage:
                    consecutive_breaches += 1
                else:
                    consecutive_breaches = 0
                if consecutive_breaches >= self.config.slippage_breach_limit and queue:
                    logger.warning(
                        f"{consecutive_breaches} consecutive fills above max slippage on {plan.plan_id}"
                    )
                    replanned = self._replan(current, queue, result)
                    if replanned is None:
                        break
                    current, queue = replanned, list(replanned.slices)
                    consecutive_breaches = 0
        finally:
            for slice_ in queue:
                result.slices.append(SliceReport(slice_.slice_id, slice_.size, state=SliceState.CANCELLED))
                self._count_slice(SliceState.CANCELLED)
            self._active.pop(plan.plan_id, None)
            control.closed.set()

        if result.abort_reason is not None:
            result.status = "aborted"
        elif result.status != "cancelled":
            result.status = "completed" if result.fill_ratio >= 1.0 - 1e-9 else "partial"

        logger.info(
            f"Plan {plan.plan_id} {result.status}: filled {result.filled_size:.6g}/{result.planned_size:.6g} "
            f"{plan.symbol} @ {result.avg_price:.6g}, slippage {result.slippage:.4%}, "
            f"retries {result.retries_used}"
        )
        return result

    def _replan(self, plan: ExecutionPlan, queue: list[Slice], result: PlanResult) -> Optional[ExecutionPlan]:
        remaining = sum(s.size for s in queue)
        if result.replanned or self.planner is None or remaining <= EPS:
            result.abort_reason = "slippage"
            return None
        result.replanned = True
        return self.planner.replan_adaptive(plan, remaining, self.clock.now())

    async def _reconcile(self) -> None:
        try:
            await self.positions.reconcile(await self.exchange.positions())
        except TransientError as e:
            logger.error(f"Position reconcile failed: {e}")

    def _count_slice(self, state: SliceState) -> None:
        if self.metrics:
            self.metrics.inc("slices", state=state.value)

    def _can_retry(self, attempt: int, result: PlanResult) -> bool:
        if attempt >= self.config.retries:
            return False
        result.retries_used += 1
        if self.metrics:
            self.metrics.inc("slice_retries")
        return True

    def _slice_failed(self, plan: ExecutionPlan, report: SliceReport, client_id: str, error: str) -> None:
        report.error = error
        logger.warning(f"Slice {client_id} failed: {error}")
        if self.on_error:
            self.on_error(plan.symbol)

    async def _await_fill(self, future: asyncio.Future, cancelled: asyncio.Event) -> bool:
        """Wait for the order's fill; False on fill timeout or plan cancellation."""
        waiter = asyncio.create_task(cancelled.wait())
        try:
            await asyncio.wait({future, waiter}, timeout=self.config.fill_timeout_s, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            await asyncio.gather(waiter, return_exceptions=True)
        return future.done()

    async def _run_slice(
        self, plan: ExecutionPlan, slice_: Slice, result: PlanResult, cancelled: asyncio.Event,
    ) -> SliceReport:
        report = SliceReport(slice_.slice_id, slice_.size)
        remaining = slice_.size
        attempt = 0
        loop = asyncio.get_running_loop()

        while remaining > EPS and not cancelled.is_set():
            client_id = slice_.slice_id if attempt == 0 else f"{slice_.slice_id}#{attempt}"
            order = OrderRequest(
                symbol=plan.symbol,
                client_id=client_id,
                side=plan.side,
                size=remaining,
                leverage=plan.leverage,
                reduce_only=plan.reduce_only,
            )
            future = loop.create_future()
            self._pending[client_id] = future
            reference = self._reference_price(plan)
            report.attempts += 1
            report.state = SliceState.SENT

            try:
                order_id = await self.exchange.place_order(order)
            except (ExchangeError, TransientError) as e:
                self._pending.pop(client_id, None)
                self._slice_failed(plan, report, client_id, f"{type(e).__name__}: {e}")
                if isinstance(e, ExchangeTimeout):
                    await self._reconcile()
                if not self._can_retry(attempt, result):
                    break
                attempt += 1
                continue

            if not await self._await_fill(future, cancelled):
                # The order stays live until the exchange confirms the cancel
                confirmed = await self._cancel_order(order_id, client_id)
                if not confirmed and not future.done():
                    await asyncio.wait({future}, timeout=self.config.fill_timeout_s)
                self._pending.pop(client_id, None)
                if not future.done():
                    if cancelled.is_set():
                        break
                    self._slice_failed(
                        plan, report, client_id, f"no fill within {self.config.fill_timeout_s:.3g}s",
                    )
                    await self._reconcile()
                    if not self._can_retry(attempt, result):
                        break
                    attempt += 1
                    continue

            event, realized = future.result()
            data = event.data
            filled = float(data["size"])
            price = float(data["price"])
            fill = Fill(
                slice_id=slice_.slice_id,
                ts=event.ts,
                filled_size=filled,
                avg_price=price,
                fees=float(data.get("fees", 0.0)),
                order_id=data.get("order_id"),
            )
            result.fills.append(fill)
            result.realized_pnl += realized

            slippage = side_sign(plan.side) * (price - reference) / reference
            result._slippage_weighted += slippage * filled
            if self.metrics:
                self.metrics.observe("slippage", slippage)

            total = report.filled_size + filled
            report.avg_price = (report.avg_price * report.filled_size + price * filled) / total
            report.filled_size = total
            report.fees += fill.fees
            report.slippage = slippage if report.slippage is None else max(report.slippage, slippage)
            remaining -= filled

            if self.on_fill:
                self.on_fill(plan, fill)

            if remaining > EPS:
                report.state = SliceState.PARTIAL
                logger.info(f"Slice {client_id} partially filled {filled:.6g}; {remaining:.6g} remaining")
                if float(data.get("remaining", 0.0)) > EPS:
                    await self._cancel_order(order_id, client_id)
                if not self._can_retry(attempt, result):
                    break
                attempt += 1

        if remaining <= EPS:
            report.state = SliceState.FILLED
        elif report.filled_size > 0 or cancelled.is_set():
            report.state = SliceState.CANCELLED
        else:
            report.state = SliceState.REJECTED
        self._count_slice(report.state)
        return report
