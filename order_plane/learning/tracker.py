"""
Performance Tracker.

Follows each intent from entry to close:
- on_entry: record the executed entry (size, VWAP, fees, contributions)
- on_fill: running fill count per symbol
- on_close: realized P&L net of fees, plan slippage, execution quality and
  per-domain attribution -> PerformanceReport
- mark_to_market: unrealized P&L and the equity curve

Execution quality:
    quality = 1 - clamp(0.5 * min(1, |slippage| / max_slippage)
                        + 0.3 * (1 - fill_ratio)
                        + 0.2 * min(1, retries / slices))

Attribution: share_d = c_d / sum(c), c_d = w_d * score_d * confidence_d
stored on the intent; equal shares when every contribution is zero.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from order_plane.app.engine import PlanResult
from shared.clock import Clock, SystemClock
from shared.config import ExecutionConfig, LearningConfig
from shared.errors import InvariantViolation
from shared.models import Fill, PerformanceReport, Side, TradeIntent

logger = logging.getLogger(__name__)

SLIPPAGE_PENALTY = 0.5
FILL_PENALTY = 0.3
RETRY_PENALTY = 0.2


def execution_quality(slippage: float, fill_ratio: float, retries: int, slices: int, max_slippage: float) -> float:
    slip_term = SLIPPAGE_PENALTY * min(1.0, abs(slippage) / max_slippage) if max_slippage > 0 else 0.0
    fill_term = FILL_PENALTY * (1.0 - max(0.0, min(1.0, fill_ratio)))
    retry_term = RETRY_PENALTY * min(1.0, retries / max(1, slices))
    return 1.0 - max(0.0, min(1.0, slip_term + fill_term + retry_term))


def attribution_shares(contributions: dict[str, float]) -> dict[str, float]:
    """Normalize contributions to non-negative shares summing to 1."""
    if not contributions:
        return {}
    values = {d: max(0.0, c) for d, c in contributions.items()}
    total = sum(values.values())
    if total <= 0 or not math.isfinite(total):
        share = 1.0 / len(values)
        return {d: share for d in values}
    shares = {d: c / total for d, c in values.items()}
    # Push the rounding residue onto the largest share
    residue = 1.0 - sum(shares.values())
    if residue:
        top = max(shares, key=shares.get)
        shares[top] += residue
    return shares


@dataclass
class OpenTrade:
    """An entered, not yet closed, intent."""
    intent_id: str
    symbol: str
    side: Side
    entry_ts: float
    size: float
    entry_vwap: float
    fees: float
    contributions: dict[str, float]
    leverage: int = 1
    slippage_weighted: float = 0.0
    filled: float = 0.0
    retries: int = 0
    slices: int = 0
    planned_size: float = 0.0
    unrealized_pnl: float = 0.0
    results: list[str] = field(default_factory=list)
    closes: int = 0

    @property
    def sign(self) -> int:
        return 1 if self.side == Side.BUY else -1

    def absorb(self, result: PlanResult) -> None:
        filled = result.filled_size
        if filled <= 0:
            return
        total = self.size + filled
        self.entry_vwap = (self.entry_vwap * self.size + result.avg_price * filled) / total
        self.size = total
        self.fees += result.fees
        self.slippage_weighted += result.slippage * filled
        self.filled += filled
        self.retries += result.retries_used
        self.slices += len(result.slices)
        self.planned_size += result.planned_size
        self.results.append(result.plan_id)

    def reset_execution(self) -> None:
        """Start the remainder of a partially closed trade with fresh execution stats."""
        self.fees = 0.0
        self.slippage_weighted = 0.0
        self.filled = 0.0
        self.retries = 0
        self.slices = 0
        self.planned_size = 0.0


class PerformanceTracker:
    """
    Tracks open trades, closes them into PerformanceReports and keeps the
    report history (eval_window) and equity curve.
    """

    def __init__(
        self,
        initial_equity: float,
        config: Optional[LearningConfig] = None,
        execution: Optional[ExecutionConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or LearningConfig()
        self.execution = execution or ExecutionConfig()
        self.clock = clock or SystemClock()
        self.initial_equity = initial_equity

        self.open: dict[str, OpenTrade] = {}
        self.history: deque[PerformanceReport] = deque(maxlen=self.config.eval_window)
        self.equity_curve: deque[tuple[float, float]] = deque(maxlen=10_000)
        self.realized_total = 0.0
        self.fills: dict[str, int] = {}
        self.closed = 0

    def on_entry(self, intent: TradeIntent, result: PlanResult) -> Optional[OpenTrade]:
        """Record an executed entry; adds to an open trade on the same side."""
        if result.filled_size <= 0:
            return None
        trade = self.open.get(intent.symbol)
        if trade is not None and trade.side == result.side:
            merged = dict(trade.contributions)
            for d, c in intent.contributions.items():
                merged[d] = merged.get(d, 0.0) + c
            trade.contributions = merged
            trade.absorb(result)
            return trade

        trade = OpenTrade(
            intent_id=intent.intent_id,
            symbol=intent.symbol,
            side=result.side,
            entry_ts=self.clock.now(),
            size=0.0,
            entry_vwap=0.0,
            fees=0.0,
            contributions=dict(intent.contributions),
            leverage=result.leverage,
        )
        trade.absorb(result)
        self.open[intent.symbol] = trade
        return trade

    def on_fill(self, symbol: str, fill: Fill) -> None:
        self.fills[symbol] = self.fills.get(symbol, 0) + 1

    def on_close(
        self,
        symbol: str,
        result: Optional[PlanResult] = None,
        exit_price: Optional[float] = None,
    ) -> Optional[PerformanceReport]:
        """
        Close the open trade on `symbol`.

        Exit price comes from the close plan's fills, else `exit_price`.

        Raises:
            InvariantViolation: attribution failed its sum/sign checks
        """
        trade = self.open.get(symbol)
        if trade is None:
            return None

        closed_size = trade.size
        exit_fees = 0.0
        slippage_weighted = trade.slippage_weighted
        slippage_size = trade.filled
        retries, slices, planned = trade.retries, trade.slices, trade.planned_size
        filled_total = trade.filled

        if result is not None and result.filled_size > 0:
            exit_avg = result.avg_price
            closed_size = min(trade.size, result.filled_size)
            exit_fees = result.fees
            slippage_weighted += result.slippage * result.filled_size
            slippage_size += result.filled_size
            retries += result.retries_used
            slices += len(result.slices)
            planned += result.planned_size
            filled_total += result.filled_size
        elif exit_price is not None:
            exit_avg = exit_price
        else:
            raise ValueError(f"No exit price for {symbol}")

        pnl = trade.sign * (exit_avg - trade.entry_vwap) * closed_size - trade.fees - exit_fees
        slippage = slippage_weighted / slippage_size if slippage_size > 0 else 0.0
        fill_ratio = min(1.0, filled_total / planned) if planned > 0 else 1.0
        quality = execution_quality(slippage, fill_ratio, retries, slices, self.execution.max_slippage)

        shares = attribution_shares(trade.contributions)
        if shares and (abs(sum(shares.values()) - 1.0) > 1e-9 or min(shares.values()) < 0):
            raise InvariantViolation(f"attribution for {trade.intent_id} does not sum to 1", symbol=symbol)

        report = PerformanceReport(
            intent_id=trade.intent_id,
            symbol=symbol,
            ts=self.clock.now(),
            realized_pnl=pnl,
            slippage=slippage,
            quality=quality,
            attribution=shares,
            pnl_attribution={d: s * pnl for d, s in shares.items()},
            retries_used=retries,
            fill_ratio=fill_ratio,
            close_index=trade.closes,
        )

        remaining = trade.size - closed_size
        if remaining > 1e-12:
            trade.size = remaining
            trade.closes += 1
            trade.reset_execution()
        else:
            del self.open[symbol]

        self.history.append(report)
        self.realized_total += pnl
        self.closed += 1
        logger.info(
            f"Closed {trade.intent_id} {symbol}: pnl {pnl:+.4f}, slippage {slippage:.4%}, "
            f"quality {quality:.3f} ({self.quality_band(quality)})"
        )
        return report

    def mark_to_market(self, prices: dict[str, float]) -> dict[str, float]:
        """Unrealized P&L per open trade; appends an equity curve point."""
        unrealized = {}
        for symbol, trade in self.open.items():
            price = prices.get(symbol)
            if price is not None:
                trade.unrealized_pnl = trade.sign * (price - trade.entry_vwap) * trade.size - trade.fees
            unrealized[symbol] = trade.unrealized_pnl
        equity = self.initial_equity + self.realized_total + sum(unrealized.values())
        self.equity_curve.append((self.clock.now(), equity))
        return unrealized

    def quality_band(self, quality: float) -> str:
        if quality < self.config.quality_poor:
            return "poor"
        if quality < self.config.quality_acceptable:
            return "acceptable"
        if quality < self.config.quality_good:
            return "good"
        return "excellent"

    def max_drawdown(self) -> float:
        """Largest peak-to-trough drop of the equity curve."""
        peak, worst = -math.inf, 0.0
        for _, equity in self.equity_curve:
            peak = max(peak, equity)
            if peak > 0:
                worst = max(worst, (peak - equity) / peak)
        return worst
