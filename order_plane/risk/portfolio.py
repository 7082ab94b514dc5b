"""
Portfolio state for risk checks.

Equity = initial equity + realized P&L + unrealized P&L. Exposure is the
absolute open notional per symbol (entry notional, leverage-neutral).
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from shared.models import Position

logger = logging.getLogger(__name__)


@dataclass
class PortfolioState:
    """
    Equity, peak and open exposure.

    Example:
        >>> portfolio = PortfolioState(initial_equity=100.0)
        >>> portfolio.set_exposure("PEPE", 10.0)
        >>> portfolio.apply_realized(-20.0, ts=0.0)
        >>> round(portfolio.drawdown, 2)
        0.2
    """

    initial_equity: float
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    peak_equity: float = 0.0
    exposures: dict[str, float] = field(default_factory=dict)
    last_negative_pnl_ts: Optional[float] = None

    def __post_init__(self):
        if self.peak_equity <= 0:
            self.peak_equity = self.initial_equity

    @property
    def equity(self) -> float:
        return self.initial_equity + self.realized_pnl + self.unrealized_pnl

    @property
    def drawdown(self) -> float:
        """Trailing drawdown from peak in [0, 1]."""
        if self.peak_equity <= 0:
            return 0.0
        return max(0.0, (self.peak_equity - self.equity) / self.peak_equity)

    def _update_peak(self) -> None:
        self.peak_equity = max(self.peak_equity, self.equity)

    def reset_peak(self) -> None:
        """Restart drawdown measurement from current equity."""
        logger.info(f"Drawdown peak reset: {self.peak_equity:.2f} -> {self.equity:.2f}")
        self.peak_equity = self.equity

    # ------------------------------------------------------------------
    # P&L
    # ------------------------------------------------------------------

    def apply_realized(self, pnl: float, ts: float) -> None:
        self.realized_pnl += pnl
        if pnl < 0:
            self.last_negative_pnl_ts = ts
        self._update_peak()

    def mark(self, unrealized_pnl: float, ts: float) -> None:
        """Mark open positions; an equity decrease counts as negative P&L."""
        before = self.equity
        self.unrealized_pnl = unrealized_pnl
        if self.equity < before - 1e-12:
            self.last_negative_pnl_ts = ts
        self._update_peak()

    def restore(self, equity: float, peak_equity: float) -> None:
        """Restore persisted equity and peak (open P&L is re-marked later)."""
        self.unrealized_pnl = 0.0
        self.realized_pnl = equity - self.initial_equity
        self.peak_equity = max(peak_equity, equity)

    # ------------------------------------------------------------------
    # Exposure
    # ------------------------------------------------------------------

    def set_exposure(self, symbol: str, notional: float) -> None:
        if notional <= 0:
            self.exposures.pop(symbol, None)
        else:
            self.exposures[symbol] = notional

    def sync_positions(self, positions: Iterable[Position]) -> None:
        self.exposures = {p.symbol: p.notional for p in positions if not p.is_flat}

    def exposure(self, symbol: str) -> float:
        return self.exposures.get(symbol, 0.0)

    def group_exposure(self, symbols: Iterable[str]) -> float:
        return sum(self.exposures.get(s, 0.0) for s in set(symbols))

    @property
    def total_exposure(self) -> float:
        return sum(self.exposures.values())


class DrawdownBrake:
    """
    Trailing drawdown brake.

    Engages when drawdown >= max_drawdown. Releases once recovery_period_s
    has elapsed since max(engagement, last negative P&L); release resets the
    portfolio peak.
    """

    def __init__(self, max_drawdown: float, recovery_period_s: float):
        self.max_drawdown = max_drawdown
        self.recovery_period_s = recovery_period_s
        self.engaged = False
        self.engaged_at: Optional[float] = None
        self.releases = 0

    def update(self, portfolio: PortfolioState, now: float) -> bool:
        """Re-evaluate the brake. Returns True while engaged."""
        if not self.engaged:
            if portfolio.drawdown >= self.max_drawdown:
                self.engaged = True
                self.engaged_at = now
                logger.warning(
                    f"Drawdown brake engaged: {portfolio.drawdown:.2%} >= {self.max_drawdown:.2%}"
                )
            return self.engaged

        anchor = self.engaged_at
        if portfolio.last_negative_pnl_ts is not None:
            anchor = max(anchor, portfolio.last_negative_pnl_ts)
        if now - anchor >= self.recovery_period_s:
            self.engaged = False
            self.engaged_at = None
            self.releases += 1
            portfolio.reset_peak()
            logger.info(f"Drawdown brake released after {now - anchor:.0f}s without negative P&L")
        return self.engaged
