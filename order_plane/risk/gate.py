"""
Risk Gate.

gate(intent, portfolio, volatility) -> RiskDecision

Rules, in order:
1. Per-symbol cap: single_asset_limit * equity, minus existing exposure
2. Category cap and platform cap
3. Aggregate exposure cap: total_exposure * equity
4. Correlation bucket cap: correlated_limit * equity
5. Drawdown brake: BUY rejected while engaged
6. Leverage from the volatility band, scaled by intent confidence

A binding cap resizes the notional; a notional below min_notional is
rejected. ACCEPT only when no rule changed anything. CLOSE intents bypass
the caps and the brake. single_asset_limit and L_max are read from the
current parameter generation.
"""

import logging
import math
from collections import deque
from typing import Callable, Optional, Protocol

from order_plane.risk.correlation import CorrelationTracker
from order_plane.risk.kill_switch import KillSwitch
from order_plane.risk.portfolio import DrawdownBrake, PortfolioState
from shared.clock import Clock, SystemClock
from shared.config import RiskConfig
from shared.metrics import AgentMetrics
from shared.models import (
    Assessment,
    BreachType,
    ParameterGeneration,
    RiskDecision,
    RiskEvent,
    RiskLevel,
    RiskOutcome,
    Side,
    TradeIntent,
)

logger = logging.getLogger(__name__)


class ParameterSource(Protocol):
    def current(self) -> ParameterGeneration: ...


class RiskGate:
    """
    Pre-trade risk gate.

    Example:
        >>> gate = RiskGate(RiskConfig(single_asset_limit=0.15))
        >>> portfolio = PortfolioState(initial_equity=100.0)
        >>> decision = gate.gate(intent, portfolio)   # target 30 -> RESIZE 15
    """

    def __init__(
        self,
        config: Optional[RiskConfig] = None,
        params: Optional[ParameterSource] = None,
        correlation: Optional[CorrelationTracker] = None,
        kill_switch: Optional[KillSwitch] = None,
        clock: Optional[Clock] = None,
        metrics: Optional[AgentMetrics] = None,
        on_event: Optional[Callable[[RiskEvent], None]] = None,
    ):
        self.config = config or RiskConfig()
        self.params = params
        self.correlation = correlation
        self.kill_switch = kill_switch
        self.clock = clock or SystemClock()
        self.metrics = metrics
        self.on_event = on_event
        self.brake = DrawdownBrake(self.config.max_drawdown, self.config.recovery_period_s)
        self.events: deque[RiskEvent] = deque(maxlen=1_000)

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def _risk_param(self, key: str, default: float) -> float:
        if self.params is None:
            return default
        return float(self.params.current().risk.get(key, default))

    @property
    def single_asset_limit(self) -> float:
        return self._risk_param("single_asset_limit", self.config.single_asset_limit)

    @property
    def leverage_max(self) -> int:
        return int(self._risk_param("L_max", self.config.L_max))

    def _members(self, mapping: dict[str, str], symbol: str) -> set[str]:
        group = mapping.get(symbol)
        if group is None:
            return set()
        return {s for s, g in mapping.items() if g == group} | {symbol}

    # ------------------------------------------------------------------
    # Leverage
    # ------------------------------------------------------------------

    def band_cap(self, volatility: Optional[Assessment]) -> int:
        caps = self.config.leverage_vol_caps
        table = {
            "extreme": self.config.L_min,
            "high": caps.high,
            "moderate": caps.medium,
            "low": caps.low,
        }
        band = volatility.state if volatility is not None else None
        return table.get(band, self.config.L_default)

    def select_leverage(self, confidence: float, volatility: Optional[Assessment] = None) -> int:
        l_min = self.config.L_min
        cap = max(l_min, min(self.band_cap(volatility), self.leverage_max))
        if confidence < self.config.leverage_min_confidence:
            return l_min
        return max(l_min, min(cap, int(math.floor(l_min + (cap - l_min) * confidence))))

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    def _record(
        self,
        intent: TradeIntent,
        breach_type: BreachType,
        level: RiskLevel,
        message: str,
        limit_value: Optional[float],
        observed_value: Optional[float],
        action: str,
    ) -> None:
        event = RiskEvent(
            ts=self.clock.now(),
            breach_type=breach_type,
            level=level,
            message=message,
            limit_value=limit_value,
            observed_value=observed_value,
            symbol=intent.symbol,
            intent_id=intent.intent_id,
            action_taken=action,
        )
        self.events.append(event)
        if self.on_event:
            self.on_event(event)

    def _decide(self, intent: TradeIntent, outcome: RiskOutcome, **kwargs) -> RiskDecision:
        decision = RiskDecision(intent_id=intent.intent_id, outcome=outcome, **kwargs)
        if self.metrics:
            self.metrics.inc("risk_decisions", outcome=outcome.value)
        log = logger.info if outcome != RiskOutcome.ACCEPT else logger.debug
        log(
            f"Risk {outcome.value} {intent.side.value} {intent.symbol} "
            f"{intent.target_notional:.2f} -> {decision.notional_for(intent):.2f} "
            f"L={decision.leverage} reasons={list(decision.reasons)}"
        )
        return decision

    def _reject(self, intent: TradeIntent, reasons: tuple[str, ...]) -> RiskDecision:
        return self._decide(intent, RiskOutcome.REJECT, leverage=0, reasons=reasons)

    def gate(
        self,
        intent: TradeIntent,
        portfolio: PortfolioState,
        volatility: Optional[Assessment] = None,
    ) -> RiskDecision:
        now = self.clock.now()

        if self.kill_switch is not None and self.kill_switch.is_halted(intent.symbol):
            return self._reject(intent, ("symbol_halted",))

        brake_engaged = self.brake.update(portfolio, now)
        leverage = self.select_leverage(intent.confidence, volatility)

        if intent.side == Side.CLOSE:
            return self._decide(intent, RiskOutcome.ACCEPT, leverage=max(1, self.config.L_min), reasons=("close",))

        equity = portfolio.equity
        if equity <= 0:
            return self._reject(intent, ("no_equity",))

        notional = intent.target_notional
        if notional < self.config.min_notional:
            return self._reject(intent, ("below_min_notional",))
        reasons: list[str] = []

        caps = [
            (
                "single_asset_limit", BreachType.POSITION_LIMIT,
                self.single_asset_limit * equity, portfolio.exposure(intent.symbol),
            ),
        ]
        category = self._members(self.config.categories, intent.symbol)
        if category:
            caps.append((
                "category_limit", BreachType.CATEGORY_LIMIT,
                self.config.category_limit * equity, portfolio.group_exposure(category),
            ))
        platform = self._members(self.config.platforms, intent.symbol)
        if platform:
            caps.append((
                "platform_limit", BreachType.PLATFORM_LIMIT,
                self.config.platform_limit * equity, portfolio.group_exposure(platform),
            ))
        caps.append((
            "total_exposure", BreachType.EXPOSURE_LIMIT,
            self.config.total_exposure * equity, portfolio.total_exposure,
        ))
        if self.correlation is not None:
            bucket = self.correlation.bucket_of(intent.symbol)
            if len(bucket) > 1:
                caps.append((
                    "correlated_limit", BreachType.CORRELATION,
                    self.config.correlated_limit * equity, portfolio.group_exposure(bucket),
                ))

        for name, breach_type, limit, used in caps:
            headroom = max(0.0, limit - used)
            if notional <= headroom:
                continue
            if headroom < self.config.min_notional:
                self._record(
                    intent, breach_type, RiskLevel.CRITICAL,
                    f"{name}: headroom {headroom:.2f} below min_notional", limit, used + notional, "REJECTED",
                )
                return self._reject(intent, tuple(reasons) + (name,))
            self._record(
                intent, breach_type, RiskLevel.WARNING,
                f"{name}: {notional:.2f} -> {headroom:.2f}", limit, used + notional, "RESIZED",
            )
            notional = headroom
            reasons.append(name)

        if brake_engaged and intent.side == Side.BUY:
            self._record(
                intent, BreachType.DRAWDOWN_BRAKE, RiskLevel.CRITICAL,
                f"drawdown brake engaged (drawdown {portfolio.drawdown:.2%})",
                self.config.max_drawdown, portfolio.drawdown, "REJECTED",
            )
            return self._reject(intent, ("drawdown_brake",) + tuple(reasons))

        if reasons:
            return self._decide(
                intent, RiskOutcome.RESIZE, adjusted_notional=notional, leverage=leverage, reasons=tuple(reasons),
            )
        return self._decide(intent, RiskOutcome.ACCEPT, leverage=leverage)
