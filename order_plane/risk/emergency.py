"""
Emergency monitor.

Watches market snapshots, exchange latency and error bursts. A breach
halts the affected symbol on the kill switch (exchange latency triggers
the global switch) and produces a RiskEvent for the event log.

Thresholds (config risk.emergency):
- price_drop: fractional drop from the window high within window_s
- volatility_spike: recent volatility / baseline volatility
- liquidity_drop: fractional drop of book depth vs the window mean
- max_latency_ms: exchange round-trip
- error_threshold errors within error_window_s
"""

import logging
from collections import defaultdict, deque
from typing import Callable, Optional

import numpy as np

from order_plane.risk.kill_switch import KillSwitch
from shared.clock import Clock
from shared.config.loader import EmergencyConfig
from shared.models import BreachType, MarketSnapshot, RiskEvent, RiskLevel

logger = logging.getLogger(__name__)

RECENT_RETURNS = 10
BASELINE_RETURNS = 500
MIN_BASELINE = 30


class EmergencyMonitor:
    """
    Example:
        monitor = EmergencyMonitor(config.risk.emergency, kill_switch, clock)
        events = monitor.observe_snapshot(snapshot)
    """

    def __init__(
        self,
        config: EmergencyConfig,
        kill_switch: KillSwitch,
        clock: Clock,
        depth_band: float = 0.02,
        on_breach: Optional[Callable[[RiskEvent], None]] = None,
    ):
        self.config = config
        self.kill_switch = kill_switch
        self.clock = clock
        self.depth_band = depth_band
        self.on_breach = on_breach

        self._window: dict[str, deque] = defaultdict(deque)
        self._returns: dict[str, deque] = defaultdict(lambda: deque(maxlen=BASELINE_RETURNS))
        self._errors: dict[Optional[str], deque] = defaultdict(deque)
        self.events: list[RiskEvent] = []

    def _breach(
        self,
        breach_type: BreachType,
        message: str,
        symbol: Optional[str],
        limit_value: float,
        observed_value: float,
    ) -> Optional[RiskEvent]:
        if symbol is None:
            if self.kill_switch.is_triggered:
                return None
            self.kill_switch.trigger(message)
            action = "KILL_SWITCH"
        else:
            if not self.kill_switch.halt(symbol, breach_type.value.lower()):
                return None
            action = "SYMBOL_HALTED"

        event = RiskEvent(
            ts=self.clock.now(),
            breach_type=breach_type,
            level=RiskLevel.EMERGENCY,
            message=message,
            limit_value=limit_value,
            observed_value=observed_value,
            symbol=symbol,
            action_taken=action,
        )
        self.events.append(event)
        logger.critical(f"Emergency breach {breach_type.value}: {message}")
        if self.on_breach:
            self.on_breach(event)
        return event

    def observe_snapshot(self, snapshot: MarketSnapshot) -> list[RiskEvent]:
        symbol = snapshot.symbol
        window = self._window[symbol]
        if window and snapshot.ts <= window[-1][0]:
            return []

        if window:
            prev_price = window[-1][1]
            self._returns[symbol].append(np.log(snapshot.price / prev_price))

        depth = snapshot.depth_notional(self.depth_band)
        window.append((snapshot.ts, snapshot.price, depth))
        horizon = snapshot.ts - self.config.window_s
        while window and window[0][0] < horizon:
            window.popleft()

        events = []
        high = max(p for _, p, _ in window)
        drop = (high - snapshot.price) / high if high > 0 else 0.0
        if drop >= self.config.price_drop:
            events.append(self._breach(
                BreachType.PRICE_CRASH,
                f"{symbol} dropped {drop:.1%} within {self.config.window_s:.0f}s",
                symbol, self.config.price_drop, drop,
            ))

        returns = np.asarray(self._returns[symbol])
        if len(returns) >= MIN_BASELINE + RECENT_RETURNS:
            baseline = float(np.std(returns[:-RECENT_RETURNS]))
            recent = float(np.std(returns[-RECENT_RETURNS:]))
            if baseline > 0 and recent / baseline >= self.config.volatility_spike:
                events.append(self._breach(
                    BreachType.VOLATILITY_SPIKE,
                    f"{symbol} volatility {recent / baseline:.1f}x baseline",
                    symbol, self.config.volatility_spike, recent / baseline,
                ))

        if len(window) >= 3:
            mean_depth = float(np.mean([d for _, _, d in list(window)[:-1]]))
            if mean_depth > 0:
                depth_drop = 1.0 - depth / mean_depth
                if depth_drop >= self.config.liquidity_drop:
                    events.append(self._breach(
                        BreachType.LIQUIDITY_DROP,
                        f"{symbol} book depth down {depth_drop:.0%} vs window mean",
                        symbol, self.config.liquidity_drop, depth_drop,
                    ))

        return [e for e in events if e is not None]

    def record_latency(self, latency_ms: float) -> Optional[RiskEvent]:
        if latency_ms < self.config.max_latency_ms:
            return None
        return self._breach(
            BreachType.EXCHANGE_LATENCY,
            f"Exchange latency {latency_ms:.0f}ms >= {self.config.max_latency_ms:.0f}ms",
            None, self.config.max_latency_ms, latency_ms,
        )

    def record_error(self, symbol: Optional[str] = None) -> Optional[RiskEvent]:
        now = self.clock.now()
        errors = self._errors[symbol]
        errors.append(now)
        while errors and errors[0] < now - self.config.error_window_s:
            errors.popleft()
        if len(errors) < self.config.error_threshold:
            return None
        count = len(errors)
        errors.clear()
        return self._breach(
            BreachType.ERROR_BURST,
            f"{count} errors within {self.config.error_window_s:.0f}s"
            + (f" for {symbol}" if symbol else ""),
            symbol, float(self.config.error_threshold), float(count),
        )
