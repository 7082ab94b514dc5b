"""Emergency kill-switch with cool-off period and per-symbol halts."""

import logging
from typing import Optional

from shared.clock import Clock, SystemClock

logger = logging.getLogger(__name__)


class KillSwitch:
    """
    Emergency kill-switch with cool-off period.

    Global trigger:
    - Halts all new intents for cool_off_seconds
    - Auto-resumes after the cool-off (or manual reset)

    Symbol halts (invariant violations, emergency breaches):
    - Remain until acknowledge(symbol) by the operator
    """

    def __init__(self, cool_off_seconds: float = 900.0, clock: Optional[Clock] = None):
        self.cool_off_seconds = cool_off_seconds
        self.clock = clock or SystemClock()
        self.triggered_at: Optional[float] = None
        self.trigger_reason: Optional[str] = None
        self.is_triggered = False
        self._halted: dict[str, str] = {}

    def trigger(self, reason: str = "manual") -> None:
        """Trigger kill-switch (halt trading)."""
        self.is_triggered = True
        self.triggered_at = self.clock.now()
        self.trigger_reason = reason
        logger.critical(f"KILL-SWITCH ACTIVATED: {reason}. All new intents halted for {self.cool_off_seconds:.0f}s")

    def reset(self) -> None:
        """Manually reset kill-switch."""
        if self.is_triggered:
            logger.warning(f"Kill-switch reset. Reason was: {self.trigger_reason}")
        self.is_triggered = False
        self.triggered_at = None
        self.trigger_reason = None

    def check_can_trade(self) -> bool:
        """Check if trading is allowed."""
        if not self.is_triggered:
            return True

        # Check if cool-off expired (auto-resume)
        if self.triggered_at is not None:
            elapsed = self.clock.now() - self.triggered_at
            if elapsed >= self.cool_off_seconds:
                self.reset()
                return True

        return False

    # ------------------------------------------------------------------
    # Symbol halts
    # ------------------------------------------------------------------

    def halt(self, symbol: str, reason: str) -> bool:
        """Halt new intents for a symbol. Returns False if it was already halted."""
        if symbol in self._halted:
            return False
        self._halted[symbol] = reason
        logger.error(f"Symbol {symbol} halted: {reason} (operator acknowledgement required)")
        return True

    def acknowledge(self, symbol: str) -> bool:
        reason = self._halted.pop(symbol, None)
        if reason is not None:
            logger.warning(f"Symbol {symbol} halt acknowledged (was: {reason})")
        return reason is not None

    def is_halted(self, symbol: str) -> bool:
        return not self.check_can_trade() or symbol in self._halted

    def halted(self) -> dict[str, str]:
        return dict(self._halted)

    def restore(self, halted: dict[str, str]) -> None:
        self._halted.update(halted)
