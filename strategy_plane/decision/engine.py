"""
Decision Engine.

decide(symbol) -> TradeIntent | Hold

Per tick:
1. FusedView from the bus (stale domains absent)
2. Quorum of present domains
3. Aggregate S = sum(w*s*c) / sum(w*c) with weights from the current
   parameter generation
4. Directional bias from accumulation, swing, buying_pressure, catalyst
5. Open position: CLOSE when the side flips or S < hold_threshold
6. Vetoes: volatility ceiling (ahead of the bias check), extreme fear
   (BUY), extreme greed (BUY), sentiment panic
7. S >= enter_threshold => BUY / SELL sized by base_size * S * urgency;
   a non-positive notional holds

Policy outcomes are Holds with reasons, never exceptions.
"""

import logging
from enum import Enum
from typing import Optional, Protocol, Union

from data_plane.bus.assessment_bus import AssessmentBus
from shared.clock import Clock
from shared.config import AgentConfig
from shared.metrics import AgentMetrics
from shared.models import (
    DIRECTIONAL_DOMAINS,
    SENTIMENT_FAMILY,
    Domain,
    FusedView,
    Hold,
    ParameterGeneration,
    Position,
    Side,
    TradeIntent,
)

logger = logging.getLogger(__name__)


class HoldReason(str, Enum):
    SYMBOL_HALTED = "symbol_halted"
    INSUFFICIENT_SIGNALS = "insufficient_signals"
    ZERO_WEIGHT = "zero_weight"
    NO_DIRECTIONAL_BIAS = "no_directional_bias"
    BIAS_TIE = "bias_tie"
    VOLATILITY_CEILING = "volatility_ceiling"
    EXTREME_FEAR = "extreme_fear"
    EXTREME_GREED = "extreme_greed"
    SENTIMENT_PANIC = "sentiment_panic"
    BELOW_ENTER_THRESHOLD = "below_enter_threshold"
    BELOW_MIN_NOTIONAL = "below_min_notional"


class ParameterSource(Protocol):
    def current(self) -> ParameterGeneration: ...


class PositionSource(Protocol):
    def get(self, symbol: str) -> Position: ...


class HaltSource(Protocol):
    def is_halted(self, symbol: str) -> bool: ...


class DecisionEngine:
    """
    Fuses the latest Assessments into a trade decision.

    Example:
        engine = DecisionEngine(bus, register, config, clock)
        outcome = engine.decide("PEPE")
        if isinstance(outcome, TradeIntent):
            ...
    """

    def __init__(
        self,
        bus: AssessmentBus,
        params: ParameterSource,
        config: Optional[AgentConfig] = None,
        clock: Optional[Clock] = None,
        positions: Optional[PositionSource] = None,
        halts: Optional[HaltSource] = None,
        metrics: Optional[AgentMetrics] = None,
    ):
        self.bus = bus
        self.params = params
        self.config = config or AgentConfig()
        self.clock = clock
        self.positions = positions
        self.halts = halts
        self.metrics = metrics
        self.cfg = self.config.decision
        self.last_view: dict[str, FusedView] = {}

    def _now(self) -> float:
        return self.clock.now() if self.clock else 0.0

    # ------------------------------------------------------------------
    # Fusion
    # ------------------------------------------------------------------

    def fuse(self, symbol: str, now: float, generation: ParameterGeneration) -> FusedView:
        """Latest non-stale Assessment per required domain."""
        required = list(self.cfg.required_domains)
        latest = self.bus.snapshot(symbol, required)
        present = {}
        for domain, assessment in latest.items():
            if now - assessment.ts <= self.config.max_staleness_s(domain):
                present[domain] = assessment
        absent = frozenset(d for d in required if d not in present)
        return FusedView(symbol=symbol, ts=now, generation=generation.generation, present=present, absent=absent)

    @staticmethod
    def aggregate(view: FusedView, generation: ParameterGeneration) -> tuple[Optional[float], dict[str, float], float]:
        """
        Weighted aggregate score.

        Returns:
            (S or None when sum(w*c) == 0, contributions w*s*c per domain,
             weighted mean confidence)
        """
        num = den = weight_sum = 0.0
        contributions = {}
        for domain, a in view.present.items():
            w = generation.weight(domain.value)
            contributions[domain.value] = w * a.score * a.confidence
            num += w * a.score * a.confidence
            den += w * a.confidence
            weight_sum += w
        if den <= 0:
            return None, contributions, 0.0
        confidence = den / weight_sum if weight_sum > 0 else 0.0
        return min(1.0, max(0.0, num / den)), contributions, min(1.0, confidence)

    def direction(self, view: FusedView, generation: ParameterGeneration) -> tuple[Optional[Side], Optional[HoldReason]]:
        """
        Directional vote from the bias components.

        A side passes when its pressure reaches bias_threshold; if both
        pass, the side with the higher summed confidence wins.
        """
        long_pressure = short_pressure = 0.0
        long_conf = short_conf = 0.0
        for domain in DIRECTIONAL_DOMAINS:
            a = view.get(domain)
            if a is None:
                continue
            w = generation.weight(domain.value)
            bias = a.bias
            if bias > 0:
                long_pressure += w * a.confidence * bias
                long_conf += a.confidence
            elif bias < 0:
                short_pressure += w * a.confidence * -bias
                short_conf += a.confidence

        long_ok = long_pressure >= self.cfg.bias_threshold
        short_ok = short_pressure >= self.cfg.bias_threshold
        if long_ok and short_ok:
            if long_conf == short_conf:
                return None, HoldReason.BIAS_TIE
            return (Side.BUY if long_conf > short_conf else Side.SELL), None
        if long_ok:
            return Side.BUY, None
        if short_ok:
            return Side.SELL, None
        return None, HoldReason.NO_DIRECTIONAL_BIAS

    def volatility_blocked(self, view: FusedView) -> bool:
        vol = view.get(Domain.VOLATILITY)
        if vol is None:
            return False
        intensity = vol.component("intensity", vol.score)
        return intensity > self.cfg.volatility_ceiling or vol.component("ceiling_exceeded") >= 1

    def veto(self, view: FusedView, side: Side) -> Optional[HoldReason]:
        if self.volatility_blocked(view):
            return HoldReason.VOLATILITY_CEILING

        fg = view.get(Domain.FEAR_GREED)
        if fg is not None and side == Side.BUY:
            if fg.state == "extreme_fear":
                return HoldReason.EXTREME_FEAR
            if fg.state == "extreme_greed":
                return HoldReason.EXTREME_GREED

        for domain in SENTIMENT_FAMILY:
            a = view.get(domain)
            if a is not None and a.state == "panic":
                return HoldReason.SENTIMENT_PANIC
        return None

    @staticmethod
    def urgency(view: FusedView) -> float:
        catalyst = view.get(Domain.CATALYST)
        if catalyst is None:
            return 0.5
        return min(1.0, max(0.0, catalyst.component("short_term", 0.5)))

    # ------------------------------------------------------------------
    # Decide
    # ------------------------------------------------------------------

    def _hold(self, symbol: str, now: float, reason: HoldReason, score: Optional[float] = None) -> Hold:
        if self.metrics:
            self.metrics.inc("decisions", outcome="HOLD", reason=reason.value)
        logger.debug(f"Hold {symbol}: {reason.value} (S={score})")
        return Hold(symbol=symbol, ts=now, reasons=(reason.value,), score=score)

    def decide(self, symbol: str) -> Union[TradeIntent, Hold]:
        now = self._now()
        generation = self.params.current()

        if self.halts is not None and self.halts.is_halted(symbol):
            return self._hold(symbol, now, HoldReason.SYMBOL_HALTED)

        view = self.fuse(symbol, now, generation)
        self.last_view[symbol] = view

        if view.count < self.cfg.quorum:
            return self._hold(symbol, now, HoldReason.INSUFFICIENT_SIGNALS)

        score, contributions, confidence = self.aggregate(view, generation)
        if score is None:
            return self._hold(symbol, now, HoldReason.ZERO_WEIGHT)

        side, no_side = self.direction(view, generation)
        urgency = self.urgency(view)

        position = self.positions.get(symbol) if self.positions is not None else None
        if position is not None and not position.is_flat:
            flipped = side is not None and side != position.direction
            if (flipped or score < self.cfg.hold_threshold) and position.notional > 0:
                reason = "side_flip" if flipped else "below_hold_threshold"
                return self._intent(
                    symbol, now, Side.CLOSE, position.notional, urgency, score, confidence,
                    contributions, generation, (reason, f"S={score:.3f}"),
                )

        # Side-independent veto, reported ahead of a missing bias
        if self.volatility_blocked(view):
            logger.info(f"Decision veto {symbol}: volatility_ceiling (S={score:.3f})")
            return self._hold(symbol, now, HoldReason.VOLATILITY_CEILING, score)

        if side is None:
            return self._hold(symbol, now, no_side, score)

        vetoed = self.veto(view, side)
        if vetoed is not None:
            logger.info(f"Decision veto {symbol} {side.value}: {vetoed.value} (S={score:.3f})")
            return self._hold(symbol, now, vetoed, score)

        if score < self.cfg.enter_threshold:
            return self._hold(symbol, now, HoldReason.BELOW_ENTER_THRESHOLD, score)

        multiplier = 1 + self.cfg.urgency_gain * (urgency - 0.5) * 2
        notional = self.cfg.base_size * score * multiplier
        if notional <= 0:
            return self._hold(symbol, now, HoldReason.BELOW_MIN_NOTIONAL, score)
        rationale = (f"S={score:.3f}", f"bias={side.value}") + tuple(
            f"{d.value}:{a.state}" for d, a in view.present.items() if a.state
        )
        return self._intent(
            symbol, now, side, notional, urgency, score, confidence, contributions, generation, rationale,
        )

    def _intent(
        self,
        symbol: str,
        now: float,
        side: Side,
        notional: float,
        urgency: float,
        score: float,
        confidence: float,
        contributions: dict[str, float],
        generation: ParameterGeneration,
        rationale: tuple[str, ...],
    ) -> TradeIntent:
        intent = TradeIntent(
            symbol=symbol,
            side=side,
            target_notional=notional,
            urgency=urgency,
            rationale=rationale,
            confidence=confidence,
            ts=now,
            generation=generation.generation,
            score=score,
            contributions=contributions,
        )
        if self.metrics:
            self.metrics.inc("decisions", outcome=side.value, reason=rationale[0] if side == Side.CLOSE else "enter")
        logger.info(
            f"Intent {intent.intent_id}: {side.value} {symbol} notional={notional:.2f} "
            f"S={score:.3f} urgency={urgency:.2f}"
        )
        return intent
