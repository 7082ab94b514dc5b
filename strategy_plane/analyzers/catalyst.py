"""
Catalyst analyzer.

Combines three signal groups into a short/medium/long-term impact tuple:
- technical: window momentum, RSI and volume surge
- fundamental: funding rate (crowding) and hourly volume growth
- social: mention velocity and lexicon polarity

The short-term impact doubles as the Decision Engine's urgency.
"""

from typing import Optional

import numpy as np

from shared.models import Assessment, Domain
from strategy_plane.analyzers import indicators as ind
from strategy_plane.analyzers import lexicon
from strategy_plane.analyzers.base import MARKET, SOCIAL, Analyzer, AnalyzerInputs

# Horizon weights over (technical, fundamental, social)
HORIZON_WEIGHTS = {
    "short_term": (0.5, 0.1, 0.4),
    "medium_term": (0.4, 0.3, 0.3),
    "long_term": (0.2, 0.6, 0.2),
}


class CatalystAnalyzer(Analyzer):
    domain = Domain.CATALYST
    component_keys = ("short_term", "medium_term", "long_term", "technical", "fundamental", "social", "bias")
    input_requirements = frozenset({MARKET, SOCIAL})
    default_params = {
        "min_points": 10,
        "momentum_scale": 0.03,
        "funding_scale": 0.0005,
        "window_s": 3_600.0,
    }

    def _technical(self, inputs: AnalyzerInputs) -> float:
        p = ind.prices(inputs.market)
        v = ind.volumes(inputs.market)
        momentum = ind.signed_squash(ind.window_return(p), self.param(inputs, "momentum_scale"))
        rsi_tilt = (ind.rsi(p) - 50.0) / 50.0
        mean_v = float(v.mean()) if len(v) else 0.0
        surge = float(np.tanh(v[-1] / mean_v - 1.0)) if mean_v > 0 else 0.0
        # A volume surge amplifies whichever way price is moving
        return float(np.clip(0.6 * momentum + 0.2 * rsi_tilt + 0.2 * surge * np.sign(momentum), -1.0, 1.0))

    def _fundamental(self, inputs: AnalyzerInputs) -> float:
        latest = inputs.market[-1]
        # Crowded longs (high positive funding) are a headwind
        funding = -ind.signed_squash(latest.funding_rate, self.param(inputs, "funding_scale"))
        first_h = inputs.market[0].volume_1h
        growth = ind.signed_squash(latest.volume_1h / first_h - 1.0) if first_h > 0 else 0.0
        return float(np.clip(0.5 * funding + 0.5 * growth, -1.0, 1.0))

    def _social(self, inputs: AnalyzerInputs) -> tuple[float, int]:
        samples = list(inputs.social)
        if not samples:
            return 0.0, 0
        mid_ts = inputs.now - self.window_s / 2
        recent = sum(1 for s in samples if s.ts >= mid_ts)
        earlier = len(samples) - recent
        velocity = float(np.tanh((recent - earlier) / max(earlier, 1)))
        polarities = [lexicon.polarity(s.text)[0] for s in samples]
        tone = float(np.mean(polarities))
        # Attention amplifies the prevailing tone
        return float(np.clip(tone * (1.0 + 0.5 * max(velocity, 0.0)), -1.0, 1.0)), len(samples)

    def assess(self, inputs: AnalyzerInputs) -> Optional[Assessment]:
        if len(inputs.market) < int(self.param(inputs, "min_points")):
            return None

        technical = self._technical(inputs)
        fundamental = self._fundamental(inputs)
        social, n_social = self._social(inputs)
        groups = np.array([technical, fundamental, social])

        impacts = {}
        for horizon, weights in HORIZON_WEIGHTS.items():
            impacts[horizon] = float(np.clip(abs(np.dot(weights, groups)), 0.0, 1.0))

        bias = float(np.clip(np.dot((0.5, 0.2, 0.3), groups), -1.0, 1.0))

        if bias > 0.2:
            state = "bullish"
        elif bias < -0.2:
            state = "bearish"
        else:
            state = "neutral"

        confidence = 0.5 * ind.coverage(len(inputs.market), 3 * self.param(inputs, "min_points"))
        confidence += 0.5 * ind.coverage(n_social, 10)

        return self._emit(
            inputs,
            score=(1 + bias) / 2,
            confidence=confidence,
            components={**impacts, "technical": technical, "fundamental": fundamental, "social": social, "bias": bias},
            state=state,
        )
