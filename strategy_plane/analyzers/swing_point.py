"""
Swing point analyzer.

Finds confirmed swing highs/lows (scipy find_peaks with a minimum distance
and prominence), measures their strength, and predicts direction from the
pivot structure (higher highs/lows vs lower highs/lows) and breakouts.
An optional estimator P(up) is blended into the prediction.
"""

from typing import Optional

import numpy as np

from shared.models import Assessment, Domain
from strategy_plane.analyzers import indicators as ind
from strategy_plane.analyzers.base import Analyzer, AnalyzerInputs

FEATURE_RETURNS = 20


class SwingPointAnalyzer(Analyzer):
    domain = Domain.SWING
    component_keys = ("last_high", "last_low", "strength", "predicted_direction", "bias")
    default_params = {
        "pivot_lookback": 10,
        "swing_threshold": 0.015,
        "strength_threshold": 0.7,
        "window_s": 3_600.0,
    }
    estimator_name = "swing"

    def features(self, inputs: AnalyzerInputs) -> Optional[np.ndarray]:
        p = ind.prices(inputs.market)
        if len(p) < FEATURE_RETURNS + 1:
            return None
        r = ind.log_returns(p[-(FEATURE_RETURNS + 1):])
        scale = float(np.std(r)) or 1.0
        return np.concatenate([r / scale, [ind.range_position(p), ind.rsi(p) / 100.0]])

    def _structure(self, p: np.ndarray, highs: np.ndarray, lows: np.ndarray) -> float:
        """Direction from pivot structure and breakouts, in [-1, 1]."""
        vote = 0.0
        if len(highs) >= 2:
            vote += 0.5 if p[highs[-1]] > p[highs[-2]] else -0.5
        if len(lows) >= 2:
            vote += 0.5 if p[lows[-1]] > p[lows[-2]] else -0.5
        if len(highs) and p[-1] > p[highs[-1]]:
            vote += 0.5
        if len(lows) and p[-1] < p[lows[-1]]:
            vote -= 0.5
        return float(np.clip(vote, -1.0, 1.0))

    def assess(self, inputs: AnalyzerInputs) -> Optional[Assessment]:
        lookback = int(self.param(inputs, "pivot_lookback"))
        p = ind.prices(inputs.market)
        if len(p) < 2 * lookback + 1:
            return None

        threshold = self.param(inputs, "swing_threshold")
        highs, lows, high_props, low_props = ind.pivots(p, lookback, threshold)

        prominences = np.concatenate([
            high_props.get("prominences", np.zeros(0))[-2:],
            low_props.get("prominences", np.zeros(0))[-2:],
        ])
        if len(prominences):
            relative = float(prominences.mean() / p.mean())
            strength = float(np.tanh(relative / (2 * threshold)))
        else:
            strength = 0.0

        structure = self._structure(p, highs, lows)
        direction = structure
        if inputs.estimate is not None:
            direction = 0.6 * structure + 0.4 * (2 * inputs.estimate - 1)

        predicted = float(np.sign(direction)) if abs(direction) >= 0.25 else 0.0
        bias = float(np.clip(direction * max(strength, 0.3), -1.0, 1.0))

        if predicted > 0:
            state = "uptrend"
        elif predicted < 0:
            state = "downtrend"
        else:
            state = "range"

        n_pivots = len(highs) + len(lows)
        confidence = 0.4 + 0.6 * ind.coverage(n_pivots, 4)
        if strength >= self.param(inputs, "strength_threshold"):
            confidence = min(1.0, confidence + 0.1)

        return self._emit(
            inputs,
            score=(1 + bias) / 2,
            confidence=confidence,
            components={
                "last_high": float(p[highs[-1]]) if len(highs) else float(p.max()),
                "last_low": float(p[lows[-1]]) if len(lows) else float(p.min()),
                "strength": strength,
                "predicted_direction": predicted,
                "bias": bias,
            },
            state=state,
        )
