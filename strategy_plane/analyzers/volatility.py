"""
Volatility analyzer.

Intensity blends realized volatility of log returns with the recent ATR
expansion; stability is the inverse of volatility-of-volatility. Intensity
above the configured ceiling sets `ceiling_exceeded`, which the Decision
Engine treats as a hard block on BUY intents.
"""

from typing import Optional

import numpy as np

from shared.models import Assessment, Domain
from strategy_plane.analyzers import indicators as ind
from strategy_plane.analyzers.base import Analyzer, AnalyzerInputs

# Intensity bands
BANDS = (
    ("extreme", 0.9),
    ("high", 0.75),
    ("moderate", 0.5),
)


def intensity_band(intensity: float) -> str:
    for name, floor in BANDS:
        if intensity >= floor:
            return name
    return "low"


class VolatilityAnalyzer(Analyzer):
    domain = Domain.VOLATILITY
    component_keys = ("intensity", "stability", "realized_vol", "atr_ratio", "ceiling_exceeded")
    default_params = {
        "ceiling": 0.8,
        "min_points": 20,
        "vol_scale": 0.01,
        "window_s": 1_800.0,
    }

    def assess(self, inputs: AnalyzerInputs) -> Optional[Assessment]:
        min_points = int(self.param(inputs, "min_points"))
        if len(inputs.market) < min_points:
            return None

        returns = ind.log_returns(ind.prices(inputs.market))
        realized = ind.realized_vol(returns)
        atr = ind.atr_ratio(returns)
        stability = float(np.clip(1.0 - ind.vol_of_vol(returns), 0.0, 1.0))

        base = float(np.tanh(realized / self.param(inputs, "vol_scale")))
        intensity = float(np.clip(base * (0.75 + 0.25 * min(atr, 2.0)), 0.0, 1.0))
        ceiling = self.param(inputs, "ceiling")

        confidence = ind.coverage(len(returns), 2 * min_points) * (0.6 + 0.4 * stability)

        return self._emit(
            inputs,
            score=intensity,
            confidence=confidence,
            components={
                "intensity": intensity,
                "stability": stability,
                "realized_vol": realized,
                "atr_ratio": atr,
                "ceiling_exceeded": 1.0 if intensity > ceiling else 0.0,
            },
            state=intensity_band(intensity),
        )
