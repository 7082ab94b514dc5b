"""
Accumulation/Distribution analyzer.

Classifies the price-volume history into a Wyckoff-style phase:
accumulation_A..E, markup, distribution_A..C, markdown.

- Trend of price decides markup/markdown versus a trading range
- Inside a range, the on-balance-volume slope separates accumulation
  (smart money absorbing supply) from distribution
- The sub-phase follows range compression and where price sits in the range
"""

from typing import Optional

import numpy as np

from shared.models import Assessment, Domain
from strategy_plane.analyzers import indicators as ind
from strategy_plane.analyzers.base import Analyzer, AnalyzerInputs

BULLISH_PHASES = {
    "accumulation_A": 0.2,
    "accumulation_B": 0.35,
    "accumulation_C": 0.5,
    "accumulation_D": 0.75,
    "accumulation_E": 0.9,
    "markup": 1.0,
}
BEARISH_PHASES = {
    "distribution_A": 0.4,
    "distribution_B": 0.6,
    "distribution_C": 0.8,
    "markdown": 1.0,
}


class AccumulationAnalyzer(Analyzer):
    domain = Domain.ACCUMULATION
    component_keys = ("intensity", "sustainability", "obv_slope", "range_compression", "bias")
    default_params = {
        "min_phase_length": 30,
        "trend_threshold": 0.02,
        "window_s": 3_600.0,
    }
    estimator_name = "accumulation"

    def _phase(self, trend: float, obv_slope: float, compression: float, position: float, threshold: float) -> str:
        if trend > threshold and obv_slope > 0:
            return "markup"
        if trend < -threshold and obv_slope < 0:
            return "markdown"
        if obv_slope >= 0:
            if position > 0.85 and compression > 0.5:
                return "accumulation_E"
            if position > 0.6:
                return "accumulation_D"
            if position < 0.2:
                return "accumulation_C"  # spring / test of the lows
            return "accumulation_B" if compression > 0.4 else "accumulation_A"
        if position > 0.7:
            return "distribution_A"
        if position < 0.3:
            return "distribution_C"
        return "distribution_B"

    def features(self, inputs: AnalyzerInputs) -> Optional[np.ndarray]:
        p = ind.prices(inputs.market)
        if len(p) < int(self.param(inputs, "min_phase_length")):
            return None
        v = ind.volumes(inputs.market)
        obv_slope, obv_r2 = ind.normalized_slope(ind.obv(p, v))
        trend, trend_r2 = ind.normalized_slope(p)
        return np.array([
            ind.signed_squash(obv_slope),
            obv_r2,
            ind.signed_squash(trend, 0.05),
            trend_r2,
            ind.range_compression(p),
            ind.range_position(p),
        ])

    def assess(self, inputs: AnalyzerInputs) -> Optional[Assessment]:
        min_len = int(self.param(inputs, "min_phase_length"))
        if len(inputs.market) < min_len:
            return None

        p = ind.prices(inputs.market)
        v = ind.volumes(inputs.market)
        obv_slope, obv_r2 = ind.normalized_slope(ind.obv(p, v))
        trend, _ = ind.normalized_slope(p)
        compression = ind.range_compression(p)
        position = ind.range_position(p)

        phase = self._phase(trend, obv_slope, compression, position, self.param(inputs, "trend_threshold"))
        intensity = float(np.clip(abs(ind.signed_squash(obv_slope)), 0.0, 1.0))
        sustainability = float(np.clip(obv_r2 * (0.5 + 0.5 * compression), 0.0, 1.0))

        if phase in BULLISH_PHASES:
            bias = BULLISH_PHASES[phase] * max(intensity, 0.2)
        else:
            bias = -BEARISH_PHASES[phase] * max(intensity, 0.2)

        if inputs.estimate is not None:
            # Estimator P(accumulation continues up) nudges the bias
            bias = 0.7 * bias + 0.3 * (2 * inputs.estimate - 1)
        bias = float(np.clip(bias, -1.0, 1.0))

        confidence = ind.coverage(len(p), 2 * min_len) * (0.5 + 0.5 * obv_r2)

        return self._emit(
            inputs,
            score=(1 + bias) / 2,
            confidence=confidence,
            components={
                "intensity": intensity,
                "sustainability": sustainability,
                "obv_slope": obv_slope,
                "range_compression": compression,
                "bias": bias,
            },
            state=phase,
        )
