"""
Fear & Greed index.

Four equally weighted components, each in [0, 1] with high = greed:
- volatility: calm markets read as greed, turbulent ones as fear
- momentum: window return
- dominance: buy share of aggressor notional
- sentiment: weighted social polarity

Bands: extreme_fear <= 0.1 < fear <= 0.3 < neutral < 0.7 <= greed < 0.9 <= extreme_greed
"""

from typing import Optional

import numpy as np

from shared.models import Assessment, Domain
from strategy_plane.analyzers import indicators as ind
from strategy_plane.analyzers.base import MARKET, SOCIAL, Analyzer, AnalyzerInputs
from strategy_plane.analyzers.sentiment import weighted_polarity

COMPONENT_WEIGHTS = {
    "volatility": 0.25,
    "momentum": 0.25,
    "dominance": 0.25,
    "sentiment": 0.25,
}


def fear_greed_band(index: float) -> str:
    if index <= 0.1:
        return "extreme_fear"
    if index <= 0.3:
        return "fear"
    if index < 0.7:
        return "neutral"
    if index < 0.9:
        return "greed"
    return "extreme_greed"


class FearGreedAnalyzer(Analyzer):
    domain = Domain.FEAR_GREED
    component_keys = (*COMPONENT_WEIGHTS, "index")
    input_requirements = frozenset({MARKET, SOCIAL})
    default_params = {
        "min_points": 20,
        "vol_scale": 0.01,
        "momentum_scale": 0.05,
        "window_s": 3_600.0,
    }

    def assess(self, inputs: AnalyzerInputs) -> Optional[Assessment]:
        if len(inputs.social) < max(1, self.min_samples):
            return None
        if len(inputs.market) < int(self.param(inputs, "min_points")):
            return None

        p = ind.prices(inputs.market)
        returns = ind.log_returns(p)
        vol_intensity = float(np.tanh(ind.realized_vol(returns) / self.param(inputs, "vol_scale")))

        buy, sell = ind.flow_split(ind.trades(inputs.market))
        stats = weighted_polarity(inputs.social)

        components = {
            "volatility": 1.0 - vol_intensity,
            "momentum": ind.squash(ind.window_return(p), self.param(inputs, "momentum_scale")),
            "dominance": buy / (buy + sell) if buy + sell > 0 else 0.5,
            "sentiment": (1 + stats.polarity) / 2,
        }
        index = float(np.clip(sum(COMPONENT_WEIGHTS[k] * v for k, v in components.items()), 0.0, 1.0))
        components["index"] = index

        confidence = 0.5 * ind.coverage(len(returns), 60) + 0.5 * ind.coverage(stats.count, 4 * max(self.min_samples, 1))

        return self._emit(inputs, score=index, confidence=confidence, components=components, state=fear_greed_band(index))
