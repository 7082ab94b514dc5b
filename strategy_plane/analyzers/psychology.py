"""
Market psychology analyzer.

Reads the crowd from the tape and the social stream:
- optimism: social tone blended with price momentum
- herd_strength: how unanimous and how concentrated in time the crowd is
- capitulation: falling prices on heavy volume with negative tone
- euphoria_score: rising prices with unanimous positive tone

States: panic <= 0.1 < fearful <= 0.25 < neutral < 0.75 <= optimistic < 0.9 <= euphoria
"""

from typing import Optional

import numpy as np

from shared.models import Assessment, Domain
from strategy_plane.analyzers import indicators as ind
from strategy_plane.analyzers.base import MARKET, SOCIAL, Analyzer, AnalyzerInputs
from strategy_plane.analyzers.sentiment import weighted_polarity


def psychology_state(score: float) -> str:
    if score <= 0.1:
        return "panic"
    if score <= 0.25:
        return "fearful"
    if score < 0.75:
        return "neutral"
    if score < 0.9:
        return "optimistic"
    return "euphoria"


class PsychologyAnalyzer(Analyzer):
    domain = Domain.PSYCHOLOGY
    component_keys = ("optimism", "herd_strength", "capitulation", "euphoria_score")
    input_requirements = frozenset({MARKET, SOCIAL})
    default_params = {
        "herd_strong": 0.8,
        "min_points": 10,
        "momentum_scale": 0.05,
        "window_s": 3_600.0,
    }

    def assess(self, inputs: AnalyzerInputs) -> Optional[Assessment]:
        samples = list(inputs.social)
        if len(samples) < max(1, self.min_samples):
            return None
        if len(inputs.market) < int(self.param(inputs, "min_points")):
            return None

        p = ind.prices(inputs.market)
        v = ind.volumes(inputs.market)
        momentum = ind.signed_squash(ind.window_return(p), self.param(inputs, "momentum_scale"))
        stats = weighted_polarity(samples)

        recent_cut = inputs.now - self.window_s / 4
        concentration = sum(1 for s in samples if s.ts >= recent_cut) / len(samples)
        herd = float(np.clip(stats.agreement * (0.5 + 0.5 * concentration) * (0.5 + 0.5 * abs(stats.polarity)) * 1.5, 0.0, 1.0))

        mean_v = float(v.mean()) if len(v) else 0.0
        surge = float(np.clip(v[-1] / mean_v - 1.0, 0.0, 1.0)) if mean_v > 0 else 0.0
        capitulation = float(np.clip(max(0.0, -momentum) * (0.5 + 0.5 * surge) * (0.5 + stats.negative_share), 0.0, 1.0))
        euphoria = float(np.clip(max(0.0, momentum) * stats.positive_share * (0.5 + herd), 0.0, 1.0))

        optimism = float(np.clip(0.6 * (1 + stats.polarity) / 2 + 0.4 * (1 + momentum) / 2, 0.0, 1.0))
        score = float(np.clip(0.7 * optimism + 0.3 * (0.5 + 0.5 * (euphoria - capitulation)), 0.0, 1.0))

        state = psychology_state(score)
        if capitulation >= 0.8 and herd >= self.param(inputs, "herd_strong"):
            state = "panic"

        confidence = ind.coverage(len(samples), 4 * max(self.min_samples, 1)) * (0.5 + 0.5 * stats.agreement)

        return self._emit(
            inputs,
            score=score,
            confidence=confidence,
            components={
                "optimism": optimism,
                "herd_strength": herd,
                "capitulation": capitulation,
                "euphoria_score": euphoria,
            },
            state=state,
        )
