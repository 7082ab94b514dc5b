"""
Emotion analyzer.

Measures the weighted share of samples expressing fear, greed, euphoria
and anger. Fear at or above the panic threshold (0.9) sets state `panic`.
"""

from typing import Optional

import numpy as np

from shared.models import Assessment, Domain
from strategy_plane.analyzers import indicators as ind
from strategy_plane.analyzers import lexicon
from strategy_plane.analyzers.base import PLATFORM_WEIGHTS, SOCIAL, Analyzer, AnalyzerInputs

EMOTION_NAMES = ("fear", "greed", "euphoria", "anger")


class EmotionAnalyzer(Analyzer):
    domain = Domain.EMOTION
    component_keys = (*EMOTION_NAMES, "dominant_intensity")
    input_requirements = frozenset({SOCIAL})
    default_params = {
        "panic": 0.9,
        "dominance_floor": 0.4,
        "window_s": 3_600.0,
    }

    def assess(self, inputs: AnalyzerInputs) -> Optional[Assessment]:
        samples = list(inputs.social)
        if len(samples) < max(1, self.min_samples):
            return None

        weights = ind.sample_weights(samples, PLATFORM_WEIGHTS)
        total = float(weights.sum()) or 1.0
        hits = [lexicon.emotion_hits(s.text) for s in samples]

        intensities = {}
        for name in EMOTION_NAMES:
            present = np.array([1.0 if h[name] > 0 else 0.0 for h in hits])
            intensities[name] = float(np.dot(weights, present) / total)

        dominant = max(EMOTION_NAMES, key=lambda n: intensities[n])
        dominant_intensity = intensities[dominant]

        if intensities["fear"] >= self.param(inputs, "panic"):
            state = "panic"
        elif dominant_intensity >= self.param(inputs, "dominance_floor"):
            state = dominant
        else:
            state = "calm"

        positive = (intensities["greed"] + intensities["euphoria"]) / 2
        negative = (intensities["fear"] + intensities["anger"]) / 2
        score = float(np.clip(0.5 + 0.5 * (positive - negative), 0.0, 1.0))

        # Emotional texts are a subset of samples; sparse hits lower confidence
        expressive = sum(1 for h in hits if any(h.values())) / len(samples)
        confidence = ind.coverage(len(samples), 4 * max(self.min_samples, 1)) * (0.4 + 0.6 * expressive)

        return self._emit(
            inputs,
            score=score,
            confidence=confidence,
            components={**intensities, "dominant_intensity": dominant_intensity},
            state=state,
        )
