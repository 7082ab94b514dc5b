"""
Sentiment analyzer.

Lexicon polarity over social text, weighted by platform (twitter 0.4,
reddit 0.3, telegram 0.3), author weight and reach. Suppressed when fewer
than min_samples samples are available.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from shared.models import Assessment, Domain, SocialSample
from strategy_plane.analyzers import indicators as ind
from strategy_plane.analyzers import lexicon
from strategy_plane.analyzers.base import PLATFORM_WEIGHTS, SOCIAL, Analyzer, AnalyzerInputs


@dataclass
class PolarityStats:
    polarity: float
    positive_share: float
    negative_share: float
    agreement: float
    count: int


def weighted_polarity(samples: Sequence[SocialSample]) -> PolarityStats:
    """Weighted polarity statistics of a batch of samples."""
    if not samples:
        return PolarityStats(0.0, 0.0, 0.0, 0.0, 0)
    scores = np.array([lexicon.polarity(s.text)[0] for s in samples])
    weights = ind.sample_weights(samples, PLATFORM_WEIGHTS)
    total = float(weights.sum())
    if total <= 0:
        weights = np.ones(len(samples))
        total = float(len(samples))
    mean = float(np.dot(weights, scores) / total)
    spread = float(np.sqrt(np.dot(weights, (scores - mean) ** 2) / total))
    return PolarityStats(
        polarity=float(np.clip(mean, -1.0, 1.0)),
        positive_share=float(weights[scores > 0].sum() / total),
        negative_share=float(weights[scores < 0].sum() / total),
        agreement=float(np.clip(1.0 - spread, 0.0, 1.0)),
        count=len(samples),
    )


class SentimentAnalyzer(Analyzer):
    domain = Domain.SENTIMENT
    component_keys = ("polarity", "positive_share", "negative_share", "volume", "agreement")
    input_requirements = frozenset({SOCIAL})
    default_params = {
        "positive": 0.7,
        "negative": 0.3,
        "panic_share": 0.8,
        "volume_scale": 50.0,
        "window_s": 3_600.0,
    }

    def assess(self, inputs: AnalyzerInputs) -> Optional[Assessment]:
        if len(inputs.social) < max(1, self.min_samples):
            return None

        stats = weighted_polarity(inputs.social)
        score = (1 + stats.polarity) / 2
        volume = float(np.tanh(stats.count / self.param(inputs, "volume_scale")))

        if stats.negative_share >= self.param(inputs, "panic_share") and volume >= 0.3:
            state = "panic"
        elif score >= self.param(inputs, "positive"):
            state = "positive"
        elif score <= self.param(inputs, "negative"):
            state = "negative"
        else:
            state = "neutral"

        confidence = ind.coverage(stats.count, 4 * max(self.min_samples, 1)) * (0.5 + 0.5 * stats.agreement)

        return self._emit(
            inputs,
            score=score,
            confidence=confidence,
            components={
                "polarity": stats.polarity,
                "positive_share": stats.positive_share,
                "negative_share": stats.negative_share,
                "volume": volume,
                "agreement": stats.agreement,
            },
            state=state,
        )
