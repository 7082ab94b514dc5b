"""
Analyzer capability interface and registry.

Every analyzer declares:
- domain: the bus domain it publishes into
- input_requirements: which feeds it reads ("market", "social")
- cadence_ms / max_staleness_ms / min_confidence / min_samples
- component_keys: keys its Assessment always contains

assess(inputs) is pure with respect to its inputs and parameters: all
feed access happens in the runner, which builds AnalyzerInputs. Returning
None is legal when inputs are insufficient or confidence < min_confidence.

Analyzers are plugged in by explicit registration, never by reflection.
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

import numpy as np

from shared.config import AnalyzerSettings
from shared.errors import DataQualityError, InvariantViolation
from shared.models import Assessment, Domain, MarketSnapshot, SocialSample

MARKET = "market"
SOCIAL = "social"

# Social platform weights
PLATFORM_WEIGHTS = {"twitter": 0.4, "reddit": 0.3, "telegram": 0.3, "news": 0.3}


@dataclass(frozen=True)
class AnalyzerInputs:
    """Everything an analyzer may read for one run."""
    symbol: str
    now: float
    market: Sequence[MarketSnapshot] = ()
    social: Sequence[SocialSample] = ()
    params: Mapping[str, float] = field(default_factory=dict)
    estimate: Optional[float] = None


class Analyzer(ABC):
    """Base class for all analyzers."""

    domain: Domain
    component_keys: tuple[str, ...] = ()
    input_requirements: frozenset = frozenset({MARKET})
    default_params: dict[str, float] = {}
    estimator_name: Optional[str] = None

    def __init__(self, settings: Optional[AnalyzerSettings] = None):
        self.settings = settings or AnalyzerSettings()
        self.params: dict[str, float] = {**self.default_params, **self.settings.params}

    @property
    def domain_name(self) -> str:
        return self.domain.value

    @property
    def cadence_ms(self) -> int:
        return self.settings.cadence_ms

    @property
    def max_staleness_ms(self) -> int:
        return self.settings.max_staleness_ms

    @property
    def min_confidence(self) -> float:
        return self.settings.min_confidence

    @property
    def min_samples(self) -> int:
        return self.settings.min_samples

    @property
    def window_s(self) -> float:
        """Input window the runner supplies (seconds)."""
        return float(self.params.get("window_s", 3_600.0))

    @abstractmethod
    def assess(self, inputs: AnalyzerInputs) -> Optional[Assessment]:
        """Score the inputs; None when insufficient or below min_confidence."""

    def features(self, inputs: AnalyzerInputs) -> Optional[np.ndarray]:
        """Feature vector for this analyzer's estimator (None = no estimator)."""
        return None

    def param(self, inputs: AnalyzerInputs, key: str) -> float:
        return float(inputs.params.get(key, self.params[key]))

    def _emit(
        self,
        inputs: AnalyzerInputs,
        score: float,
        confidence: float,
        components: Mapping[str, float],
        state: Optional[str] = None,
    ) -> Optional[Assessment]:
        """
        Validate and build the Assessment.

        Raises:
            InvariantViolation: a declared component key is missing
            DataQualityError: score, confidence or a component is not finite
        """
        missing = [k for k in self.component_keys if k not in components]
        if missing:
            raise InvariantViolation(
                f"{self.domain_name} assessment missing components {missing}", symbol=inputs.symbol
            )

        values = {k: float(v) for k, v in components.items()}
        for name, value in [("score", score), ("confidence", confidence), *values.items()]:
            if not math.isfinite(value):
                raise DataQualityError(f"{self.domain_name}: non-finite {name} for {inputs.symbol}")

        confidence = min(1.0, max(0.0, float(confidence)))
        if confidence < self.min_confidence:
            return None

        return Assessment(
            domain=self.domain,
            symbol=inputs.symbol,
            ts=inputs.now,
            score=min(1.0, max(0.0, float(score))),
            confidence=confidence,
            components=values,
            state=state,
        )


class AnalyzerRegistry:
    """
    Explicit analyzer registration (one analyzer per domain).

    Usage:
        registry = AnalyzerRegistry()
        registry.register(VolatilityAnalyzer(settings))
        for analyzer in registry:
            ...
    """

    def __init__(self):
        self._analyzers: dict[Domain, Analyzer] = {}

    def register(self, analyzer: Analyzer) -> Analyzer:
        if analyzer.domain in self._analyzers:
            raise ValueError(f"Analyzer already registered for domain {analyzer.domain.value}")
        self._analyzers[analyzer.domain] = analyzer
        return analyzer

    def unregister(self, domain: Domain) -> None:
        self._analyzers.pop(domain, None)

    def get(self, domain: Domain) -> Optional[Analyzer]:
        return self._analyzers.get(domain)

    def domains(self) -> list[Domain]:
        return list(self._analyzers)

    def __iter__(self):
        return iter(list(self._analyzers.values()))

    def __len__(self) -> int:
        return len(self._analyzers)

    def __contains__(self, domain: Domain) -> bool:
        return domain in self._analyzers
