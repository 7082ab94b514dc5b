"""
Assessment models.

An Assessment is one analyzer's time-stamped scored opinion about a symbol
in its domain. A FusedView is the set of latest, non-stale Assessments per
domain for a symbol at a decision tick; missing domains are explicit.
"""

from enum import Enum
from typing import Annotated, Optional

from pydantic import Field, field_validator

from shared.models.base import BaseModel, SymbolMixin, ensure_finite, ensure_unit_interval


class Domain(str, Enum):
    """Analyzer domains."""
    ACCUMULATION = "accumulation"
    BUYING_PRESSURE = "buying_pressure"
    VOLATILITY = "volatility"
    SWING = "swing"
    CATALYST = "catalyst"
    SENTIMENT = "sentiment"
    EMOTION = "emotion"
    FEAR_GREED = "fear_greed"
    PSYCHOLOGY = "psychology"


# Domains that contribute a signed `bias` component to the directional vote
DIRECTIONAL_DOMAINS = (
    Domain.ACCUMULATION,
    Domain.SWING,
    Domain.BUYING_PRESSURE,
    Domain.CATALYST,
)

# Text/crowd driven domains (min_samples gate, panic veto)
SENTIMENT_FAMILY = (
    Domain.SENTIMENT,
    Domain.EMOTION,
    Domain.FEAR_GREED,
    Domain.PSYCHOLOGY,
)


class Assessment(BaseModel, SymbolMixin):
    """
    Scored opinion of one analyzer.

    Example:
        Assessment(
            domain=Domain.VOLATILITY,
            symbol='PEPE',
            ts=1700000000.0,
            score=0.31,
            confidence=0.9,
            components={'intensity': 0.31, 'stability': 0.8, ...},
            state='low',
        )
    """

    domain: Domain
    ts: Annotated[float, Field(description="Assessment time (epoch seconds)")]
    score: Annotated[float, Field(description="Domain score in [0, 1]")]
    confidence: Annotated[float, Field(description="Confidence in [0, 1]")]
    components: Annotated[
        dict[str, float],
        Field(default_factory=dict, description="Named sub-scores declared by the analyzer")
    ]
    state: Annotated[
        Optional[str],
        Field(default=None, max_length=64, description="Domain state label (band, phase, ...)")
    ]

    @field_validator("ts")
    @classmethod
    def validate_ts(cls, v: float) -> float:
        return ensure_finite(v, "ts")

    @field_validator("score", "confidence")
    @classmethod
    def validate_unit(cls, v: float, info) -> float:
        return ensure_unit_interval(v, info.field_name)

    @field_validator("components")
    @classmethod
    def validate_components(cls, v: dict[str, float]) -> dict[str, float]:
        for key, value in v.items():
            ensure_finite(value, f"components[{key}]")
        return v

    def component(self, key: str, default: float = 0.0) -> float:
        return self.components.get(key, default)

    @property
    def bias(self) -> float:
        """Signed directional bias in [-1, 1] (0 for non-directional domains)."""
        return max(-1.0, min(1.0, self.components.get("bias", 0.0)))


class FusedView(BaseModel, SymbolMixin):
    """
    Latest non-stale Assessment per required domain.

    `present` maps domain -> Assessment; `absent` lists required domains that
    were missing or stale. Absent domains never count as zero.
    """

    ts: Annotated[float, Field(description="Decision tick time")]
    generation: Annotated[int, Field(ge=0, description="Parameter generation used for the read")]
    present: Annotated[dict[Domain, Assessment], Field(default_factory=dict)]
    absent: Annotated[frozenset[Domain], Field(default_factory=frozenset)]

    def get(self, domain: Domain) -> Optional[Assessment]:
        return self.present.get(domain)

    def __contains__(self, domain: Domain) -> bool:
        return domain in self.present

    @property
    def count(self) -> int:
        return len(self.present)
