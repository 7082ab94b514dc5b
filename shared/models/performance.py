"""
Performance and learning models.

Defines:
- PerformanceReport: realized outcome of a closed intent with attribution
- AdjustmentDirective: bounded parameter change emitted by feedback
- ParameterGeneration: immutable snapshot of all tunable parameters
"""

import math
from enum import Enum
from typing import Annotated

from pydantic import Field, field_validator, model_validator

from shared.models.base import BaseModel, SymbolMixin, ensure_finite

ATTRIBUTION_TOLERANCE = 1e-9


class PerformanceReport(BaseModel, SymbolMixin):
    """
    Outcome of a closed intent.

    `attribution` is the normalized, non-negative share per domain (sums to
    1); `pnl_attribution` is share * realized_pnl (sums to realized_pnl).
    """

    intent_id: str
    ts: float
    realized_pnl: float
    slippage: float
    quality: Annotated[float, Field(ge=0, le=1)]
    attribution: dict[str, float] = Field(default_factory=dict)
    pnl_attribution: dict[str, float] = Field(default_factory=dict)
    retries_used: Annotated[int, Field(ge=0, default=0)]
    fill_ratio: Annotated[float, Field(ge=0, le=1, default=1.0)]
    close_index: Annotated[int, Field(ge=0, default=0)]  # 1, 2, ... for closes after a partial close

    @property
    def source_key(self) -> str:
        """Identifies this close: the intent id, suffixed for later partial closes."""
        return self.intent_id if self.close_index == 0 else f"{self.intent_id}:{self.close_index}"

    @field_validator("ts", "realized_pnl", "slippage")
    @classmethod
    def validate_finite(cls, v: float, info) -> float:
        return ensure_finite(v, info.field_name)

    @model_validator(mode="after")
    def validate_attribution(self) -> "PerformanceReport":
        if self.attribution:
            if any(w < 0 or not math.isfinite(w) for w in self.attribution.values()):
                raise ValueError("attribution weights must be finite and non-negative")
            total = sum(self.attribution.values())
            if abs(total - 1.0) > ATTRIBUTION_TOLERANCE:
                raise ValueError(f"attribution must sum to 1, got {total}")
        return self


class DirectiveTarget(str, Enum):
    ANALYZER = "analyzer"
    RISK = "risk"
    PLANNER = "planner"


class AdjustmentDirective(BaseModel):
    """
    Bounded parameter adjustment.

    The Learner applies `delta` to parameter `key` of `target` and clamps the
    result into `clamp`. `directive_id` is used to drop replays.
    """

    directive_id: str
    target: DirectiveTarget
    key: str
    delta: float
    clamp: tuple[float, float]
    reason: str = ""

    @field_validator("delta")
    @classmethod
    def validate_delta(cls, v: float) -> float:
        return ensure_finite(v, "delta")

    @model_validator(mode="after")
    def validate_clamp(self) -> "AdjustmentDirective":
        lo, hi = self.clamp
        if not (math.isfinite(lo) and math.isfinite(hi)) or lo > hi:
            raise ValueError(f"invalid clamp {self.clamp}")
        return self


class ParameterGeneration(BaseModel):
    """
    Atomically-published snapshot of all tunable parameters.

    weights: Decision Engine domain weights (target=analyzer)
    risk: tunable risk limits (single_asset_limit, L_max, ...)
    planner: execution policy (urgency_scale, slice_factor, ...)
    """

    generation: Annotated[int, Field(ge=0)]
    created_ts: float
    weights: dict[str, float] = Field(default_factory=dict)
    risk: dict[str, float] = Field(default_factory=dict)
    planner: dict[str, float] = Field(default_factory=dict)
    applied_directives: tuple[str, ...] = ()

    def section(self, target: DirectiveTarget) -> dict[str, float]:
        if target == DirectiveTarget.ANALYZER:
            return self.weights
        if target == DirectiveTarget.RISK:
            return self.risk
        return self.planner

    def weight(self, domain: str, default: float = 1.0) -> float:
        return self.weights.get(domain, default)
