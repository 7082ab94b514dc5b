"""
Decision and risk models.

Defines:
- TradeIntent: a decision to trade (immutable; produced by the Decision Engine)
- Hold: the no-trade outcome, with reasons
- RiskDecision: the Risk Gate's verdict on an intent
"""

from enum import Enum
from typing import Annotated, Optional
from uuid import uuid4

from pydantic import Field, field_validator, model_validator

from shared.models.base import BaseModel, SymbolMixin, ensure_finite


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    CLOSE = "CLOSE"


class TradeIntent(BaseModel, SymbolMixin):
    """
    Decision to trade a symbol.

    `contributions` holds w_d * score_d * confidence_d per present domain at
    decision time; the Performance Tracker attributes realized P&L from it.
    """

    intent_id: Annotated[str, Field(default_factory=lambda: f"int-{uuid4().hex[:12]}")]
    side: Side
    target_notional: Annotated[float, Field(gt=0, description="Target notional (quote currency)")]
    urgency: Annotated[float, Field(ge=0, le=1)]
    rationale: Annotated[tuple[str, ...], Field(default=())]
    confidence: Annotated[float, Field(ge=0, le=1)]
    ts: Annotated[float, Field(description="Decision time (epoch seconds)")]
    generation: Annotated[int, Field(ge=0, default=0, description="Parameter generation read")]
    score: Annotated[float, Field(ge=0, le=1, default=0.0, description="Aggregate score S")]
    contributions: Annotated[dict[str, float], Field(default_factory=dict)]

    @field_validator("ts", "target_notional")
    @classmethod
    def validate_finite(cls, v: float, info) -> float:
        return ensure_finite(v, info.field_name)

    @field_validator("contributions")
    @classmethod
    def validate_contributions(cls, v: dict[str, float]) -> dict[str, float]:
        for key, value in v.items():
            ensure_finite(value, f"contributions[{key}]")
            if value < 0:
                raise ValueError(f"contributions[{key}] must be non-negative")
        return v


class Hold(BaseModel, SymbolMixin):
    """No-trade outcome of a decision tick."""

    ts: float
    reasons: Annotated[tuple[str, ...], Field(default=())]
    score: Annotated[Optional[float], Field(default=None)]

    @property
    def reason(self) -> str:
        return self.reasons[0] if self.reasons else "hold"


class RiskOutcome(str, Enum):
    ACCEPT = "ACCEPT"
    RESIZE = "RESIZE"
    REJECT = "REJECT"


class RiskDecision(BaseModel):
    """
    Risk Gate verdict.

    RESIZE carries the adjusted notional; ACCEPT and RESIZE carry a leverage
    of at least 1. REJECT carries leverage 0.
    """

    intent_id: str
    outcome: RiskOutcome
    adjusted_notional: Annotated[Optional[float], Field(default=None, ge=0)]
    leverage: Annotated[int, Field(ge=0, default=0)]
    reasons: Annotated[tuple[str, ...], Field(default=())]

    @model_validator(mode="after")
    def validate_outcome(self) -> "RiskDecision":
        if self.outcome == RiskOutcome.RESIZE and self.adjusted_notional is None:
            raise ValueError("RESIZE requires adjusted_notional")
        if self.outcome != RiskOutcome.REJECT and self.leverage < 1:
            raise ValueError(f"{self.outcome.value} requires leverage >= 1")
        return self

    @property
    def admitted(self) -> bool:
        return self.outcome != RiskOutcome.REJECT

    def notional_for(self, intent: TradeIntent) -> float:
        """Notional to execute for `intent` under this decision."""
        if self.outcome == RiskOutcome.REJECT:
            return 0.0
        if self.adjusted_notional is not None:
            return self.adjusted_notional
        return intent.target_notional
