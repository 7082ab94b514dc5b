"""
Base models and validators for the token agent.

This module provides:
- BaseModel: Foundation for all data contracts (immutable, versioned)
- SymbolMixin: Token symbol validation
- ensure_finite / ensure_unit_interval: shared numeric validators

Conventions:
1. frozen=True; records are never mutated after publish
2. Validators inline with @field_validator / @model_validator
3. schema_version on every record
4. Annotated fields with Field descriptions
"""

import math
import re
from typing import Annotated

from pydantic import BaseModel as PydanticBaseModel, ConfigDict, Field, field_validator


class BaseModel(PydanticBaseModel):
    """
    Base model for all agent data contracts.

    Features:
    - Immutable by default (frozen=True)
    - Schema versioning for backward compatibility
    - Unknown fields rejected
    - JSON serialization support
    """

    model_config = ConfigDict(
        frozen=True,
        validate_assignment=True,
        use_enum_values=False,
        arbitrary_types_allowed=False,
        extra="forbid",
    )

    schema_version: Annotated[
        int,
        Field(
            default=1,
            ge=1,
            description="Schema version for backward compatibility and migration tracking"
        )
    ]


_SYMBOL_RE = re.compile(r"^[A-Z0-9][A-Z0-9._\-/]{0,31}$")


class SymbolMixin(PydanticBaseModel):
    """
    Mixin for models carrying a token symbol.

    Symbols are upper-case, 1-32 chars, alphanumerics plus . _ - /
    (e.g. PEPE, WIF-USDT, SOL/USDC).
    """

    symbol: Annotated[
        str,
        Field(
            min_length=1,
            max_length=32,
            description="Token symbol (upper-case)"
        )
    ]

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not _SYMBOL_RE.match(v):
            raise ValueError(f"Invalid symbol format: {v!r}")
        return v


def ensure_finite(v: float, name: str = "value") -> float:
    """Raise ValueError if v is NaN or infinite."""
    if v is None or not math.isfinite(v):
        raise ValueError(f"{name} must be finite, got {v!r}")
    return v


def ensure_unit_interval(v: float, name: str = "value") -> float:
    """Raise ValueError unless v is finite and within [0, 1]."""
    ensure_finite(v, name)
    if not 0.0 <= v <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {v}")
    return v


def clamp(v: float, lo: float, hi: float) -> float:
    """Clamp v into [lo, hi]."""
    return max(lo, min(hi, v))
