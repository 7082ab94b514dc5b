"""
Risk event models for the token agent.

A RiskEvent is recorded whenever the Risk Gate resizes or rejects an intent
on a cap, the drawdown brake engages, the emergency monitor halts a symbol,
or an invariant violation halts one. The orchestrator writes each as a
RISK_BREACH event.
"""

from enum import Enum
from typing import Annotated, Optional

from pydantic import Field

from shared.models.base import BaseModel


class BreachType(str, Enum):
    POSITION_LIMIT = "POSITION_LIMIT"
    CATEGORY_LIMIT = "CATEGORY_LIMIT"
    PLATFORM_LIMIT = "PLATFORM_LIMIT"
    EXPOSURE_LIMIT = "EXPOSURE_LIMIT"
    CORRELATION = "CORRELATION"
    DRAWDOWN_BRAKE = "DRAWDOWN_BRAKE"
    # Emergency monitor triggers
    PRICE_CRASH = "PRICE_CRASH"
    VOLATILITY_SPIKE = "VOLATILITY_SPIKE"
    LIQUIDITY_DROP = "LIQUIDITY_DROP"
    EXCHANGE_LATENCY = "EXCHANGE_LATENCY"
    ERROR_BURST = "ERROR_BURST"
    INVARIANT = "INVARIANT"


class RiskLevel(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"        # intent resized
    CRITICAL = "CRITICAL"      # intent rejected
    EMERGENCY = "EMERGENCY"    # symbol or agent halted


class RiskEvent(BaseModel):
    """
    Risk breach or warning.

    Example:
        RiskEvent(
            ts=1700000000.0,
            breach_type=BreachType.POSITION_LIMIT,
            level=RiskLevel.WARNING,
            message="single_asset_limit: 30.00 -> 15.00",
            limit_value=15.0,
            observed_value=30.0,
            symbol="PEPE",
            action_taken="RESIZED",
        )
    """

    ts: Annotated[float, Field(description="Event time (epoch seconds)")]
    breach_type: BreachType
    level: RiskLevel
    message: Annotated[str, Field(min_length=1, max_length=500)]
    limit_value: Annotated[Optional[float], Field(default=None, description="Configured limit, when one applies")]
    observed_value: Annotated[Optional[float], Field(default=None, description="Value that tripped the limit")]
    symbol: Annotated[Optional[str], Field(default=None, max_length=32)]
    intent_id: Annotated[Optional[str], Field(default=None, max_length=100)]
    action_taken: Annotated[str, Field(min_length=1, max_length=100, description="RESIZED, REJECTED, SYMBOL_HALTED, ...")]
