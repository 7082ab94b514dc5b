"""
Shared data models for the token agent.

These models serve as the single source of truth for data contracts across:
- Data Plane: feeds, Assessment Bus, persistence
- Strategy Plane: analyzers and the Decision Engine
- Order Plane: risk, execution and learning
"""

from shared.models.base import BaseModel, SymbolMixin
from shared.models.market import (
    BookLevel, BookSide, MarketSnapshot, SocialSample, SocialSource, TradePrint, TradeSide,
)
from shared.models.assessment import (
    Assessment, Domain, FusedView, DIRECTIONAL_DOMAINS, SENTIMENT_FAMILY,
)
from shared.models.intent import Hold, RiskDecision, RiskOutcome, Side, TradeIntent
from shared.models.execution import (
    ExchangeEvent, ExchangeEventKind, ExecutionPlan, Fill, OrderRequest, OrderType,
    Position, Slice, SliceState, SliceStyle, TimeInForce,
)
from shared.models.performance import (
    AdjustmentDirective, DirectiveTarget, ParameterGeneration, PerformanceReport,
)
from shared.models.risk import BreachType, RiskEvent, RiskLevel

__all__ = [
    # Base
    "BaseModel",
    "SymbolMixin",
    # Market
    "BookLevel",
    "BookSide",
    "MarketSnapshot",
    "SocialSample",
    "SocialSource",
    "TradePrint",
    "TradeSide",
    # Assessment
    "Assessment",
    "Domain",
    "FusedView",
    "DIRECTIONAL_DOMAINS",
    "SENTIMENT_FAMILY",
    # Decision / risk
    "Hold",
    "RiskDecision",
    "RiskOutcome",
    "Side",
    "TradeIntent",
    # Execution
    "ExchangeEvent",
    "ExchangeEventKind",
    "ExecutionPlan",
    "Fill",
    "OrderRequest",
    "OrderType",
    "Position",
    "Slice",
    "SliceState",
    "SliceStyle",
    "TimeInForce",
    # Learning
    "AdjustmentDirective",
    "DirectiveTarget",
    "ParameterGeneration",
    "PerformanceReport",
    # Risk events
    "BreachType",
    "RiskEvent",
    "RiskLevel",
]
