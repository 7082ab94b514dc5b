"""
Event definitions for the token agent orchestrator.

Events are emitted at every state transition for:
- Complete audit trail (replayability)
- Debugging and forensics
- Integration and end-to-end tests

All events are JSON-serializable and appended to the JSONL event log.
Timestamps are agent-clock epoch seconds (virtual in dry runs).
"""

from enum import Enum
from typing import Any, Literal, Optional, TypedDict


class EventType(str, Enum):
    """Event types for the agent lifecycle."""
    START = "START"
    ASSESSMENT = "ASSESSMENT"
    DECISION = "DECISION"
    RISK_DECISION = "RISK_DECISION"
    PLAN = "PLAN"
    FILL = "FILL"
    PLAN_COMPLETE = "PLAN_COMPLETE"
    PERFORMANCE = "PERFORMANCE"
    GENERATION = "GENERATION"
    RISK_BREACH = "RISK_BREACH"
    SHUTDOWN = "SHUTDOWN"


class AgentEvent(TypedDict, total=False):
    """
    Base event structure.

    All events include:
    - event_type: Discriminator for event type
    - ts: Agent clock time (epoch seconds)
    - metadata: Optional event-specific data
    """
    event_type: str
    ts: float
    metadata: Optional[dict[str, Any]]


class StartEvent(AgentEvent):
    """
    Emitted when the agent starts.

    Metadata includes:
    - mode: dry|paper
    - symbols: Symbols traded
    - generation: Parameter generation in force (restored or 0)
    """
    event_type: Literal["START"]


class AssessmentEvent(AgentEvent):
    """Emitted after an analyzer run (one per domain tick)."""
    event_type: Literal["ASSESSMENT"]
    domain: str
    published: int


class DecisionEvent(AgentEvent):
    """
    Emitted for every non-trivial decision outcome.

    outcome: BUY|SELL|CLOSE|HOLD; reasons carry the rationale or hold reasons.
    """
    event_type: Literal["DECISION"]
    symbol: str
    outcome: str
    reasons: list[str]
    score: Optional[float]


class RiskDecisionEvent(AgentEvent):
    """Emitted for every Risk Gate verdict."""
    event_type: Literal["RISK_DECISION"]
    intent_id: str
    symbol: str
    outcome: str
    notional: float
    leverage: int
    reasons: list[str]


class PlanEvent(AgentEvent):
    """Emitted when an ExecutionPlan is built."""
    event_type: Literal["PLAN"]
    plan_id: str
    intent_id: str
    symbol: str
    side: str
    style: str
    slices: int
    size: float


class FillEvent(AgentEvent):
    """Emitted for every slice fill."""
    event_type: Literal["FILL"]
    plan_id: str
    slice_id: str
    symbol: str
    filled_size: float
    avg_price: float
    fees: float


class PlanCompleteEvent(AgentEvent):
    """
    Terminal event of a plan.

    status: completed|partial|aborted|cancelled
    """
    event_type: Literal["PLAN_COMPLETE"]
    plan_id: str
    symbol: str
    status: str
    filled_size: float
    slippage: float
    retries_used: int


class PerformanceEvent(AgentEvent):
    """Emitted when a trade closes."""
    event_type: Literal["PERFORMANCE"]
    intent_id: str
    symbol: str
    realized_pnl: float
    quality: float
    attribution: dict[str, float]


class GenerationEvent(AgentEvent):
    """Emitted when a new parameter generation is published."""
    event_type: Literal["GENERATION"]
    generation: int
    directives: list[str]


class RiskBreachEvent(AgentEvent):
    """
    Emitted when a risk rule binds or an emergency condition fires.

    Metadata includes:
    - message: Human-readable breach description
    - limit_value / observed_value
    """
    event_type: Literal["RISK_BREACH"]
    breach_type: str
    level: str
    action_taken: str
    symbol: Optional[str]


class ShutdownEvent(AgentEvent):
    """
    Emitted when the agent shuts down.

    Metadata includes:
    - reason: NORMAL, ERROR, USER_INTERRUPT
    - uptime_seconds: Agent-clock uptime
    - counters: intents, plans, closed trades, generation
    """
    event_type: Literal["SHUTDOWN"]
    reason: str
    uptime_seconds: float
