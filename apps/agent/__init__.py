"""Token agent orchestration (Control Plane)."""

from apps.agent.orchestrator import Agent
from apps.agent.events import (
    AgentEvent,
    AssessmentEvent,
    DecisionEvent,
    EventType,
    FillEvent,
    GenerationEvent,
    PerformanceEvent,
    PlanCompleteEvent,
    PlanEvent,
    RiskBreachEvent,
    RiskDecisionEvent,
    ShutdownEvent,
    StartEvent,
)

__all__ = [
    "Agent",
    "AgentEvent",
    "AssessmentEvent",
    "DecisionEvent",
    "EventType",
    "FillEvent",
    "GenerationEvent",
    "PerformanceEvent",
    "PlanCompleteEvent",
    "PlanEvent",
    "RiskBreachEvent",
    "RiskDecisionEvent",
    "ShutdownEvent",
    "StartEvent",
]
