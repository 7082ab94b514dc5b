"""Agent configuration (YAML file validated into pydantic models)."""

from shared.config.loader import (
    AgentConfig,
    AnalyzerSettings,
    DecisionConfig,
    ExchangeConfig,
    ExecutionConfig,
    LearningConfig,
    PersistenceConfig,
    RiskConfig,
    RuntimeConfig,
    load_config,
)

__all__ = [
    "AgentConfig",
    "AnalyzerSettings",
    "DecisionConfig",
    "ExchangeConfig",
    "ExecutionConfig",
    "LearningConfig",
    "PersistenceConfig",
    "RiskConfig",
    "RuntimeConfig",
    "load_config",
]
