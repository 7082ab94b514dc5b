from shared.metrics.metrics import AgentMetrics

__all__ = ["AgentMetrics"]
