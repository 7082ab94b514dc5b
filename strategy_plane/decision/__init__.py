from strategy_plane.decision.engine import DecisionEngine, HoldReason

__all__ = ["DecisionEngine", "HoldReason"]
