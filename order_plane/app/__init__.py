"""Order plane runtime: position book and execution engine."""

from order_plane.app.engine import ExecutionEngine, PlanResult, SliceReport
from order_plane.app.positions import PositionBook, fold_fill

__all__ = ["ExecutionEngine", "PlanResult", "PositionBook", "SliceReport", "fold_fill"]
