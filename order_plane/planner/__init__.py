from order_plane.planner.planner import (
    LEVERAGE_STOPS,
    ExecutionPlanner,
    TrailingStop,
    estimate_slippage,
    side_sign,
    stop_distance,
)

__all__ = [
    "LEVERAGE_STOPS",
    "ExecutionPlanner",
    "TrailingStop",
    "estimate_slippage",
    "side_sign",
    "stop_distance",
]
