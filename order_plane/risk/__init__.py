"""Risk gate, portfolio state, correlation buckets, kill switch and emergency monitor."""

from order_plane.risk.correlation import CorrelationTracker
from order_plane.risk.emergency import EmergencyMonitor
from order_plane.risk.gate import RiskGate
from order_plane.risk.kill_switch import KillSwitch
from order_plane.risk.portfolio import DrawdownBrake, PortfolioState

__all__ = [
    "CorrelationTracker",
    "DrawdownBrake",
    "EmergencyMonitor",
    "KillSwitch",
    "PortfolioState",
    "RiskGate",
]
