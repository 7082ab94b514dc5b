"""Performance tracking, feedback and parameter learning."""

from order_plane.learning.feedback import FeedbackProcessor, directive_id
from order_plane.learning.learner import ParameterBounds, ParameterRegister
from order_plane.learning.tracker import (
    OpenTrade,
    PerformanceTracker,
    attribution_shares,
    execution_quality,
)

__all__ = [
    "FeedbackProcessor",
    "OpenTrade",
    "ParameterBounds",
    "ParameterRegister",
    "PerformanceTracker",
    "attribution_shares",
    "directive_id",
    "execution_quality",
]
