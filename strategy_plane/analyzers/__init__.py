"""Analyzers: one scored opinion per domain per symbol."""

from typing import Optional

from shared.config import AgentConfig
from strategy_plane.analyzers.accumulation import AccumulationAnalyzer
from strategy_plane.analyzers.base import MARKET, SOCIAL, Analyzer, AnalyzerInputs, AnalyzerRegistry
from strategy_plane.analyzers.buying_pressure import BuyingPressureAnalyzer
from strategy_plane.analyzers.catalyst import CatalystAnalyzer
from strategy_plane.analyzers.emotion import EmotionAnalyzer
from strategy_plane.analyzers.fear_greed import FearGreedAnalyzer
from strategy_plane.analyzers.psychology import PsychologyAnalyzer
from strategy_plane.analyzers.sentiment import SentimentAnalyzer
from strategy_plane.analyzers.swing_point import SwingPointAnalyzer
from strategy_plane.analyzers.volatility import VolatilityAnalyzer

DEFAULT_ANALYZERS = (
    AccumulationAnalyzer,
    BuyingPressureAnalyzer,
    VolatilityAnalyzer,
    SwingPointAnalyzer,
    CatalystAnalyzer,
    SentimentAnalyzer,
    EmotionAnalyzer,
    FearGreedAnalyzer,
    PsychologyAnalyzer,
)


def build_default_registry(config: Optional[AgentConfig] = None) -> AnalyzerRegistry:
    """Register every enabled built-in analyzer with its configured settings."""
    config = config or AgentConfig()
    registry = AnalyzerRegistry()
    for cls in DEFAULT_ANALYZERS:
        settings = config.analyzer(cls.domain)
        if settings.enabled:
            registry.register(cls(settings))
    return registry


__all__ = [
    "MARKET",
    "SOCIAL",
    "Analyzer",
    "AnalyzerInputs",
    "AnalyzerRegistry",
    "AccumulationAnalyzer",
    "BuyingPressureAnalyzer",
    "VolatilityAnalyzer",
    "SwingPointAnalyzer",
    "CatalystAnalyzer",
    "SentimentAnalyzer",
    "EmotionAnalyzer",
    "FearGreedAnalyzer",
    "PsychologyAnalyzer",
    "DEFAULT_ANALYZERS",
    "build_default_registry",
]
