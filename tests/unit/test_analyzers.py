"""
Unit tests for strategy_plane analyzers, the analyzer runner and the
estimator registry.

Tests:
- Each analyzer: insufficient inputs suppressed, characteristic inputs
  produce the expected band/state and declared components
- Analyzer contract: missing components, non-finite values, min_confidence
- Runner: publish to bus, suppression counters, analysis log, labelling
- Estimators: gated retraining and inference
"""

from typing import Optional

import numpy as np
import pytest

from data_plane.app.feed_hub import FeedHub
from data_plane.bus.assessment_bus import AssessmentBus
from data_plane.storage.state_store import AnalysisLog
from fixtures import BASE_TS, price_history, social_samples
from shared.config import AgentConfig, AnalyzerSettings, LearningConfig
from shared.errors import DataQualityError, InvariantViolation
from shared.models import Assessment, Domain, TradeSide
from strategy_plane.analyzers import (
    Analyzer,
    AnalyzerInputs,
    AnalyzerRegistry,
    build_default_registry,
)
from strategy_plane.analyzers.fear_greed import fear_greed_band
from strategy_plane.analyzers.psychology import psychology_state
from strategy_plane.analyzers.volatility import intensity_band
from strategy_plane.estimators import EstimatorRegistry
from strategy_plane.runner import AnalyzerRunner


# ============================================================================
# Helpers
# ============================================================================

@pytest.fixture
def registry(config):
    return build_default_registry(config)


def inputs_for(market=(), social=(), symbol="PEPE") -> AnalyzerInputs:
    now = market[-1].ts if market else BASE_TS
    return AnalyzerInputs(symbol=symbol, now=now, market=tuple(market), social=tuple(social))


def alternating(n: int, low: float = 1.0, high: float = 1.05) -> list[float]:
    return [low if i % 2 == 0 else high for i in range(n)]


def crashing(n: int) -> list[float]:
    prices = [1.0]
    for i in range(1, n):
        prices.append(prices[-1] * (0.9 if i % 2 else 1.02))
    return prices


def trending(n: int, rate: float) -> list[float]:
    return [1.0 * (1 + rate) ** i for i in range(n)]


# ============================================================================
# Registry and contract
# ============================================================================

class _FixedOutput(Analyzer):
    domain = Domain.SWING
    component_keys = ("a",)

    def __init__(self, result, settings: Optional[AnalyzerSettings] = None):
        super().__init__(settings)
        self.result = result

    def assess(self, inputs: AnalyzerInputs) -> Optional[Assessment]:
        score, confidence, components = self.result
        return self._emit(inputs, score, confidence, components)


@pytest.mark.unit
class TestAnalyzerContract:
    """Registration and the Assessment contract."""

    def test_default_registry_covers_all_domains(self, registry):
        assert set(registry.domains()) == set(Domain)
        assert len(registry) == 9

    def test_disabled_analyzer_not_registered(self):
        config = AgentConfig.model_validate({"analyzers": {"swing": {"enabled": False}}})
        assert Domain.SWING not in build_default_registry(config)

    def test_duplicate_domain_rejected(self):
        reg = AnalyzerRegistry()
        reg.register(_FixedOutput((0.5, 0.5, {"a": 1.0})))
        with pytest.raises(ValueError):
            reg.register(_FixedOutput((0.5, 0.5, {"a": 1.0})))

    def test_missing_component_is_invariant_violation(self):
        with pytest.raises(InvariantViolation):
            _FixedOutput((0.5, 0.9, {})).assess(inputs_for())

    def test_non_finite_is_data_quality_error(self):
        with pytest.raises(DataQualityError):
            _FixedOutput((float("nan"), 0.9, {"a": 1.0})).assess(inputs_for())
        with pytest.raises(DataQualityError):
            _FixedOutput((0.5, 0.9, {"a": float("inf")})).assess(inputs_for())

    def test_low_confidence_suppressed(self):
        analyzer = _FixedOutput((0.5, 0.2, {"a": 1.0}), AnalyzerSettings(min_confidence=0.3))
        assert analyzer.assess(inputs_for()) is None

    def test_score_clamped_and_stamped(self):
        result = _FixedOutput((1.3, 0.9, {"a": 1.0})).assess(inputs_for())
        assert result.score == 1.0
        assert result.ts == BASE_TS
        assert result.domain == Domain.SWING


# ============================================================================
# Market analyzers
# ============================================================================

@pytest.mark.unit
class TestVolatilityAnalyzer:

    def test_bands(self):
        assert intensity_band(0.95) == "extreme"
        assert intensity_band(0.8) == "high"
        assert intensity_band(0.5) == "moderate"
        assert intensity_band(0.1) == "low"

    def test_flat_market_is_low(self, registry):
        result = registry.get(Domain.VOLATILITY).assess(inputs_for(price_history([1.0] * 60)))
        assert result.state == "low"
        assert result.component("intensity") == 0.0
        assert result.component("ceiling_exceeded") == 0.0
        assert result.confidence == pytest.approx(1.0)

    def test_turbulent_market_exceeds_ceiling(self, registry):
        result = registry.get(Domain.VOLATILITY).assess(inputs_for(price_history(alternating(60))))
        assert result.state == "extreme"
        assert result.component("ceiling_exceeded") == 1.0
        assert result.component("intensity") > 0.9

    def test_insufficient_points(self, registry):
        assert registry.get(Domain.VOLATILITY).assess(inputs_for(price_history([1.0] * 10))) is None


@pytest.mark.unit
class TestBuyingPressureAnalyzer:

    def test_buy_tape_is_buying(self, registry):
        market = price_history([1.0] * 20, trade_side=TradeSide.BUY, trades_per_snapshot=5)
        result = registry.get(Domain.BUYING_PRESSURE).assess(inputs_for(market))
        assert result.state == "buying"
        assert result.component("order_flow_score") == 1.0
        assert result.component("institutional_pressure") == 1.0
        assert result.bias > 0.7

    def test_sell_tape_is_selling(self, registry):
        market = price_history([1.0] * 20, trade_side=TradeSide.SELL, trades_per_snapshot=5)
        result = registry.get(Domain.BUYING_PRESSURE).assess(inputs_for(market))
        assert result.state == "selling"
        assert result.bias < -0.7
        assert result.component("distribution_score") > 0.8

    def test_too_few_prints(self, registry):
        market = price_history([1.0] * 20)
        assert registry.get(Domain.BUYING_PRESSURE).assess(inputs_for(market)) is None


@pytest.mark.unit
class TestAccumulationAnalyzer:

    def test_uptrend_with_rising_obv_is_markup(self, registry):
        result = registry.get(Domain.ACCUMULATION).assess(inputs_for(price_history(trending(60, 0.01))))
        assert result.state == "markup"
        assert result.bias > 0.5
        assert result.score > 0.5

    def test_downtrend_is_markdown(self, registry):
        result = registry.get(Domain.ACCUMULATION).assess(inputs_for(price_history(trending(60, -0.01))))
        assert result.state == "markdown"
        assert result.bias < -0.5

    def test_features_shape(self, registry):
        analyzer = registry.get(Domain.ACCUMULATION)
        features = analyzer.features(inputs_for(price_history(trending(60, 0.01))))
        assert features.shape == (6,)
        assert np.all(np.isfinite(features))
        assert analyzer.features(inputs_for(price_history([1.0] * 5))) is None

    def test_short_history_suppressed(self, registry):
        assert registry.get(Domain.ACCUMULATION).assess(inputs_for(price_history([1.0] * 10))) is None


@pytest.mark.unit
class TestSwingPointAnalyzer:

    def test_oscillating_market(self, registry):
        prices = [1.0 + 0.1 * np.sin(2 * np.pi * i / 40) for i in range(200)]
        result = registry.get(Domain.SWING).assess(inputs_for(price_history(prices)))
        assert result is not None
        assert set(result.components) >= {"last_high", "last_low", "strength", "predicted_direction", "bias"}
        assert result.component("predicted_direction") in (-1.0, 0.0, 1.0)
        assert result.state in ("uptrend", "downtrend", "range")
        assert result.component("last_high") > result.component("last_low")

    def test_estimate_moves_direction(self, registry):
        analyzer = registry.get(Domain.SWING)
        market = price_history([1.0 + 0.1 * np.sin(2 * np.pi * i / 40) for i in range(200)])
        base = inputs_for(market)
        bullish = analyzer.assess(AnalyzerInputs(symbol="PEPE", now=base.now, market=base.market, estimate=1.0))
        bearish = analyzer.assess(AnalyzerInputs(symbol="PEPE", now=base.now, market=base.market, estimate=0.0))
        assert bullish.bias > bearish.bias

    def test_features(self, registry):
        analyzer = registry.get(Domain.SWING)
        assert analyzer.features(inputs_for(price_history(trending(30, 0.01)))).shape == (22,)
        assert analyzer.features(inputs_for(price_history(trending(10, 0.01)))) is None

    def test_short_history_suppressed(self, registry):
        assert registry.get(Domain.SWING).assess(inputs_for(price_history([1.0] * 15))) is None


@pytest.mark.unit
class TestCatalystAnalyzer:

    def test_rally_with_positive_chatter_is_bullish(self, registry):
        market = price_history(trending(30, 0.01))
        social = social_samples(["bullish breakout"], 10, start_ts=market[-1].ts - 20)
        result = registry.get(Domain.CATALYST).assess(inputs_for(market, social))
        assert result.state == "bullish"
        assert result.bias == pytest.approx(0.7, abs=0.02)
        assert result.component("short_term") == pytest.approx(0.8, abs=0.02)
        assert 0.0 <= result.component("long_term") <= 1.0

    def test_without_social_still_assesses(self, registry):
        result = registry.get(Domain.CATALYST).assess(inputs_for(price_history(trending(30, 0.01))))
        assert result is not None
        assert result.component("social") == 0.0

    def test_short_history_suppressed(self, registry):
        assert registry.get(Domain.CATALYST).assess(inputs_for(price_history([1.0] * 5))) is None


# ============================================================================
# Social analyzers
# ============================================================================

@pytest.mark.unit
class TestSentimentAnalyzer:

    def test_positive_chatter(self, registry):
        result = registry.get(Domain.SENTIMENT).assess(inputs_for(social=social_samples(["bullish moon pump"], 10)))
        assert result.state == "positive"
        assert result.score == pytest.approx(1.0)
        assert result.component("negative_share") == 0.0

    def test_mass_negative_chatter_is_panic(self, registry):
        result = registry.get(Domain.SENTIMENT).assess(inputs_for(social=social_samples(["dump crash rug"], 20)))
        assert result.state == "panic"
        assert result.component("negative_share") == pytest.approx(1.0)

    def test_negation_flips_polarity(self, registry):
        result = registry.get(Domain.SENTIMENT).assess(inputs_for(social=social_samples(["not bullish"], 10)))
        assert result.component("polarity") == pytest.approx(-1.0)

    def test_below_min_samples(self, registry):
        assert registry.get(Domain.SENTIMENT).assess(inputs_for(social=social_samples(["moon"], 3))) is None


@pytest.mark.unit
class TestEmotionAnalyzer:

    def test_fear_everywhere_is_panic(self, registry):
        result = registry.get(Domain.EMOTION).assess(inputs_for(social=social_samples(["scared of the crash, panic"], 20)))
        assert result.state == "panic"
        assert result.component("fear") == pytest.approx(1.0)
        assert result.score == pytest.approx(0.25)

    def test_greed_dominant(self, registry):
        result = registry.get(Domain.EMOTION).assess(inputs_for(social=social_samples(["moon lambo 100x"], 20)))
        assert result.state == "greed"
        assert result.component("fear") == 0.0


@pytest.mark.unit
class TestFearGreedAnalyzer:

    @pytest.mark.parametrize("index,band", [
        (0.05, "extreme_fear"), (0.1, "extreme_fear"), (0.2, "fear"), (0.5, "neutral"),
        (0.7, "greed"), (0.89, "greed"), (0.9, "extreme_greed"),
    ])
    def test_bands(self, index, band):
        assert fear_greed_band(index) == band

    def test_crash_with_selling_and_fud_is_extreme_fear(self, registry):
        market = price_history(crashing(40), trade_side=TradeSide.SELL, trades_per_snapshot=3)
        social = social_samples(["dump crash rug"], 20, start_ts=market[-1].ts - 30)
        result = registry.get(Domain.FEAR_GREED).assess(inputs_for(market, social))
        assert result.state == "extreme_fear"
        assert result.component("index") < 0.1

    def test_requires_both_feeds(self, registry):
        analyzer = registry.get(Domain.FEAR_GREED)
        assert analyzer.assess(inputs_for(price_history(crashing(40)))) is None
        assert analyzer.assess(inputs_for(price_history([1.0] * 5), social_samples(["moon"], 10))) is None


@pytest.mark.unit
class TestPsychologyAnalyzer:

    @pytest.mark.parametrize("score,state", [
        (0.05, "panic"), (0.2, "fearful"), (0.5, "neutral"), (0.8, "optimistic"), (0.95, "euphoria"),
    ])
    def test_states(self, score, state):
        assert psychology_state(score) == state

    def test_rally_with_unanimous_optimism_is_euphoria(self, registry):
        market = price_history(trending(30, 0.01))
        social = social_samples(["bullish moon"], 20, start_ts=market[-1].ts - 20)
        result = registry.get(Domain.PSYCHOLOGY).assess(inputs_for(market, social))
        assert result.state == "euphoria"
        assert result.component("capitulation") == 0.0


# ============================================================================
# Runner
# ============================================================================

class _Failing(Analyzer):
    domain = Domain.VOLATILITY

    def __init__(self, error):
        super().__init__()
        self.error = error

    def assess(self, inputs):
        raise self.error


@pytest.fixture
def hub(clock):
    feed = FeedHub(clock)
    for snapshot in price_history(alternating(60), start_ts=BASE_TS - 59):
        feed.ingest_market(snapshot)
    return feed


@pytest.mark.unit
class TestAnalyzerRunner:

    @pytest.mark.asyncio
    async def test_run_domain_publishes(self, registry, hub, clock, metrics, tmp_path):
        bus = AssessmentBus(metrics=metrics)
        log = AnalysisLog(str(tmp_path / "analysis.jsonl"))
        runner = AnalyzerRunner(registry, hub, bus, clock, metrics=metrics, analysis_log=log)

        published = await runner.run_domain(Domain.VOLATILITY, ["PEPE"])

        assert len(published) == 1
        assert bus.latest(Domain.VOLATILITY, "PEPE").ts == clock.now()
        assert metrics.count("assessments_published", domain="volatility") == 1
        assert log.read_all()[0]["domain"] == "volatility"

    @pytest.mark.asyncio
    async def test_no_market_data_suppressed(self, registry, hub, clock, metrics):
        runner = AnalyzerRunner(registry, hub, AssessmentBus(), clock, metrics=metrics)
        assert await runner.run_domain(Domain.VOLATILITY, ["WIF"]) == []
        assert runner.suppressed[("volatility", "no_market_data")] == 1
        assert metrics.count("assessments_suppressed", domain="volatility", reason="no_market_data") == 1

    @pytest.mark.asyncio
    async def test_insufficient_social_suppressed(self, registry, hub, clock):
        runner = AnalyzerRunner(registry, hub, AssessmentBus(), clock)
        assert await runner.run_domain(Domain.SENTIMENT, ["PEPE"]) == []
        assert runner.suppressed[("sentiment", "no_social_data")] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,reason", [
        (DataQualityError("nan"), "data_quality"),
        (InvariantViolation("missing"), "invariant"),
        (RuntimeError("bug"), "error"),
    ])
    async def test_analyzer_errors_suppressed(self, hub, clock, error, reason):
        reg = AnalyzerRegistry()
        reg.register(_Failing(error))
        bus = AssessmentBus()
        runner = AnalyzerRunner(reg, hub, bus, clock)

        assert await runner.run_domain(Domain.VOLATILITY, ["PEPE"]) == []
        assert runner.suppressed[("volatility", reason)] == 1
        assert bus.latest(Domain.VOLATILITY, "PEPE") is None

    @pytest.mark.asyncio
    async def test_second_run_same_tick_is_duplicate(self, registry, hub, clock):
        bus = AssessmentBus()
        runner = AnalyzerRunner(registry, hub, bus, clock)
        await runner.run_domain(Domain.VOLATILITY, ["PEPE"])
        assert await runner.run_domain(Domain.VOLATILITY, ["PEPE"]) == []
        assert bus.summary()["duplicates"] == 1

    @pytest.mark.asyncio
    async def test_label_outcomes_records_experience(self, registry, hub, clock):
        estimators = EstimatorRegistry()
        runner = AnalyzerRunner(registry, hub, AssessmentBus(), clock, estimators=estimators, label_horizon_s=300)

        await runner.run_domain(Domain.SWING, ["PEPE"])
        assert runner.label_outcomes() == 0

        await clock.advance(300)
        hub.ingest_market(price_history([2.0], start_ts=clock.now())[0])
        assert runner.label_outcomes() == 1
        assert estimators.experience_size("swing") == 1


# ============================================================================
# Estimators
# ============================================================================

def _separable(n: int, seed: int = 0):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n, 3))
    y = (X[:, 0] > 0).astype(int)
    return X, y


@pytest.mark.unit
class TestEstimatorRegistry:

    def test_retrain_activates_accurate_candidate(self):
        estimators = EstimatorRegistry(LearningConfig(min_training_samples=200))
        X, y = _separable(400)
        for x, label in zip(X, y):
            estimators.record_outcome("swing", x, label)

        assert estimators.retrain("swing")
        assert estimators.active("swing")
        p_up = estimators.predict("swing", np.array([2.0, 0.0, 0.0]))
        assert 0.0 <= p_up <= 1.0
        assert p_up > 0.5
        assert estimators.stats()["swing"]["version"] == 1

    def test_too_few_samples(self):
        estimators = EstimatorRegistry()
        X, y = _separable(20)
        for x, label in zip(X, y):
            estimators.record_outcome("swing", x, label)
        assert not estimators.retrain("swing")
        assert estimators.predict("swing", X[0]) is None

    def test_single_class_window_skipped(self):
        estimators = EstimatorRegistry(LearningConfig(min_training_samples=10))
        for x in _separable(50)[0]:
            estimators.record_outcome("swing", x, 1)
        assert not estimators.retrain("swing")

    def test_inaccurate_candidate_rejected(self):
        estimators = EstimatorRegistry(LearningConfig(min_training_samples=200, min_model_accuracy=0.99))
        rng = np.random.default_rng(3)
        for _ in range(300):
            estimators.record_outcome("swing", rng.normal(size=3), int(rng.integers(0, 2)))

        assert not estimators.retrain("swing")
        assert not estimators.active("swing")
        assert estimators.stats()["swing"]["rejected_candidates"] == 1

    def test_mismatched_and_non_finite_samples_dropped(self):
        estimators = EstimatorRegistry()
        estimators.record_outcome("swing", np.zeros(3), 1)
        estimators.record_outcome("swing", np.zeros(4), 1)
        estimators.record_outcome("swing", np.array([np.nan, 0.0, 0.0]), 1)
        assert estimators.experience_size("swing") == 1

    @pytest.mark.asyncio
    async def test_predict_async_offloads(self):
        estimators = EstimatorRegistry(LearningConfig(min_training_samples=200))
        X, y = _separable(300, seed=1)
        for x, label in zip(X, y):
            estimators.record_outcome("swing", x, label)
        estimators.retrain("swing")

        assert await estimators.predict_async("swing", np.array([-2.0, 0.0, 0.0])) < 0.5
