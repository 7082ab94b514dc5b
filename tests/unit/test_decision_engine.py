"""
Unit tests for the Decision Engine.

Tests:
- Quorum, staleness and zero-weight holds
- Weighted aggregate and directional bias (including ties)
- Vetoes: volatility ceiling (also ahead of a missing bias), extreme
  fear/greed, sentiment panic
- Entry sizing with catalyst urgency; zero notional holds
- CLOSE on side flip / below hold threshold, halted symbols
"""

import pytest

from data_plane.bus.assessment_bus import AssessmentBus
from fixtures import assessment
from order_plane.risk.kill_switch import KillSwitch
from shared.models import Domain, FusedView, Hold, ParameterGeneration, Position, Side, TradeIntent
from strategy_plane.decision import DecisionEngine, HoldReason


# ============================================================================
# Helpers
# ============================================================================

class StaticPositions:
    def __init__(self, positions=None):
        self.positions = positions or {}

    def get(self, symbol):
        return self.positions.get(symbol, Position(symbol=symbol))


@pytest.fixture
def bus():
    return AssessmentBus()


@pytest.fixture
def engine(bus, register, config, clock, metrics):
    return DecisionEngine(bus, register, config, clock, metrics=metrics)


def publish(bus, clock, domain, score, confidence=0.8, **components):
    bus.publish(assessment(domain, score, confidence=confidence, ts=clock.now(), **components))


def bullish_board(bus, clock, short_term=0.5):
    """Five fresh domains, S = 0.7, all directional biases long."""
    publish(bus, clock, Domain.ACCUMULATION, 0.8, bias=0.6)
    publish(bus, clock, Domain.SWING, 0.8, bias=0.5)
    publish(bus, clock, Domain.BUYING_PRESSURE, 0.8, bias=0.6)
    publish(bus, clock, Domain.CATALYST, 0.8, bias=0.6, short_term=short_term)
    publish(bus, clock, Domain.VOLATILITY, 0.3, intensity=0.3, ceiling_exceeded=0.0)


def bearish_board(bus, clock):
    publish(bus, clock, Domain.ACCUMULATION, 0.8, bias=-0.6)
    publish(bus, clock, Domain.SWING, 0.8, bias=-0.5)
    publish(bus, clock, Domain.BUYING_PRESSURE, 0.8, bias=-0.6)
    publish(bus, clock, Domain.CATALYST, 0.8, bias=-0.6, short_term=0.5)
    publish(bus, clock, Domain.VOLATILITY, 0.3, intensity=0.3, ceiling_exceeded=0.0)


# ============================================================================
# Aggregation
# ============================================================================

@pytest.mark.unit
class TestAggregate:

    def test_confidence_weighted_mean(self):
        generation = ParameterGeneration(generation=0, created_ts=0.0, weights={"swing": 2.0, "volatility": 1.0})
        view = FusedView(
            symbol="PEPE", ts=0.0, generation=0,
            present={
                Domain.SWING: assessment(Domain.SWING, 0.9, confidence=0.5),
                Domain.VOLATILITY: assessment(Domain.VOLATILITY, 0.3, confidence=1.0),
            },
        )
        score, contributions, confidence = DecisionEngine.aggregate(view, generation)

        # (2*0.9*0.5 + 1*0.3*1.0) / (2*0.5 + 1*1.0)
        assert score == pytest.approx(0.6)
        assert contributions == {"swing": pytest.approx(0.9), "volatility": pytest.approx(0.3)}
        assert confidence == pytest.approx(2.0 / 3.0)

    def test_zero_denominator(self):
        generation = ParameterGeneration(generation=0, created_ts=0.0, weights={"swing": 0.0})
        view = FusedView(symbol="PEPE", ts=0.0, generation=0, present={Domain.SWING: assessment(Domain.SWING, 0.9)})
        score, _, confidence = DecisionEngine.aggregate(view, generation)
        assert score is None
        assert confidence == 0.0


# ============================================================================
# Holds
# ============================================================================

@pytest.mark.unit
class TestHolds:

    def test_below_quorum(self, engine, bus, clock):
        publish(bus, clock, Domain.SWING, 0.9, bias=0.9)
        publish(bus, clock, Domain.ACCUMULATION, 0.9, bias=0.9)
        outcome = engine.decide("PEPE")
        assert isinstance(outcome, Hold)
        assert outcome.reason == HoldReason.INSUFFICIENT_SIGNALS.value

    @pytest.mark.asyncio
    async def test_stale_domains_do_not_count(self, engine, bus, clock):
        bullish_board(bus, clock)
        # buying_pressure goes stale after 30s; catalyst/swing/accumulation/volatility stay fresh
        await clock.advance(31)
        view = engine.fuse("PEPE", clock.now(), engine.params.current())
        assert Domain.BUYING_PRESSURE in view.absent
        assert view.count == 4

        await clock.advance(60)
        assert engine.decide("PEPE").reason == HoldReason.INSUFFICIENT_SIGNALS.value

    def test_zero_weight(self, bus, clock, config):
        class ZeroWeights:
            def current(self):
                return ParameterGeneration(generation=0, created_ts=0.0, weights={d.value: 0.0 for d in Domain})

        bullish_board(bus, clock)
        outcome = DecisionEngine(bus, ZeroWeights(), config, clock).decide("PEPE")
        assert outcome.reason == HoldReason.ZERO_WEIGHT.value

    def test_no_directional_bias(self, engine, bus, clock):
        for domain in (Domain.ACCUMULATION, Domain.SWING, Domain.BUYING_PRESSURE, Domain.CATALYST):
            publish(bus, clock, domain, 0.8, bias=0.0)
        assert engine.decide("PEPE").reason == HoldReason.NO_DIRECTIONAL_BIAS.value

    def test_bias_tie(self, engine, bus, clock):
        publish(bus, clock, Domain.ACCUMULATION, 0.8, bias=0.5)
        publish(bus, clock, Domain.SWING, 0.8, bias=0.5)
        publish(bus, clock, Domain.BUYING_PRESSURE, 0.8, bias=-0.5)
        publish(bus, clock, Domain.CATALYST, 0.8, bias=-0.5)
        assert engine.decide("PEPE").reason == HoldReason.BIAS_TIE.value

    def test_higher_confidence_side_wins_when_both_pass(self, engine, bus, clock):
        publish(bus, clock, Domain.ACCUMULATION, 0.8, confidence=0.9, bias=0.5)
        publish(bus, clock, Domain.SWING, 0.8, confidence=0.9, bias=0.5)
        publish(bus, clock, Domain.BUYING_PRESSURE, 0.8, confidence=0.4, bias=-0.9)
        publish(bus, clock, Domain.CATALYST, 0.8, confidence=0.9, bias=0.1)
        outcome = engine.decide("PEPE")
        assert isinstance(outcome, TradeIntent)
        assert outcome.side == Side.BUY

    def test_below_enter_threshold(self, engine, bus, clock):
        for domain in (Domain.ACCUMULATION, Domain.SWING, Domain.BUYING_PRESSURE, Domain.CATALYST):
            publish(bus, clock, domain, 0.55, bias=0.4)
        outcome = engine.decide("PEPE")
        assert outcome.reason == HoldReason.BELOW_ENTER_THRESHOLD.value
        assert outcome.score == pytest.approx(0.55)

    def test_halted_symbol(self, bus, register, config, clock):
        halts = KillSwitch(clock=clock)
        halts.halt("PEPE", "invariant")
        bullish_board(bus, clock)
        engine = DecisionEngine(bus, register, config, clock, halts=halts)
        assert engine.decide("PEPE").reason == HoldReason.SYMBOL_HALTED.value
        assert isinstance(engine.decide("WIF"), Hold)


# ============================================================================
# Vetoes
# ============================================================================

@pytest.mark.unit
class TestVetoes:

    def test_volatility_ceiling(self, engine, bus, clock):
        publish(bus, clock, Domain.ACCUMULATION, 0.8, bias=0.6)
        publish(bus, clock, Domain.SWING, 0.8, bias=0.5)
        publish(bus, clock, Domain.BUYING_PRESSURE, 0.8, bias=0.6)
        publish(bus, clock, Domain.CATALYST, 0.8, bias=0.6)
        publish(bus, clock, Domain.VOLATILITY, 0.85, intensity=0.85, ceiling_exceeded=1.0)
        assert engine.decide("PEPE").reason == HoldReason.VOLATILITY_CEILING.value

    def test_volatility_ceiling_reported_without_bias(self, engine, bus, clock):
        for domain in (Domain.ACCUMULATION, Domain.SWING, Domain.BUYING_PRESSURE, Domain.CATALYST):
            publish(bus, clock, domain, 0.8, bias=0.0)
        publish(bus, clock, Domain.VOLATILITY, 0.9, intensity=0.9, ceiling_exceeded=1.0)
        assert engine.decide("PEPE").reason == HoldReason.VOLATILITY_CEILING.value

    def test_extreme_fear_blocks_buy(self, engine, bus, clock):
        bullish_board(bus, clock)
        publish(bus, clock, Domain.FEAR_GREED, 0.05, state="extreme_fear", index=0.05)
        assert engine.decide("PEPE").reason == HoldReason.EXTREME_FEAR.value

    def test_extreme_greed_blocks_buy(self, engine, bus, clock):
        bullish_board(bus, clock)
        publish(bus, clock, Domain.FEAR_GREED, 0.95, state="extreme_greed", index=0.95)
        assert engine.decide("PEPE").reason == HoldReason.EXTREME_GREED.value

    def test_extreme_fear_does_not_block_sell(self, engine, bus, clock):
        publish(bus, clock, Domain.ACCUMULATION, 0.8, bias=-0.6)
        publish(bus, clock, Domain.SWING, 0.8, bias=-0.5)
        publish(bus, clock, Domain.BUYING_PRESSURE, 0.8, bias=-0.6)
        publish(bus, clock, Domain.FEAR_GREED, 0.8, state="extreme_fear", index=0.05)
        outcome = engine.decide("PEPE")
        assert isinstance(outcome, TradeIntent)
        assert outcome.side == Side.SELL

    @pytest.mark.parametrize("domain", [Domain.SENTIMENT, Domain.EMOTION, Domain.PSYCHOLOGY])
    def test_panic_blocks_both_sides(self, engine, bus, clock, domain):
        bearish_board(bus, clock)
        publish(bus, clock, domain, 0.5, state="panic")
        assert engine.decide("PEPE").reason == HoldReason.SENTIMENT_PANIC.value


# ============================================================================
# Intents
# ============================================================================

@pytest.mark.unit
class TestIntents:

    def test_buy_intent_sized_by_score(self, engine, bus, clock, metrics):
        bullish_board(bus, clock)
        outcome = engine.decide("PEPE")

        assert isinstance(outcome, TradeIntent)
        assert outcome.side == Side.BUY
        assert outcome.score == pytest.approx(0.7)
        assert outcome.target_notional == pytest.approx(70.0)
        assert outcome.urgency == 0.5
        assert outcome.generation == 0
        assert outcome.ts == clock.now()
        assert sum(outcome.contributions.values()) == pytest.approx(0.7 * 0.8 * 5)
        assert metrics.count("decisions", outcome="BUY", reason="enter") == 1

    def test_urgency_scales_notional(self, engine, bus, clock):
        bullish_board(bus, clock, short_term=1.0)
        outcome = engine.decide("PEPE")
        # multiplier 1 + 0.5 * (1.0 - 0.5) * 2 = 1.5
        assert outcome.urgency == 1.0
        assert outcome.target_notional == pytest.approx(70.0 * 1.5)

    def test_full_urgency_gain_without_catalyst_impact_holds(self, bus, register, config, clock):
        decision = config.decision.model_copy(update={"urgency_gain": 1.0})
        engine = DecisionEngine(bus, register, config.model_copy(update={"decision": decision}), clock)
        bullish_board(bus, clock, short_term=0.0)

        outcome = engine.decide("PEPE")

        # multiplier 1 + 1.0 * (0.0 - 0.5) * 2 = 0
        assert isinstance(outcome, Hold)
        assert outcome.reason == HoldReason.BELOW_MIN_NOTIONAL.value
        assert outcome.score == pytest.approx(0.7)

    def test_notional_ignores_planner_urgency_scale(self, bus, config, clock):
        generation = ParameterGeneration(
            generation=3, created_ts=clock.now(), weights={d.value: 1.0 for d in Domain},
            planner={"urgency_scale": 0.5, "slice_factor": 4.0},
        )

        class Fixed:
            def current(self):
                return generation

        bullish_board(bus, clock)
        outcome = DecisionEngine(bus, Fixed(), config, clock).decide("PEPE")

        assert outcome.target_notional == pytest.approx(70.0)
        assert outcome.urgency == 0.5
        assert outcome.generation == 3

    def test_sell_intent(self, engine, bus, clock):
        bearish_board(bus, clock)
        outcome = engine.decide("PEPE")
        assert outcome.side == Side.SELL

    def test_close_on_side_flip(self, bus, register, config, clock):
        positions = StaticPositions({"PEPE": Position(symbol="PEPE", size=40.0, entry_vwap=1.0)})
        engine = DecisionEngine(bus, register, config, clock, positions=positions)
        bearish_board(bus, clock)

        outcome = engine.decide("PEPE")
        assert outcome.side == Side.CLOSE
        assert outcome.target_notional == pytest.approx(40.0)
        assert outcome.rationale[0] == "side_flip"

    def test_close_below_hold_threshold(self, bus, register, config, clock):
        positions = StaticPositions({"PEPE": Position(symbol="PEPE", size=40.0, entry_vwap=1.0)})
        engine = DecisionEngine(bus, register, config, clock, positions=positions)
        for domain in (Domain.ACCUMULATION, Domain.SWING, Domain.BUYING_PRESSURE, Domain.CATALYST):
            publish(bus, clock, domain, 0.3, bias=0.0)

        outcome = engine.decide("PEPE")
        assert outcome.side == Side.CLOSE
        assert outcome.rationale[0] == "below_hold_threshold"

    def test_close_precedes_vetoes(self, bus, register, config, clock):
        positions = StaticPositions({"PEPE": Position(symbol="PEPE", size=-40.0, entry_vwap=1.0)})
        engine = DecisionEngine(bus, register, config, clock, positions=positions)
        bullish_board(bus, clock)
        publish(bus, clock, Domain.SENTIMENT, 0.1, state="panic")

        assert engine.decide("PEPE").side == Side.CLOSE

    def test_same_side_position_holds_or_adds(self, bus, register, config, clock):
        positions = StaticPositions({"PEPE": Position(symbol="PEPE", size=40.0, entry_vwap=1.0)})
        engine = DecisionEngine(bus, register, config, clock, positions=positions)
        bullish_board(bus, clock)
        assert engine.decide("PEPE").side == Side.BUY

    def test_last_view_recorded(self, engine, bus, clock):
        bullish_board(bus, clock)
        engine.decide("PEPE")
        view = engine.last_view["PEPE"]
        assert view.count == 5
        assert Domain.SENTIMENT in view.absent
