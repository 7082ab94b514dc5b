"""
Unit tests for the learning loop.

Tests:
- execution_quality / attribution_shares
- PerformanceTracker: entry, add, close (also in two parts), exit-price
  fallback, equity curve
- FeedbackProcessor: weight, quality and drawdown rules, recovery
- ParameterRegister: copy-on-write generations, clamps, replays, bounds
"""

import math

import pytest

from fixtures import BASE_TS
from order_plane.app.engine import PlanResult, SliceReport
from order_plane.learning import (
    FeedbackProcessor,
    ParameterBounds,
    ParameterRegister,
    PerformanceTracker,
    attribution_shares,
    directive_id,
    execution_quality,
)
from order_plane.risk.portfolio import PortfolioState
from shared.errors import InvariantViolation
from shared.models import (
    AdjustmentDirective,
    DirectiveTarget,
    Domain,
    Fill,
    ParameterGeneration,
    PerformanceReport,
    Side,
    SliceState,
    TradeIntent,
)


# ============================================================================
# Helpers
# ============================================================================

def plan_result(side, size, price, fees=0.0, planned=None, retries=0, slices=1, plan_id="plan-1"):
    reports = [SliceReport(f"{plan_id}:{i + 1}", size / slices, state=SliceState.FILLED) for i in range(slices)]
    fills = [Fill(slice_id=f"{plan_id}:1", ts=BASE_TS, filled_size=size, avg_price=price, fees=fees)] if size > 0 else []
    return PlanResult(
        plan_id=plan_id,
        intent_id="int-1",
        symbol="PEPE",
        side=side,
        planned_size=planned if planned is not None else size,
        reference_price=price,
        leverage=5,
        slices=reports,
        fills=fills,
        retries_used=retries,
    )


def buy_intent(contributions=None, intent_id="int-1"):
    return TradeIntent(
        intent_id=intent_id,
        symbol="PEPE",
        side=Side.BUY,
        target_notional=100.0,
        urgency=0.5,
        confidence=0.8,
        ts=BASE_TS,
        contributions=contributions if contributions is not None else {"accumulation": 0.3, "swing": 0.1},
    )


def report(pnl, attribution=None, quality=0.8, intent_id="int-1", close_index=0):
    attribution = attribution if attribution is not None else {"accumulation": 0.75, "swing": 0.25}
    return PerformanceReport(
        intent_id=intent_id,
        symbol="PEPE",
        ts=BASE_TS,
        realized_pnl=pnl,
        slippage=0.0,
        quality=quality,
        attribution=attribution,
        pnl_attribution={d: s * pnl for d, s in attribution.items()},
        close_index=close_index,
    )


def directive(key, delta, target=DirectiveTarget.ANALYZER, clamp=(0.1, 3.0), source="int-1"):
    return AdjustmentDirective(
        directive_id=directive_id(source, target, key), target=target, key=key, delta=delta, clamp=clamp,
    )


# ============================================================================
# Quality and attribution
# ============================================================================

@pytest.mark.unit
class TestQualityAndAttribution:

    @pytest.mark.parametrize("slippage,fill_ratio,retries,slices,expected", [
        (0.0, 1.0, 0, 2, 1.0),
        (0.001, 1.0, 0, 2, 0.75),
        (-0.001, 1.0, 0, 2, 0.75),
        (0.0, 0.5, 0, 2, 0.85),
        (0.0, 1.0, 2, 2, 0.8),
        (0.01, 0.0, 5, 1, 0.0),
    ])
    def test_execution_quality(self, slippage, fill_ratio, retries, slices, expected):
        assert execution_quality(slippage, fill_ratio, retries, slices, 0.002) == pytest.approx(expected)

    def test_shares_normalize(self):
        shares = attribution_shares({"accumulation": 1.0, "swing": 3.0})
        assert shares == {"accumulation": pytest.approx(0.25), "swing": pytest.approx(0.75)}
        assert sum(shares.values()) == pytest.approx(1.0, abs=1e-12)

    def test_zero_contributions_share_equally(self):
        assert attribution_shares({"a": 0.0, "b": 0.0}) == {"a": 0.5, "b": 0.5}
        assert attribution_shares({}) == {}

    def test_negative_contributions_clipped(self):
        assert attribution_shares({"a": -1.0, "b": 2.0}) == {"a": 0.0, "b": 1.0}


# ============================================================================
# Performance Tracker
# ============================================================================

@pytest.mark.unit
class TestPerformanceTracker:

    def test_entry_then_close(self, clock):
        tracker = PerformanceTracker(10_000.0, clock=clock)
        trade = tracker.on_entry(buy_intent(), plan_result(Side.BUY, 100.0, 1.0, fees=0.1))
        assert trade.entry_vwap == 1.0
        assert trade.size == 100.0

        result = tracker.on_close("PEPE", plan_result(Side.SELL, 100.0, 1.2, fees=0.12, plan_id="plan-2"))

        assert result.realized_pnl == pytest.approx(20.0 - 0.22)
        assert result.attribution == {"accumulation": pytest.approx(0.75), "swing": pytest.approx(0.25)}
        assert sum(result.pnl_attribution.values()) == pytest.approx(result.realized_pnl)
        assert result.quality == pytest.approx(1.0)
        assert result.fill_ratio == 1.0
        assert "PEPE" not in tracker.open
        assert list(tracker.history) == [result]
        assert tracker.realized_total == pytest.approx(19.78)

    def test_close_uses_exit_price_without_fills(self, clock):
        tracker = PerformanceTracker(10_000.0, clock=clock)
        tracker.on_entry(buy_intent(), plan_result(Side.BUY, 100.0, 1.0, fees=0.1))
        result = tracker.on_close("PEPE", exit_price=0.9)
        assert result.realized_pnl == pytest.approx(-10.1)

    def test_close_without_exit_price(self, clock):
        tracker = PerformanceTracker(10_000.0, clock=clock)
        tracker.on_entry(buy_intent(), plan_result(Side.BUY, 100.0, 1.0))
        with pytest.raises(ValueError):
            tracker.on_close("PEPE")
        assert tracker.on_close("WIF", exit_price=1.0) is None

    def test_short_trade_pnl(self, clock):
        tracker = PerformanceTracker(10_000.0, clock=clock)
        tracker.on_entry(buy_intent(), plan_result(Side.SELL, 50.0, 2.0))
        result = tracker.on_close("PEPE", plan_result(Side.BUY, 50.0, 1.5, plan_id="plan-2"))
        assert result.realized_pnl == pytest.approx(25.0)

    def test_unfilled_entry_is_ignored(self, clock):
        tracker = PerformanceTracker(10_000.0, clock=clock)
        assert tracker.on_entry(buy_intent(), plan_result(Side.BUY, 0.0, 1.0, planned=100.0)) is None
        assert tracker.open == {}

    def test_same_side_entries_merge(self, clock):
        tracker = PerformanceTracker(10_000.0, clock=clock)
        tracker.on_entry(buy_intent(), plan_result(Side.BUY, 100.0, 1.0))
        trade = tracker.on_entry(
            buy_intent({"accumulation": 0.1, "catalyst": 0.2}, intent_id="int-2"),
            plan_result(Side.BUY, 100.0, 2.0, retries=1, plan_id="plan-2"),
        )

        assert trade.intent_id == "int-1"
        assert trade.size == 200.0
        assert trade.entry_vwap == pytest.approx(1.5)
        assert trade.contributions == {"accumulation": pytest.approx(0.4), "swing": 0.1, "catalyst": 0.2}
        assert trade.retries == 1
        assert trade.results == ["plan-1", "plan-2"]

    def test_partial_close_keeps_remainder(self, clock):
        tracker = PerformanceTracker(10_000.0, clock=clock)
        tracker.on_entry(buy_intent(), plan_result(Side.BUY, 100.0, 1.0))
        result = tracker.on_close("PEPE", plan_result(Side.SELL, 40.0, 1.5, plan_id="plan-2"))
        assert result.realized_pnl == pytest.approx(20.0)
        assert tracker.open["PEPE"].size == pytest.approx(60.0)

    def test_close_in_two_parts(self, clock):
        tracker = PerformanceTracker(10_000.0, clock=clock)
        tracker.on_entry(buy_intent(), plan_result(Side.BUY, 100.0, 1.0, retries=1, slices=2))

        first = tracker.on_close("PEPE", plan_result(Side.SELL, 40.0, 1.5, plan_id="plan-2"))
        second = tracker.on_close("PEPE", plan_result(Side.SELL, 60.0, 1.2, plan_id="plan-3"))

        assert first.retries_used == 1
        assert first.close_index == 0
        assert second.realized_pnl == pytest.approx(12.0)
        # Entry retries and slices were charged to the first close only
        assert second.retries_used == 0
        assert second.fill_ratio == pytest.approx(1.0)
        assert second.quality == pytest.approx(1.0)
        assert second.close_index == 1
        assert first.source_key != second.source_key
        assert "PEPE" not in tracker.open
        assert tracker.closed == 2

    def test_partial_fills_lower_quality(self, clock):
        tracker = PerformanceTracker(10_000.0, clock=clock)
        tracker.on_entry(buy_intent(), plan_result(Side.BUY, 50.0, 1.0, planned=100.0))
        result = tracker.on_close("PEPE", plan_result(Side.SELL, 50.0, 1.0, plan_id="plan-2"))
        assert result.fill_ratio == pytest.approx(100.0 / 150.0)
        assert result.quality < 1.0

    @pytest.mark.asyncio
    async def test_mark_to_market_and_drawdown(self, clock):
        tracker = PerformanceTracker(100.0, clock=clock)
        tracker.on_entry(buy_intent(), plan_result(Side.BUY, 100.0, 1.0))

        assert tracker.mark_to_market({"PEPE": 1.2}) == {"PEPE": pytest.approx(20.0)}
        await clock.advance(60)
        tracker.mark_to_market({"PEPE": 0.9})

        assert [e for _, e in tracker.equity_curve] == [pytest.approx(120.0), pytest.approx(90.0)]
        assert tracker.max_drawdown() == pytest.approx(0.25)

    def test_fill_counter_and_quality_band(self, clock):
        tracker = PerformanceTracker(100.0, clock=clock)
        fill = Fill(slice_id="plan-1:1", ts=BASE_TS, filled_size=1.0, avg_price=1.0)
        tracker.on_fill("PEPE", fill)
        tracker.on_fill("PEPE", fill)
        assert tracker.fills == {"PEPE": 2}
        assert tracker.quality_band(0.5) == "poor"
        assert tracker.quality_band(0.7) == "acceptable"
        assert tracker.quality_band(0.8) == "good"
        assert tracker.quality_band(0.9) == "excellent"


# ============================================================================
# Feedback Processor
# ============================================================================

@pytest.mark.unit
class TestFeedbackProcessor:

    def test_losing_trade_reduces_weights(self):
        feedback = FeedbackProcessor()
        directives = feedback.weight_directives(report(-10.0), [])

        deltas = {d.key: d.delta for d in directives}
        assert deltas == {"accumulation": pytest.approx(-0.0375), "swing": pytest.approx(-0.0125)}
        assert all(d.target == DirectiveTarget.ANALYZER for d in directives)
        assert all(d.clamp == (0.1, 3.0) for d in directives)

    def test_winning_trade_raises_weights_at_half_rate(self):
        feedback = FeedbackProcessor()
        deltas = {d.key: d.delta for d in feedback.weight_directives(report(10.0), [])}
        assert deltas["accumulation"] == pytest.approx(0.01875)

    def test_net_over_history(self):
        feedback = FeedbackProcessor()
        history = [report(10.0, intent_id="int-0"), report(10.0, intent_id="int-a")]
        current = report(-10.0, intent_id="int-b")
        deltas = {d.key: d.delta for d in feedback.weight_directives(current, history)}
        # accumulation: mean(0.75, 0.75, -0.75) = 0.25
        assert deltas["accumulation"] == pytest.approx(0.05 / 2 * 0.25)

    def test_breakeven_emits_nothing(self):
        assert FeedbackProcessor().weight_directives(report(0.0), []) == []

    def test_directive_ids_are_deterministic(self):
        feedback = FeedbackProcessor()
        first = [d.directive_id for d in feedback.weight_directives(report(-1.0), [])]
        second = [d.directive_id for d in feedback.weight_directives(report(-1.0), [])]
        assert first == second
        assert len(set(first)) == 2

    def test_partial_closes_learn_separately(self, register):
        feedback = FeedbackProcessor()
        first = report(-10.0)
        second = report(-10.0, close_index=1)

        gen1 = register.apply(feedback.weight_directives(first, []))
        gen2 = register.apply(feedback.weight_directives(second, [first]))

        assert gen2.generation == gen1.generation + 1
        assert gen2.weights["accumulation"] == pytest.approx(gen1.weights["accumulation"] - 0.0375)

    def test_poor_quality_slows_execution(self, register):
        feedback = FeedbackProcessor()
        directives = feedback.quality_directives(report(1.0, quality=0.5), register.current())

        by_key = {d.key: d for d in directives}
        assert by_key["urgency_scale"].delta == pytest.approx(-0.05)
        assert by_key["urgency_scale"].clamp == (0.2, 1.0)
        assert by_key["slice_factor"].delta == pytest.approx(0.5)
        assert by_key["slice_factor"].clamp == (4.0, 12.0)

    def test_good_quality_relaxes_back(self):
        feedback = FeedbackProcessor()
        tightened = ParameterGeneration(
            generation=3, created_ts=BASE_TS, planner={"urgency_scale": 0.9, "slice_factor": 5.0},
        )
        by_key = {d.key: d.delta for d in feedback.quality_directives(report(1.0, quality=0.9), tightened)}
        assert by_key == {"urgency_scale": pytest.approx(0.025), "slice_factor": pytest.approx(-0.25)}

        base = ParameterGeneration(generation=0, created_ts=BASE_TS, planner={"urgency_scale": 1.0, "slice_factor": 4.0})
        assert feedback.quality_directives(report(1.0, quality=0.9), base) == []
        assert feedback.quality_directives(report(1.0, quality=0.7), base) == []

    @pytest.mark.asyncio
    async def test_drawdown_tightens_then_recovers(self, clock, register):
        feedback = FeedbackProcessor(clock=clock)
        portfolio = PortfolioState(initial_equity=100.0)
        portfolio.apply_realized(-12.0, ts=clock.now())

        tighten = feedback.drawdown_directives(report(-12.0), portfolio, register.current())
        by_key = {d.key: d for d in tighten}
        assert by_key["single_asset_limit"].delta == pytest.approx(-0.02)
        assert by_key["single_asset_limit"].clamp == (0.05, 0.15)
        assert by_key["L_max"].delta == pytest.approx(-5.0)
        assert by_key["L_max"].clamp == (1.0, 50.0)

        generation = register.apply(tighten)
        assert generation.risk["single_asset_limit"] == pytest.approx(0.13)
        assert generation.risk["L_max"] == pytest.approx(45.0)

        await clock.advance(86_399)
        assert feedback.check_recovery(portfolio, generation) == []

        await clock.advance(1)
        restore = feedback.check_recovery(portfolio, generation)
        restored = register.apply(restore)
        assert restored.risk["single_asset_limit"] == pytest.approx(0.15)
        assert restored.risk["L_max"] == pytest.approx(50.0)
        assert feedback.tightened_at is None

    @pytest.mark.asyncio
    async def test_new_loss_delays_recovery(self, clock, register):
        feedback = FeedbackProcessor(clock=clock)
        portfolio = PortfolioState(initial_equity=100.0)
        portfolio.apply_realized(-12.0, ts=clock.now())
        generation = register.apply(feedback.drawdown_directives(report(-12.0), portfolio, register.current()))

        await clock.advance(43_200)
        portfolio.apply_realized(-0.5, ts=clock.now())
        await clock.advance(43_200)
        assert feedback.check_recovery(portfolio, generation) == []
        await clock.advance(43_200)
        assert len(feedback.check_recovery(portfolio, generation)) == 2

    def test_process_combines_rules(self, register):
        feedback = FeedbackProcessor()
        portfolio = PortfolioState(initial_equity=100.0)
        directives = feedback.process(report(-1.0, quality=0.5), [], portfolio, register.current())
        assert {d.target for d in directives} == {DirectiveTarget.ANALYZER, DirectiveTarget.PLANNER}


# ============================================================================
# Parameter register
# ============================================================================

@pytest.mark.unit
class TestParameterRegister:

    def test_generation_zero_from_config(self, register, config):
        gen0 = register.current()
        assert gen0.generation == 0
        assert set(gen0.weights) == {d.value for d in Domain}
        assert gen0.risk == {"single_asset_limit": config.risk.single_asset_limit, "L_max": float(config.risk.L_max)}
        assert gen0.planner["slice_factor"] == config.execution.slice_factor

    def test_apply_is_copy_on_write(self, register, metrics):
        gen0 = register.current()
        gen1 = register.apply([directive("accumulation", -0.2)])

        assert gen1.generation == 1
        assert gen1.weights["accumulation"] == pytest.approx(0.8)
        assert gen0.weights["accumulation"] == 1.0
        assert register.current() is gen1
        assert [g.generation for g in register.history()] == [0, 1]
        assert metrics.count("directives_applied", target="analyzer") == 1
        assert metrics.count("generation") == 1

    def test_clamp(self, register):
        generation = register.apply([directive("swing", -10.0), directive("catalyst", 10.0)])
        assert generation.weights["swing"] == 0.1
        assert generation.weights["catalyst"] == 3.0

    def test_replays_are_dropped(self, register):
        d = directive("swing", -0.1)
        gen1 = register.apply([d, d])
        assert gen1.weights["swing"] == pytest.approx(0.9)
        assert register.apply([d]) is gen1
        assert register.seen(d.directive_id)

    def test_unknown_risk_key_rejected(self, register):
        gen0 = register.current()
        with pytest.raises(InvariantViolation):
            register.apply([directive("max_leverage", 1.0, target=DirectiveTarget.RISK, clamp=(0.0, 10.0))])
        assert register.current() is gen0
        assert register.rejected == 1

    def test_new_analyzer_key_starts_at_one(self, register):
        generation = register.apply([directive("onchain", 0.5)])
        assert generation.weights["onchain"] == pytest.approx(1.5)

    def test_bound_violation_keeps_prior_generation(self, register, metrics):
        gen0 = register.current()
        bad = directive("single_asset_limit", 5.0, target=DirectiveTarget.RISK, clamp=(0.0, 2.0))
        with pytest.raises(InvariantViolation):
            register.apply([bad])

        assert register.current() is gen0
        assert not register.seen(bad.directive_id)
        assert metrics.count("invariant_violations", source="learner") == 1

    def test_invalid_initial_generation(self):
        initial = ParameterGeneration(generation=0, created_ts=BASE_TS, weights={"swing": math.inf})
        with pytest.raises(InvariantViolation):
            ParameterRegister(initial)

    def test_bounds_report_every_problem(self):
        generation = ParameterGeneration(
            generation=1,
            created_ts=BASE_TS,
            weights={"swing": 5.0},
            risk={"L_max": 200.0},
            planner={"urgency_scale": 0.0},
        )
        assert len(ParameterBounds(w_max=3.0).violations(generation)) == 3

    def test_restore(self, register):
        later = ParameterGeneration(
            generation=7, created_ts=BASE_TS, weights={"swing": 0.5}, applied_directives=("abc",),
        )
        register.restore(later, applied_ids=["def"])
        assert register.current().generation == 7
        assert register.seen("abc") and register.seen("def")

        with pytest.raises(InvariantViolation):
            register.restore(ParameterGeneration(generation=3, created_ts=BASE_TS))
