"""
Unit tests for data_plane modules.

Tests:
- AssessmentBus: ordering, late/duplicate drops, retention, subscribers
- FeedHub: validation, out-of-order drops, windows, listeners
- Scheduler: virtual-time job execution
- StateStore / AnalysisLog: atomic snapshots, signature checks, restore
"""

import asyncio
import json

import pytest

from data_plane.app.feed_hub import FeedHub
from data_plane.app.scheduler import Scheduler
from data_plane.bus.assessment_bus import AssessmentBus
from data_plane.storage.state_store import AnalysisLog, StateStore
from fixtures import BASE_TS, assessment, market_snapshot
from shared.models import (
    Domain,
    ParameterGeneration,
    SocialSample,
    SocialSource,
    TradeIntent,
    Side,
)


# ============================================================================
# AssessmentBus
# ============================================================================

@pytest.mark.unit
class TestAssessmentBus:
    """Tests for the Assessment Bus."""

    def test_latest_is_newest_published(self):
        bus = AssessmentBus()
        bus.publish(assessment(Domain.VOLATILITY, 0.2, ts=BASE_TS))
        bus.publish(assessment(Domain.VOLATILITY, 0.4, ts=BASE_TS + 5))

        latest = bus.latest(Domain.VOLATILITY, "PEPE")
        assert latest.score == 0.4
        assert latest.ts == BASE_TS + 5

    def test_late_assessment_dropped_and_counted(self, metrics):
        bus = AssessmentBus(metrics=metrics)
        assert bus.publish(assessment(Domain.SWING, 0.5, ts=BASE_TS + 10))
        assert not bus.publish(assessment(Domain.SWING, 0.9, ts=BASE_TS + 5))

        assert bus.latest(Domain.SWING, "PEPE").score == 0.5
        assert bus.late_drops(Domain.SWING, "PEPE") == 1
        assert bus.late_drops() == 1
        assert metrics.count("bus_drops", domain="swing", reason="late") == 1

    def test_equal_ts_is_duplicate_noop(self):
        bus = AssessmentBus()
        bus.publish(assessment(Domain.SWING, 0.5, ts=BASE_TS))
        assert not bus.publish(assessment(Domain.SWING, 0.7, ts=BASE_TS))

        assert bus.latest(Domain.SWING, "PEPE").score == 0.5
        assert bus.summary()["duplicates"] == 1
        assert bus.late_drops() == 0

    def test_keys_are_independent(self):
        bus = AssessmentBus()
        bus.publish(assessment(Domain.SWING, 0.5, ts=BASE_TS + 10))
        # Older ts on another symbol is not late
        assert bus.publish(assessment(Domain.SWING, 0.3, symbol="WIF", ts=BASE_TS))
        assert bus.latest(Domain.SWING, "WIF").score == 0.3

    def test_window_relative_to_newest(self):
        bus = AssessmentBus()
        for i in range(10):
            bus.publish(assessment(Domain.VOLATILITY, 0.1, ts=BASE_TS + i * 10))

        window = bus.window(Domain.VOLATILITY, "PEPE", 30)
        assert [a.ts for a in window] == [BASE_TS + 60, BASE_TS + 70, BASE_TS + 80, BASE_TS + 90]
        assert bus.window(Domain.SWING, "PEPE", 30) == []

    def test_retention_evicts_old_entries(self):
        bus = AssessmentBus(retention_s={"volatility": 50})
        for i in range(10):
            bus.publish(assessment(Domain.VOLATILITY, 0.1, ts=BASE_TS + i * 10))

        window = bus.window(Domain.VOLATILITY, "PEPE", 1_000)
        assert window[0].ts == BASE_TS + 40
        assert bus.summary()["evicted"] == 4

    def test_snapshot_returns_present_domains_only(self):
        bus = AssessmentBus()
        bus.publish(assessment(Domain.SWING, 0.5))
        bus.publish(assessment(Domain.VOLATILITY, 0.2))

        snap = bus.snapshot("PEPE", [Domain.SWING, Domain.VOLATILITY, Domain.CATALYST])
        assert set(snap) == {Domain.SWING, Domain.VOLATILITY}

    @pytest.mark.asyncio
    async def test_subscriber_receives_in_order(self):
        bus = AssessmentBus()
        received = []
        bus.subscribe(Domain.SWING, lambda a: received.append(a.ts))

        for i in range(5):
            bus.publish(assessment(Domain.SWING, 0.5, ts=BASE_TS + i))
        bus.publish(assessment(Domain.VOLATILITY, 0.5, ts=BASE_TS))
        await bus.drain()

        assert received == [BASE_TS + i for i in range(5)]
        await bus.close()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_delivery(self):
        bus = AssessmentBus()
        seen = []

        def handler(a):
            seen.append(a.ts)
            if len(seen) == 1:
                raise RuntimeError("boom")

        bus.subscribe(Domain.SWING, handler)
        bus.publish(assessment(Domain.SWING, 0.5, ts=BASE_TS))
        bus.publish(assessment(Domain.SWING, 0.5, ts=BASE_TS + 1))
        await bus.drain()

        assert len(seen) == 2
        assert bus.summary()["handler_errors"] == 1
        await bus.close()

    @pytest.mark.asyncio
    async def test_full_subscriber_queue_drops_oldest(self):
        bus = AssessmentBus(queue_size=2)
        received = []

        async def slow(a):
            received.append(a.ts)

        sub = bus.subscribe(Domain.SWING, slow)
        for i in range(4):
            bus.publish(assessment(Domain.SWING, 0.5, ts=BASE_TS + i))
        await bus.drain()

        assert sub.dropped == 2
        assert received == [BASE_TS + 2, BASE_TS + 3]
        await bus.close()


# ============================================================================
# FeedHub
# ============================================================================

@pytest.mark.unit
class TestFeedHub:
    """Tests for feed buffering and validation."""

    def test_ingest_and_latest(self, clock):
        hub = FeedHub(clock)
        assert hub.ingest_market(market_snapshot(price=1.0, ts=BASE_TS))
        assert hub.ingest_market(market_snapshot(price=1.1, ts=BASE_TS + 1))

        assert hub.latest_market("PEPE").price == 1.1
        assert hub.symbols() == ["PEPE"]

    def test_out_of_order_dropped(self, clock, metrics):
        hub = FeedHub(clock, metrics=metrics)
        hub.ingest_market(market_snapshot(ts=BASE_TS + 5))
        assert not hub.ingest_market(market_snapshot(ts=BASE_TS + 5))
        assert not hub.ingest_market(market_snapshot(ts=BASE_TS + 1))

        assert hub.stats()["out_of_order_drops"] == 2
        assert metrics.count("feed_drops", feed="market", reason="out_of_order") == 2

    def test_invalid_record_dropped(self, clock):
        hub = FeedHub(clock)
        crossed = {
            "symbol": "PEPE", "ts": BASE_TS, "price": 1.0, "bid": 1.01, "ask": 0.99,
            "volume_1m": 1.0, "volume_1h": 60.0,
        }
        assert not hub.ingest_market(crossed)
        assert not hub.ingest_market({"symbol": "PEPE", "ts": BASE_TS})
        assert hub.stats()["invalid_drops"] == 2
        assert hub.latest_market("PEPE") is None

    def test_max_samples_backpressure(self, clock):
        hub = FeedHub(clock, max_samples=10)
        for i in range(25):
            hub.ingest_market(market_snapshot(ts=BASE_TS + i))

        assert len(hub.market_window("PEPE")) == 10
        assert hub.stats()["backpressure_drops"] == 15

    @pytest.mark.asyncio
    async def test_market_window_uses_clock(self, clock):
        hub = FeedHub(clock)
        for i in range(10):
            hub.ingest_market(market_snapshot(ts=BASE_TS + i * 10))
        await clock.advance(90)

        window = hub.market_window("PEPE", 30)
        assert [s.ts for s in window] == [BASE_TS + 60, BASE_TS + 70, BASE_TS + 80, BASE_TS + 90]

    def test_social_window_merges_sources(self, clock):
        hub = FeedHub(clock)
        hub.ingest_social(SocialSample(symbol="PEPE", source=SocialSource.TWITTER, ts=BASE_TS - 2, text="moon"))
        hub.ingest_social(SocialSample(symbol="PEPE", source=SocialSource.REDDIT, ts=BASE_TS - 5, text="dump"))
        hub.ingest_social(SocialSample(symbol="WIF", source=SocialSource.REDDIT, ts=BASE_TS - 1, text="hi"))

        texts = [s.text for s in hub.social_window("PEPE")]
        assert texts == ["dump", "moon"]

    def test_listener_failure_is_isolated(self, clock):
        hub = FeedHub(clock)
        seen = []

        def bad(snapshot):
            raise RuntimeError("listener")

        hub.add_listener(bad)
        hub.add_listener(lambda s: seen.append(s.ts))
        assert hub.ingest_market(market_snapshot(ts=BASE_TS))
        assert seen == [BASE_TS]


# ============================================================================
# Scheduler
# ============================================================================

@pytest.mark.unit
class TestScheduler:
    """Tests for the virtual-time scheduler."""

    @pytest.mark.asyncio
    async def test_run_for_runs_jobs_on_cadence(self, clock):
        scheduler = Scheduler(clock)
        fast, slow = [], []

        async def fast_job():
            fast.append(clock.now())

        async def slow_job():
            slow.append(clock.now())

        scheduler.add_job("fast", 5.0, fast_job)
        scheduler.add_job("slow", 20.0, slow_job, initial_delay_s=20.0)
        await scheduler.run_for(60)

        assert len(fast) == 13          # t=0,5,...,60
        assert slow == [BASE_TS + 20, BASE_TS + 40, BASE_TS + 60]
        assert clock.now() == BASE_TS + 60

    @pytest.mark.asyncio
    async def test_failing_job_counted_and_rescheduled(self, clock):
        scheduler = Scheduler(clock)

        async def boom():
            raise RuntimeError("job failure")

        scheduler.add_job("boom", 10.0, boom)
        await scheduler.run_for(30)

        stats = scheduler.stats()["boom"]
        assert stats["errors"] == 4
        assert stats["runs"] == 0

    def test_duplicate_and_invalid_jobs_rejected(self, clock):
        scheduler = Scheduler(clock)

        async def noop():
            return None

        scheduler.add_job("a", 1.0, noop)
        with pytest.raises(ValueError):
            scheduler.add_job("a", 1.0, noop)
        with pytest.raises(ValueError):
            scheduler.add_job("b", 0.0, noop)

    @pytest.mark.asyncio
    async def test_run_for_requires_virtual_clock(self):
        from shared.clock import SystemClock

        scheduler = Scheduler(SystemClock())
        with pytest.raises(TypeError):
            await scheduler.run_for(1)

    @pytest.mark.asyncio
    async def test_sleepers_woken_during_run(self, clock):
        scheduler = Scheduler(clock)
        woke = []

        async def sleeper():
            await clock.sleep(12)
            woke.append(clock.now())

        async def noop():
            return None

        task = asyncio.create_task(sleeper())
        await asyncio.sleep(0)
        scheduler.add_job("tick", 5.0, noop)
        await scheduler.run_for(20)
        await task

        assert woke == [BASE_TS + 12]


# ============================================================================
# StateStore / AnalysisLog
# ============================================================================

def _generation(n: int = 3) -> ParameterGeneration:
    return ParameterGeneration(
        generation=n,
        created_ts=BASE_TS,
        weights={d.value: 1.0 for d in Domain},
        risk={"single_asset_limit": 0.15, "L_max": 50.0},
        planner={"urgency_scale": 1.0, "slice_factor": 4.0},
    )


@pytest.mark.unit
class TestStateStore:
    """Tests for persisted snapshots."""

    def test_save_and_load_latest(self, tmp_path):
        store = StateStore(str(tmp_path))
        intent = TradeIntent(
            symbol="PEPE", side=Side.BUY, target_notional=50.0, urgency=0.5, confidence=0.8, ts=BASE_TS,
        )
        store.save(BASE_TS, _generation(1))
        second = store.save(
            BASE_TS + 60, _generation(2), open_intents=[intent],
            halted={"WIF": "invariant"}, equity=9_500.0, peak_equity=10_000.0,
        )

        state = StateStore(str(tmp_path)).load_latest()
        assert state.snapshot_id == second
        assert state.generation.generation == 2
        assert state.open_intents[0].intent_id == intent.intent_id
        assert state.halted == {"WIF": "invariant"}
        assert state.equity == 9_500.0

    def test_tampered_snapshot_skipped(self, tmp_path):
        store = StateStore(str(tmp_path))
        store.save(BASE_TS, _generation(1))
        latest = store.save(BASE_TS + 60, _generation(2))

        path = tmp_path / f"state-{latest:08d}.json"
        document = json.loads(path.read_text())
        document["payload"]["generation"]["generation"] = 99
        path.write_text(json.dumps(document))

        state = store.load_latest()
        assert state.generation.generation == 1

    def test_truncated_snapshot_skipped(self, tmp_path):
        store = StateStore(str(tmp_path))
        store.save(BASE_TS, _generation(1))
        latest = store.save(BASE_TS + 60, _generation(2))
        (tmp_path / f"state-{latest:08d}.json").write_text('{"payload": {')

        assert store.load_latest().generation.generation == 1

    def test_empty_store_returns_none(self, tmp_path):
        assert StateStore(str(tmp_path)).load_latest() is None

    def test_prunes_old_snapshots(self, tmp_path):
        store = StateStore(str(tmp_path), keep=3)
        for i in range(6):
            store.save(BASE_TS + i, _generation(i))

        files = sorted(p.name for p in tmp_path.glob("state-*.json"))
        assert files == ["state-00000004.json", "state-00000005.json", "state-00000006.json"]

    def test_no_temp_files_left(self, tmp_path):
        store = StateStore(str(tmp_path))
        store.save(BASE_TS, _generation(1))
        assert list(tmp_path.glob("*.tmp")) == []


@pytest.mark.unit
def test_analysis_log_appends_jsonl(tmp_path):
    log = AnalysisLog(str(tmp_path / "logs" / "analysis.jsonl"))
    log.append({"domain": "swing", "score": 0.5})
    log.append({"domain": "volatility", "score": 0.2})

    assert [r["domain"] for r in log.read_all()] == ["swing", "volatility"]
    assert log.records_written == 2
