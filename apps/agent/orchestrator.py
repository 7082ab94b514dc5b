"""
Main orchestrator for the token agent (Control Plane).

The Agent wires the three planes and owns their lifecycle:
1. START: restore persisted state, connect the exchange, start feeds
2. ANALYZE: each analyzer runs on its own cadence and publishes to the bus
3. DECIDE: fuse the bus per symbol into a TradeIntent or Hold
4. RISK: gate the intent against portfolio limits and the drawdown brake
5. PLAN / EXECUTE: slice the admitted notional and run it on the exchange
6. LEARN: close trades into PerformanceReports, feed back directives,
   publish new parameter generations
7. SHUTDOWN: stop jobs, persist state, close the exchange

Every periodic activity is a Scheduler job, so a dry run on a VirtualClock
plays the whole loop deterministically.
"""

import asyncio
import dataclasses
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Optional, Union

from data_plane.adapters.feed_stub import SyntheticMarketFeed, SyntheticSocialFeed
from data_plane.adapters.feeds import MarketFeed, SocialFeed
from data_plane.app.feed_hub import FeedHub
from data_plane.app.scheduler import Scheduler
from data_plane.bus.assessment_bus import AssessmentBus
from data_plane.storage.state_store import AnalysisLog, StateStore
from order_plane.app.engine import ExecutionEngine, PlanResult
from order_plane.app.positions import PositionBook
from order_plane.broker.exchange import ResilientExchange
from order_plane.broker.paper_exchange import PaperExchange
from order_plane.learning.feedback import FeedbackProcessor
from order_plane.learning.learner import ParameterRegister
from order_plane.learning.tracker import OpenTrade, PerformanceTracker
from order_plane.planner import ExecutionPlanner, TrailingStop
from order_plane.risk import (
    CorrelationTracker,
    EmergencyMonitor,
    KillSwitch,
    PortfolioState,
    RiskGate,
)
from shared.clock import Clock, SystemClock, VirtualClock
from shared.config import AgentConfig
from shared.errors import InvariantViolation, TransientError
from shared.logging import TraceContext, init_structured_logger
from shared.metrics import AgentMetrics
from shared.models import (
    AdjustmentDirective,
    BreachType,
    Domain,
    ExecutionPlan,
    Fill,
    Hold,
    MarketSnapshot,
    PerformanceReport,
    RiskEvent,
    RiskLevel,
    Side,
    TradeIntent,
)
from strategy_plane.analyzers import build_default_registry
from strategy_plane.decision import DecisionEngine
from strategy_plane.estimators import EstimatorRegistry
from strategy_plane.runner import AnalyzerRunner

from apps.agent.events import (
    AssessmentEvent,
    DecisionEvent,
    FillEvent,
    GenerationEvent,
    PerformanceEvent,
    PlanCompleteEvent,
    PlanEvent,
    RiskBreachEvent,
    RiskDecisionEvent,
    ShutdownEvent,
    StartEvent,
)

logger = logging.getLogger(__name__)

LABEL_INTERVAL_S = 60.0


class Agent:
    """
    Token trading agent.

    Collaborators default to the paper stack (synthetic feeds, PaperExchange)
    and can be injected for tests.

    Usage:
        agent = Agent(load_config())
        await agent.hook_start()
        await agent.run_for(3600)        # VirtualClock
        await agent.hook_shutdown()
    """

    def __init__(
        self,
        config: Optional[AgentConfig] = None,
        clock: Optional[Clock] = None,
        exchange=None,
        market_feed: Optional[MarketFeed] = None,
        social_feed: Optional[SocialFeed] = None,
        metrics: Optional[AgentMetrics] = None,
        event_log_path: Optional[str] = None,
        state_dir: Optional[str] = None,
        analysis_log_path: Optional[str] = None,
    ):
        self.config = config or AgentConfig()
        runtime = self.config.runtime
        self.mode = runtime.mode
        self.symbols = list(runtime.symbols)
        self.clock = clock or (VirtualClock() if self.mode == "dry" else SystemClock())
        self.metrics = metrics or AgentMetrics()
        self.log = init_structured_logger("agent", mode=self.mode)
        self.event_log_path = Path(event_log_path or self.config.persistence.event_log)
        self.event_log: list[dict] = []

        self.executor = ThreadPoolExecutor(max_workers=runtime.workers, thread_name_prefix="inference")

        # Data plane
        self.hub = FeedHub(self.clock, runtime.feed_retention_s, runtime.feed_max_samples, self.metrics)
        self.hub.add_market_feed(market_feed or SyntheticMarketFeed(
            self.clock, interval_s=runtime.feed_interval_s, seed=runtime.seed,
        ))
        self.hub.add_social_feed(social_feed or SyntheticSocialFeed(
            self.clock, interval_s=runtime.social_interval_s, seed=runtime.seed,
        ))
        self.bus = AssessmentBus(self.config.retention_s(), queue_size=runtime.bus_queue_size, metrics=self.metrics)
        self.store = StateStore(state_dir or self.config.persistence.state_dir, self.config.persistence.keep_snapshots)
        self.analysis_log = AnalysisLog(analysis_log_path or self.config.persistence.analysis_log)

        # Strategy plane
        self.register = ParameterRegister.from_config(self.config, self.clock, self.metrics)
        self.estimators = EstimatorRegistry(self.config.learning, executor=self.executor, seed=runtime.seed)
        self.analyzers = build_default_registry(self.config)
        self.runner = AnalyzerRunner(
            self.analyzers, self.hub, self.bus, self.clock,
            estimators=self.estimators, executor=self.executor,
            metrics=self.metrics, analysis_log=self.analysis_log,
        )
        self.kill_switch = KillSwitch(self.config.risk.emergency.cool_off_s, self.clock)
        self.positions = PositionBook()
        self.decision = DecisionEngine(
            self.bus, self.register, self.config, self.clock,
            positions=self.positions, halts=self.kill_switch, metrics=self.metrics,
        )

        # Order plane
        risk = self.config.risk
        self.portfolio = PortfolioState(initial_equity=risk.initial_equity)
        self.correlation = CorrelationTracker(
            risk.correlation_window_s, risk.correlation_max, risk.correlation_min_points,
        )
        self.gate = RiskGate(
            risk, self.register, self.correlation, self.kill_switch, self.clock, self.metrics,
            on_event=self._on_risk_event,
        )
        self.monitor = EmergencyMonitor(
            risk.emergency, self.kill_switch, self.clock,
            depth_band=self.config.execution.depth_band, on_breach=self._on_risk_event,
        )
        self.planner = ExecutionPlanner(self.config.execution)
        self.venue = exchange or PaperExchange(
            self.clock,
            fee_rate=self.config.exchange.fee_rate,
            slippage_std=self.config.exchange.paper_slippage_std,
            seed=runtime.seed,
        )
        self.exchange = ResilientExchange(
            self.venue, self.config.exchange,
            on_replay=self.positions.reconcile, on_latency=self.monitor.record_latency,
        )
        self.engine = ExecutionEngine(
            self.exchange, self.positions, self.planner, self.config.execution,
            clock=self.clock, metrics=self.metrics,
            snapshot_provider=self.hub.latest_market,
            on_fill=self._on_fill, on_error=self.monitor.record_error,
        )
        self.tracker = PerformanceTracker(risk.initial_equity, self.config.learning, self.config.execution, self.clock)
        self.feedback = FeedbackProcessor(self.config.learning, risk, self.config.execution, self.clock)

        self.hub.add_listener(self._on_snapshot)
        self.scheduler = Scheduler(self.clock)

        # Per-symbol runtime state
        self.open_intents: dict[str, TradeIntent] = {}
        self.in_flight: dict[str, ExecutionPlan] = {}
        self.stops: dict[str, TrailingStop] = {}
        self._plan_tasks: set[asyncio.Task] = set()

        self.start_ts: Optional[float] = None
        self.total_intents = 0
        self.total_plans = 0
        self.snapshots_written = 0

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def emit_event(self, event: dict) -> None:
        """
        Emit an event to the audit log.

        Events are:
        - Appended to in-memory log
        - Written to disk (JSON-lines format)
        """
        self.event_log.append(event)

        self.event_log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.event_log_path, "a") as f:
            f.write(json.dumps(event, default=str) + "\n")

        logger.debug(f"Event: {event.get('event_type', 'UNKNOWN')}")

    def events_of(self, event_type: str) -> list[dict]:
        return [e for e in self.event_log if e.get("event_type") == event_type]

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _on_snapshot(self, snapshot: MarketSnapshot) -> None:
        if isinstance(self.venue, PaperExchange):
            self.venue.on_snapshot(snapshot)
        self.correlation.record(snapshot.symbol, snapshot.ts, snapshot.price)
        self.monitor.observe_snapshot(snapshot)

    def _on_risk_event(self, event: RiskEvent) -> None:
        payload: RiskBreachEvent = {
            "event_type": "RISK_BREACH",
            "ts": event.ts,
            "breach_type": event.breach_type.value,
            "level": event.level.value,
            "action_taken": event.action_taken,
            "symbol": event.symbol,
            "metadata": {
                "message": event.message,
                "limit_value": event.limit_value,
                "observed_value": event.observed_value,
                "intent_id": event.intent_id,
            },
        }
        self.emit_event(payload)

    def _on_fill(self, plan: ExecutionPlan, fill: Fill) -> None:
        self.tracker.on_fill(plan.symbol, fill)
        event: FillEvent = {
            "event_type": "FILL",
            "ts": fill.ts,
            "plan_id": plan.plan_id,
            "slice_id": fill.slice_id,
            "symbol": plan.symbol,
            "filled_size": fill.filled_size,
            "avg_price": fill.avg_price,
            "fees": fill.fees,
        }
        self.emit_event(event)

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    async def hook_start(self) -> None:
        """
        Lifecycle hook: START

        - Restore the last consistent persisted state
        - Connect the exchange (positions replayed into the book)
        - Start feeds and register scheduler jobs
        """
        self.start_ts = self.clock.now()
        self.restore()

        await self.exchange.connect()
        for symbol in self.symbols:
            await self.exchange.subscribe_orderbook(symbol)
        await self.engine.start()
        await self.hub.start(self.symbols)
        self._register_jobs()

        if self.config.runtime.metrics_port:
            self.metrics.serve(self.config.runtime.metrics_port)

        event: StartEvent = {
            "event_type": "START",
            "ts": self.start_ts,
            "metadata": {
                "mode": self.mode,
                "symbols": self.symbols,
                "generation": self.register.current().generation,
                "analyzers": [d.value for d in self.analyzers.domains()],
            },
        }
        self.emit_event(event)
        self.log.info("Agent started", mode=self.mode, symbols=self.symbols)

    def _register_jobs(self) -> None:
        runtime = self.config.runtime
        for analyzer in self.analyzers:
            domain = analyzer.domain
            self.scheduler.add_job(
                f"analyzer:{domain.value}", analyzer.cadence_ms / 1000.0,
                lambda d=domain: self.analyze(d),
            )
        self.scheduler.add_job("decision", self.config.decision.interval_s, self.decide_all,
                               initial_delay_s=self.config.decision.interval_s)
        self.scheduler.add_job("mark", runtime.mark_interval_s, self.mark_to_market)
        self.scheduler.add_job("monitor", runtime.monitor_interval_s, self.monitor_health)
        self.scheduler.add_job("label", LABEL_INTERVAL_S, self.label_outcomes, initial_delay_s=LABEL_INTERVAL_S)
        self.scheduler.add_job("retrain", self.config.learning.retrain_interval_s, self.retrain,
                               initial_delay_s=self.config.learning.retrain_interval_s)
        self.scheduler.add_job("snapshot", self.config.persistence.snapshot_interval_s, self.snapshot,
                               initial_delay_s=self.config.persistence.snapshot_interval_s)

    async def run_for(self, duration_s: float) -> None:
        """Drive the agent for `duration_s` (virtual time on a VirtualClock)."""
        if isinstance(self.clock, VirtualClock):
            await self.scheduler.run_for(duration_s)
            await self.drain()
            return
        await self.scheduler.start()
        try:
            await asyncio.sleep(duration_s)
        finally:
            await self.scheduler.stop()
            await self.drain()

    async def drain(self) -> None:
        """Wait for in-flight plans to finish."""
        while self._plan_tasks:
            await asyncio.gather(*list(self._plan_tasks), return_exceptions=True)

    async def hook_shutdown(self, reason: str = "NORMAL") -> None:
        """
        Lifecycle hook: SHUTDOWN

        Stop jobs and feeds, wait for plans, persist state, close the exchange.
        """
        await self.scheduler.stop()
        await self.hub.stop()
        await asyncio.gather(*(self.engine.cancel(plan.plan_id) for plan in list(self.in_flight.values())))
        await self.drain()
        self.snapshot_sync()
        await self.engine.stop()
        await self.bus.close()
        await self.positions.close()
        await self.exchange.close()
        self.executor.shutdown(wait=False)

        now = self.clock.now()
        uptime = now - self.start_ts if self.start_ts is not None else 0.0
        event: ShutdownEvent = {
            "event_type": "SHUTDOWN",
            "ts": now,
            "reason": reason,
            "uptime_seconds": uptime,
            "metadata": {
                "total_intents": self.total_intents,
                "total_plans": self.total_plans,
                "closed_trades": self.tracker.closed,
                "generation": self.register.current().generation,
                "equity": self.portfolio.equity,
            },
        }
        self.emit_event(event)
        self.log.info("Agent shutdown", reason=reason, uptime_seconds=uptime)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def analyze(self, domain: Domain) -> None:
        published = await self.runner.run_domain(domain, self.symbols)
        if published:
            event: AssessmentEvent = {
                "event_type": "ASSESSMENT",
                "ts": self.clock.now(),
                "domain": domain.value,
                "published": len(published),
                "metadata": {a.symbol: round(a.score, 4) for a in published},
            }
            self.emit_event(event)

    async def decide_all(self) -> None:
        for symbol in self.symbols:
            if symbol in self.in_flight:
                continue
            with TraceContext(symbol):
                outcome = self.decision.decide(symbol)
                self._record_decision(symbol, outcome)
                if isinstance(outcome, TradeIntent):
                    await self.submit_intent(outcome)

    def _record_decision(self, symbol: str, outcome: Union[TradeIntent, Hold]) -> None:
        if isinstance(outcome, Hold):
            if outcome.reason in ("insufficient_signals", "symbol_halted"):
                return
            event: DecisionEvent = {
                "event_type": "DECISION",
                "ts": outcome.ts,
                "symbol": symbol,
                "outcome": "HOLD",
                "reasons": list(outcome.reasons),
                "score": outcome.score,
            }
        else:
            event = {
                "event_type": "DECISION",
                "ts": outcome.ts,
                "symbol": symbol,
                "outcome": outcome.side.value,
                "reasons": list(outcome.rationale),
                "score": outcome.score,
                "metadata": {
                    "intent_id": outcome.intent_id,
                    "notional": outcome.target_notional,
                    "urgency": outcome.urgency,
                    "generation": outcome.generation,
                },
            }
        self.emit_event(event)

    async def submit_intent(self, intent: TradeIntent) -> Optional[ExecutionPlan]:
        """Gate, plan and launch execution of an intent."""
        symbol = intent.symbol
        if symbol in self.in_flight:
            logger.info(f"Plan already in flight for {symbol}; dropping {intent.intent_id}")
            return None
        self.total_intents += 1

        volatility = self.bus.latest(Domain.VOLATILITY, symbol)
        self.portfolio.sync_positions(self.positions.all().values())
        verdict = self.gate.gate(intent, self.portfolio, volatility)
        event: RiskDecisionEvent = {
            "event_type": "RISK_DECISION",
            "ts": self.clock.now(),
            "intent_id": intent.intent_id,
            "symbol": symbol,
            "outcome": verdict.outcome.value,
            "notional": verdict.notional_for(intent),
            "leverage": verdict.leverage,
            "reasons": list(verdict.reasons),
        }
        self.emit_event(event)
        if not verdict.admitted:
            return None

        snapshot = self.hub.latest_market(symbol)
        if snapshot is None:
            logger.warning(f"No market snapshot for {symbol}; intent {intent.intent_id} not planned")
            return None
        volume_profile = [s.volume_1m for s in self.hub.market_window(symbol, 3_600.0)]
        try:
            plan = self.planner.plan(
                intent, verdict, snapshot, volatility,
                generation=self.register.current(),
                position=self.positions.get(symbol),
                volume_profile=volume_profile,
                now=self.clock.now(),
            )
        except ValueError as e:
            logger.warning(f"Planning failed for {intent.intent_id}: {e}")
            return None

        self.total_plans += 1
        plan_event: PlanEvent = {
            "event_type": "PLAN",
            "ts": self.clock.now(),
            "plan_id": plan.plan_id,
            "intent_id": intent.intent_id,
            "symbol": symbol,
            "side": plan.side.value,
            "style": plan.style.value,
            "slices": len(plan.slices),
            "size": plan.total_size,
            "metadata": {
                "leverage": plan.leverage,
                "stop_loss": plan.stop_loss,
                "take_profit": plan.take_profit,
            },
        }
        self.emit_event(plan_event)

        self.in_flight[symbol] = plan
        task = asyncio.create_task(self._run_plan(intent, plan))
        self._plan_tasks.add(task)
        task.add_done_callback(self._plan_tasks.discard)
        return plan

    async def _run_plan(self, intent: TradeIntent, plan: ExecutionPlan) -> Optional[PlanResult]:
        symbol = plan.symbol
        try:
            result = await self.engine.execute(plan)
        except Exception as e:
            logger.error(f"Execution of {plan.plan_id} failed: {e}", exc_info=True)
            self.monitor.record_error(symbol)
            return None
        finally:
            self.in_flight.pop(symbol, None)

        event: PlanCompleteEvent = {
            "event_type": "PLAN_COMPLETE",
            "ts": self.clock.now(),
            "plan_id": plan.plan_id,
            "symbol": symbol,
            "status": result.status,
            "filled_size": result.filled_size,
            "slippage": result.slippage,
            "retries_used": result.retries_used,
            "metadata": {
                "abort_reason": result.abort_reason,
                "replanned": result.replanned,
                "avg_price": result.avg_price,
                "fees": result.fees,
            },
        }
        self.emit_event(event)

        if intent.side == Side.CLOSE:
            if result.filled_size > 0:
                try:
                    report = self.tracker.on_close(symbol, result)
                except InvariantViolation as e:
                    self._halt_for_invariant(symbol, str(e))
                    return result
                if symbol not in self.tracker.open:
                    self.stops.pop(symbol, None)
                    self.open_intents.pop(symbol, None)
                if report is not None:
                    self.on_report(report)
            return result

        trade = self.tracker.on_entry(intent, result)
        if trade is not None:
            self.open_intents.setdefault(symbol, intent)
            self._arm_stop(plan, trade)
        return result

    def _arm_stop(self, plan: ExecutionPlan, trade: OpenTrade) -> None:
        if plan.stop_loss is None:
            return
        distance = abs(plan.reference_price - plan.stop_loss) / plan.reference_price
        self.stops[plan.symbol] = TrailingStop(trade.side, trade.entry_vwap, distance, plan.take_profit)

    def on_report(self, report: PerformanceReport) -> None:
        """Apply a closed trade's outcome: portfolio, feedback, learner."""
        self.portfolio.apply_realized(report.realized_pnl, report.ts)
        event: PerformanceEvent = {
            "event_type": "PERFORMANCE",
            "ts": report.ts,
            "intent_id": report.intent_id,
            "symbol": report.symbol,
            "realized_pnl": report.realized_pnl,
            "quality": report.quality,
            "attribution": dict(report.attribution),
            "metadata": {"slippage": report.slippage, "pnl_attribution": dict(report.pnl_attribution)},
        }
        self.emit_event(event)

        directives = self.feedback.process(
            report, self.tracker.history, self.portfolio, self.register.current(),
        )
        self.apply_directives(directives, symbol=report.symbol)

    def apply_directives(self, directives: list[AdjustmentDirective], symbol: Optional[str] = None) -> None:
        if not directives:
            return
        before = self.register.current().generation
        try:
            generation = self.register.apply(directives)
        except InvariantViolation as e:
            if symbol is not None:
                self._halt_for_invariant(symbol, str(e))
            else:
                self.metrics.inc("invariant_violations", source="orchestrator")
                logger.error(f"Directive batch refused: {e}")
            return
        if generation.generation != before:
            event: GenerationEvent = {
                "event_type": "GENERATION",
                "ts": generation.created_ts,
                "generation": generation.generation,
                "directives": [f"{d.target.value}.{d.key}:{d.delta:+.4f}" for d in directives],
            }
            self.emit_event(event)

    def _halt_for_invariant(self, symbol: str, message: str) -> None:
        if not self.kill_switch.halt(symbol, "invariant"):
            return
        self.metrics.inc("invariant_violations", source="orchestrator")
        self._on_risk_event(RiskEvent(
            ts=self.clock.now(),
            breach_type=BreachType.INVARIANT,
            level=RiskLevel.EMERGENCY,
            message=message[:500] or "invariant violated",
            symbol=symbol,
            action_taken="SYMBOL_HALTED",
        ))

    async def mark_to_market(self) -> None:
        """Mark positions, update equity and drawdown, run trailing stops."""
        now = self.clock.now()
        prices = {}
        for symbol in self.symbols:
            snapshot = self.hub.latest_market(symbol)
            if snapshot is not None:
                prices[symbol] = snapshot.price

        unrealized = await self.positions.mark(prices)
        self.portfolio.mark(unrealized, now)
        self.tracker.mark_to_market(prices)
        self.metrics.set("equity", self.portfolio.equity)
        self.metrics.set("drawdown", self.portfolio.drawdown)

        for symbol, stop in list(self.stops.items()):
            price = prices.get(symbol)
            if price is None or symbol in self.in_flight:
                continue
            stop.update(price)
            if stop.hit(price):
                await self._exit(symbol, "stop_loss", price)
            elif stop.target_reached(price):
                await self._exit(symbol, "take_profit", price)

        self.apply_directives(self.feedback.check_recovery(self.portfolio, self.register.current()))

    async def _exit(self, symbol: str, reason: str, price: float) -> None:
        position = self.positions.get(symbol)
        if position is None:
            self.stops.pop(symbol, None)
            return
        entry = self.open_intents.get(symbol)
        logger.info(f"{reason} on {symbol} at {price:.6g}; closing {position.size:.6g}")
        intent = TradeIntent(
            symbol=symbol,
            side=Side.CLOSE,
            target_notional=max(position.notional, 1e-9),
            urgency=1.0,
            rationale=(reason, f"price={price:.6g}"),
            confidence=1.0,
            ts=self.clock.now(),
            generation=self.register.current().generation,
            contributions=dict(entry.contributions) if entry else {},
        )
        self._record_decision(symbol, intent)
        await self.submit_intent(intent)

    async def monitor_health(self) -> None:
        """Kill-switch cool-off and exchange position reconciliation."""
        self.kill_switch.check_can_trade()
        if self.in_flight:
            return
        try:
            await self.positions.reconcile(await self.exchange.positions())
        except TransientError as e:
            logger.warning(f"Position reconcile skipped: {e}")
            self.monitor.record_error(None)

    async def label_outcomes(self) -> None:
        self.runner.label_outcomes()

    async def retrain(self) -> None:
        loop = asyncio.get_running_loop()
        results = await loop.run_in_executor(self.executor, self.estimators.retrain_all)
        if results:
            logger.info(f"Retrain results: {results}")

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def snapshot(self) -> None:
        self.snapshot_sync()

    def snapshot_sync(self) -> int:
        open_trades = []
        for trade in self.tracker.open.values():
            record = dataclasses.asdict(trade)
            record["side"] = trade.side.value
            open_trades.append(record)
        snapshot_id = self.store.save(
            ts=self.clock.now(),
            generation=self.register.current(),
            open_intents=list(self.open_intents.values()),
            open_plans=list(self.in_flight.values()),
            open_trades=open_trades,
            attribution=list(self.tracker.history),
            halted=self.kill_switch.halted(),
            equity=self.portfolio.equity,
            peak_equity=self.portfolio.peak_equity,
        )
        self.snapshots_written += 1
        return snapshot_id

    def restore(self) -> bool:
        """Restore the newest consistent snapshot. Returns True if one was found."""
        state = self.store.load_latest()
        if state is None:
            return False
        if state.generation.generation >= self.register.current().generation:
            self.register.restore(state.generation)
        self.kill_switch.restore(state.halted)
        if state.equity is not None:
            self.portfolio.restore(state.equity, state.peak_equity or state.equity)
        for intent in state.open_intents:
            self.open_intents[intent.symbol] = intent
        for record in state.open_trades:
            fields = dict(record)
            fields["side"] = Side(fields["side"])
            trade = OpenTrade(**fields)
            self.tracker.open[trade.symbol] = trade
        self.tracker.history.extend(state.attribution)
        if state.open_plans:
            logger.warning(
                f"{len(state.open_plans)} plans were in flight at the last snapshot; "
                f"positions will be reconciled from the exchange"
            )
        if state.halted:
            logger.warning(f"Halted symbols restored (acknowledge to resume): {sorted(state.halted)}")
        return True

    def acknowledge(self, symbol: str) -> bool:
        """Operator acknowledgement: resume new intents for a halted symbol."""
        return self.kill_switch.acknowledge(symbol)

    def status(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "generation": self.register.current().generation,
            "equity": self.portfolio.equity,
            "drawdown": self.portfolio.drawdown,
            "positions": {s: p.size for s, p in self.positions.all().items()},
            "halted": self.kill_switch.halted(),
            "in_flight": sorted(self.in_flight),
            "bus": self.bus.summary(),
            "feeds": self.hub.stats(),
            "jobs": self.scheduler.stats(),
            "analyzers": self.runner.stats(),
            "estimators": self.estimators.stats(),
        }
