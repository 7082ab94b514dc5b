"""
Analyzer runner.

Builds AnalyzerInputs from the FeedHub buffers, consults the analyzer's
estimator (if one is active), offloads assess() to the worker pool and
publishes the result to the Assessment Bus.

Data-quality failures never reach the bus: the Assessment is suppressed and
counted per (domain, reason).

Estimator experience: every feature vector computed is kept as a pending
sample and labelled once `label_horizon_s` has elapsed (1 if the price
rose over the horizon), then handed to EstimatorRegistry.record_outcome().
"""

import asyncio
import logging
from collections import defaultdict, deque
from concurrent.futures import Executor
from dataclasses import replace
from typing import Optional

from data_plane.app.feed_hub import FeedHub
from data_plane.bus.assessment_bus import AssessmentBus
from data_plane.storage.state_store import AnalysisLog
from shared.clock import Clock
from shared.errors import DataQualityError, InvariantViolation
from shared.metrics import AgentMetrics
from shared.models import Assessment, Domain
from strategy_plane.analyzers.base import MARKET, SOCIAL, Analyzer, AnalyzerInputs, AnalyzerRegistry
from strategy_plane.estimators import EstimatorRegistry

logger = logging.getLogger(__name__)


class AnalyzerRunner:
    """
    Drives registered analyzers for a set of symbols.

    Example:
        runner = AnalyzerRunner(registry, hub, bus, clock)
        await runner.run_domain(Domain.VOLATILITY, ["PEPE", "WIF"])
    """

    def __init__(
        self,
        registry: AnalyzerRegistry,
        hub: FeedHub,
        bus: AssessmentBus,
        clock: Clock,
        estimators: Optional[EstimatorRegistry] = None,
        executor: Optional[Executor] = None,
        metrics: Optional[AgentMetrics] = None,
        analysis_log: Optional[AnalysisLog] = None,
        label_horizon_s: float = 300.0,
        max_pending: int = 1_000,
    ):
        self.registry = registry
        self.hub = hub
        self.bus = bus
        self.clock = clock
        self.estimators = estimators
        self.executor = executor
        self.metrics = metrics
        self.analysis_log = analysis_log
        self.label_horizon_s = label_horizon_s

        self._pending: dict[tuple[str, str], deque] = defaultdict(lambda: deque(maxlen=max_pending))
        self.suppressed: dict[tuple[str, str], int] = defaultdict(int)
        self.published = 0

    def _suppress(self, domain: Domain, reason: str) -> None:
        self.suppressed[(domain.value, reason)] += 1
        if self.metrics:
            self.metrics.inc("assessments_suppressed", domain=domain.value, reason=reason)

    def build_inputs(self, analyzer: Analyzer, symbol: str) -> AnalyzerInputs:
        window = analyzer.window_s
        market = self.hub.market_window(symbol, window) if MARKET in analyzer.input_requirements else []
        social = self.hub.social_window(symbol, window) if SOCIAL in analyzer.input_requirements else []
        return AnalyzerInputs(symbol=symbol, now=self.clock.now(), market=tuple(market), social=tuple(social))

    async def _estimate(self, analyzer: Analyzer, inputs: AnalyzerInputs) -> Optional[float]:
        name = analyzer.estimator_name
        if not name or self.estimators is None:
            return None
        features = analyzer.features(inputs)
        if features is None:
            return None
        if inputs.market:
            self._pending[(name, inputs.symbol)].append((inputs.now, features, inputs.market[-1].price))
        if not self.estimators.active(name):
            return None
        return await self.estimators.predict_async(name, features)

    async def run_analyzer(self, analyzer: Analyzer, symbol: str) -> Optional[Assessment]:
        """Run one analyzer for one symbol and publish its Assessment."""
        domain = analyzer.domain
        inputs = self.build_inputs(analyzer, symbol)

        if MARKET in analyzer.input_requirements and not inputs.market:
            self._suppress(domain, "no_market_data")
            return None
        if SOCIAL in analyzer.input_requirements and MARKET not in analyzer.input_requirements and not inputs.social:
            self._suppress(domain, "no_social_data")
            return None

        try:
            estimate = await self._estimate(analyzer, inputs)
            if estimate is not None:
                inputs = replace(inputs, estimate=estimate)
            loop = asyncio.get_running_loop()
            assessment = await loop.run_in_executor(self.executor, analyzer.assess, inputs)
        except asyncio.CancelledError:
            raise
        except DataQualityError as e:
            logger.warning(f"Assessment suppressed ({domain.value}/{symbol}): {e}")
            self._suppress(domain, "data_quality")
            return None
        except InvariantViolation as e:
            logger.error(f"Analyzer contract violated ({domain.value}/{symbol}): {e}")
            self._suppress(domain, "invariant")
            if self.metrics:
                self.metrics.inc("invariant_violations", source="analyzer")
            return None
        except Exception as e:
            logger.error(f"Analyzer {domain.value} failed for {symbol}: {e}", exc_info=True)
            self._suppress(domain, "error")
            return None

        if assessment is None:
            self._suppress(domain, "insufficient")
            return None

        if not self.bus.publish(assessment):
            return None

        self.published += 1
        if self.analysis_log:
            self.analysis_log.append({
                "type": "assessment",
                "domain": domain.value,
                "symbol": symbol,
                "ts": assessment.ts,
                "score": assessment.score,
                "confidence": assessment.confidence,
                "state": assessment.state,
                "components": assessment.components,
            })
        return assessment

    async def run_domain(self, domain: Domain, symbols: list[str]) -> list[Assessment]:
        analyzer = self.registry.get(domain)
        if analyzer is None:
            return []
        results = await asyncio.gather(*(self.run_analyzer(analyzer, s) for s in symbols))
        return [a for a in results if a is not None]

    async def run_symbol(self, symbol: str) -> list[Assessment]:
        results = await asyncio.gather(*(self.run_analyzer(a, symbol) for a in self.registry))
        return [a for a in results if a is not None]

    def label_outcomes(self) -> int:
        """Label pending samples whose horizon has elapsed. Returns samples labelled."""
        if self.estimators is None:
            return 0
        now = self.clock.now()
        labelled = 0
        for (name, symbol), pending in self._pending.items():
            latest = self.hub.latest_market(symbol)
            if latest is None:
                continue
            while pending and now - pending[0][0] >= self.label_horizon_s:
                _, features, price = pending.popleft()
                self.estimators.record_outcome(name, features, int(latest.price > price))
                labelled += 1
        return labelled

    def stats(self) -> dict:
        return {
            "published": self.published,
            "suppressed": {f"{d}:{r}": n for (d, r), n in self.suppressed.items()},
            "pending_samples": sum(len(p) for p in self._pending.values()),
        }
