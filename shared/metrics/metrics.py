"""Metrics and performance tracking."""

import logging
import time
from contextlib import contextmanager
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)


class AgentMetrics:
    """
    Prometheus metrics for the agent, with a local summary mirror.

    Tracks:
    - Bus: assessments published, late drops, suppressed assessments
    - Decisions by outcome, risk decisions by outcome
    - Slices by terminal state, retries, slippage
    - Directives applied, invariant violations, parameter generation
    - Equity and drawdown

    Each instance owns its CollectorRegistry so tests can create as many
    agents as they like.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.latencies: Dict[str, list] = {}
        self.counters: Dict[str, float] = {}
        self._init_metrics()

    def _init_metrics(self):
        """Initialize all Prometheus metrics."""

        # ============ Data Plane ============
        self.assessments_published = Counter(
            'agent_assessments_published_total',
            'Assessments accepted by the bus',
            ['domain'],
            registry=self.registry
        )
        self.bus_drops = Counter(
            'agent_bus_drops_total',
            'Assessments dropped by the bus',
            ['domain', 'reason'],
            registry=self.registry
        )
        self.feed_drops = Counter(
            'agent_feed_drops_total',
            'Feed records dropped',
            ['feed', 'reason'],
            registry=self.registry
        )

        # ============ Strategy Plane ============
        self.assessments_suppressed = Counter(
            'agent_assessments_suppressed_total',
            'Analyzer runs that produced no assessment',
            ['domain', 'reason'],
            registry=self.registry
        )
        self.decisions = Counter(
            'agent_decisions_total',
            'Decision Engine outcomes',
            ['outcome', 'reason'],
            registry=self.registry
        )

        # ============ Order Plane ============
        self.risk_decisions = Counter(
            'agent_risk_decisions_total',
            'Risk Gate outcomes',
            ['outcome'],
            registry=self.registry
        )
        self.slices = Counter(
            'agent_slices_total',
            'Slices by terminal state',
            ['state'],
            registry=self.registry
        )
        self.slice_retries = Counter(
            'agent_slice_retries_total',
            'Slice retries',
            registry=self.registry
        )
        self.slippage = Histogram(
            'agent_fill_slippage',
            'Per-fill signed slippage',
            buckets=(-0.01, -0.005, -0.002, -0.001, 0.0, 0.001, 0.002, 0.005, 0.01),
            registry=self.registry
        )
        self.equity = Gauge(
            'agent_equity',
            'Mark-to-market equity',
            registry=self.registry
        )
        self.drawdown = Gauge(
            'agent_drawdown',
            'Trailing drawdown from peak',
            registry=self.registry
        )

        # ============ Learning ============
        self.directives_applied = Counter(
            'agent_directives_applied_total',
            'Adjustment directives applied',
            ['target'],
            registry=self.registry
        )
        self.invariant_violations = Counter(
            'agent_invariant_violations_total',
            'Invariant violations',
            ['source'],
            registry=self.registry
        )
        self.generation = Gauge(
            'agent_parameter_generation',
            'Current parameter generation id',
            registry=self.registry
        )

    def inc(self, name: str, value: float = 1, **labels):
        """Increment a Prometheus counter (by attribute name) and the local mirror."""
        metric = getattr(self, name)
        (metric.labels(**labels) if labels else metric).inc(value)
        key = name if not labels else f"{name}:" + ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        self.counters[key] = self.counters.get(key, 0) + value

    def set(self, name: str, value: float):
        getattr(self, name).set(value)
        self.counters[name] = value

    def observe(self, name: str, value: float):
        getattr(self, name).observe(value)

    def count(self, name: str, **labels) -> float:
        """Read back a local counter value (0 if never incremented)."""
        key = name if not labels else f"{name}:" + ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return self.counters.get(key, 0)

    @contextmanager
    def time_operation(self, operation_name: str):
        """Context manager for timing operations."""
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            if operation_name not in self.latencies:
                self.latencies[operation_name] = []
            self.latencies[operation_name].append(elapsed)

    def get_summary(self) -> dict:
        """Get metrics summary."""
        summary = {
            "latencies": {
                name: {
                    "mean": sum(values) / len(values),
                    "min": min(values),
                    "max": max(values),
                    "count": len(values)
                }
                for name, values in self.latencies.items()
                if values
            },
            "counters": dict(self.counters)
        }
        return summary

    def serve(self, port: int):
        """Expose the registry over HTTP."""
        start_http_server(port, registry=self.registry)
        logger.info(f"Metrics server listening on :{port}")
