"""
Learner: the parameter generation register.

apply(directives) is copy-on-write: the current generation is copied, each
new directive applied with its clamp, the result validated, and only then
published as generation + 1. A failed validation raises InvariantViolation
and leaves the prior generation in force. Directive ids already applied in
any earlier generation are dropped.
"""

import logging
import math
import threading
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Optional

from shared.clock import Clock, SystemClock
from shared.config import AgentConfig
from shared.errors import InvariantViolation
from shared.metrics import AgentMetrics
from shared.models import AdjustmentDirective, DirectiveTarget, Domain, ParameterGeneration

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParameterBounds:
    """Absolute bounds every published generation must satisfy."""
    w_min: float = 0.0
    w_max: float = math.inf
    L_min: int = 1
    L_abs_max: int = 100

    def violations(self, generation: ParameterGeneration) -> list[str]:
        problems = []
        for section in ("weights", "risk", "planner"):
            for key, value in getattr(generation, section).items():
                if not math.isfinite(value):
                    problems.append(f"{section}.{key} is not finite ({value})")
        for domain, w in generation.weights.items():
            if w < 0 or w < self.w_min - 1e-12 or w > self.w_max + 1e-12:
                problems.append(f"weight {domain}={w} outside [{self.w_min}, {self.w_max}]")

        limit = generation.risk.get("single_asset_limit")
        if limit is not None and not 0 < limit <= 1:
            problems.append(f"single_asset_limit={limit} outside (0, 1]")
        l_max = generation.risk.get("L_max")
        if l_max is not None and not self.L_min <= l_max <= self.L_abs_max:
            problems.append(f"L_max={l_max} outside [{self.L_min}, {self.L_abs_max}]")

        urgency = generation.planner.get("urgency_scale")
        if urgency is not None and not 0 < urgency <= 1:
            problems.append(f"urgency_scale={urgency} outside (0, 1]")
        slice_factor = generation.planner.get("slice_factor")
        if slice_factor is not None and slice_factor <= 0:
            problems.append(f"slice_factor={slice_factor} must be positive")
        return problems


class ParameterRegister:
    """
    Holds the published ParameterGeneration.

    Readers call current() once per tick and use that snapshot throughout,
    so a concurrent apply() never produces a torn read.
    """

    def __init__(
        self,
        initial: ParameterGeneration,
        bounds: Optional[ParameterBounds] = None,
        clock: Optional[Clock] = None,
        metrics: Optional[AgentMetrics] = None,
        history_size: int = 100,
    ):
        self.bounds = bounds or ParameterBounds()
        self.clock = clock or SystemClock()
        self.metrics = metrics
        problems = self.bounds.violations(initial)
        if problems:
            raise InvariantViolation(f"initial generation invalid: {'; '.join(problems)}")
        self._current = initial
        self._applied_ids: set[str] = set(initial.applied_directives)
        self._history: deque[ParameterGeneration] = deque([initial], maxlen=history_size)
        self._lock = threading.Lock()
        self.rejected = 0

    @classmethod
    def from_config(
        cls,
        config: AgentConfig,
        clock: Optional[Clock] = None,
        metrics: Optional[AgentMetrics] = None,
    ) -> "ParameterRegister":
        """Generation 0 from configuration."""
        clock = clock or SystemClock()
        learning = config.learning
        weights = {d.value: float(learning.initial_weights.get(d.value, 1.0)) for d in Domain}
        initial = ParameterGeneration(
            generation=0,
            created_ts=clock.now(),
            weights=weights,
            risk={
                "single_asset_limit": config.risk.single_asset_limit,
                "L_max": float(config.risk.L_max),
            },
            planner={
                "urgency_scale": config.execution.urgency_scale,
                "slice_factor": config.execution.slice_factor,
            },
        )
        bounds = ParameterBounds(
            w_min=learning.w_min,
            w_max=learning.w_max,
            L_min=config.risk.L_min,
            L_abs_max=config.risk.L_abs_max,
        )
        return cls(initial, bounds=bounds, clock=clock, metrics=metrics)

    def current(self) -> ParameterGeneration:
        return self._current

    def history(self) -> list[ParameterGeneration]:
        return list(self._history)

    def seen(self, directive_id: str) -> bool:
        return directive_id in self._applied_ids

    def apply(self, directives: Iterable[AdjustmentDirective]) -> ParameterGeneration:
        """
        Publish a new generation with `directives` applied.

        Returns:
            The new generation, or the current one if every directive was a replay

        Raises:
            InvariantViolation: the candidate generation breaks a bound
        """
        with self._lock:
            base = self._current
            fresh: list[AdjustmentDirective] = []
            batch_ids: set[str] = set()
            for directive in directives:
                if directive.directive_id in self._applied_ids or directive.directive_id in batch_ids:
                    logger.debug(f"Dropping replayed directive {directive.directive_id}")
                    continue
                batch_ids.add(directive.directive_id)
                fresh.append(directive)
            if not fresh:
                return base

            sections = {
                DirectiveTarget.ANALYZER: dict(base.weights),
                DirectiveTarget.RISK: dict(base.risk),
                DirectiveTarget.PLANNER: dict(base.planner),
            }
            for directive in fresh:
                section = sections[directive.target]
                if directive.key not in section:
                    if directive.target != DirectiveTarget.ANALYZER:
                        self.rejected += 1
                        raise InvariantViolation(
                            f"unknown {directive.target.value} parameter '{directive.key}'"
                        )
                    section[directive.key] = 1.0
                lo, hi = directive.clamp
                section[directive.key] = min(hi, max(lo, section[directive.key] + directive.delta))

            candidate = ParameterGeneration(
                generation=base.generation + 1,
                created_ts=self.clock.now(),
                weights=sections[DirectiveTarget.ANALYZER],
                risk=sections[DirectiveTarget.RISK],
                planner=sections[DirectiveTarget.PLANNER],
                applied_directives=tuple(d.directive_id for d in fresh),
            )
            problems = self.bounds.violations(candidate)
            if problems:
                self.rejected += 1
                if self.metrics:
                    self.metrics.inc("invariant_violations", source="learner")
                logger.error(
                    f"Refusing generation {candidate.generation}: {'; '.join(problems)}; "
                    f"generation {base.generation} stays in force"
                )
                raise InvariantViolation("; ".join(problems))

            self._current = candidate
            self._applied_ids.update(batch_ids)
            self._history.append(candidate)

        if self.metrics:
            for directive in fresh:
                self.metrics.inc("directives_applied", target=directive.target.value)
            self.metrics.set("generation", candidate.generation)
        logger.info(
            f"Published parameter generation {candidate.generation} "
            f"({len(fresh)} directives: {', '.join(f'{d.target.value}.{d.key}' for d in fresh)})"
        )
        return candidate

    def restore(self, generation: ParameterGeneration, applied_ids: Iterable[str] = ()) -> None:
        """Install a persisted generation at startup."""
        problems = self.bounds.violations(generation)
        if problems:
            raise InvariantViolation(f"persisted generation invalid: {'; '.join(problems)}")
        with self._lock:
            if generation.generation < self._current.generation:
                raise InvariantViolation(
                    f"cannot restore generation {generation.generation} below {self._current.generation}"
                )
            self._current = generation
            self._applied_ids.update(applied_ids)
            self._applied_ids.update(generation.applied_directives)
            self._history.append(generation)
        logger.info(f"Restored parameter generation {generation.generation}")

    @property
    def applied_ids(self) -> frozenset[str]:
        return frozenset(self._applied_ids)
