"""
Feedback Processor.

Turns PerformanceReports into bounded AdjustmentDirectives:

1. Analyzer weights: per domain in the report, net signed share over the
   report history, mean(share_d * sign(pnl)). Net negative reduces w_d by
   eta * |net|; net positive raises it by eta/2 * net. Clamp [w_min, w_max].
2. Execution quality below `quality_poor`: lower urgency_scale and raise
   slice_factor (smaller, slower slices). At or above `quality_good`, relax
   both halfway back toward their configured base.
3. Drawdown above `drawdown_warn`: tighten single_asset_limit and L_max.
   Restored to base once `recovery_period_s` passes with no negative P&L.

Directive ids are deterministic (report source key + target + key) so
replays are dropped by the Learner; each partial close has its own key.
"""

import hashlib
import logging
from typing import Iterable, Optional

import numpy as np

from order_plane.risk.portfolio import PortfolioState
from shared.clock import Clock, SystemClock
from shared.config import ExecutionConfig, LearningConfig, RiskConfig
from shared.models import (
    AdjustmentDirective,
    DirectiveTarget,
    ParameterGeneration,
    PerformanceReport,
)

logger = logging.getLogger(__name__)


def directive_id(source_id: str, target: DirectiveTarget, key: str) -> str:
    return hashlib.sha256(f"{source_id}:{target.value}:{key}".encode()).hexdigest()[:16]


class FeedbackProcessor:
    """
    Bounded feedback rules over performance reports.

    Example:
        >>> feedback = FeedbackProcessor(config.learning, config.risk, config.execution)
        >>> directives = feedback.process(report, tracker.history, portfolio, register.current())
        >>> register.apply(directives)
    """

    def __init__(
        self,
        config: Optional[LearningConfig] = None,
        risk: Optional[RiskConfig] = None,
        execution: Optional[ExecutionConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or LearningConfig()
        self.risk = risk or RiskConfig()
        self.execution = execution or ExecutionConfig()
        self.clock = clock or SystemClock()
        self.tightened_at: Optional[float] = None

    def _directive(
        self, source_id: str, target: DirectiveTarget, key: str, delta: float,
        clamp: tuple[float, float], reason: str,
    ) -> AdjustmentDirective:
        return AdjustmentDirective(
            directive_id=directive_id(source_id, target, key),
            target=target,
            key=key,
            delta=delta,
            clamp=clamp,
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def weight_directives(
        self, report: PerformanceReport, history: Iterable[PerformanceReport]
    ) -> list[AdjustmentDirective]:
        window = list(history)[-self.config.eval_window:]
        if not any(r.source_key == report.source_key for r in window):
            window.append(report)
        eta = self.config.learning_rate
        clamp = (self.config.w_min, self.config.w_max)
        directives = []
        for domain in sorted(report.attribution):
            signed = [
                r.attribution[domain] * float(np.sign(r.realized_pnl))
                for r in window
                if domain in r.attribution
            ]
            net = float(np.mean(signed)) if signed else 0.0
            if net < 0:
                delta = -eta * abs(net)
            elif net > 0:
                delta = eta / 2 * net
            else:
                continue
            directives.append(self._directive(
                report.source_key, DirectiveTarget.ANALYZER, domain, delta, clamp,
                f"net attribution {net:+.3f} over {len(signed)} trades",
            ))
        return directives

    def quality_directives(
        self, report: PerformanceReport, generation: ParameterGeneration
    ) -> list[AdjustmentDirective]:
        base_urgency = self.execution.urgency_scale
        base_slices = self.execution.slice_factor
        urgency_clamp = (min(self.config.urgency_scale_min, base_urgency), base_urgency)
        slice_clamp = (base_slices, max(base_slices, self.config.slice_factor_max))

        if report.quality < self.config.quality_poor:
            reason = f"execution quality {report.quality:.3f} below {self.config.quality_poor}"
            return [
                self._directive(
                    report.source_key, DirectiveTarget.PLANNER, "urgency_scale",
                    -self.config.urgency_step, urgency_clamp, reason,
                ),
                self._directive(
                    report.source_key, DirectiveTarget.PLANNER, "slice_factor",
                    self.config.slice_step, slice_clamp, reason,
                ),
            ]

        if report.quality >= self.config.quality_good:
            reason = f"execution quality {report.quality:.3f} good; relaxing"
            directives = []
            if generation.planner.get("urgency_scale", base_urgency) < base_urgency:
                directives.append(self._directive(
                    report.source_key, DirectiveTarget.PLANNER, "urgency_scale",
                    self.config.urgency_step / 2, urgency_clamp, reason,
                ))
            if generation.planner.get("slice_factor", base_slices) > base_slices:
                directives.append(self._directive(
                    report.source_key, DirectiveTarget.PLANNER, "slice_factor",
                    -self.config.slice_step / 2, slice_clamp, reason,
                ))
            return directives
        return []

    def drawdown_directives(
        self, report: PerformanceReport, portfolio: PortfolioState, generation: ParameterGeneration
    ) -> list[AdjustmentDirective]:
        drawdown = portfolio.drawdown
        if drawdown <= self.risk.drawdown_warn:
            return []
        self.tightened_at = self.clock.now()
        reason = f"drawdown {drawdown:.2%} above {self.risk.drawdown_warn:.2%}"
        limit_floor = min(self.config.min_single_asset_limit, self.risk.single_asset_limit)
        logger.warning(f"Tightening risk limits: {reason}")
        return [
            self._directive(
                report.source_key, DirectiveTarget.RISK, "single_asset_limit",
                -self.config.risk_tighten_step, (limit_floor, self.risk.single_asset_limit), reason,
            ),
            self._directive(
                report.source_key, DirectiveTarget.RISK, "L_max",
                -self.config.leverage_tighten_step, (float(self.risk.L_min), float(self.risk.L_max)), reason,
            ),
        ]

    def check_recovery(
        self, portfolio: PortfolioState, generation: ParameterGeneration
    ) -> list[AdjustmentDirective]:
        """Restore tightened risk limits after a clean recovery period."""
        if self.tightened_at is None:
            return []
        now = self.clock.now()
        quiet_since = max(self.tightened_at, portfolio.last_negative_pnl_ts or 0.0)
        if now - quiet_since < self.risk.recovery_period_s:
            return []

        self.tightened_at = None
        source = f"restore-{generation.generation}"
        directives = []
        limit = generation.risk.get("single_asset_limit", self.risk.single_asset_limit)
        if limit < self.risk.single_asset_limit:
            directives.append(self._directive(
                source, DirectiveTarget.RISK, "single_asset_limit",
                self.risk.single_asset_limit - limit, (limit, self.risk.single_asset_limit), "recovery",
            ))
        l_max = generation.risk.get("L_max", float(self.risk.L_max))
        if l_max < self.risk.L_max:
            directives.append(self._directive(
                source, DirectiveTarget.RISK, "L_max",
                float(self.risk.L_max) - l_max, (l_max, float(self.risk.L_max)), "recovery",
            ))
        if directives:
            logger.info(f"Risk limits restored after {self.risk.recovery_period_s:.0f}s without losses")
        return directives

    def process(
        self,
        report: PerformanceReport,
        history: Iterable[PerformanceReport],
        portfolio: PortfolioState,
        generation: ParameterGeneration,
    ) -> list[AdjustmentDirective]:
        directives = self.weight_directives(report, history)
        directives += self.quality_directives(report, generation)
        tighten = self.drawdown_directives(report, portfolio, generation)
        directives += tighten or self.check_recovery(portfolio, generation)
        return directives
