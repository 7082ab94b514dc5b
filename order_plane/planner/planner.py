# -*- coding: utf-8 -*-
"""
order_plane/planner/planner.py
Execution planning: style, slicing, stop-loss / take-profit

Style selection by (urgency, size vs liquidity):
- volatile book (band extreme/high or wide spread) => ADAPTIVE
- relative size >= vwap_threshold                  => VWAP
- urgency >= urgency_immediate and small size      => IMMEDIATE (1 slice)
- otherwise                                        => TWAP

relative size = notional / resting book notional within depth_band of mid.
Slice count = ceil(relative_size * slice_factor) in [min_slices, max_slices],
spread over horizon_s. VWAP slices follow the recent volume profile.

Stops: d = clamp(k_stop * realized_vol, min_stop, 0.9 / leverage);
take_profit = entry +/- reward_risk * d. Without a volatility estimate the
leverage table applies.
"""

import logging
import math
from typing import Optional, Sequence
from uuid import uuid4

import numpy as np

from shared.config import ExecutionConfig
from shared.models import (
    Assessment,
    BookSide,
    ExecutionPlan,
    MarketSnapshot,
    ParameterGeneration,
    Position,
    RiskDecision,
    Side,
    Slice,
    SliceStyle,
    TradeIntent,
)

logger = logging.getLogger(__name__)

# leverage -> (stop distance, take-profit distance)
LEVERAGE_STOPS = {
    10: (0.08, 0.15),
    25: (0.04, 0.08),
    50: (0.02, 0.05),
}


def side_sign(side: Side) -> int:
    return 1 if side == Side.BUY else -1


def stop_distance(
    leverage: int,
    realized_vol: Optional[float],
    k_stop: float = 2.0,
    min_stop: float = 0.005,
    reward_risk: float = 2.5,
) -> tuple[float, float]:
    """(stop distance, take-profit distance) as fractions of entry."""
    upper = 0.9 / max(1, leverage)
    if realized_vol is not None and realized_vol > 0:
        d = min(max(k_stop * realized_vol, min_stop), upper)
        return d, reward_risk * d
    for lev in sorted(LEVERAGE_STOPS):
        if leverage <= lev:
            stop, take = LEVERAGE_STOPS[lev]
            return min(stop, upper), take
    stop, take = LEVERAGE_STOPS[max(LEVERAGE_STOPS)]
    return min(stop, upper), take


def estimate_slippage(snapshot: MarketSnapshot, side: Side, notional: float) -> float:
    """
    Expected slippage of a market order walking the book, relative to mid.

    Returns the spread half-width when the book is empty.
    """
    mid = snapshot.mid
    book_side = BookSide.ASK if side == Side.BUY else BookSide.BID
    levels = sorted(snapshot.side_depth(book_side), key=lambda lvl: lvl.price, reverse=(side == Side.SELL))
    half_spread = snapshot.spread / 2
    if not levels or notional <= 0:
        return half_spread

    remaining = notional
    cost = size = 0.0
    for level in levels:
        take = min(remaining, level.notional)
        size += take / level.price
        cost += take
        remaining -= take
        if remaining <= 0:
            break
    if remaining > 0:
        # Remainder fills as far beyond the last level as the last level is from mid
        beyond = 2 * levels[-1].price - mid
        size += remaining / max(beyond, 1e-12)
        cost += remaining
    avg = cost / size
    return side_sign(side) * (avg - mid) / mid


class TrailingStop:
    """
    Stop that only ratchets in the position's favour.

    Example:
        >>> stop = TrailingStop(Side.BUY, entry=100.0, distance=0.05)
        >>> stop.update(110.0)
        104.5
        >>> stop.update(105.0)      # never loosens
        104.5
    """

    def __init__(self, side: Side, entry: float, distance: float, take_profit: Optional[float] = None):
        self.side = side
        self.distance = distance
        self.take_profit = take_profit
        self.best = entry
        self.stop = entry * (1 - side_sign(side) * distance)

    def update(self, price: float) -> float:
        if self.side == Side.BUY:
            if price > self.best:
                self.best = price
                self.stop = max(self.stop, price * (1 - self.distance))
        else:
            if price < self.best:
                self.best = price
                self.stop = min(self.stop, price * (1 + self.distance))
        return self.stop

    def hit(self, price: float) -> bool:
        if self.side == Side.BUY:
            return price <= self.stop
        return price >= self.stop

    def target_reached(self, price: float) -> bool:
        if self.take_profit is None:
            return False
        if self.side == Side.BUY:
            return price >= self.take_profit
        return price <= self.take_profit


class ExecutionPlanner:
    """
    Builds ExecutionPlans for admitted intents.

    Planner parameters `urgency_scale` and `slice_factor` are read from the
    current parameter generation (planner section) when one is supplied.
    """

    def __init__(self, config: Optional[ExecutionConfig] = None):
        self.config = config or ExecutionConfig()

    def _planner_param(self, generation: Optional[ParameterGeneration], key: str) -> float:
        default = float(getattr(self.config, key))
        if generation is None:
            return default
        return float(generation.planner.get(key, default))

    def choose_style(
        self,
        relative_size: float,
        urgency: float,
        snapshot: MarketSnapshot,
        volatility: Optional[Assessment] = None,
    ) -> SliceStyle:
        band = volatility.state if volatility is not None else None
        if band in ("extreme", "high") or snapshot.spread > self.config.volatile_spread:
            return SliceStyle.ADAPTIVE
        if relative_size >= self.config.vwap_threshold:
            return SliceStyle.VWAP
        if urgency >= self.config.urgency_immediate and relative_size <= self.config.small_size:
            return SliceStyle.IMMEDIATE
        return SliceStyle.TWAP

    def slice_count(self, style: SliceStyle, relative_size: float, slice_factor: float) -> int:
        if style == SliceStyle.IMMEDIATE:
            return 1
        if style == SliceStyle.ADAPTIVE:
            return self.config.max_slices
        n = math.ceil(relative_size * slice_factor)
        return max(self.config.min_slices, min(self.config.max_slices, n))

    def build_slices(
        self,
        plan_id: str,
        style: SliceStyle,
        total_size: float,
        count: int,
        start_ts: float,
        volume_profile: Optional[Sequence[float]] = None,
    ) -> tuple[Slice, ...]:
        weights = np.ones(count)
        if style == SliceStyle.VWAP and volume_profile is not None and len(volume_profile) >= count:
            profile = np.asarray(volume_profile[-count:], dtype=float)
            if np.all(np.isfinite(profile)) and profile.sum() > 0:
                weights = np.maximum(profile, profile.sum() * 1e-3)
        weights = weights / weights.sum()

        step = self.config.horizon_s / count if count > 1 else 0.0
        sizes = total_size * weights
        # Last slice absorbs rounding so sizes sum to the total
        sizes[-1] = total_size - float(sizes[:-1].sum())
        return tuple(
            Slice(slice_id=f"{plan_id}:{i + 1}", size=float(size), scheduled_ts=start_ts + i * step, style=style)
            for i, size in enumerate(sizes)
        )

    def plan(
        self,
        intent: TradeIntent,
        decision: RiskDecision,
        snapshot: MarketSnapshot,
        volatility: Optional[Assessment] = None,
        generation: Optional[ParameterGeneration] = None,
        position: Optional[Position] = None,
        volume_profile: Optional[Sequence[float]] = None,
        now: Optional[float] = None,
    ) -> ExecutionPlan:
        """
        Plan execution of an admitted intent.

        Raises:
            ValueError: REJECTed decision, or CLOSE without an open position
        """
        if not decision.admitted:
            raise ValueError(f"Cannot plan rejected intent {intent.intent_id}")

        start_ts = snapshot.ts if now is None else now
        price = snapshot.price
        plan_id = f"plan-{uuid4().hex[:12]}"
        urgency = min(1.0, intent.urgency * self._planner_param(generation, "urgency_scale"))
        slice_factor = self._planner_param(generation, "slice_factor")

        if intent.side == Side.CLOSE:
            if position is None or position.is_flat:
                raise ValueError(f"CLOSE intent {intent.intent_id} without an open {intent.symbol} position")
            side = Side.SELL if position.size > 0 else Side.BUY
            size = abs(position.size)
            leverage = position.leverage
            notional = size * price
        else:
            side = intent.side
            notional = decision.notional_for(intent)
            size = notional / price
            leverage = decision.leverage

        depth = snapshot.depth_notional(self.config.depth_band)
        relative_size = notional / depth if depth > 0 else float("inf")
        style = self.choose_style(relative_size, urgency, snapshot, volatility)
        count = self.slice_count(style, relative_size, slice_factor)
        slices = self.build_slices(plan_id, style, size, count, start_ts, volume_profile)

        stop_loss = take_profit = None
        if intent.side != Side.CLOSE:
            rv = volatility.component("realized_vol") if volatility is not None else None
            d, tp = stop_distance(
                leverage, rv, self.config.k_stop, self.config.min_stop, self.config.reward_risk,
            )
            sign = side_sign(side)
            stop_loss = price * (1 - sign * d)
            take_profit = price * (1 + sign * tp)

        plan = ExecutionPlan(
            plan_id=plan_id,
            intent_id=intent.intent_id,
            symbol=intent.symbol,
            side=side,
            slices=slices,
            stop_loss=stop_loss,
            take_profit=take_profit,
            max_slippage=self.config.max_slippage,
            leverage=leverage,
            reference_price=price,
            reduce_only=intent.side == Side.CLOSE,
        )
        logger.info(
            f"Plan {plan_id} for {intent.intent_id}: {style.value} {side.value} {size:.6g} {intent.symbol} "
            f"in {count} slices, L={leverage}, rel_size={relative_size:.3f}"
        )
        return plan

    def replan_adaptive(self, plan: ExecutionPlan, remaining_size: float, now: float) -> ExecutionPlan:
        """Re-plan the unexecuted remainder of `plan` as ADAPTIVE slices."""
        plan_id = f"{plan.plan_id}-r"
        count = self.config.max_slices
        slices = self.build_slices(plan_id, SliceStyle.ADAPTIVE, remaining_size, count, now)
        logger.warning(f"Re-planning {plan.plan_id} remainder {remaining_size:.6g} as ADAPTIVE ({count} slices)")
        return plan.model_copy(update={"plan_id": plan_id, "slices": slices})
