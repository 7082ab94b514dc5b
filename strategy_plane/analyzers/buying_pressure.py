"""
Buying Pressure / Smart-Money analyzer.

Reads the trade tape and order book depth:
- order_flow_score: buy share of aggressor notional
- institutional_pressure: net direction of large prints (top quantile)
- book_imbalance: bid share of resting notional near mid
"""

from typing import Optional

import numpy as np

from shared.models import Assessment, BookSide, Domain, TradeSide
from strategy_plane.analyzers import indicators as ind
from strategy_plane.analyzers.base import Analyzer, AnalyzerInputs


class BuyingPressureAnalyzer(Analyzer):
    domain = Domain.BUYING_PRESSURE
    component_keys = (
        "institutional_pressure",
        "order_flow_score",
        "accumulation_score",
        "distribution_score",
        "book_imbalance",
        "bias",
    )
    default_params = {
        "large_print_quantile": 0.9,
        "min_prints": 10,
        "depth_band": 0.02,
        "window_s": 300.0,
    }

    def assess(self, inputs: AnalyzerInputs) -> Optional[Assessment]:
        prints = ind.trades(inputs.market)
        min_prints = int(self.param(inputs, "min_prints"))
        if len(prints) < min_prints or not inputs.market:
            return None

        buy, sell = ind.flow_split(prints)
        total = buy + sell
        order_flow = buy / total if total > 0 else 0.5

        notionals = np.asarray([t.price * t.size for t in prints])
        cutoff = float(np.quantile(notionals, self.param(inputs, "large_print_quantile")))
        large = [t for t, n in zip(prints, notionals) if n >= cutoff]
        large_buy = sum(t.price * t.size for t in large if t.side == TradeSide.BUY)
        large_sell = sum(t.price * t.size for t in large if t.side == TradeSide.SELL)
        large_total = large_buy + large_sell
        institutional = 0.5 + 0.5 * (large_buy - large_sell) / large_total if large_total > 0 else 0.5

        book = inputs.market[-1]
        band = self.param(inputs, "depth_band")
        lo, hi = book.mid * (1 - band), book.mid * (1 + band)
        bids = sum(l.notional for l in book.depth if l.side == BookSide.BID and l.price >= lo)
        asks = sum(l.notional for l in book.depth if l.side == BookSide.ASK and l.price <= hi)
        book_imbalance = bids / (bids + asks) if bids + asks > 0 else 0.5

        accumulation = 0.5 * order_flow + 0.3 * institutional + 0.2 * book_imbalance
        distribution = 1.0 - accumulation
        bias = float(np.clip(2 * accumulation - 1, -1.0, 1.0))

        signals = np.array([order_flow, institutional, book_imbalance])
        agreement = 1.0 - float(np.clip(signals.std() * 2, 0.0, 1.0))
        confidence = ind.coverage(len(prints), 5 * min_prints) * (0.5 + 0.5 * agreement)

        if accumulation > 0.6:
            state = "buying"
        elif accumulation < 0.4:
            state = "selling"
        else:
            state = "balanced"

        return self._emit(
            inputs,
            score=accumulation,
            confidence=confidence,
            components={
                "institutional_pressure": institutional,
                "order_flow_score": order_flow,
                "accumulation_score": accumulation,
                "distribution_score": distribution,
                "book_imbalance": book_imbalance,
                "bias": bias,
            },
            state=state,
        )
