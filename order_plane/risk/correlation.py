"""
Rolling return correlation between symbols.

Prices are binned on a common grid (pandas resample), converted to returns
with pct_change() and correlated pairwise. Symbols whose correlation
exceeds correlation_max are merged into one bucket (transitively).
"""

import logging
from collections import defaultdict, deque
from typing import Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


class CorrelationTracker:
    """
    Correlation buckets over a rolling window.

    Example:
        tracker = CorrelationTracker(window_s=720 * 3600, threshold=0.7)
        tracker.record("PEPE", ts, price)
        tracker.bucket_of("PEPE")   # {"PEPE", "BONK"}
    """

    def __init__(self, window_s: float, threshold: float, min_points: int = 20, bin_s: float = 60.0):
        self.window_s = window_s
        self.threshold = threshold
        self.min_points = min_points
        self.bin_s = bin_s
        self._prices: dict[str, deque] = defaultdict(deque)
        self._cache: Optional[list[set[str]]] = None

    def record(self, symbol: str, ts: float, price: float) -> None:
        series = self._prices[symbol]
        if series and ts <= series[-1][0]:
            return
        series.append((ts, price))
        horizon = ts - self.window_s
        while series and series[0][0] < horizon:
            series.popleft()
        self._cache = None

    def matrix(self) -> pd.DataFrame:
        """Pairwise return correlation matrix."""
        columns = {}
        for symbol, series in self._prices.items():
            if len(series) < 2:
                continue
            ts, prices = zip(*series)
            index = pd.to_datetime(np.asarray(ts), unit="s")
            columns[symbol] = pd.Series(prices, index=index).resample(f"{int(self.bin_s)}s").last()
        if len(columns) < 2:
            return pd.DataFrame()
        frame = pd.DataFrame(columns).ffill()
        return frame.pct_change().corr(min_periods=self.min_points)

    def buckets(self) -> list[set[str]]:
        if self._cache is not None:
            return self._cache

        symbols = list(self._prices)
        parent = {s: s for s in symbols}

        def find(s: str) -> str:
            while parent[s] != s:
                parent[s] = parent[parent[s]]
                s = parent[s]
            return s

        corr = self.matrix()
        if not corr.empty:
            cols = list(corr.columns)
            for i, a in enumerate(cols):
                for b in cols[i + 1:]:
                    rho = corr.loc[a, b]
                    if pd.notna(rho) and rho > self.threshold:
                        parent[find(a)] = find(b)

        groups: dict[str, set[str]] = defaultdict(set)
        for s in symbols:
            groups[find(s)].add(s)
        self._cache = list(groups.values())
        return self._cache

    def bucket_of(self, symbol: str) -> set[str]:
        for bucket in self.buckets():
            if symbol in bucket:
                return bucket
        return {symbol}
