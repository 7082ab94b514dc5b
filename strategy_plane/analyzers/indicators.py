"""
Numeric building blocks shared by the analyzers.

All functions take plain numpy arrays (or sequences of snapshots) and
return finite floats; degenerate inputs (too short, flat) return neutral
values instead of NaN.
"""

from typing import Sequence

import numpy as np
from scipy import signal, stats

from shared.models import MarketSnapshot, SocialSample, TradePrint, TradeSide


def prices(snapshots: Sequence[MarketSnapshot]) -> np.ndarray:
    return np.asarray([s.price for s in snapshots], dtype=float)


def volumes(snapshots: Sequence[MarketSnapshot]) -> np.ndarray:
    return np.asarray([s.volume_1m for s in snapshots], dtype=float)


def trades(snapshots: Sequence[MarketSnapshot]) -> list[TradePrint]:
    return [t for s in snapshots for t in s.trades]


def log_returns(p: np.ndarray) -> np.ndarray:
    if len(p) < 2:
        return np.zeros(0)
    return np.diff(np.log(p))


def realized_vol(returns: np.ndarray) -> float:
    if len(returns) < 2:
        return 0.0
    return float(np.std(returns, ddof=1))


def atr_ratio(returns: np.ndarray, recent_fraction: float = 0.25) -> float:
    """Recent mean absolute return over the full-window mean (1.0 = unchanged)."""
    if len(returns) < 4:
        return 1.0
    abs_r = np.abs(returns)
    base = float(abs_r.mean())
    if base <= 0:
        return 1.0
    n_recent = max(2, int(len(abs_r) * recent_fraction))
    return float(abs_r[-n_recent:].mean() / base)


def vol_of_vol(returns: np.ndarray, chunk: int = 5) -> float:
    """Coefficient of variation of chunked volatility (0 = perfectly stable)."""
    n_chunks = len(returns) // chunk
    if n_chunks < 2:
        return 0.0
    vols = returns[: n_chunks * chunk].reshape(n_chunks, chunk).std(axis=1)
    mean = float(vols.mean())
    if mean <= 0:
        return 0.0
    return float(vols.std() / mean)


def normalized_slope(values: np.ndarray) -> tuple[float, float]:
    """
    Linear-regression slope per step, normalized by the mean absolute level,
    scaled to the whole window. Returns (slope, r_squared).
    """
    n = len(values)
    if n < 3 or np.allclose(values, values[0]):
        return 0.0, 0.0
    result = stats.linregress(np.arange(n, dtype=float), values)
    level = float(np.mean(np.abs(values))) or 1.0
    r2 = float(result.rvalue ** 2) if np.isfinite(result.rvalue) else 0.0
    return float(result.slope * n / level), r2


def obv(p: np.ndarray, v: np.ndarray) -> np.ndarray:
    """On-balance volume."""
    if len(p) < 2:
        return np.zeros(len(p))
    direction = np.sign(np.diff(p))
    return np.concatenate([[0.0], np.cumsum(direction * v[1:])])


def rsi(p: np.ndarray, period: int = 14) -> float:
    if len(p) <= period:
        return 50.0
    delta = np.diff(p[-(period + 1):])
    gains = delta.clip(min=0).mean()
    losses = (-delta).clip(min=0).mean()
    if losses == 0:
        return 100.0 if gains > 0 else 50.0
    rs = gains / losses
    return float(100 - 100 / (1 + rs))


def window_return(p: np.ndarray) -> float:
    if len(p) < 2 or p[0] <= 0:
        return 0.0
    return float(p[-1] / p[0] - 1.0)


def range_position(p: np.ndarray) -> float:
    """Where the last price sits in the window's range (0 = low, 1 = high)."""
    if len(p) == 0:
        return 0.5
    lo, hi = float(p.min()), float(p.max())
    if hi <= lo:
        return 0.5
    return float((p[-1] - lo) / (hi - lo))


def range_compression(p: np.ndarray, recent_fraction: float = 1 / 3) -> float:
    """1 - recent range / full range (1 = fully compressed)."""
    if len(p) < 6:
        return 0.0
    full = float(p.max() - p.min())
    if full <= 0:
        return 1.0
    recent = p[-max(2, int(len(p) * recent_fraction)):]
    return float(np.clip(1.0 - (recent.max() - recent.min()) / full, 0.0, 1.0))


def pivots(p: np.ndarray, lookback: int, threshold: float) -> tuple[np.ndarray, np.ndarray, dict, dict]:
    """
    Confirmed swing highs/lows.

    A pivot needs `lookback` samples on both sides and a prominence of at
    least `threshold` (fraction of mean price).
    """
    prominence = threshold * float(np.mean(p)) if len(p) else 0.0
    highs, high_props = signal.find_peaks(p, distance=max(1, lookback), prominence=prominence)
    lows, low_props = signal.find_peaks(-p, distance=max(1, lookback), prominence=prominence)
    confirmed_limit = len(p) - lookback
    keep_h = highs < confirmed_limit
    keep_l = lows < confirmed_limit
    high_props = {k: v[keep_h] for k, v in high_props.items()}
    low_props = {k: v[keep_l] for k, v in low_props.items()}
    return highs[keep_h], lows[keep_l], high_props, low_props


def flow_split(prints: Sequence[TradePrint]) -> tuple[float, float]:
    """(buy notional, sell notional) of the tape."""
    buy = sum(t.price * t.size for t in prints if t.side == TradeSide.BUY)
    sell = sum(t.price * t.size for t in prints if t.side == TradeSide.SELL)
    return buy, sell


def squash(x: float, scale: float = 1.0) -> float:
    """Map a real value into (0, 1) around 0.5."""
    if scale <= 0:
        return 0.5
    return float(0.5 + 0.5 * np.tanh(x / scale))


def signed_squash(x: float, scale: float = 1.0) -> float:
    """Map a real value into (-1, 1)."""
    if scale <= 0:
        return 0.0
    return float(np.tanh(x / scale))


def coverage(n: float, full: float) -> float:
    """Sample-count confidence: n / full, capped at 1."""
    if full <= 0:
        return 1.0
    return float(min(1.0, max(0.0, n / full)))


def sample_weights(samples: Sequence[SocialSample], platform_weights: dict[str, float]) -> np.ndarray:
    """Per-sample weight: platform weight x author weight x log reach."""
    return np.asarray([
        platform_weights.get(s.source.value, 0.3) * max(s.author_weight, 0.05) * np.log1p(s.reach + 1.0)
        for s in samples
    ], dtype=float)
