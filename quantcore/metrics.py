"""
Return, volatility and drawdown primitives.

These are shared by the strategy engine and the risk module. Statistics are
population (ddof=0) statistics. Degenerate inputs resolve to a defined value
instead of NaN or infinity. A ratio with a zero denominator is 0; beta falls
back to 1.0.
"""
from typing import List, Sequence, Tuple

import numpy as np

from quantcore.config import TRADING_DAYS_PER_YEAR
from quantcore.types import DrawdownMetrics

__all__ = [
    "returns_from_prices",
    "mean",
    "std",
    "downside_deviation",
    "safe_ratio",
    "annualized_sharpe",
    "trade_max_drawdown",
    "price_drawdown",
    "align_tail",
    "correlation",
    "beta",
]

# Standard deviations below this are treated as zero. Averaging identical
# floats can leave residue of order 1e-18.
_ZERO_TOLERANCE = 1e-12


def returns_from_prices(prices: Sequence[float]) -> List[float]:
    """
    Day-over-day returns normalized by the prior price. Pairs with a NaN
    price on either side or a zero prior price are skipped.
    """
    values = np.asarray(prices, dtype=float)
    if len(values) < 2:
        return []
    prior, current = values[:-1], values[1:]
    usable = np.isfinite(prior) & np.isfinite(current) & (prior != 0)
    return ((current[usable] - prior[usable]) / prior[usable]).tolist()


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for an empty sequence."""
    arr = np.asarray(values, dtype=float)
    return float(arr.mean()) if arr.size else 0.0


def std(values: Sequence[float]) -> float:
    """Population standard deviation; 0.0 for an empty or constant sequence."""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return 0.0
    result = float(arr.std())
    return 0.0 if result < _ZERO_TOLERANCE else result


def downside_deviation(values: Sequence[float]) -> float:
    """Standard deviation of the negative returns only."""
    arr = np.asarray(values, dtype=float)
    return std(arr[arr < 0])


def safe_ratio(numerator: float, denominator: float, default: float = 0.0) -> float:
    if abs(denominator) < _ZERO_TOLERANCE or not np.isfinite(denominator):
        return default
    result = numerator / denominator
    return float(result) if np.isfinite(result) else default


def annualized_sharpe(daily_returns: Sequence[float]) -> float:
    """mean * 252 over std * sqrt(252), without a risk-free adjustment."""
    return safe_ratio(
        mean(daily_returns) * TRADING_DAYS_PER_YEAR,
        std(daily_returns) * np.sqrt(TRADING_DAYS_PER_YEAR),
    )


def trade_max_drawdown(pnls: Sequence[float], initial_capital: float) -> float:
    """
    Largest (peak - equity) / peak over the equity observed after each trade.
    """
    peak = equity = initial_capital
    max_drawdown = 0.0
    for pnl in pnls:
        equity += pnl
        peak = max(peak, equity)
        if peak > 0:
            max_drawdown = max(max_drawdown, (peak - equity) / peak)
    return max_drawdown


def price_drawdown(prices: Sequence[float]) -> DrawdownMetrics:
    """
    Drawdown statistics along a price path.

    The duration is the number of bars from the running peak to the point
    where the deepest drawdown was observed. NaN prices are skipped.
    """
    arr = np.asarray(prices, dtype=float)
    arr = arr[~np.isnan(arr)]
    if arr.size == 0:
        return DrawdownMetrics(max_drawdown=0.0, current_drawdown=0.0, max_drawdown_duration=0)

    peak = arr[0]
    peak_index = 0
    max_drawdown = 0.0
    max_duration = 0
    for i, price in enumerate(arr):
        if price > peak:
            peak = price
            peak_index = i
        elif peak > 0:
            drawdown = (peak - price) / peak
            if drawdown > max_drawdown:
                max_drawdown = drawdown
                max_duration = i - peak_index

    current = (peak - arr[-1]) / peak if peak > 0 else 0.0
    return DrawdownMetrics(
        max_drawdown=float(max_drawdown),
        current_drawdown=float(max(current, 0.0)),
        max_drawdown_duration=int(max_duration),
    )


def align_tail(a: Sequence[float], b: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    """Trims two series to their common most-recent window."""
    x = np.asarray(a, dtype=float)
    y = np.asarray(b, dtype=float)
    n = min(x.size, y.size)
    if n == 0:
        return x[:0], y[:0]
    return x[-n:], y[-n:]


def correlation(a: Sequence[float], b: Sequence[float]) -> float:
    """Pearson correlation over the common window; 0.0 when either side has no variance."""
    x, y = align_tail(a, b)
    if x.size == 0:
        return 0.0
    dx = x - x.mean()
    dy = y - y.mean()
    denominator = np.sqrt((dx * dx).sum() * (dy * dy).sum())
    return safe_ratio(float((dx * dy).sum()), float(denominator))


def beta(asset: Sequence[float], market: Sequence[float]) -> float:
    """cov(asset, market) / var(market); 1.0 without usable market data."""
    x, y = align_tail(asset, market)
    if x.size == 0:
        return 1.0
    dx = x - x.mean()
    dy = y - y.mean()
    return safe_ratio(float((dx * dy).sum()), float((dy * dy).sum()), default=1.0)
