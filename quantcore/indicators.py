"""
Stateless technical indicators over time-ordered price series.

Every function returns a float Series index-aligned 1:1 with its input.
Positions before a window is full hold NaN; callers must treat those as
unusable, not as zero. Nothing here raises on bad numbers: NaN in, NaN out.
"""
from typing import Any, Dict, NamedTuple, Optional, Sequence, Union

import numpy as np
import pandas as pd
from numpy.lib.stride_tricks import sliding_window_view

from quantcore.config import IndicatorConfig

__all__ = [
    "sma",
    "ema",
    "rsi",
    "true_range",
    "atr",
    "macd",
    "MACDResult",
    "rsi_divergence",
    "volume_divergence",
    "compute_indicators",
]

ArrayLike = Union[Sequence[float], np.ndarray, pd.Series]


class MACDResult(NamedTuple):
    macd_line: pd.Series
    signal: pd.Series
    histogram: pd.Series


def _as_series(data: ArrayLike) -> pd.Series:
    """Coerces input to a float Series, keeping the index of an existing Series."""
    if isinstance(data, pd.Series):
        return data.astype(float)
    return pd.Series(np.asarray(data, dtype=float))


def _empty_like(series: pd.Series) -> np.ndarray:
    return np.full(len(series), np.nan)


def sma(data: ArrayLike, period: int) -> pd.Series:
    """Simple moving average; the first `period - 1` entries are NaN."""
    series = _as_series(data)
    if period < 1:
        return pd.Series(_empty_like(series), index=series.index)
    return series.rolling(window=period, min_periods=period).mean()


def ema(data: ArrayLike, period: int) -> pd.Series:
    """
    Exponential moving average with multiplier 2 / (period + 1).

    Index 0 is seeded with the first sample, indices 1..period-2 are NaN,
    index period-1 holds the simple mean of the first `period` samples and
    the recursion runs from there.
    """
    series = _as_series(data)
    values = series.to_numpy()
    out = _empty_like(series)
    n = len(values)
    if n == 0 or period < 1:
        return pd.Series(out, index=series.index)

    multiplier = 2.0 / (period + 1)
    out[0] = values[0]
    if period - 1 < n:
        out[period - 1] = values[:period].mean()
        for i in range(period, n):
            out[i] = (values[i] - out[i - 1]) * multiplier + out[i - 1]
    return pd.Series(out, index=series.index)


def rsi(data: ArrayLike, period: int = 14) -> pd.Series:
    """
    Relative Strength Index over the trailing `period` price changes.

    An average loss of zero is replaced by 1 so the ratio is always defined.
    A window containing NaN yields NaN.
    """
    series = _as_series(data)
    out = _empty_like(series)
    changes = np.diff(series.to_numpy())
    if period < 1 or len(changes) < period:
        return pd.Series(out, index=series.index)

    windows = sliding_window_view(changes, period)
    gains = np.where(windows > 0, windows, 0.0).sum(axis=1) / period
    losses = -np.where(windows < 0, windows, 0.0).sum(axis=1) / period
    rs = gains / np.where(losses == 0, 1.0, losses)
    values = 100.0 - 100.0 / (1.0 + rs)
    values[np.isnan(windows).any(axis=1)] = np.nan

    out[period:] = values[: len(series) - period]
    return pd.Series(out, index=series.index)


def _ohlc_frame(candles: Any) -> pd.DataFrame:
    if isinstance(candles, pd.DataFrame):
        return candles
    return pd.DataFrame([dict(c) for c in candles], columns=["high", "low", "close"])


def true_range(candles: Any) -> pd.Series:
    """max(high - low, |high - prev close|, |low - prev close|); index 0 is high - low."""
    frame = _ohlc_frame(candles)
    high = frame["high"].astype(float)
    low = frame["low"].astype(float)
    prev_close = frame["close"].astype(float).shift(1)

    tr = np.maximum(
        high - low,
        np.maximum((high - prev_close).abs(), (low - prev_close).abs()),
    )
    tr.iloc[:1] = (high - low).iloc[:1]
    return tr


def atr(candles: Any, period: int = 14) -> pd.Series:
    """
    Average True Range with Wilder smoothing, seeded by the simple mean of
    the first `period` true-range values.

    `candles` is a DataFrame with high/low/close columns or a sequence of
    Candle records.
    """
    tr = true_range(candles)
    values = tr.to_numpy()
    out = _empty_like(tr)
    n = len(values)
    if period < 1 or n < period:
        return pd.Series(out, index=tr.index)

    out[period - 1] = values[:period].mean()
    for i in range(period, n):
        out[i] = (out[i - 1] * (period - 1) + values[i]) / period
    return pd.Series(out, index=tr.index)


def macd(closes: ArrayLike, fast: int = 12, slow: int = 26, signal: int = 9) -> MACDResult:
    """
    MACD line (fast EMA - slow EMA), its signal line and the histogram.

    The signal line smooths the MACD line from index slow-1 onward, where the
    slow EMA is first seeded, and is padded back with slow-1 leading NaNs.
    """
    series = _as_series(closes)
    macd_line = ema(series, fast) - ema(series, slow)

    signal_values = _empty_like(series)
    start = max(slow - 1, 0)
    if start < len(series):
        signal_values[start:] = ema(macd_line.iloc[start:].to_numpy(), signal).to_numpy()
    signal_line = pd.Series(signal_values, index=series.index)

    return MACDResult(macd_line, signal_line, macd_line - signal_line)


# §1. Divergence Detectors
# --------------------------------------------------------------------------------------


def _split_window(values: np.ndarray, lookback: int):
    window = values[-lookback:]
    mid = lookback // 2
    return window[:mid], window[mid:]


def _halves_usable(*halves: np.ndarray) -> bool:
    return all(len(h) > 0 and not np.isnan(h).all() for h in halves)


def rsi_divergence(closes: ArrayLike, rsi_values: ArrayLike, lookback: int = 14) -> str:
    """
    Compares the two halves of the trailing `lookback` window.

    Bearish: price makes a higher high while RSI makes a lower high.
    Bullish: price makes a lower low while RSI makes a higher low.
    """
    price = _as_series(closes).to_numpy()
    osc = _as_series(rsi_values).to_numpy()
    if lookback < 2 or len(price) < lookback or len(osc) < lookback:
        return "none"

    p1, p2 = _split_window(price, lookback)
    r1, r2 = _split_window(osc, lookback)
    if not _halves_usable(p1, p2, r1, r2):
        return "none"

    if np.nanmax(p2) > np.nanmax(p1) and np.nanmax(r2) < np.nanmax(r1):
        return "bearish"
    if np.nanmin(p2) < np.nanmin(p1) and np.nanmin(r2) > np.nanmin(r1):
        return "bullish"
    return "none"


def volume_divergence(closes: ArrayLike, volumes: ArrayLike, lookback: int = 20) -> str:
    """
    Bearish: a higher price high on a lower volume peak (rally losing participation).
    Bullish: a lower price low on a lower volume peak (selling exhaustion).
    """
    price = _as_series(closes).to_numpy()
    vol = _as_series(volumes).to_numpy()
    if lookback < 2 or len(price) < lookback or len(vol) < lookback:
        return "none"

    p1, p2 = _split_window(price, lookback)
    v1, v2 = _split_window(vol, lookback)
    if not _halves_usable(p1, p2, v1, v2):
        return "none"

    fading_volume = np.nanmax(v2) < np.nanmax(v1)
    if np.nanmax(p2) > np.nanmax(p1) and fading_volume:
        return "bearish"
    if np.nanmin(p2) < np.nanmin(p1) and fading_volume:
        return "bullish"
    return "none"


def compute_indicators(
    closes: ArrayLike,
    highs: Optional[ArrayLike] = None,
    lows: Optional[ArrayLike] = None,
    config: IndicatorConfig = IndicatorConfig(),
) -> Dict[str, Any]:
    """
    Computes the configured indicator series for one price history.

    ATR is only included when both highs and lows are supplied.
    """
    close_series = _as_series(closes)
    result: Dict[str, Any] = {}

    if config.sma_period:
        result["sma"] = sma(close_series, config.sma_period)
    if config.ema_period:
        result["ema"] = ema(close_series, config.ema_period)
    if config.rsi_period:
        result["rsi"] = rsi(close_series, config.rsi_period)
    if config.atr_period and highs is not None and lows is not None:
        frame = pd.DataFrame({
            "high": _as_series(highs).to_numpy(),
            "low": _as_series(lows).to_numpy(),
            "close": close_series.to_numpy(),
        }, index=close_series.index)
        result["atr"] = atr(frame, config.atr_period)
    if config.macd:
        fast, slow, signal = config.macd
        result["macd"] = macd(close_series, fast, slow, signal)

    return result
