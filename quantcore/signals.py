"""
Entry gating and scoring shared by the backtest engine and the batch scan.

Both paths call `evaluate_entry` on a frame produced by
`add_strategy_indicators`, so a live scan and a historical run can never
disagree about what counts as an entry.
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, List, Mapping, Optional

import numpy as np
import pandas as pd

from quantcore.config import StrategyConfig
from quantcore.data import candles_to_frame, validate_candles
from quantcore.errors import InsufficientDataError, QuantCoreError
from quantcore.indicators import atr, ema, macd, rsi, rsi_divergence, sma, volume_divergence
from quantcore.types import ScanResult

__all__ = [
    "EntryDecision",
    "add_strategy_indicators",
    "evaluate_entry",
    "is_trend_reversal",
    "prepare_frame",
    "scan_symbol",
    "batch_scan",
]

log = logging.getLogger(__name__)

LONG_TREND_PERIOD = 200
RSI_PERIOD = 14
ATR_PERIOD = 14
VOLUME_AVG_PERIOD = 20
OVERBOUGHT_RSI = 70.0
VOLUME_SURGE = 1.2
ATR_DECLINE = 0.8

# Score weights; the maximum attainable score is 9.
TREND_POINTS = 3
VOLUME_POINTS = 2
RSI_POINTS = 2
MACD_POINTS = 2


@dataclass(frozen=True)
class EntryDecision:
    score: int
    threshold: int
    blocked_by: Optional[str] = None

    @property
    def enter(self) -> bool:
        return self.blocked_by is None and self.score >= self.threshold


def add_strategy_indicators(df: pd.DataFrame, config: StrategyConfig) -> pd.DataFrame:
    """
    Adds every indicator column the strategy reads to a normalized candle frame.

    Returns a new DataFrame; the input is left untouched.
    """
    close = df["close"]
    return df.assign(
        ema_fast=ema(close, config.ema_fast),
        ema_slow=ema(close, config.ema_slow),
        ema_long=ema(close, LONG_TREND_PERIOD),
        rsi=rsi(close, RSI_PERIOD),
        atr=atr(df, ATR_PERIOD),
        avg_volume=sma(df["volume"], VOLUME_AVG_PERIOD),
        macd_hist=macd(close).histogram,
    )


def prepare_frame(candles: Any, config: StrategyConfig, symbol: str = "") -> pd.DataFrame:
    """
    Normalizes and validates candles, checks the history length and adds the
    strategy indicators. Raises before any indicator is computed.
    """
    df = candles_to_frame(candles)
    if len(df) < config.warmup_bars:
        raise InsufficientDataError(config.warmup_bars, len(df), symbol)
    validate_candles(df)
    return add_strategy_indicators(df, config)


def evaluate_entry(df: pd.DataFrame, i: int, config: StrategyConfig) -> EntryDecision:
    """
    Applies the entry gates in order, then scores the bar.

    Gates: indicators available, long-term trend (optional), RSI overbought
    veto, declining volatility (optional). Any gate short-circuits with a
    score of 0.
    """
    bar = df.iloc[i]
    prev = df.iloc[i - 1] if i > 0 else bar
    threshold = config.score_threshold

    if any(np.isnan(bar[c]) for c in ("close", "ema_fast", "ema_slow", "rsi")):
        return EntryDecision(0, threshold, "warmup")

    if config.trend_filter and not (bar["close"] >= bar["ema_long"]):
        return EntryDecision(0, threshold, "trend")

    if bar["rsi"] > OVERBOUGHT_RSI:
        return EntryDecision(0, threshold, "overbought")

    if (
        config.volatility_filter
        and i > 0
        and not np.isnan(bar["atr"])
        and not np.isnan(prev["atr"])
        and bar["atr"] < ATR_DECLINE * prev["atr"]
    ):
        return EntryDecision(0, threshold, "volatility")

    score = 0
    if bar["close"] > bar["ema_fast"] > bar["ema_slow"]:
        score += TREND_POINTS
    if bar["volume"] > VOLUME_SURGE * bar["avg_volume"]:
        score += VOLUME_POINTS
    if config.rsi_lower <= bar["rsi"] <= config.rsi_upper:
        score += RSI_POINTS
    if i > 0 and bar["macd_hist"] > 0 and bar["macd_hist"] > prev["macd_hist"]:
        score += MACD_POINTS

    return EntryDecision(score, threshold)


def is_trend_reversal(bar: pd.Series) -> bool:
    return bool(bar["ema_fast"] < bar["ema_slow"])


def _optional(value: float) -> Optional[float]:
    return None if np.isnan(value) else float(value)


def scan_symbol(
    symbol: str,
    candles: Any,
    config: StrategyConfig = StrategyConfig(),
    scan_date: Optional[date] = None,
) -> ScanResult:
    """
    Scores the most recent bar (on or before `scan_date`) with the same
    gates as a backtest entry.

    The signal is "buy" when the entry rule fires, "sell" when the exit
    trend-reversal rule holds, and "hold" otherwise.
    """
    df = candles_to_frame(candles)
    if scan_date is not None and not df.empty:
        df = df[df["date"] <= pd.Timestamp(scan_date)]
    df = prepare_frame(df, config, symbol)

    last = len(df) - 1
    bar = df.iloc[last]
    decision = evaluate_entry(df, last, config)

    if decision.enter:
        signal = "buy"
    elif is_trend_reversal(bar):
        signal = "sell"
    else:
        signal = "hold"

    return ScanResult(
        symbol=symbol,
        date=bar["date"].date(),
        signal=signal,
        price=float(bar["close"]),
        ema_fast=_optional(bar["ema_fast"]),
        ema_slow=_optional(bar["ema_slow"]),
        rsi=_optional(bar["rsi"]),
        score=decision.score,
        blocked_by=decision.blocked_by,
        rsi_divergence=rsi_divergence(df["close"], df["rsi"], RSI_PERIOD),
        volume_divergence=volume_divergence(df["close"], df["volume"], VOLUME_AVG_PERIOD),
    )


def batch_scan(
    histories: Mapping[str, Any],
    config: StrategyConfig = StrategyConfig(),
    scan_date: Optional[date] = None,
) -> List[ScanResult]:
    """
    Scans every symbol in `histories`. Symbols that cannot be analyzed are
    logged and left out of the result.
    """
    log.info(f"Scanning {len(histories)} symbols.")
    results = []
    for symbol, candles in histories.items():
        try:
            results.append(scan_symbol(symbol, candles, config, scan_date))
        except QuantCoreError as e:
            log.warning(f"Skipping {symbol}: {e}")
    log.info(f"Scan complete. {len(results)} of {len(histories)} symbols analyzed.")
    return results
