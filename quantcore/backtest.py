"""
Bar-by-bar strategy simulation.

The engine is a two-state machine (Flat / InPosition) driven once per bar
from the warm-up index onward. Exits are checked before entries. Capital is
marked to market every bar so the Sharpe ratio comes from daily equity.
"""
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from quantcore.config import StrategyConfig
from quantcore.metrics import annualized_sharpe, mean, returns_from_prices, safe_ratio, trade_max_drawdown
from quantcore.signals import _optional, evaluate_entry, is_trend_reversal, prepare_frame
from quantcore.types import BacktestResult, BacktestTrade, HistoricalPoint

__all__ = [
    "STRATEGY_NAME",
    "Flat",
    "InPosition",
    "SimulationTrace",
    "position_size",
    "simulate_strategy",
    "run_strategy",
]

log = logging.getLogger(__name__)

STRATEGY_NAME = "Multi-Factor Weighted Momentum"
RISK_PER_TRADE = 0.02


@dataclass(frozen=True)
class Flat:
    """No open trade."""


@dataclass(frozen=True)
class InPosition:
    entry_price: float
    entry_date: date
    quantity: int
    stop_loss: float
    initial_stop: float
    take_profit: float


PositionState = Union[Flat, InPosition]
FLAT = Flat()


@dataclass
class SimulationTrace:
    """Everything one simulation produced, bar-aligned from `start_index`."""
    start_index: int
    trades: List[BacktestTrade] = field(default_factory=list)
    equity: List[float] = field(default_factory=list)
    stops: List[float] = field(default_factory=list)
    signals: dict = field(default_factory=dict)
    final_capital: float = 0.0


def position_size(capital: float, close: float, atr_value: float, atr_multiplier: float) -> int:
    """
    Shares to buy so that hitting the initial stop loses RISK_PER_TRADE of capital.
    Returns 0 when the stop distance is not a positive number.
    """
    stop = close - atr_multiplier * atr_value
    risk_per_share = close - stop
    if not np.isfinite(risk_per_share) or risk_per_share <= 0:
        return 0
    return max(math.floor(capital * RISK_PER_TRADE / risk_per_share), 0)


def _exit_fill(state: InPosition, bar: pd.Series) -> Optional[Tuple[float, str]]:
    """Exit price and reason for this bar, in priority order, or None to stay in."""
    if bar["low"] <= state.stop_loss:
        return state.stop_loss, "stop_loss"
    if bar["high"] >= state.take_profit:
        return state.take_profit, "take_profit"
    if is_trend_reversal(bar):
        return float(bar["close"]), "trend_reversal"
    return None


def _ratchet_stop(state: InPosition, bar: pd.Series, atr_multiplier: float) -> InPosition:
    candidate = bar["close"] - atr_multiplier * bar["atr"]
    if np.isfinite(candidate) and candidate > state.stop_loss:
        return replace(state, stop_loss=float(candidate))
    return state


def _close_trade(state: InPosition, exit_price: float, exit_date: date, reason: str) -> BacktestTrade:
    pnl = (exit_price - state.entry_price) * state.quantity
    initial_risk = (state.entry_price - state.initial_stop) * state.quantity
    return BacktestTrade(
        entry_date=state.entry_date,
        entry_price=state.entry_price,
        exit_date=exit_date,
        exit_price=exit_price,
        quantity=state.quantity,
        side="buy",
        exit_reason=reason,
        pnl=pnl,
        pnl_percent=(exit_price - state.entry_price) / state.entry_price * 100,
        risk_reward=safe_ratio(abs(pnl), initial_risk),
    )


def simulate_strategy(df: pd.DataFrame, config: StrategyConfig, initial_capital: float) -> SimulationTrace:
    """
    Runs the state machine over a frame from `add_strategy_indicators`.

    At most one position is open at any bar, and a bar that closes a trade
    does not open a new one.
    """
    start = config.warmup_bars
    trace = SimulationTrace(start_index=start)
    capital = initial_capital
    state: PositionState = FLAT
    last_close = np.nan

    for i in range(start, len(df)):
        bar = df.iloc[i]
        bar_date = bar["date"].date()
        if np.isfinite(bar["close"]):
            last_close = float(bar["close"])

        if isinstance(state, InPosition):
            fill = _exit_fill(state, bar)
            if fill is not None:
                exit_price, reason = fill
                trade = _close_trade(state, exit_price, bar_date, reason)
                trace.trades.append(trade)
                trace.signals[i] = "sell"
                capital += trade.pnl
                state = FLAT
                log.debug(f"{bar_date}: exit {reason} @ {exit_price:.2f}, pnl {trade.pnl:.2f}")
            else:
                state = _ratchet_stop(state, bar, config.atr_multiplier)
        else:
            decision = evaluate_entry(df, i, config)
            if decision.enter:
                close = float(bar["close"])
                quantity = position_size(capital, close, bar["atr"], config.atr_multiplier)
                if quantity > 0:
                    stop = close - config.atr_multiplier * bar["atr"]
                    state = InPosition(
                        entry_price=close,
                        entry_date=bar_date,
                        quantity=quantity,
                        stop_loss=stop,
                        initial_stop=stop,
                        take_profit=close + config.tp_multiplier * bar["atr"],
                    )
                    trace.signals[i] = "buy"
                    log.debug(f"{bar_date}: entry score {decision.score} @ {close:.2f} x {quantity}")

        unrealized = 0.0
        if isinstance(state, InPosition):
            # A bar with a missing close is marked at the last known close.
            unrealized = (last_close - state.entry_price) * state.quantity
        trace.equity.append(capital + unrealized)
        trace.stops.append(state.stop_loss if isinstance(state, InPosition) else np.nan)

    trace.final_capital = capital
    return trace


def _historical_points(df: pd.DataFrame, signals: dict) -> List[HistoricalPoint]:
    return [
        HistoricalPoint(
            date=row.date.date(),
            close=row.close,
            ema_fast=_optional(row.ema_fast),
            ema_slow=_optional(row.ema_slow),
            rsi=_optional(row.rsi),
            signal=signals.get(i),
        )
        for i, row in enumerate(df.itertuples(index=False))
    ]


def run_strategy(
    symbol: str,
    candles: Any,
    config: Optional[StrategyConfig] = None,
    initial_capital: float = 10_000.0,
) -> BacktestResult:
    """
    Backtests the multi-factor strategy on one symbol's daily candles.

    Raises InsufficientDataError when the history is shorter than the
    warm-up window and InvalidInputError for malformed candles, both before
    any indicator is computed.
    """
    config = config or StrategyConfig()
    df = prepare_frame(candles, config, symbol)
    log.info(f"Backtesting {symbol} over {len(df)} candles.")

    trace = simulate_strategy(df, config, initial_capital)
    trades = trace.trades

    wins = [t.pnl for t in trades if t.pnl > 0]
    losses = [t.pnl for t in trades if t.pnl < 0]
    average_win = mean(wins)
    average_loss = abs(mean(losses))
    total_pnl = trace.final_capital - initial_capital

    result = BacktestResult(
        symbol=symbol,
        strategy=STRATEGY_NAME,
        start_date=df["date"].iloc[trace.start_index].date(),
        end_date=df["date"].iloc[-1].date(),
        initial_capital=initial_capital,
        final_capital=trace.final_capital,
        total_pnl=total_pnl,
        total_pnl_percent=total_pnl / initial_capital * 100,
        trades=trades,
        win_rate=len(wins) / len(trades) * 100 if trades else 0.0,
        winning_trades=len(wins),
        losing_trades=len(losses),
        average_win=average_win,
        average_loss=average_loss,
        profit_factor=safe_ratio(average_win, average_loss),
        sharpe_ratio=annualized_sharpe(returns_from_prices(trace.equity)),
        max_drawdown=trade_max_drawdown([t.pnl for t in trades], initial_capital),
        historical_data=_historical_points(df, trace.signals),
    )

    log.info(
        f"Backtest complete for {symbol}. {len(trades)} trades, "
        f"total P&L {total_pnl:.2f} ({result.total_pnl_percent:.2f}%)."
    )
    return result
