"""
Shared data structures for the application.

Inputs and outputs of the three analytics components are plain numeric
records. NaN indicator values never reach these models; they are carried as
None so the records serialize cleanly to JSON.
"""
import datetime as dt
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "Candle",
    "Quote",
    "BacktestTrade",
    "HistoricalPoint",
    "BacktestResult",
    "ScanResult",
    "PortfolioPosition",
    "ValueAtRisk",
    "VolatilityMetrics",
    "ReturnMetrics",
    "DrawdownMetrics",
    "PortfolioRiskMetrics",
    "AssetRiskMetrics",
    "CorrelationMatrix",
    "RiskAnalytics",
]

Divergence = Literal["bullish", "bearish", "none"]


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)  # Make records immutable


class Candle(_Record):
    """
    One trading-period OHLCV sample.
    """

    date: dt.date = Field(..., description="The trading date of the candle.")
    open: float = Field(..., description="Opening price.")
    high: float = Field(..., description="Highest traded price.")
    low: float = Field(..., description="Lowest traded price.")
    close: float = Field(..., description="Closing price.")
    volume: float = Field(0.0, ge=0, description="Traded volume.")


class Quote(_Record):
    symbol: str = Field(..., description="The ticker symbol.")
    price: float = Field(..., description="Last traded price.")
    change: float = Field(0.0, description="Absolute change against the previous close.")
    change_percent: float = Field(0.0, description="Percent change against the previous close.")


# §1. Backtest records
# --------------------------------------------------------------------------------------


class BacktestTrade(_Record):
    """
    A closed, long-only trade. Appended to the trade log only at exit.
    """

    entry_date: dt.date = Field(..., description="The date of trade entry.")
    entry_price: float = Field(..., gt=0, description="The price at which the trade was entered.")
    exit_date: dt.date = Field(..., description="The date of trade exit.")
    exit_price: float = Field(..., description="The price at which the trade was exited.")
    quantity: int = Field(..., gt=0, description="Number of shares held.")
    side: Literal["buy", "sell"] = Field("buy", description="Direction of the opening order.")
    exit_reason: Literal["stop_loss", "take_profit", "trend_reversal"] = Field(
        ..., description="The rule that closed the trade."
    )
    pnl: float = Field(..., description="Realized profit and loss.")
    pnl_percent: float = Field(..., description="Realized return on the entry price, in percent.")
    risk_reward: float = Field(..., ge=0, description="Absolute P&L divided by the initial risk.")


class HistoricalPoint(_Record):
    date: dt.date
    close: float
    ema_fast: Optional[float] = None
    ema_slow: Optional[float] = None
    rsi: Optional[float] = None
    signal: Optional[Literal["buy", "sell"]] = None


class BacktestResult(_Record):
    """
    Aggregate of one strategy simulation: trade log, summary statistics and
    the indicator series used for presentation.
    """

    symbol: str
    strategy: str
    start_date: dt.date
    end_date: dt.date
    initial_capital: float
    final_capital: float
    total_pnl: float
    total_pnl_percent: float
    trades: List[BacktestTrade]
    win_rate: float = Field(..., description="Winning trades over all trades, in percent.")
    winning_trades: int
    losing_trades: int
    average_win: float
    average_loss: float = Field(..., description="Mean loss of losing trades, as a positive number.")
    profit_factor: float
    sharpe_ratio: float
    max_drawdown: float = Field(..., description="Largest peak-to-trough fall of trade equity, as a fraction.")
    historical_data: List[HistoricalPoint]


class ScanResult(_Record):
    """
    Signal snapshot for the most recent bar of one symbol.
    """

    symbol: str
    date: dt.date
    signal: Literal["buy", "sell", "hold"]
    price: float
    ema_fast: Optional[float] = None
    ema_slow: Optional[float] = None
    rsi: Optional[float] = None
    score: int = Field(..., ge=0, le=9)
    blocked_by: Optional[str] = Field(None, description="Name of the gate that vetoed an entry, if any.")
    rsi_divergence: Divergence = "none"
    volume_divergence: Divergence = "none"


# §2. Risk records
# --------------------------------------------------------------------------------------


class PortfolioPosition(_Record):
    symbol: str = Field(..., description="The ticker symbol.")
    name: str = Field("", description="Display name of the holding.")
    quantity: float = Field(..., ge=0)
    avg_price: float = Field(..., ge=0, description="Average cost per share.")
    current_price: float = Field(..., ge=0)
    returns: List[float] = Field(default_factory=list, description="Daily returns derived from historical_prices.")
    historical_prices: List[float] = Field(default_factory=list)


class ValueAtRisk(_Record):
    var95: float
    var99: float
    cvar95: float
    cvar99: float


class VolatilityMetrics(_Record):
    daily: float
    annualized: float
    downside_deviation: float = Field(..., description="Annualized deviation of negative returns.")


class ReturnMetrics(_Record):
    daily: float
    annualized: float
    cumulative: float


class DrawdownMetrics(_Record):
    max_drawdown: float
    current_drawdown: float
    max_drawdown_duration: int = Field(..., description="Bars from the peak to the deepest trough.")


class PortfolioRiskMetrics(_Record):
    value_at_risk: ValueAtRisk
    volatility: VolatilityMetrics
    returns: ReturnMetrics
    sharpe_ratio: float
    sortino_ratio: float
    calmar_ratio: float
    max_drawdown: float
    current_drawdown: float
    max_drawdown_duration: int
    beta: float
    alpha: float
    correlation: float = Field(..., description="Correlation with the benchmark, 0 without one.")
    concentration_risk: float = Field(..., description="Herfindahl index of market-value weights.")
    diversification_ratio: float


class AssetRiskMetrics(_Record):
    symbol: str
    name: str = ""
    portfolio_weight: float = Field(..., description="Share of portfolio market value, as a fraction.")
    marginal_contribution: float
    component_var: float
    volatility: float
    beta: float
    sharpe_ratio: float
    max_drawdown: float
    current_value: float
    unrealized_pnl: float
    unrealized_pnl_percent: float


class CorrelationMatrix(_Record):
    symbols: List[str]
    matrix: List[List[float]]
    timestamp: dt.datetime


class RiskAnalytics(_Record):
    portfolio: PortfolioRiskMetrics
    assets: List[AssetRiskMetrics]
    correlations: CorrelationMatrix
    calculated_at: dt.datetime
