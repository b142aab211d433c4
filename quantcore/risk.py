"""
Portfolio and per-asset risk analytics.

`compute_risk_analytics` is a pure function of its positions: nothing is
cached between calls. Position return series of unequal length are aligned
on their most recent observations.
"""
import logging
import math
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from quantcore.config import DEFAULT_RISK_FREE_RATE, TRADING_DAYS_PER_YEAR
from quantcore.errors import InvalidInputError
from quantcore.metrics import beta, correlation, downside_deviation, mean, price_drawdown, safe_ratio, std
from quantcore.types import (
    AssetRiskMetrics,
    CorrelationMatrix,
    PortfolioPosition,
    PortfolioRiskMetrics,
    ReturnMetrics,
    RiskAnalytics,
    ValueAtRisk,
    VolatilityMetrics,
)

__all__ = [
    "value_at_risk",
    "conditional_value_at_risk",
    "portfolio_returns",
    "portfolio_value_path",
    "correlation_matrix",
    "compute_risk_analytics",
]

log = logging.getLogger(__name__)

_ANNUALIZATION = math.sqrt(TRADING_DAYS_PER_YEAR)


# §1. Tail Risk
# --------------------------------------------------------------------------------------


def _tail_index(n: int, confidence: float) -> int:
    return min(int(math.floor((1 - confidence) * n)), n - 1)


def value_at_risk(returns: Sequence[float], portfolio_value: float, confidence: float) -> float:
    """
    Historical-simulation VaR: the loss at the (1 - confidence) percentile of
    the sorted returns, scaled by the portfolio value. Gains report 0.
    """
    ordered = np.sort(np.asarray(returns, dtype=float))
    if ordered.size == 0:
        return 0.0
    worst = ordered[_tail_index(ordered.size, confidence)]
    return float(max(-worst, 0.0) * portfolio_value)


def conditional_value_at_risk(returns: Sequence[float], portfolio_value: float, confidence: float) -> float:
    """Expected shortfall: the mean of every return at or below the VaR percentile."""
    ordered = np.sort(np.asarray(returns, dtype=float))
    if ordered.size == 0:
        return 0.0
    tail = ordered[: _tail_index(ordered.size, confidence) + 1]
    return float(max(-tail.mean(), 0.0) * portfolio_value)


# §2. Portfolio Series
# --------------------------------------------------------------------------------------


def _right_aligned(series: Sequence[Sequence[float]]) -> pd.DataFrame:
    """One column per input, indexed so the last observations share a row."""
    columns = {}
    for i, values in enumerate(series):
        n = len(values)
        columns[i] = pd.Series(np.asarray(values, dtype=float), index=range(-n, 0))
    return pd.DataFrame(columns).sort_index()


def portfolio_returns(positions: Sequence[PortfolioPosition], weights: Sequence[float]) -> List[float]:
    """
    Weighted daily portfolio returns. On days where only some positions have
    history, the weights of those present are renormalized.
    """
    frame = _right_aligned([p.returns for p in positions])
    if frame.empty:
        return []
    w = pd.Series(np.asarray(weights, dtype=float), index=frame.columns)
    present = frame.notna()
    weight_present = present.mul(w, axis=1).sum(axis=1)
    weighted = frame.fillna(0.0).mul(w, axis=1).sum(axis=1)
    usable = weight_present > 0
    return (weighted[usable] / weight_present[usable]).tolist()


def portfolio_value_path(positions: Sequence[PortfolioPosition]) -> List[float]:
    """Market value of the holdings along their aligned price histories."""
    frame = _right_aligned([p.historical_prices for p in positions])
    if frame.empty:
        return []
    quantities = pd.Series([p.quantity for p in positions], index=frame.columns, dtype=float)
    return frame.mul(quantities, axis=1).sum(axis=1, min_count=1).dropna().tolist()


def correlation_matrix(positions: Sequence[PortfolioPosition], timestamp: datetime) -> CorrelationMatrix:
    """Pairwise Pearson correlation of returns. Symmetric, with a unit diagonal."""
    n = len(positions)
    matrix = [[1.0] * n for _ in range(n)]
    for i in range(n):
        for j in range(i + 1, n):
            value = correlation(positions[i].returns, positions[j].returns)
            matrix[i][j] = matrix[j][i] = value
    return CorrelationMatrix(symbols=[p.symbol for p in positions], matrix=matrix, timestamp=timestamp)


# §3. Ratios
# --------------------------------------------------------------------------------------


def _annualized_return(returns: Sequence[float]) -> float:
    return mean(returns) * TRADING_DAYS_PER_YEAR


def _excess_ratio(returns: Sequence[float], annualized_risk: float, risk_free_rate: float) -> float:
    return safe_ratio(_annualized_return(returns) - risk_free_rate, annualized_risk)


def _asset_metrics(
    position: PortfolioPosition,
    weight: float,
    port_returns: Sequence[float],
    var95: float,
    risk_free_rate: float,
) -> AssetRiskMetrics:
    current_value = position.quantity * position.current_price
    cost_basis = position.quantity * position.avg_price
    unrealized = current_value - cost_basis
    volatility = std(position.returns) * _ANNUALIZATION
    asset_beta = beta(position.returns, port_returns)
    marginal = weight * asset_beta

    return AssetRiskMetrics(
        symbol=position.symbol,
        name=position.name,
        portfolio_weight=weight,
        marginal_contribution=marginal,
        component_var=var95 * marginal,
        volatility=volatility,
        beta=asset_beta,
        sharpe_ratio=_excess_ratio(position.returns, volatility, risk_free_rate),
        max_drawdown=price_drawdown(position.historical_prices).max_drawdown,
        current_value=current_value,
        unrealized_pnl=unrealized,
        unrealized_pnl_percent=safe_ratio(unrealized, cost_basis) * 100,
    )


def compute_risk_analytics(
    positions: Sequence[PortfolioPosition],
    benchmark_returns: Optional[Sequence[float]] = None,
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
    as_of: Optional[datetime] = None,
) -> RiskAnalytics:
    """
    Computes portfolio-level and per-asset risk metrics plus the return
    correlation matrix.

    Args:
        positions: Holdings with their daily returns and price histories.
        benchmark_returns: Optional market return series. Without it beta is
            1.0 and alpha and correlation are 0.
        risk_free_rate: Annual rate subtracted in the Sharpe and Sortino ratios.
        as_of: Timestamp stamped on the report; defaults to now (UTC).

    Raises:
        InvalidInputError: With code "no_positions" for an empty position set.
    """
    if not positions:
        raise InvalidInputError("No positions to analyze", code="no_positions")

    as_of = as_of or datetime.now(timezone.utc)
    log.info(f"Computing risk analytics for {len(positions)} positions.")

    values = [p.quantity * p.current_price for p in positions]
    total_value = sum(values)
    weights = [safe_ratio(v, total_value) for v in values]

    returns = portfolio_returns(positions, weights)
    daily_vol = std(returns)
    annualized_vol = daily_vol * _ANNUALIZATION
    annualized_downside = downside_deviation(returns) * _ANNUALIZATION
    annualized_return = _annualized_return(returns)
    cumulative = float(np.prod(1 + np.asarray(returns, dtype=float)) - 1) if returns else 0.0

    var95 = value_at_risk(returns, total_value, 0.95)
    drawdown = price_drawdown(portfolio_value_path(positions))

    portfolio_beta, alpha, benchmark_corr = 1.0, 0.0, 0.0
    if benchmark_returns is not None and len(benchmark_returns) > 0:
        portfolio_beta = beta(returns, benchmark_returns)
        benchmark_corr = correlation(returns, benchmark_returns)
        benchmark_annualized = _annualized_return(benchmark_returns)
        alpha = annualized_return - (risk_free_rate + portfolio_beta * (benchmark_annualized - risk_free_rate))

    weighted_vol = sum(w * std(p.returns) * _ANNUALIZATION for w, p in zip(weights, positions))

    portfolio = PortfolioRiskMetrics(
        value_at_risk=ValueAtRisk(
            var95=var95,
            var99=value_at_risk(returns, total_value, 0.99),
            cvar95=conditional_value_at_risk(returns, total_value, 0.95),
            cvar99=conditional_value_at_risk(returns, total_value, 0.99),
        ),
        volatility=VolatilityMetrics(
            daily=daily_vol,
            annualized=annualized_vol,
            downside_deviation=annualized_downside,
        ),
        returns=ReturnMetrics(daily=mean(returns), annualized=annualized_return, cumulative=cumulative),
        sharpe_ratio=_excess_ratio(returns, annualized_vol, risk_free_rate),
        sortino_ratio=_excess_ratio(returns, annualized_downside, risk_free_rate),
        calmar_ratio=safe_ratio(annualized_return, drawdown.max_drawdown),
        max_drawdown=drawdown.max_drawdown,
        current_drawdown=drawdown.current_drawdown,
        max_drawdown_duration=drawdown.max_drawdown_duration,
        beta=portfolio_beta,
        alpha=alpha,
        correlation=benchmark_corr,
        concentration_risk=float(sum(w * w for w in weights)),
        diversification_ratio=safe_ratio(annualized_vol, weighted_vol, default=1.0),
    )

    assets = [
        _asset_metrics(p, w, returns, var95, risk_free_rate)
        for p, w in zip(positions, weights)
    ]

    log.info(
        f"Risk analytics complete. VaR95 {var95:.2f}, Sharpe {portfolio.sharpe_ratio:.2f}, "
        f"max drawdown {drawdown.max_drawdown:.2%}."
    )
    return RiskAnalytics(
        portfolio=portfolio,
        assets=assets,
        correlations=correlation_matrix(positions, as_of),
        calculated_at=as_of,
    )
