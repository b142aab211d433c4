"""Tests for portfolio and per-asset risk analytics."""
from datetime import datetime, timezone

import numpy as np
import pytest

from quantcore.errors import InvalidInputError
from quantcore.metrics import returns_from_prices
from quantcore.risk import (
    compute_risk_analytics,
    conditional_value_at_risk,
    portfolio_returns,
    value_at_risk,
)
from quantcore.types import PortfolioPosition

AS_OF = datetime(2024, 6, 28, 21, 0, tzinfo=timezone.utc)


def _position(symbol: str, prices, quantity: float = 10.0, avg_price: float = 100.0) -> PortfolioPosition:
    prices = [float(p) for p in prices]
    return PortfolioPosition(
        symbol=symbol,
        quantity=quantity,
        avg_price=avg_price,
        current_price=prices[-1],
        returns=returns_from_prices(prices),
        historical_prices=prices,
    )


def _random_prices(seed: int, n: int = 120):
    rng = np.random.default_rng(seed)
    return 100 * np.exp(np.cumsum(rng.normal(0.0004, 0.012, n)))


def test_no_positions_raises() -> None:
    with pytest.raises(InvalidInputError) as exc_info:
        compute_risk_analytics([])
    assert exc_info.value.code == "no_positions"


def test_zero_variance_returns_resolve_to_zero() -> None:
    """A steady 1% daily gain has no volatility and no downside."""
    position = _position("STEADY", [100 * 1.01 ** i for i in range(40)])
    result = compute_risk_analytics([position], as_of=AS_OF)
    p = result.portfolio

    assert p.sharpe_ratio == 0.0
    assert p.sortino_ratio == 0.0
    assert p.value_at_risk.var95 == 0.0
    assert p.value_at_risk.cvar99 == 0.0
    assert p.volatility.daily == 0.0
    assert p.calmar_ratio == 0.0
    assert p.diversification_ratio == 1.0
    assert result.assets[0].sharpe_ratio == 0.0


def test_value_at_risk_percentiles() -> None:
    returns = [-0.05, -0.04, -0.03] + [0.01] * 17
    assert value_at_risk(returns, 1000.0, 0.95) == pytest.approx(40.0)
    assert value_at_risk(returns, 1000.0, 0.99) == pytest.approx(50.0)
    assert conditional_value_at_risk(returns, 1000.0, 0.95) == pytest.approx(45.0)
    assert conditional_value_at_risk(returns, 1000.0, 0.99) == pytest.approx(50.0)


def test_value_at_risk_of_empty_or_gaining_returns() -> None:
    assert value_at_risk([], 1000.0, 0.95) == 0.0
    assert value_at_risk([0.02, 0.01], 1000.0, 0.95) == 0.0
    assert conditional_value_at_risk([], 1000.0, 0.95) == 0.0


def test_identical_assets_are_perfectly_correlated() -> None:
    prices = _random_prices(3)
    result = compute_risk_analytics([_position("A", prices), _position("B", prices)], as_of=AS_OF)
    assert result.correlations.matrix[0][1] == pytest.approx(1.0)


def test_correlation_matrix_is_symmetric_with_unit_diagonal() -> None:
    positions = [_position(s, _random_prices(i)) for i, s in enumerate(["A", "B", "C"])]
    matrix = np.array(compute_risk_analytics(positions, as_of=AS_OF).correlations.matrix)

    np.testing.assert_allclose(matrix, matrix.T)
    np.testing.assert_allclose(np.diag(matrix), 1.0)
    assert ((matrix >= -1 - 1e-9) & (matrix <= 1 + 1e-9)).all()


def test_single_sample_asset_keeps_unit_diagonal() -> None:
    result = compute_risk_analytics([_position("ONE", [100.0]), _position("TWO", _random_prices(5))], as_of=AS_OF)
    assert result.correlations.matrix[0][0] == 1.0
    assert result.correlations.matrix[0][1] == 0.0


def test_concentration_and_weights() -> None:
    a = _position("A", [100, 101, 100], quantity=10)
    b = _position("B", [50, 49, 50], quantity=20)
    result = compute_risk_analytics([a, b], as_of=AS_OF)

    assert [x.portfolio_weight for x in result.assets] == pytest.approx([0.5, 0.5])
    assert result.portfolio.concentration_risk == pytest.approx(0.5)


def test_single_asset_concentration_is_one() -> None:
    result = compute_risk_analytics([_position("A", _random_prices(9))], as_of=AS_OF)
    assert result.portfolio.concentration_risk == pytest.approx(1.0)
    assert result.portfolio.diversification_ratio == pytest.approx(1.0)


def test_asset_pnl_and_component_var() -> None:
    prices = _random_prices(11)
    prices[-1] = 110.0
    result = compute_risk_analytics([_position("A", prices, quantity=10, avg_price=100)], as_of=AS_OF)
    asset = result.assets[0]

    assert asset.current_value == pytest.approx(1100.0)
    assert asset.unrealized_pnl == pytest.approx(100.0)
    assert asset.unrealized_pnl_percent == pytest.approx(10.0)
    assert asset.marginal_contribution == pytest.approx(asset.portfolio_weight * asset.beta)
    assert asset.component_var == pytest.approx(result.portfolio.value_at_risk.var95 * asset.marginal_contribution)


def test_benchmark_identical_to_portfolio() -> None:
    position = _position("A", _random_prices(13))
    result = compute_risk_analytics([position], benchmark_returns=position.returns, as_of=AS_OF)
    p = result.portfolio

    assert p.beta == pytest.approx(1.0)
    assert p.correlation == pytest.approx(1.0)
    assert p.alpha == pytest.approx(0.0, abs=1e-12)


def test_no_benchmark_defaults() -> None:
    result = compute_risk_analytics([_position("A", _random_prices(17))], as_of=AS_OF)
    assert result.portfolio.beta == 1.0
    assert result.portfolio.alpha == 0.0
    assert result.portfolio.correlation == 0.0


def test_drawdown_invariants() -> None:
    positions = [_position(s, _random_prices(20 + i)) for i, s in enumerate(["A", "B"])]
    p = compute_risk_analytics(positions, as_of=AS_OF).portfolio
    assert p.max_drawdown >= p.current_drawdown >= 0
    assert p.max_drawdown_duration >= 0


def test_sharpe_uses_risk_free_rate() -> None:
    positions = [_position("A", _random_prices(23))]
    with_rf = compute_risk_analytics(positions, risk_free_rate=0.045, as_of=AS_OF).portfolio
    without_rf = compute_risk_analytics(positions, risk_free_rate=0.0, as_of=AS_OF).portfolio

    expected_gap = 0.045 / with_rf.volatility.annualized
    assert without_rf.sharpe_ratio - with_rf.sharpe_ratio == pytest.approx(expected_gap)


def test_portfolio_returns_align_on_most_recent() -> None:
    long = PortfolioPosition(symbol="L", quantity=1, avg_price=1, current_price=1, returns=[0.1, 0.2, 0.3])
    short = PortfolioPosition(symbol="S", quantity=1, avg_price=1, current_price=1, returns=[0.5])

    result = portfolio_returns([long, short], [0.5, 0.5])

    assert result == pytest.approx([0.1, 0.2, 0.4])


def test_report_is_stamped() -> None:
    result = compute_risk_analytics([_position("A", _random_prices(29))], as_of=AS_OF)
    assert result.calculated_at == AS_OF
    assert result.correlations.timestamp == AS_OF
    assert result.correlations.symbols == ["A"]
