"""Tests for the yfinance market-data adapter. yfinance itself is always mocked."""
import pandas as pd
import pytest
from pytest_mock import MockerFixture

from quantcore.adapters.yfinance_api import fetch_history, fetch_quote
from quantcore.errors import InvalidInputError


def _yf_history() -> pd.DataFrame:
    index = pd.date_range("2024-03-01", periods=3, freq="D", tz="America/New_York", name="Date")
    return pd.DataFrame(
        {
            "Open": [10.0, 11.0, 12.0],
            "High": [11.0, 12.0, 13.0],
            "Low": [9.5, 10.5, 11.5],
            "Close": [10.5, 11.5, 12.5],
            "Volume": [1000, 1100, 1200],
        },
        index=index,
    )


def test_fetch_history_normalizes_frame(mocker: MockerFixture) -> None:
    m_ticker = mocker.patch("quantcore.adapters.yfinance_api.yf.Ticker")
    m_ticker.return_value.history.return_value = _yf_history()

    df = fetch_history("AAPL", range="6mo", interval="1d")

    m_ticker.assert_called_once_with("AAPL")
    m_ticker.return_value.history.assert_called_once_with(
        period="6mo", interval="1d", auto_adjust=True, prepost=False, actions=False
    )
    assert list(df.columns) == ["date", "open", "high", "low", "close", "volume"]
    assert df["date"].dt.tz is None
    assert df["close"].tolist() == [10.5, 11.5, 12.5]


def test_fetch_history_empty_response(mocker: MockerFixture) -> None:
    m_ticker = mocker.patch("quantcore.adapters.yfinance_api.yf.Ticker")
    m_ticker.return_value.history.return_value = pd.DataFrame()

    with pytest.raises(InvalidInputError, match="No data returned"):
        fetch_history("NOPE")


def test_fetch_history_wraps_upstream_errors(mocker: MockerFixture) -> None:
    m_ticker = mocker.patch("quantcore.adapters.yfinance_api.yf.Ticker")
    m_ticker.return_value.history.side_effect = ConnectionError("rate limited")

    with pytest.raises(InvalidInputError, match="rate limited"):
        fetch_history("AAPL")


def test_fetch_quote(mocker: MockerFixture) -> None:
    m_ticker = mocker.patch("quantcore.adapters.yfinance_api.yf.Ticker")
    m_ticker.return_value.fast_info = {"lastPrice": 110.0, "previousClose": 100.0}

    quote = fetch_quote("AAPL")

    assert quote.symbol == "AAPL"
    assert quote.price == 110.0
    assert quote.change == pytest.approx(10.0)
    assert quote.change_percent == pytest.approx(10.0)


def test_fetch_quote_missing_fields(mocker: MockerFixture) -> None:
    m_ticker = mocker.patch("quantcore.adapters.yfinance_api.yf.Ticker")
    m_ticker.return_value.fast_info = {}

    with pytest.raises(InvalidInputError):
        fetch_quote("AAPL")
