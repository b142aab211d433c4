"""
Market-data collaborator backed by yfinance.

The analytics core never calls this module; the CLI and the snapshot helpers
do. Rate limiting and retry belong to whatever sits behind yfinance, so a
failed fetch surfaces immediately.
"""
import logging

import pandas as pd
import yfinance as yf

from quantcore.errors import InvalidInputError
from quantcore.types import Quote

__all__ = ["fetch_history", "fetch_quote"]

log = logging.getLogger(__name__)


def fetch_history(symbol: str, range: str = "3mo", interval: str = "1d") -> pd.DataFrame:  # impure
    """
    Fetch OHLCV history for one symbol.

    Returns a DataFrame with lowercase date/open/high/low/close/volume columns,
    oldest candle first.
    """
    try:
        data = yf.Ticker(symbol).history(
            period=range,
            interval=interval,
            auto_adjust=True,
            prepost=False,
            actions=False,
        )
    except Exception as e:
        log.warning(f"Failed to fetch history for {symbol}: {e}")
        raise InvalidInputError(f"Could not fetch history for {symbol}: {e}") from e

    if data.empty:
        raise InvalidInputError(f"No data returned for symbol {symbol}")

    frame = data.rename_axis("date").reset_index()
    frame.columns = [str(c).lower() for c in frame.columns]
    frame["date"] = pd.to_datetime(frame["date"])
    if frame["date"].dt.tz is not None:
        frame["date"] = frame["date"].dt.tz_localize(None)
    log.debug(f"Fetched {len(frame)} candles for {symbol}")
    return frame[["date", "open", "high", "low", "close", "volume"]]


def fetch_quote(symbol: str) -> Quote:  # impure
    """Fetch the latest price and its change against the previous close."""
    try:
        info = yf.Ticker(symbol).fast_info
        price = float(info["lastPrice"])
        previous_close = float(info["previousClose"])
    except Exception as e:
        raise InvalidInputError(f"Could not fetch quote for {symbol}: {e}") from e

    change = price - previous_close
    change_percent = change / previous_close * 100 if previous_close else 0.0
    return Quote(symbol=symbol, price=price, change=change, change_percent=change_percent)
