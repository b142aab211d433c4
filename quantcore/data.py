"""
Candle normalization, validation, return series and snapshot management.
"""
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from quantcore.adapters import yfinance_api
from quantcore.config import Config
from quantcore.errors import InvalidInputError
from quantcore.metrics import returns_from_prices
from quantcore.types import PortfolioPosition

__all__ = [
    "CANDLE_COLUMNS",
    "candles_to_frame",
    "validate_candles",
    "returns_from_prices",
    "position_from_candles",
    "fetch_and_snapshot",
    "load_snapshot",
    "discover_symbols",
]

CANDLE_COLUMNS = ["date", "open", "high", "low", "close", "volume"]


def candles_to_frame(candles: Any) -> pd.DataFrame:
    """
    Normalizes a candle sequence into a DataFrame with CANDLE_COLUMNS.

    Accepts a DataFrame (lower- or title-case columns, date as a column or as
    a DatetimeIndex), a list of Candle records or a list of mappings. The
    input is never modified.
    """
    if isinstance(candles, pd.DataFrame):
        df = candles.copy()
    else:
        df = pd.DataFrame([dict(c) for c in candles])

    df.columns = [str(c).lower() for c in df.columns]
    if "date" not in df.columns and isinstance(df.index, pd.DatetimeIndex):
        df = df.rename_axis("date").reset_index()
    if "volume" not in df.columns and not df.empty:
        df["volume"] = 0.0

    missing = [c for c in CANDLE_COLUMNS if c not in df.columns]
    if missing and not df.empty:
        raise InvalidInputError(f"Candle data is missing required columns: {missing}")
    if df.empty:
        return pd.DataFrame(columns=CANDLE_COLUMNS)

    df = df[CANDLE_COLUMNS].reset_index(drop=True)
    df["date"] = pd.to_datetime(df["date"])
    if df["date"].dt.tz is not None:
        df["date"] = df["date"].dt.tz_localize(None)
    df[["open", "high", "low", "close", "volume"]] = df[["open", "high", "low", "close", "volume"]].astype(float)
    return df


def validate_candles(df: pd.DataFrame) -> None:
    """
    Fails fast on malformed candles.

    Checks low <= open, close <= high on every row and strictly increasing
    dates. NaN prices are allowed through; indicators propagate them.
    """
    bad_range = df["high"] < df["low"]
    if bad_range.any():
        row = df.loc[bad_range.idxmax()]
        raise InvalidInputError(f"Malformed candle on {row['date'].date()}: high {row['high']} < low {row['low']}")

    outside = (
        (df["open"] > df["high"]) | (df["open"] < df["low"])
        | (df["close"] > df["high"]) | (df["close"] < df["low"])
    )
    if outside.any():
        row = df.loc[outside.idxmax()]
        raise InvalidInputError(f"Malformed candle on {row['date'].date()}: open/close outside the high-low range")

    if len(df) > 1 and not (df["date"].diff().iloc[1:] > pd.Timedelta(0)).all():
        raise InvalidInputError("Candle dates must be strictly increasing")


def position_from_candles(
    symbol: str,
    quantity: float,
    avg_price: float,
    candles: Any,
    current_price: Optional[float] = None,
    name: str = "",
) -> PortfolioPosition:
    """Builds a risk-module position from a holding and its candle history."""
    df = candles_to_frame(candles)
    validate_candles(df)
    prices = df["close"].dropna().tolist()
    if current_price is None:
        current_price = prices[-1] if prices else avg_price
    return PortfolioPosition(
        symbol=symbol,
        name=name,
        quantity=quantity,
        avg_price=avg_price,
        current_price=current_price,
        returns=returns_from_prices(prices),
        historical_prices=prices,
    )


# §1. Snapshots
# --------------------------------------------------------------------------------------


def _get_run_metadata(config: Config) -> Dict[str, str]:
    """Generates metadata for the data snapshot."""
    try:
        git_hash = subprocess.check_output(
            ["git", "rev-parse", "--short", "HEAD"], stderr=subprocess.DEVNULL
        ).strip().decode()
    except (subprocess.CalledProcessError, FileNotFoundError):
        git_hash = "unknown"
    return {
        "fetch_utc": datetime.now(timezone.utc).isoformat(),
        "source": config.data.source,
        "range": config.data.range,
        "git_hash": git_hash,
        "run_name": config.run.name,
    }


def _get_snapshot_dir(config: Config) -> Path:
    """Constructs the snapshot directory path from config."""
    return config.data.snapshot_dir / f"{config.data.source}_{config.data.interval}"


def discover_symbols(config: Config) -> List[str]:
    """Discovers all available symbols by scanning the snapshot directory."""
    snapshot_dir = _get_snapshot_dir(config)
    if not snapshot_dir.exists():
        return []
    return sorted([p.stem for p in snapshot_dir.glob("*.parquet")])


# impure
def fetch_and_snapshot(symbols: List[str], config: Config) -> List[str]:
    """
    Fetch candle history through the market-data adapter and save parquet snapshots.
    Returns a list of symbols that failed to download.
    #impure: Accesses network and filesystem.
    """
    snapshot_dir = _get_snapshot_dir(config)
    snapshot_dir.mkdir(parents=True, exist_ok=True)

    failed_symbols = []
    for symbol in symbols:
        try:
            data = yfinance_api.fetch_history(symbol, range=config.data.range, interval=config.data.interval)
        except InvalidInputError:
            failed_symbols.append(symbol)
            continue

        table = pa.Table.from_pandas(data, preserve_index=False)
        metadata = _get_run_metadata(config)
        table = table.replace_schema_metadata({
            **(table.schema.metadata or {}),
            **{k.encode(): str(v).encode() for k, v in metadata.items()}
        })
        pq.write_table(table, snapshot_dir / f"{symbol}.parquet")

    return failed_symbols


# impure
def load_snapshot(symbol: str, config: Config) -> pd.DataFrame:
    """
    Load an existing candle snapshot for one symbol.
    #impure: Reads from the filesystem.
    """
    parquet_path = _get_snapshot_dir(config) / f"{symbol}.parquet"
    if not parquet_path.is_file():
        raise FileNotFoundError(f"Missing snapshot for symbol: {symbol} at {parquet_path}")
    return candles_to_frame(pd.read_parquet(parquet_path))
