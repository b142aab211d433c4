"""Shared candle builders for the test suite."""
from typing import Callable, Optional, Sequence

import numpy as np
import pandas as pd
import pytest


def _build_candles(
    closes: Sequence[float],
    spread: float = 1.0,
    volume: float = 1000.0,
    start: str = "2023-01-02",
    volumes: Optional[Sequence[float]] = None,
) -> pd.DataFrame:
    closes = np.asarray(closes, dtype=float)
    return pd.DataFrame({
        "date": pd.bdate_range(start=start, periods=len(closes)),
        "open": closes,
        "high": closes + spread,
        "low": closes - spread,
        "close": closes,
        "volume": np.asarray(volumes, dtype=float) if volumes is not None else np.full(len(closes), volume),
    })


@pytest.fixture
def make_candles() -> Callable[..., pd.DataFrame]:
    """Factory for candle frames with open == close and a fixed high/low spread."""
    return _build_candles


@pytest.fixture
def rising_candles(make_candles) -> pd.DataFrame:
    """70 bars climbing 0.5 per bar from 100, ATR exactly 2."""
    return make_candles([100 + 0.5 * i for i in range(70)])


@pytest.fixture
def random_walk_candles(make_candles) -> pd.DataFrame:
    rng = np.random.default_rng(7)
    closes = 100 * np.exp(np.cumsum(rng.normal(0.0005, 0.015, 400)))
    volumes = rng.integers(800, 2000, 400)
    return make_candles(closes, spread=1.5, volumes=volumes)
