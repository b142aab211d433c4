"""
Configuration loading and validation for the quantcore application.

This module uses standard library dataclasses for configuration objects.
The analytics functions take the small parameter objects (StrategyConfig,
IndicatorConfig) directly; the YAML loader only composes them for the CLI.
"""

import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Literal, Dict, Any, Optional, Tuple, Type, cast

__all__ = [
    "load_config",
    "Config",
    "StrategyConfig",
    "IndicatorConfig",
    "Holding",
    "TRADING_DAYS_PER_YEAR",
    "DEFAULT_RISK_FREE_RATE",
]

TRADING_DAYS_PER_YEAR = 252
# 10-year US Treasury, annualized
DEFAULT_RISK_FREE_RATE = 0.045


# §1. Analytics Parameters
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class StrategyConfig:
    """Parameter set for one strategy run. Never shared between runs."""
    ema_fast: int = 21
    ema_slow: int = 50
    rsi_lower: float = 45.0
    rsi_upper: float = 65.0
    score_threshold: int = 7
    atr_multiplier: float = 1.5
    tp_multiplier: float = 3.0
    trend_filter: bool = False
    volatility_filter: bool = False

    @property
    def warmup_bars(self) -> int:
        """First bar index at which entries are considered; also the minimum history."""
        return 200 if self.trend_filter else 50


@dataclass(frozen=True)
class IndicatorConfig:
    """Selects which series compute_indicators returns. A None period skips it."""
    sma_period: Optional[int] = 20
    ema_period: Optional[int] = 21
    rsi_period: Optional[int] = 14
    atr_period: Optional[int] = 14
    macd: Optional[Tuple[int, int, int]] = (12, 26, 9)


# §2. Application Sections
# --------------------------------------------------------------------------------------


@dataclass(frozen=True)
class RunConfig:
    name: str
    output_dir: Path


@dataclass(frozen=True)
class DataConfig:
    source: str
    interval: Literal["1d", "1wk", "1mo"]
    range: str
    snapshot_dir: Path


@dataclass(frozen=True)
class BacktestConfig:
    initial_capital: float = 10_000.0


@dataclass(frozen=True)
class RiskConfig:
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE
    benchmark: Optional[str] = None


@dataclass(frozen=True)
class Holding:
    symbol: str
    quantity: float
    avg_price: float
    name: str = ""


@dataclass(frozen=True)
class PortfolioConfig:
    holdings: List[Holding] = field(default_factory=list)


@dataclass(frozen=True)
class ReportingConfig:
    output_formats: List[Literal["json", "markdown", "csv"]]


@dataclass(frozen=True)
class Config:
    """The root configuration object, composing all nested sections."""
    run: RunConfig
    data: DataConfig
    strategy: StrategyConfig
    backtest: BacktestConfig
    risk: RiskConfig
    portfolio: PortfolioConfig
    reporting: ReportingConfig


# §3. Validation and Loading
# --------------------------------------------------------------------------------------


def _from_dict(data_class: Type[Any], data: Any) -> Any:
    """Recursively creates nested dataclasses from a dictionary."""
    if isinstance(data, dict) and hasattr(data_class, "__dataclass_fields__"):
        field_types = {f.name: f.type for f in data_class.__dataclass_fields__.values()}

        kwargs = {}
        for k, v in data.items():
            field_type = field_types.get(k)
            # Unknown keys are passed through so the dataclass constructor
            # raises a TypeError, which load_config reports.
            kwargs[k] = _from_dict(field_type, v) if field_type else v
        return data_class(**kwargs)

    # Lists of nested sections, e.g. portfolio.holdings
    if isinstance(data, list) and getattr(data_class, "__origin__", None) in (list, List):
        (item_type,) = data_class.__args__
        return [_from_dict(item_type, item) for item in data]

    if isinstance(data, str) and data_class is Path:
        return Path(data)
    return data


def _validate_strategy(strategy: Dict[str, Any]) -> None:
    defaults = StrategyConfig()
    ema_fast = strategy.get("ema_fast", defaults.ema_fast)
    ema_slow = strategy.get("ema_slow", defaults.ema_slow)
    if not (0 < ema_fast < ema_slow):
        raise ValueError("strategy.ema_fast must be positive and shorter than strategy.ema_slow")

    rsi_lower = strategy.get("rsi_lower", defaults.rsi_lower)
    rsi_upper = strategy.get("rsi_upper", defaults.rsi_upper)
    if not (0 <= rsi_lower <= rsi_upper <= 100):
        raise ValueError("strategy RSI band must satisfy 0 <= rsi_lower <= rsi_upper <= 100")

    threshold = strategy.get("score_threshold", defaults.score_threshold)
    if not (0 <= threshold <= 9):
        raise ValueError("strategy.score_threshold must be between 0 and 9")

    for key in ("atr_multiplier", "tp_multiplier"):
        if strategy.get(key, getattr(defaults, key)) <= 0:
            raise ValueError(f"strategy.{key} must be positive")


def _validate_config(cfg: Dict[str, Any]) -> None:
    """
    Performs simple, explicit validation checks on the raw config dictionary.
    Fail fast on any logical inconsistencies.
    """
    if not isinstance(cfg, dict):
        raise ValueError("Configuration must be a YAML object.")

    for section in ("run", "data", "reporting"):
        if not isinstance(cfg.get(section), dict):
            raise ValueError(f"Configuration is missing the '{section}' section.")

    _validate_strategy(cfg.get("strategy") or {})

    if (cfg.get("backtest") or {}).get("initial_capital", 1.0) <= 0:
        raise ValueError("backtest.initial_capital must be positive")

    for holding in (cfg.get("portfolio") or {}).get("holdings", []):
        if holding.get("quantity", 0) < 0 or holding.get("avg_price", 0) < 0:
            raise ValueError(f"portfolio holding {holding.get('symbol')} has a negative quantity or price")

    unknown = set(cfg["reporting"].get("output_formats", [])) - {"json", "markdown", "csv"}
    if unknown:
        raise ValueError(f"Unsupported reporting.output_formats: {sorted(unknown)}")


# impure
def load_config(config_path: Path) -> Config:
    """
    Loads and validates a YAML configuration file into a Config object.
    #impure: Reads from the filesystem.
    """
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML syntax in {config_path}: {e}") from e

    _validate_config(raw_config)

    # Optional sections fall back to their defaults.
    raw_config = {
        "strategy": {},
        "backtest": {},
        "risk": {},
        "portfolio": {},
        **{k: v for k, v in raw_config.items() if v is not None},
    }

    try:
        return cast(Config, _from_dict(Config, raw_config))
    except (TypeError, KeyError) as e:
        raise ValueError(f"Configuration validation failed: missing or invalid key. Details: {e}") from e
