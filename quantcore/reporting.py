"""
Writing backtest and risk reports to disk and rendering them to the console.
"""
import json
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, List, Sequence

import numpy as np
import pandas as pd
from rich.console import Console
from rich.table import Table

from quantcore.types import BacktestResult, RiskAnalytics, ScanResult

__all__ = [
    "generate_backtest_reports",
    "generate_risk_reports",
    "render_backtest_table",
    "render_scan_table",
]


def _to_json_serializable(data):
    """Recursively converts non-serializable types in a dictionary."""
    if isinstance(data, dict):
        return {k: _to_json_serializable(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_to_json_serializable(i) for i in data]
    if isinstance(data, (Path, pd.Timestamp, pd.Timedelta)):
        return str(data)
    if isinstance(data, (date, datetime)):
        return data.isoformat()
    if data is None or (isinstance(data, (float, np.floating)) and np.isnan(data)):
        return None
    # Convert numpy types to native Python types
    if isinstance(data, np.integer):
        return int(data)
    if isinstance(data, np.floating):
        return float(data)
    if isinstance(data, np.bool_):
        return bool(data)
    return data


def _write_json(payload: dict, path: Path) -> None:
    with path.open("w") as f:
        json.dump(_to_json_serializable(payload), f, indent=2)


# §1. Backtest Reports
# --------------------------------------------------------------------------------------


# impure
def _generate_trade_ledger_csv(result: BacktestResult, output_dir: Path) -> None:
    """Generates a CSV file with all trade details."""
    if result.trades:
        trades_df = pd.DataFrame([t.model_dump() for t in result.trades])
        trades_df.to_csv(output_dir / "trade_ledger.csv", index=False)


# impure
def _generate_backtest_json(result: BacktestResult, output_dir: Path) -> None:
    """Generates a JSON file with summary metrics. The per-bar series is left out."""
    summary = result.model_dump(exclude={"historical_data", "trades"})
    summary["total_trades"] = len(result.trades)
    _write_json(summary, output_dir / "summary.json")


# impure
def _generate_backtest_markdown(result: BacktestResult, output_dir: Path) -> None:
    """Generates a Markdown file with a human-readable summary."""
    md = f"# Backtest Summary: {result.symbol}\n\n"
    md += f"Strategy: {result.strategy} ({result.start_date} to {result.end_date})\n\n"
    md += "## Key Metrics\n\n"

    key_metrics = [
        ("Total P&L", result.total_pnl),
        ("Total Return [%]", result.total_pnl_percent),
        ("Max Drawdown [%]", result.max_drawdown * 100),
        ("Sharpe Ratio", result.sharpe_ratio),
        ("Win Rate [%]", result.win_rate),
        ("Profit Factor", result.profit_factor),
        ("Avg Winning Trade", result.average_win),
        ("Avg Losing Trade", result.average_loss),
    ]
    for metric, value in key_metrics:
        md += f"- **{metric}**: {value:.2f}\n"
    md += f"- **Total Trades**: {len(result.trades)}\n"

    (output_dir / "summary.md").write_text(md)


# impure
def generate_backtest_reports(
    result: BacktestResult,
    run_dir: Path,
    formats: Iterable[str],
    console: Console,
) -> None:
    """
    Writes the requested backtest reports into `run_dir`.
    #impure: Writes to the filesystem.
    """
    formats = set(formats)
    run_dir.mkdir(parents=True, exist_ok=True)

    if "csv" in formats:
        console.print("Generating trade ledger CSV...")
        _generate_trade_ledger_csv(result, run_dir)

    if "json" in formats:
        console.print("Generating summary JSON...")
        _generate_backtest_json(result, run_dir)

    if "markdown" in formats:
        console.print("Generating summary Markdown...")
        _generate_backtest_markdown(result, run_dir)

    console.print("All reports generated.")


# §2. Risk Reports
# --------------------------------------------------------------------------------------


# impure
def _generate_risk_markdown(analytics: RiskAnalytics, output_dir: Path) -> None:
    p = analytics.portfolio
    md = f"# Risk Summary ({analytics.calculated_at:%Y-%m-%d %H:%M} UTC)\n\n"
    md += "## Portfolio\n\n"
    md += f"- **VaR 95% / 99%**: {p.value_at_risk.var95:.2f} / {p.value_at_risk.var99:.2f}\n"
    md += f"- **CVaR 95% / 99%**: {p.value_at_risk.cvar95:.2f} / {p.value_at_risk.cvar99:.2f}\n"
    md += f"- **Annualized Volatility**: {p.volatility.annualized:.2%}\n"
    md += f"- **Annualized Return**: {p.returns.annualized:.2%}\n"
    md += f"- **Sharpe / Sortino / Calmar**: {p.sharpe_ratio:.2f} / {p.sortino_ratio:.2f} / {p.calmar_ratio:.2f}\n"
    md += f"- **Max Drawdown**: {p.max_drawdown:.2%} over {p.max_drawdown_duration} bars\n"
    md += f"- **Beta / Alpha**: {p.beta:.2f} / {p.alpha:.4f}\n"
    md += f"- **Concentration (HHI)**: {p.concentration_risk:.3f}\n"
    md += f"- **Diversification Ratio**: {p.diversification_ratio:.2f}\n\n"

    md += "## Assets\n\n"
    md += "| Symbol | Weight | Volatility | Beta | Sharpe | Max DD | Unrealized P&L |\n"
    md += "|---|---|---|---|---|---|---|\n"
    for a in analytics.assets:
        md += (
            f"| {a.symbol} | {a.portfolio_weight:.1%} | {a.volatility:.2%} | {a.beta:.2f} "
            f"| {a.sharpe_ratio:.2f} | {a.max_drawdown:.2%} | {a.unrealized_pnl:.2f} |\n"
        )

    (output_dir / "risk_summary.md").write_text(md)


# impure
def generate_risk_reports(
    analytics: RiskAnalytics,
    run_dir: Path,
    formats: Iterable[str],
    console: Console,
) -> None:
    """
    Writes the requested risk reports into `run_dir`.
    #impure: Writes to the filesystem.
    """
    formats = set(formats)
    run_dir.mkdir(parents=True, exist_ok=True)

    if "csv" in formats:
        console.print("Generating correlation matrix CSV...")
        symbols = analytics.correlations.symbols
        pd.DataFrame(analytics.correlations.matrix, index=symbols, columns=symbols).to_csv(
            run_dir / "correlations.csv"
        )

    if "json" in formats:
        console.print("Generating risk JSON...")
        _write_json(analytics.model_dump(), run_dir / "risk_summary.json")

    if "markdown" in formats:
        console.print("Generating risk Markdown...")
        _generate_risk_markdown(analytics, run_dir)

    console.print("All reports generated.")


# §3. Console Tables
# --------------------------------------------------------------------------------------


def _fmt(value, fmt: str = ".2f") -> str:
    return "-" if value is None else format(value, fmt)


def render_backtest_table(result: BacktestResult, console: Console) -> None:
    table = Table(title=f"{result.symbol}: {result.strategy}")
    table.add_column("Entry")
    table.add_column("Exit")
    table.add_column("Qty", justify="right")
    table.add_column("Entry Px", justify="right")
    table.add_column("Exit Px", justify="right")
    table.add_column("P&L", justify="right")
    table.add_column("R:R", justify="right")
    table.add_column("Reason")

    for t in result.trades:
        colour = "green" if t.pnl > 0 else "red"
        table.add_row(
            str(t.entry_date),
            str(t.exit_date),
            str(t.quantity),
            _fmt(t.entry_price),
            _fmt(t.exit_price),
            f"[{colour}]{t.pnl:.2f}[/{colour}]",
            _fmt(t.risk_reward),
            t.exit_reason,
        )

    console.print(table)
    console.print(
        f"Trades: {len(result.trades)}  Win rate: {result.win_rate:.1f}%  "
        f"P&L: {result.total_pnl:.2f} ({result.total_pnl_percent:.2f}%)  "
        f"Sharpe: {result.sharpe_ratio:.2f}  Max DD: {result.max_drawdown:.2%}"
    )


_SIGNAL_STYLES = {"buy": "bold green", "sell": "bold red", "hold": "dim"}


def render_scan_table(results: Sequence[ScanResult], console: Console) -> None:
    table = Table(title="Signal Scan")
    for column in ("Symbol", "Date", "Signal", "Score", "Price", "RSI", "Blocked By", "RSI Div", "Vol Div"):
        table.add_column(column)

    ordered: List[ScanResult] = sorted(results, key=lambda r: r.score, reverse=True)
    for r in ordered:
        style = _SIGNAL_STYLES[r.signal]
        table.add_row(
            r.symbol,
            str(r.date),
            f"[{style}]{r.signal}[/{style}]",
            str(r.score),
            _fmt(r.price),
            _fmt(r.rsi, ".1f"),
            r.blocked_by or "-",
            r.rsi_divergence,
            r.volume_divergence,
        )

    console.print(table)
