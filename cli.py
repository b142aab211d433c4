"""
CLI entry point for the quantcore application.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import pandas as pd
import typer
from rich.console import Console
from rich.logging import RichHandler

from quantcore.adapters import yfinance_api
from quantcore.backtest import run_strategy
from quantcore.config import Config, load_config
from quantcore.data import discover_symbols, fetch_and_snapshot, load_snapshot, position_from_candles
from quantcore.errors import QuantCoreError
from quantcore.metrics import returns_from_prices
from quantcore.reporting import (
    generate_backtest_reports,
    generate_risk_reports,
    render_backtest_table,
    render_scan_table,
)
from quantcore.risk import compute_risk_analytics
from quantcore.signals import batch_scan

# Console is created once and passed down.
# Log to stderr to separate from potential data output to stdout.
app = typer.Typer(pretty_exceptions_show_locals=False, help="Technical indicators, strategy backtests and portfolio risk.")
console = Console(stderr=True)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log every entry and exit decision."),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config_or_exit(config_path: Path) -> Config:
    """Helper to load config and exit on failure."""
    try:
        return load_config(config_path)
    except (ValueError, FileNotFoundError) as e:
        console.print(f"[bold red]Configuration Error:[/bold red] {e}")
        raise typer.Exit(code=1)


def _fail(symbol: str, error: Exception) -> typer.Exit:
    console.print(f"[bold red]could not analyze {symbol}:[/bold red] {error}")
    return typer.Exit(code=1)


def _split_symbols(symbols: str) -> List[str]:
    return [s.strip() for s in symbols.split(",") if s.strip()]


# impure
def _history(symbol: str, config: Config, use_snapshot: bool) -> pd.DataFrame:
    if use_snapshot:
        return load_snapshot(symbol, config)
    return yfinance_api.fetch_history(symbol, range=config.data.range, interval=config.data.interval)


@app.command()
def backtest(
    config_path: Path = typer.Option(
        ..., "--config", "-c", help="Path to the YAML configuration file.", exists=True
    ),
    symbol: str = typer.Option(..., "--symbol", "-s", help="Ticker to backtest."),
    snapshot: bool = typer.Option(False, "--snapshot", help="Read candles from the local snapshot instead of fetching."),
):
    """Backtest the strategy on one symbol and write reports."""
    config = _load_config_or_exit(config_path)

    try:
        console.rule(f"[bold]Backtesting {symbol}[/bold]")
        candles = _history(symbol, config, snapshot)
        result = run_strategy(symbol, candles, config.strategy, config.backtest.initial_capital)
    except FileNotFoundError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)
    except QuantCoreError as e:
        raise _fail(symbol, e)

    render_backtest_table(result, console)

    run_dir = Path(config.run.output_dir) / symbol
    console.print(f"Run artifacts will be saved to: [cyan]{run_dir}[/cyan]")
    generate_backtest_reports(result, run_dir, config.reporting.output_formats, console)
    console.print("[bold green]Backtest command finished.[/bold green]")


@app.command()
def scan(
    config_path: Path = typer.Option(
        ..., "--config", "-c", help="Path to the YAML configuration file.", exists=True
    ),
    symbols: str = typer.Option(..., "--symbols", "-s", help="Comma-separated tickers, e.g. AAPL,MSFT."),
    scan_date: Optional[datetime] = typer.Option(
        None, "--date", formats=["%Y-%m-%d"], help="Score the last bar on or before this date."
    ),
    snapshot: bool = typer.Option(False, "--snapshot", help="Read candles from local snapshots."),
):
    """Score the latest bar of each symbol with the strategy's entry rule."""
    config = _load_config_or_exit(config_path)

    histories = {}
    for symbol in _split_symbols(symbols):
        try:
            histories[symbol] = _history(symbol, config, snapshot)
        except (QuantCoreError, FileNotFoundError) as e:
            console.print(f"[yellow]could not analyze {symbol}:[/yellow] {e}")

    results = batch_scan(histories, config.strategy, scan_date.date() if scan_date else None)
    if not results:
        console.print("[bold red]Error: No symbols could be scanned.[/bold red]")
        raise typer.Exit(code=1)

    render_scan_table(results, console)


@app.command()
def risk(
    config_path: Path = typer.Option(
        ..., "--config", "-c", help="Path to the YAML configuration file.", exists=True
    ),
    snapshot: bool = typer.Option(False, "--snapshot", help="Read candles from local snapshots."),
):
    """Compute portfolio risk analytics for the configured holdings."""
    config = _load_config_or_exit(config_path)

    positions = []
    for holding in config.portfolio.holdings:
        try:
            candles = _history(holding.symbol, config, snapshot)
            positions.append(
                position_from_candles(holding.symbol, holding.quantity, holding.avg_price, candles, name=holding.name)
            )
        except (QuantCoreError, FileNotFoundError) as e:
            raise _fail(holding.symbol, e)

    benchmark_returns = None
    if config.risk.benchmark:
        try:
            benchmark = _history(config.risk.benchmark, config, snapshot)
        except (QuantCoreError, FileNotFoundError) as e:
            raise _fail(config.risk.benchmark, e)
        benchmark_returns = returns_from_prices(benchmark["close"].dropna().tolist())

    try:
        analytics = compute_risk_analytics(positions, benchmark_returns, config.risk.risk_free_rate)
    except QuantCoreError as e:
        raise _fail("portfolio", e)

    p = analytics.portfolio
    console.print(
        f"VaR95: {p.value_at_risk.var95:.2f}  CVaR95: {p.value_at_risk.cvar95:.2f}  "
        f"Sharpe: {p.sharpe_ratio:.2f}  Max DD: {p.max_drawdown:.2%}  Beta: {p.beta:.2f}"
    )

    run_dir = Path(config.run.output_dir) / "risk"
    console.print(f"Run artifacts will be saved to: [cyan]{run_dir}[/cyan]")
    generate_risk_reports(analytics, run_dir, config.reporting.output_formats, console)
    console.print("[bold green]Risk command finished.[/bold green]")


@app.command(name="refresh-data")
def refresh_data(
    config_path: Path = typer.Option(
        ..., "--config", "-c", help="Path to the YAML configuration file.", exists=True
    ),
    symbols: Optional[str] = typer.Option(None, "--symbols", "-s", help="Comma-separated tickers to download."),
):
    """
    Refresh data snapshots from the source (e.g., yfinance).
    """
    config = _load_config_or_exit(config_path)
    console.print("Starting data refresh...")

    symbols_to_refresh = _split_symbols(symbols) if symbols else discover_symbols(config)
    if not symbols_to_refresh:
        # Fallback to the portfolio holdings if no snapshots exist
        symbols_to_refresh = [h.symbol for h in config.portfolio.holdings]
        if symbols_to_refresh:
            console.print("No existing snapshots found. Performing initial download for portfolio holdings.")
        else:
            console.print("[yellow]Warning: No symbols to refresh.[/yellow]")
            console.print("No snapshots found, no --symbols given and 'portfolio.holdings' is empty.")
            raise typer.Exit()
    else:
        console.print(f"Refreshing {len(symbols_to_refresh)} symbols.")

    failed_symbols = fetch_and_snapshot(symbols_to_refresh, config)

    if failed_symbols:
        console.print(f"[bold yellow]Warning:[/bold yellow] Failed to fetch data for {len(failed_symbols)} symbols:")
        for symbol in sorted(failed_symbols):
            console.print(f" - {symbol}")

    console.print("[bold green]Data refresh completed.[/bold green]")


if __name__ == "__main__":
    app()
