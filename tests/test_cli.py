"""
Tests for CLI interface.
"""
import copy
from pathlib import Path

import pandas as pd
import yaml
from typer.testing import CliRunner

from cli import app
from quantcore.errors import InvalidInputError

# Default CliRunner mixes stderr and stdout into the .output attribute,
# which is what we want for testing console output.
runner = CliRunner()


# Using a full, valid config dictionary to prevent KeyErrors during tests.
FULL_CONFIG_DICT = {
    "run": {"name": "test_cli_run", "output_dir": ""},
    "data": {"source": "yfinance", "interval": "1d", "range": "1y", "snapshot_dir": ""},
    "strategy": {"score_threshold": 3},
    "backtest": {"initial_capital": 10000.0},
    "risk": {"risk_free_rate": 0.045, "benchmark": None},
    "portfolio": {"holdings": [
        {"symbol": "AAA", "quantity": 10, "avg_price": 100.0},
        {"symbol": "BBB", "quantity": 5, "avg_price": 120.0},
    ]},
    "reporting": {"output_formats": ["json", "csv"]},
}


def create_temp_config(tmp_path: Path) -> Path:
    """Creates a temporary, valid YAML config file for testing."""
    config_path = tmp_path / "test_config.yaml"
    config_dict = copy.deepcopy(FULL_CONFIG_DICT)
    config_dict["data"]["snapshot_dir"] = str(tmp_path / "snapshots")
    config_dict["run"]["output_dir"] = str(tmp_path / "runs")
    config_path.write_text(yaml.dump(config_dict))
    return config_path


def test_cli_help() -> None:
    """Test CLI --help flag."""
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "backtest" in result.output
    assert "refresh-data" in result.output


def test_cli_backtest_with_missing_config_file() -> None:
    """Test that `backtest` exits if the config file does not exist."""
    result = runner.invoke(app, ["backtest", "--config", "nonexistent.yaml", "--symbol", "AAA"])
    assert result.exit_code == 2
    assert "does not exist" in result.output


def test_cli_backtest_with_invalid_config(tmp_path: Path) -> None:
    config_path = tmp_path / "bad.yaml"
    config_path.write_text("run: { name: test")
    result = runner.invoke(app, ["backtest", "--config", str(config_path), "--symbol", "AAA"])
    assert result.exit_code == 1
    assert "Configuration Error" in result.output


def test_cli_backtest_command_runs(mocker, tmp_path: Path, rising_candles: pd.DataFrame) -> None:
    m_fetch = mocker.patch("cli.yfinance_api.fetch_history", return_value=rising_candles)

    config_path = create_temp_config(tmp_path)
    result = runner.invoke(app, ["backtest", "--config", str(config_path), "--symbol", "AAA"])

    assert result.exit_code == 0, f"CLI exited with error: {result.output}"
    assert "Backtest command finished" in result.output
    m_fetch.assert_called_once_with("AAA", range="1y", interval="1d")
    assert (tmp_path / "runs" / "AAA" / "summary.json").exists()
    assert (tmp_path / "runs" / "AAA" / "trade_ledger.csv").exists()


def test_cli_backtest_reports_short_history(mocker, tmp_path: Path, make_candles) -> None:
    mocker.patch("cli.yfinance_api.fetch_history", return_value=make_candles([100.0] * 20))

    config_path = create_temp_config(tmp_path)
    result = runner.invoke(app, ["backtest", "-c", str(config_path), "-s", "AAA"])

    assert result.exit_code == 1
    assert "could not analyze" in result.output


def test_cli_backtest_from_missing_snapshot(tmp_path: Path) -> None:
    config_path = create_temp_config(tmp_path)
    result = runner.invoke(app, ["backtest", "-c", str(config_path), "-s", "AAA", "--snapshot"])
    assert result.exit_code == 1
    assert "Missing snapshot" in result.output


def test_cli_scan_command(mocker, tmp_path: Path, rising_candles: pd.DataFrame) -> None:
    def fake_fetch(symbol, range, interval):
        if symbol == "BAD":
            raise InvalidInputError(f"No data returned for symbol {symbol}")
        return rising_candles

    mocker.patch("cli.yfinance_api.fetch_history", side_effect=fake_fetch)

    config_path = create_temp_config(tmp_path)
    result = runner.invoke(app, ["scan", "-c", str(config_path), "-s", "AAA,BAD", "--date", "2023-03-20"])

    assert result.exit_code == 0, f"CLI exited with error: {result.output}"
    assert "Signal Scan" in result.output
    assert "could not analyze" in result.output


def test_cli_scan_nothing_scannable(mocker, tmp_path: Path) -> None:
    mocker.patch("cli.yfinance_api.fetch_history", side_effect=InvalidInputError("offline"))
    config_path = create_temp_config(tmp_path)
    result = runner.invoke(app, ["scan", "-c", str(config_path), "-s", "AAA"])
    assert result.exit_code == 1


def test_cli_risk_command(mocker, tmp_path: Path, random_walk_candles: pd.DataFrame) -> None:
    mocker.patch("cli.yfinance_api.fetch_history", return_value=random_walk_candles)

    config_path = create_temp_config(tmp_path)
    result = runner.invoke(app, ["risk", "-c", str(config_path)])

    assert result.exit_code == 0, f"CLI exited with error: {result.output}"
    assert "Risk command finished" in result.output
    assert (tmp_path / "runs" / "risk" / "correlations.csv").exists()


def test_cli_risk_without_holdings(tmp_path: Path) -> None:
    config_dict = copy.deepcopy(FULL_CONFIG_DICT)
    config_dict["portfolio"] = {"holdings": []}
    config_dict["run"]["output_dir"] = str(tmp_path)
    config_dict["data"]["snapshot_dir"] = str(tmp_path)
    config_path = tmp_path / "empty.yaml"
    config_path.write_text(yaml.dump(config_dict))

    result = runner.invoke(app, ["risk", "-c", str(config_path)])

    assert result.exit_code == 1
    assert "No positions" in result.output


def test_cli_refresh_command_explicit_symbols(mocker, tmp_path: Path) -> None:
    m_fetch = mocker.patch("cli.fetch_and_snapshot", return_value=["BAD"])

    config_path = create_temp_config(tmp_path)
    result = runner.invoke(app, ["refresh-data", "-c", str(config_path), "--symbols", "GOOD,BAD"])

    assert result.exit_code == 0
    assert m_fetch.call_args[0][0] == ["GOOD", "BAD"]
    assert "Failed to fetch data for 1 symbols" in result.output


def test_cli_refresh_command_existing_symbols(mocker, tmp_path: Path) -> None:
    """Tests refresh-data when symbols are discovered in the snapshot dir."""
    m_fetch = mocker.patch("cli.fetch_and_snapshot", return_value=[])
    mocker.patch("cli.discover_symbols", return_value=["EXISTING"])

    config_path = create_temp_config(tmp_path)
    result = runner.invoke(app, ["refresh-data", "--config", str(config_path)])

    assert result.exit_code == 0
    assert m_fetch.call_args[0][0] == ["EXISTING"]
    assert "Data refresh completed" in result.output


def test_cli_refresh_command_falls_back_to_holdings(mocker, tmp_path: Path) -> None:
    m_fetch = mocker.patch("cli.fetch_and_snapshot", return_value=[])
    mocker.patch("cli.discover_symbols", return_value=[])

    config_path = create_temp_config(tmp_path)
    result = runner.invoke(app, ["refresh-data", "--config", str(config_path)])

    assert result.exit_code == 0
    assert m_fetch.call_args[0][0] == ["AAA", "BBB"]
