"""
Unit tests for the backtest CLI.
"""

import json

import pytest
from click.testing import CliRunner

from app.cli.backtest import cli


@pytest.fixture
def predictions_file(tmp_path, mixed_history):
    path = tmp_path / "predictions.json"
    path.write_text(json.dumps([r.to_dict() for r in mixed_history]))
    return str(path)


@pytest.fixture
def runner():
    return CliRunner()


class TestBacktestCli:

    def test_strategies(self, runner):
        result = runner.invoke(cli, ["strategies"])

        assert result.exit_code == 0
        assert "all_agree" in result.output
        assert "statistical_edge" in result.output

    def test_backtest_json(self, runner, predictions_file):
        result = runner.invoke(cli, ["backtest", "-p", predictions_file, "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["strategy"] == "majority_agree"
        assert data["total_bets"] == 12
        assert "bet_history" not in data

    def test_backtest_with_bets(self, runner, predictions_file):
        result = runner.invoke(cli, [
            "backtest", "-p", predictions_file, "--json", "--show-bets",
            "--strategy", "all_agree", "--stake-type", "kelly", "--stake-amount", "25",
        ])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["total_bets"] == 10
        assert len(data["bet_history"]) == 10

    def test_backtest_table(self, runner, predictions_file):
        result = runner.invoke(cli, ["backtest", "-p", predictions_file])

        assert result.exit_code == 0, result.output
        assert "Win Rate" in result.output

    def test_monte_carlo_json(self, runner, predictions_file):
        result = runner.invoke(cli, [
            "monte-carlo", "-p", predictions_file, "--json", "--simulations", "50", "--seed", "1",
        ])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["backtest"]["total_bets"] == 12
        assert data["monte_carlo"]["num_simulations"] == 50

    def test_optimize_json(self, runner, predictions_file):
        result = runner.invoke(cli, [
            "optimize", "-p", predictions_file, "--json",
            "-s", "majority_agree", "--stake-type", "flat",
        ])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["status"] == "completed"
        assert data["total_combinations"] == 5

    def test_compare_json(self, runner, predictions_file):
        result = runner.invoke(cli, [
            "compare", "-p", predictions_file, "--json",
            "-s", "all_agree", "-s", "highest_confidence", "-n", "20", "--seed", "3",
        ])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert {row["strategy"] for row in data} == {"all_agree", "highest_confidence"}

    def test_invalid_config_is_usage_error(self, runner, predictions_file):
        result = runner.invoke(cli, ["backtest", "-p", predictions_file, "--stake-amount", "0"])

        assert result.exit_code == 2
        assert "stake_amount must be positive" in result.output

    def test_missing_file(self, runner):
        result = runner.invoke(cli, ["backtest", "-p", "does-not-exist.json"])
        assert result.exit_code == 2

    def test_unreadable_file(self, runner, tmp_path):
        path = tmp_path / "predictions.txt"
        path.write_text("nope")

        result = runner.invoke(cli, ["backtest", "-p", str(path)])
        assert result.exit_code == 1
        assert "Could not load predictions" in result.output
