"""
Unit tests for strategy comparison.
"""

from datetime import datetime

import pytest

from app.services.backtesting.comparison import ComparisonConfig, StrategyComparator
from app.services.backtesting.predictions import InMemoryPredictionSource
from app.services.backtesting.strategies import BacktestStrategy


class TestComparisonConfig:

    def test_default_strategies(self):
        assert ComparisonConfig().strategies == (
            BacktestStrategy.ALL_AGREE,
            BacktestStrategy.MAJORITY_AGREE,
            BacktestStrategy.HIGHEST_CONFIDENCE,
            BacktestStrategy.BEST_PERFORMER,
        )

    def test_base_config_shares_parameters(self):
        config = ComparisonConfig(stake_type="kelly", stake_amount=25, min_confidence=60)
        backtest = config.base_config(BacktestStrategy.BEST_PERFORMER)

        assert backtest.strategy == BacktestStrategy.BEST_PERFORMER
        assert backtest.stake_amount == 25
        assert backtest.min_confidence == 60

    @pytest.mark.parametrize("kwargs", [
        {"strategies": ()},
        {"num_simulations": 0},
        {"n_jobs": 0},
        {"stake_amount": 0},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            ComparisonConfig(**kwargs)


class TestStrategyComparator:

    def test_sorted_by_total_profit(self, mixed_history):
        comparisons = StrategyComparator().compare(mixed_history, ComparisonConfig(num_simulations=50, seed=1))

        assert len(comparisons) == 4
        profits = [c.result.total_profit for c in comparisons]
        assert profits == sorted(profits, reverse=True)
        assert {c.strategy for c in comparisons} == {
            "all_agree", "majority_agree", "highest_confidence", "best_performer"
        }

    def test_seeded_comparison_reproducible(self, mixed_history):
        config = ComparisonConfig(num_simulations=50, seed=99)
        first = StrategyComparator().compare(mixed_history, config)
        second = StrategyComparator().compare(mixed_history, config)

        assert [c.to_dict() for c in first] == [c.to_dict() for c in second]

    def test_threads_do_not_change_results(self, mixed_history):
        threaded = StrategyComparator().compare(mixed_history, ComparisonConfig(num_simulations=50, seed=5))
        serial = StrategyComparator().compare(mixed_history, ComparisonConfig(num_simulations=50, seed=5, n_jobs=1))

        assert [c.to_dict() for c in threaded] == [c.to_dict() for c in serial]

    def test_monte_carlo_summary(self, mixed_history):
        config = ComparisonConfig(strategies=("majority_agree",), num_simulations=40, seed=3)
        comparison = StrategyComparator().compare(mixed_history, config)[0]

        assert comparison.monte_carlo is not None
        assert comparison.monte_carlo.num_simulations == 40
        summary = comparison.to_dict()["monte_carlo_summary"]
        assert set(summary) == {
            "profit_probability", "bust_probability", "median_profit",
            "p5_profit", "p95_profit", "avg_max_drawdown",
        }

    def test_too_few_bets_has_no_summary(self, mixed_history):
        config = ComparisonConfig(strategies=("Sharp Money",), num_simulations=10, seed=3)
        comparison = StrategyComparator().compare(mixed_history, config)[0]

        assert comparison.result.total_bets == 0
        assert comparison.monte_carlo_summary is None
        assert comparison.to_dict()["monte_carlo_summary"] is None

    @pytest.mark.asyncio
    async def test_run_with_source(self, mixed_history):
        config = ComparisonConfig(
            strategies=("all_agree", "highest_confidence"),
            start_date=datetime(2024, 1, 1),
            end_date=datetime(2024, 12, 31),
            num_simulations=20,
            seed=8,
        )
        comparisons = await StrategyComparator(InMemoryPredictionSource(mixed_history)).run(config)

        assert len(comparisons) == 2
        assert all(c.result.total_bets > 0 for c in comparisons)
