"""
Unit tests for the strategy optimizer.
Tests the parameter grid, ranking, failure handling and execution modes.
"""

import math
from datetime import datetime

import pytest
from conftest import make_history

from app.services.backtesting.optimizer import (
    ConfidenceRange,
    OptimizationConfig,
    OptimizationStatus,
    StrategyOptimizer,
    calculate_sharpe_ratio,
)
from app.services.backtesting.predictions import InMemoryPredictionSource
from app.services.backtesting.staking import StakeType
from app.services.backtesting.strategies import BacktestStrategy


def small_config(**kwargs) -> OptimizationConfig:
    kwargs.setdefault("strategies", ("majority_agree", "highest_confidence"))
    kwargs.setdefault("confidence_range", ConfidenceRange(50, 60, 5))
    kwargs.setdefault("stake_types", ("flat", "kelly"))
    kwargs.setdefault("kelly_fractions", (25,))
    return OptimizationConfig(**kwargs)


class TestConfidenceRange:

    def test_values(self):
        assert ConfidenceRange(50, 70, 5).values() == [50, 55, 60, 65, 70]

    def test_single_value(self):
        assert ConfidenceRange(60, 60, 5).values() == [60]

    def test_step_not_dividing_range(self):
        assert ConfidenceRange(50, 62, 5).values() == [50, 55, 60]

    @pytest.mark.parametrize("args", [(50, 70, 0), (70, 50, 5), (-5, 50, 5)])
    def test_invalid(self, args):
        with pytest.raises(ValueError):
            ConfidenceRange(*args)


class TestOptimizationConfig:

    def test_default_grid_size(self):
        # 7 strategies x 5 confidences x (flat + percentage + 2 kelly fractions)
        assert len(OptimizationConfig().combinations()) == 140

    def test_combination_order(self):
        combos = OptimizationConfig().combinations()

        assert [(c.stake_type, c.stake_amount) for c in combos[:4]] == [
            (StakeType.FLAT, 100.0),
            (StakeType.PERCENTAGE, 5.0),
            (StakeType.KELLY, 25.0),
            (StakeType.KELLY, 50.0),
        ]
        assert combos[0].strategy == BacktestStrategy.ALL_AGREE
        assert combos[4].min_confidence == 55
        assert combos[-1].strategy == BacktestStrategy.STATISTICAL_EDGE

    def test_label(self):
        combo = OptimizationConfig().combinations()[0]
        assert combo.label == "Testing All 3 Agree @ 50% conf, flat..."

    @pytest.mark.parametrize("kwargs", [
        {"strategies": ()},
        {"stake_types": ()},
        {"stake_types": ("kelly",), "kelly_fractions": ()},
        {"kelly_fractions": (0,)},
        {"n_jobs": 0},
        {"starting_bankroll": -1},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            OptimizationConfig(**kwargs)


class TestSharpeRatio:

    def test_annualized(self):
        assert calculate_sharpe_ratio([0.1, -0.05, 0.1]) == pytest.approx(math.sqrt(0.5) * math.sqrt(365))

    def test_undefined_cases(self):
        assert calculate_sharpe_ratio([]) == 0.0
        assert calculate_sharpe_ratio([0.1]) == 0.0
        assert calculate_sharpe_ratio([0.05, 0.05, 0.05]) == 0.0

    def test_equal_returns_with_float_noise(self):
        assert calculate_sharpe_ratio([10 / 11 * 0.25] * 7) == 0.0
        assert calculate_sharpe_ratio([0.1, 0.1 + 1e-15]) == 0.0

    @pytest.mark.parametrize("confidence", [60.0, 66.0, 71.3, 80.0])
    def test_all_wins_sweep_has_zero_sharpe(self, confidence):
        history = make_history([True, True, True, True], confidence=confidence)
        config = small_config(
            strategies=("majority_agree",),
            confidence_range=ConfidenceRange(50, 50, 5),
            stake_types=("kelly",),
            kelly_fractions=(25, 50, 33),
        )
        report = StrategyOptimizer().optimize(history, config)

        assert report.status == OptimizationStatus.COMPLETED
        assert [r.sharpe_ratio for r in report.results] == [0.0, 0.0, 0.0]


class TestStrategyOptimizer:

    def test_completed_report(self, mixed_history):
        config = small_config()
        report = StrategyOptimizer().optimize(mixed_history, config)

        assert report.status == OptimizationStatus.COMPLETED
        assert report.message == "Optimization complete"
        assert report.total_combinations == 12
        assert report.completed_combinations == 12
        assert report.progress == 100.0
        assert len(report.results) == 12

    def test_results_ranked_by_roi(self, mixed_history):
        report = StrategyOptimizer().optimize(mixed_history, small_config())

        rois = [r.roi for r in report.results]
        assert rois == sorted(rois, reverse=True)
        assert report.best_result == report.results[0]

    def test_heatmap_keeps_grid_order(self, mixed_history):
        config = small_config()
        report = StrategyOptimizer().optimize(mixed_history, config)

        assert len(report.heatmap) == 12
        assert report.heatmap[0].strategy == "2+ Agree (Majority)"
        assert report.heatmap[0].confidence == 50
        assert report.heatmap[0].stake_type == "flat"
        assert report.heatmap[-1].strategy == "Highest Confidence"

    def test_no_data(self):
        report = StrategyOptimizer().optimize([], small_config())

        assert report.status == OptimizationStatus.NO_DATA
        assert report.message == "No predictions found in date range"
        assert report.results == []
        assert report.best_result is None

    def test_failure_aborts_sweep(self, mixed_history, monkeypatch):
        optimizer = StrategyOptimizer()

        def explode(records, config):
            raise RuntimeError("boom")

        monkeypatch.setattr(optimizer.engine, "simulate", explode)
        report = optimizer.optimize(mixed_history, small_config())

        assert report.status == OptimizationStatus.FAILED
        assert report.message == "Error during optimization"
        assert report.results == []
        assert "boom" in report.error

    def test_progress_callback(self, mixed_history):
        calls = []
        optimizer = StrategyOptimizer(progress_callback=lambda done, total, label: calls.append((done, total, label)))
        optimizer.optimize(mixed_history, small_config())

        assert [c[0] for c in calls] == list(range(1, 13))
        assert calls[0][1] == 12
        assert calls[0][2].startswith("Testing 2+ Agree (Majority) @ 50% conf")

    def test_cancel(self, mixed_history):
        optimizer = StrategyOptimizer()
        optimizer.progress_callback = lambda done, total, label: optimizer.cancel()

        report = optimizer.optimize(mixed_history, small_config())

        assert report.status == OptimizationStatus.CANCELLED
        assert report.completed_combinations == 1
        assert len(report.results) == 1
        assert not optimizer.cancelled

    def test_parallel_matches_sequential(self, mixed_history):
        sequential = StrategyOptimizer().optimize(mixed_history, small_config())
        parallel = StrategyOptimizer().optimize(mixed_history, small_config(n_jobs=3))

        assert [r.to_dict() for r in parallel.results] == [r.to_dict() for r in sequential.results]
        assert parallel.heatmap == sequential.heatmap

    @pytest.mark.asyncio
    async def test_async_matches_sequential(self, mixed_history):
        sequential = StrategyOptimizer().optimize(mixed_history, small_config())
        cooperative = await StrategyOptimizer(yield_every=2).optimize_async(mixed_history, small_config())

        assert cooperative.status == OptimizationStatus.COMPLETED
        assert [r.to_dict() for r in cooperative.results] == [r.to_dict() for r in sequential.results]

    @pytest.mark.asyncio
    async def test_run_fetches_once(self, mixed_history):
        source = InMemoryPredictionSource(mixed_history)
        config = small_config(start_date=datetime(2024, 1, 1), end_date=datetime(2024, 12, 31))

        report = await StrategyOptimizer(source).run(config)
        assert report.status == OptimizationStatus.COMPLETED
        assert report.total_combinations == 12

    @pytest.mark.asyncio
    async def test_run_outside_window(self, mixed_history):
        source = InMemoryPredictionSource(mixed_history)
        config = small_config(start_date=datetime(2020, 1, 1), end_date=datetime(2020, 12, 31))

        report = await StrategyOptimizer(source).run(config)
        assert report.status == OptimizationStatus.NO_DATA
