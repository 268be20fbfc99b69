"""
ODDSMITH - Strategy Optimizer
Brute-force sweep over strategies, confidence thresholds and staking schemes

Every combination is an independent backtest over the same immutable
prediction set, so the sweep runs sequentially, in a thread pool, or on the
event loop with periodic yields and produces identical rows in every mode.
"""

import asyncio
import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from app.core.config import settings
from app.core.exceptions import OptimizationError
from app.services.backtesting.backtest_engine import BacktestConfig, BacktestEngine
from app.services.backtesting.filters import SituationalFilters
from app.services.backtesting.predictions import PredictionRecord, PredictionSource
from app.services.backtesting.staking import StakeType
from app.services.backtesting.strategies import (
    ALL_STRATEGIES,
    StrategyLike,
    resolve_strategy,
    strategy_display_name,
    strategy_id,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

DEFAULT_STAKE_AMOUNTS = {
    StakeType.FLAT: 100.0,
    StakeType.PERCENTAGE: 5.0,
}
TRADING_DAYS = 365


class OptimizationStatus(str, Enum):
    COMPLETED = "completed"
    NO_DATA = "no_data"
    CANCELLED = "cancelled"
    FAILED = "failed"


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class ConfidenceRange:
    """Inclusive range of minimum-confidence thresholds"""
    min: float = 50.0
    max: float = 70.0
    step: float = 5.0

    def __post_init__(self):
        if self.step <= 0:
            raise ValueError("confidence step must be positive")
        if self.min > self.max:
            raise ValueError("confidence min must not exceed max")
        if self.min < 0 or self.max > 100:
            raise ValueError("confidence range must lie within 0-100")

    def values(self) -> List[float]:
        count = int(math.floor((self.max - self.min) / self.step + 1e-9)) + 1
        return [round(self.min + i * self.step, 10) for i in range(count)]


@dataclass(frozen=True)
class ParameterCombination:
    strategy: StrategyLike
    min_confidence: float
    stake_type: StakeType
    stake_amount: float

    @property
    def label(self) -> str:
        return (
            f"Testing {strategy_display_name(self.strategy)} @ "
            f"{self.min_confidence:g}% conf, {self.stake_type.value}..."
        )


@dataclass(frozen=True)
class OptimizationConfig:
    """Search space for a parameter sweep"""
    strategies: Tuple[StrategyLike, ...] = tuple(ALL_STRATEGIES)
    starting_bankroll: float = 1000.0
    confidence_range: ConfidenceRange = field(default_factory=ConfidenceRange)
    stake_types: Tuple[StakeType, ...] = (StakeType.FLAT, StakeType.PERCENTAGE, StakeType.KELLY)
    kelly_fractions: Tuple[float, ...] = (25.0, 50.0)
    days: Optional[int] = 30
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    league: Optional[str] = None
    filters: SituationalFilters = field(default_factory=SituationalFilters)
    n_jobs: int = 1

    def __post_init__(self):
        if not self.strategies:
            raise ValueError("At least one strategy is required")
        if not self.stake_types:
            raise ValueError("At least one stake type is required")
        object.__setattr__(self, "strategies", tuple(resolve_strategy(s) for s in self.strategies))
        object.__setattr__(self, "stake_types", tuple(StakeType(s) for s in self.stake_types))
        object.__setattr__(self, "kelly_fractions", tuple(float(f) for f in self.kelly_fractions))
        if StakeType.KELLY in self.stake_types and not self.kelly_fractions:
            raise ValueError("kelly_fractions are required when sweeping kelly stakes")
        if any(f <= 0 for f in self.kelly_fractions):
            raise ValueError("kelly_fractions must be positive")
        if self.n_jobs < 1:
            raise ValueError("n_jobs must be at least 1")
        # Validates bankroll and dates
        self.base_config()

    def base_config(self) -> BacktestConfig:
        """Backtest config sharing this sweep's bankroll, date range, league and filters"""
        return BacktestConfig(
            strategy=self.strategies[0],
            starting_bankroll=self.starting_bankroll,
            min_confidence=self.confidence_range.min,
            days=self.days,
            start_date=self.start_date,
            end_date=self.end_date,
            league=self.league,
            filters=self.filters,
        )

    def combinations(self) -> List[ParameterCombination]:
        """Cartesian product in strategy, confidence, stake type order"""
        combos = []
        for strategy in self.strategies:
            for confidence in self.confidence_range.values():
                for stake_type in self.stake_types:
                    if stake_type == StakeType.KELLY:
                        amounts = self.kelly_fractions
                    else:
                        amounts = (DEFAULT_STAKE_AMOUNTS[stake_type],)
                    for amount in amounts:
                        combos.append(ParameterCombination(strategy, confidence, stake_type, amount))
        return combos


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class OptimizationResult:
    """One backtest row of the sweep"""
    strategy: str
    strategy_name: str
    min_confidence: float
    stake_type: StakeType
    stake_amount: float
    total_profit: float
    roi: float
    win_rate: float
    total_bets: int
    max_drawdown_pct: float
    sharpe_ratio: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'strategy': self.strategy,
            'strategy_name': self.strategy_name,
            'min_confidence': self.min_confidence,
            'stake_type': self.stake_type.value,
            'stake_amount': self.stake_amount,
            'total_profit': round(self.total_profit, 2),
            'roi': round(self.roi, 2),
            'win_rate': round(self.win_rate, 2),
            'total_bets': self.total_bets,
            'max_drawdown_pct': round(self.max_drawdown_pct, 2),
            'sharpe_ratio': round(self.sharpe_ratio, 4),
        }


@dataclass(frozen=True)
class HeatmapCell:
    strategy: str
    confidence: float
    stake_type: str
    roi: float
    profit: float
    win_rate: float


@dataclass(frozen=True)
class OptimizationReport:
    status: OptimizationStatus
    message: str
    results: List[OptimizationResult] = field(default_factory=list)
    best_result: Optional[OptimizationResult] = None
    heatmap: List[HeatmapCell] = field(default_factory=list)
    total_combinations: int = 0
    completed_combinations: int = 0
    error: Optional[str] = None

    @property
    def progress(self) -> float:
        if self.total_combinations == 0:
            return 0.0
        return self.completed_combinations / self.total_combinations * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'message': self.message,
            'results': [r.to_dict() for r in self.results],
            'best_result': self.best_result.to_dict() if self.best_result else None,
            'heatmap': [vars(c).copy() for c in self.heatmap],
            'total_combinations': self.total_combinations,
            'completed_combinations': self.completed_combinations,
            'progress': round(self.progress, 1),
            'error': self.error,
        }


def calculate_sharpe_ratio(returns: Sequence[float], periods: int = TRADING_DAYS) -> float:
    """Annualized mean/std of per-bet returns (population std, 0 when undefined)"""
    if len(returns) < 2:
        return 0.0
    values = np.asarray(returns, dtype=float)
    # equal returns leave float noise in std instead of an exact zero
    if np.allclose(values, values[0]):
        return 0.0
    std = float(values.std())
    if std < 1e-12:
        return 0.0
    return float(values.mean() / std * math.sqrt(periods))


# =============================================================================
# OPTIMIZER
# =============================================================================

class StrategyOptimizer:
    """
    Parameter sweep over backtest configurations.

    ``cancel()`` may be called from another thread or task; the sweep stops
    issuing new combinations and reports the rows finished so far.
    """

    def __init__(
        self,
        prediction_source: Optional[PredictionSource] = None,
        progress_callback: Optional[ProgressCallback] = None,
        yield_every: Optional[int] = None
    ):
        self.engine = BacktestEngine(prediction_source)
        self.progress_callback = progress_callback
        self.yield_every = yield_every or settings.OPTIMIZER_YIELD_EVERY
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        logger.info("Optimization cancellation requested")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    async def run(self, config: OptimizationConfig) -> OptimizationReport:
        """Fetch predictions once, then sweep"""
        records = await self.engine.fetch(config.base_config())
        if config.n_jobs > 1:
            return await asyncio.to_thread(self.optimize, records, config)
        return await self.optimize_async(records, config)

    def optimize(self, records: Sequence[PredictionRecord], config: OptimizationConfig) -> OptimizationReport:
        """Run the sweep in this thread (or a thread pool when ``n_jobs > 1``)"""
        participating = [r for r in records if r.is_settled]
        combos = config.combinations()
        if not participating:
            return self._no_data_report(len(combos))

        logger.info(f"Starting optimization: {len(combos)} combinations over {len(participating)} predictions")
        rows: List[OptimizationResult] = []
        try:
            if config.n_jobs > 1:
                self._execute_parallel(participating, combos, config, rows)
            else:
                for combo in combos:
                    if self.cancelled:
                        break
                    rows.append(self._evaluate(participating, combo, config))
                    self._report_progress(len(rows), len(combos), combo)
        except OptimizationError as e:
            logger.error(f"Optimization error: {e}", exc_info=True)
            return self._failed_report(len(combos), len(rows), str(e))
        finally:
            cancelled = self.cancelled
            self._cancel_event.clear()

        return self._build_report(rows, len(combos), cancelled)

    async def optimize_async(
        self,
        records: Sequence[PredictionRecord],
        config: OptimizationConfig
    ) -> OptimizationReport:
        """Sequential sweep on the event loop, yielding every ``yield_every`` combinations"""
        participating = [r for r in records if r.is_settled]
        combos = config.combinations()
        if not participating:
            return self._no_data_report(len(combos))

        logger.info(f"Starting optimization: {len(combos)} combinations over {len(participating)} predictions")
        rows: List[OptimizationResult] = []
        try:
            for i, combo in enumerate(combos):
                if self.cancelled:
                    break
                rows.append(self._evaluate(participating, combo, config))
                self._report_progress(len(rows), len(combos), combo)
                if i % self.yield_every == 0:
                    await asyncio.sleep(0)
        except OptimizationError as e:
            logger.error(f"Optimization error: {e}", exc_info=True)
            return self._failed_report(len(combos), len(rows), str(e))
        finally:
            cancelled = self.cancelled
            self._cancel_event.clear()

        return self._build_report(rows, len(combos), cancelled)

    def _execute_parallel(
        self,
        records: List[PredictionRecord],
        combos: List[ParameterCombination],
        config: OptimizationConfig,
        rows: List[OptimizationResult]
    ) -> None:
        with ThreadPoolExecutor(max_workers=config.n_jobs) as executor:
            futures = [executor.submit(self._evaluate, records, combo, config) for combo in combos]
            try:
                for combo, future in zip(combos, futures):
                    if self.cancelled:
                        break
                    rows.append(future.result())
                    self._report_progress(len(rows), len(combos), combo)
            finally:
                for future in futures:
                    future.cancel()

    def _evaluate(
        self,
        records: List[PredictionRecord],
        combo: ParameterCombination,
        config: OptimizationConfig
    ) -> OptimizationResult:
        backtest_config = config.base_config().with_changes(
            strategy=combo.strategy,
            min_confidence=combo.min_confidence,
            stake_type=combo.stake_type,
            stake_amount=combo.stake_amount,
        )
        try:
            result = self.engine.simulate(records, backtest_config)
        except Exception as e:
            raise OptimizationError(f"{combo.label} failed: {e}") from e

        return OptimizationResult(
            strategy=strategy_id(combo.strategy),
            strategy_name=strategy_display_name(combo.strategy),
            min_confidence=combo.min_confidence,
            stake_type=combo.stake_type,
            stake_amount=combo.stake_amount,
            total_profit=result.total_profit,
            roi=result.roi,
            win_rate=result.win_rate,
            total_bets=result.total_bets,
            max_drawdown_pct=result.max_drawdown_pct,
            sharpe_ratio=calculate_sharpe_ratio(result.daily_returns()),
        )

    def _report_progress(self, completed: int, total: int, combo: ParameterCombination) -> None:
        if self.progress_callback:
            self.progress_callback(completed, total, combo.label)

    @staticmethod
    def _no_data_report(total: int) -> OptimizationReport:
        logger.info("No predictions found in date range")
        return OptimizationReport(
            status=OptimizationStatus.NO_DATA,
            message="No predictions found in date range",
            total_combinations=total,
        )

    @staticmethod
    def _failed_report(total: int, completed: int, error: str) -> OptimizationReport:
        return OptimizationReport(
            status=OptimizationStatus.FAILED,
            message="Error during optimization",
            total_combinations=total,
            completed_combinations=completed,
            error=error,
        )

    @staticmethod
    def _build_report(rows: List[OptimizationResult], total: int, cancelled: bool) -> OptimizationReport:
        heatmap = [
            HeatmapCell(
                strategy=row.strategy_name,
                confidence=row.min_confidence,
                stake_type=row.stake_type.value,
                roi=row.roi,
                profit=row.total_profit,
                win_rate=row.win_rate,
            )
            for row in rows
        ]
        ranked = sorted(rows, key=lambda r: r.roi, reverse=True)

        if cancelled:
            status, message = OptimizationStatus.CANCELLED, "Optimization cancelled"
        else:
            status, message = OptimizationStatus.COMPLETED, "Optimization complete"

        logger.info(f"{message}: {len(rows)}/{total} combinations")
        return OptimizationReport(
            status=status,
            message=message,
            results=ranked,
            best_result=ranked[0] if ranked else None,
            heatmap=heatmap,
            total_combinations=total,
            completed_combinations=len(rows),
        )
