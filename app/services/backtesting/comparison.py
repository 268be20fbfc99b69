"""
ODDSMITH - Strategy Comparison
Side-by-side backtest and Monte Carlo risk profile for several strategies
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from app.services.backtesting.backtest_engine import BacktestConfig, BacktestEngine, BacktestResult
from app.services.backtesting.filters import SituationalFilters
from app.services.backtesting.predictions import PredictionRecord, PredictionSource
from app.services.backtesting.simulation import (
    MonteCarloConfig,
    MonteCarloResult,
    MonteCarloSimulator,
    MonteCarloSummary,
)
from app.services.backtesting.staking import StakeType
from app.services.backtesting.strategies import (
    BacktestStrategy,
    StrategyLike,
    resolve_strategy,
    strategy_display_name,
    strategy_id,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComparisonConfig:
    """One stake/confidence/date configuration applied to several strategies"""
    strategies: Tuple[StrategyLike, ...] = (
        BacktestStrategy.ALL_AGREE,
        BacktestStrategy.MAJORITY_AGREE,
        BacktestStrategy.HIGHEST_CONFIDENCE,
        BacktestStrategy.BEST_PERFORMER,
    )
    starting_bankroll: float = 1000.0
    stake_type: StakeType = StakeType.FLAT
    stake_amount: float = 100.0
    min_confidence: float = 50.0
    days: Optional[int] = 30
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    league: Optional[str] = None
    filters: SituationalFilters = field(default_factory=SituationalFilters)
    num_simulations: int = 500
    seed: Optional[int] = None
    n_jobs: int = 4

    def __post_init__(self):
        if not self.strategies:
            raise ValueError("At least one strategy is required")
        object.__setattr__(self, "strategies", tuple(resolve_strategy(s) for s in self.strategies))
        if self.num_simulations < 1:
            raise ValueError("num_simulations must be at least 1")
        if self.n_jobs < 1:
            raise ValueError("n_jobs must be at least 1")
        # Validates the shared backtest parameters
        self.base_config()

    def base_config(self, strategy: Optional[StrategyLike] = None) -> BacktestConfig:
        return BacktestConfig(
            strategy=strategy or self.strategies[0],
            starting_bankroll=self.starting_bankroll,
            stake_type=self.stake_type,
            stake_amount=self.stake_amount,
            min_confidence=self.min_confidence,
            days=self.days,
            start_date=self.start_date,
            end_date=self.end_date,
            league=self.league,
            filters=self.filters,
        )


@dataclass(frozen=True)
class StrategyComparison:
    strategy: str
    strategy_name: str
    result: BacktestResult
    monte_carlo: Optional[MonteCarloResult] = None

    @property
    def monte_carlo_summary(self) -> Optional[MonteCarloSummary]:
        return self.monte_carlo.summary() if self.monte_carlo else None

    def to_dict(self, include_bets: bool = False) -> Dict[str, Any]:
        summary = self.monte_carlo_summary
        return {
            'strategy': self.strategy,
            'strategy_name': self.strategy_name,
            'result': self.result.to_dict(include_bets=include_bets),
            'monte_carlo_summary': summary.to_dict() if summary else None,
        }


class StrategyComparator:
    """
    Runs backtest + Monte Carlo per strategy over one shared prediction set.

    Each strategy draws from its own child generator spawned from a single
    seed sequence, so seeded comparisons do not depend on thread scheduling.
    """

    def __init__(self, prediction_source: Optional[PredictionSource] = None):
        self.engine = BacktestEngine(prediction_source)

    async def run(self, config: ComparisonConfig) -> List[StrategyComparison]:
        records = await self.engine.fetch(config.base_config())
        return await asyncio.to_thread(self.compare, records, config)

    def compare(self, records: Sequence[PredictionRecord], config: ComparisonConfig) -> List[StrategyComparison]:
        """Compare every configured strategy, best total profit first"""
        logger.info(f"Comparing {len(config.strategies)} strategies over {len(records)} predictions")
        records = list(records)
        children = np.random.SeedSequence(config.seed).spawn(len(config.strategies))

        workers = min(config.n_jobs, len(config.strategies))
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [
                    executor.submit(self._compare_one, records, config, strategy, child)
                    for strategy, child in zip(config.strategies, children)
                ]
                comparisons = [future.result() for future in futures]
        else:
            comparisons = [
                self._compare_one(records, config, strategy, child)
                for strategy, child in zip(config.strategies, children)
            ]

        return sorted(comparisons, key=lambda c: c.result.total_profit, reverse=True)

    def _compare_one(
        self,
        records: List[PredictionRecord],
        config: ComparisonConfig,
        strategy: StrategyLike,
        seed_sequence: np.random.SeedSequence
    ) -> StrategyComparison:
        backtest_config = config.base_config(strategy)
        result = self.engine.simulate(records, backtest_config)

        simulator = MonteCarloSimulator(rng=np.random.default_rng(seed_sequence))
        monte_carlo = simulator.run(
            result.bet_history,
            MonteCarloConfig.from_backtest(backtest_config, num_simulations=config.num_simulations),
        )

        return StrategyComparison(
            strategy=strategy_id(strategy),
            strategy_name=strategy_display_name(strategy),
            result=result,
            monte_carlo=monte_carlo,
        )
