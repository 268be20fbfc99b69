"""
ODDSMITH - Backtesting API Routes
Backtest, Monte Carlo, optimizer and strategy comparison endpoints
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from app.api.dependencies import get_prediction_source
from app.core.config import settings
from app.services.backtesting.backtest_engine import BacktestConfig, BacktestEngine
from app.services.backtesting.comparison import ComparisonConfig, StrategyComparator
from app.services.backtesting.filters import SituationalFilters
from app.services.backtesting.optimizer import ConfidenceRange, OptimizationConfig, StrategyOptimizer
from app.services.backtesting.predictions import PredictionSource
from app.services.backtesting.simulation import MonteCarloConfig, MonteCarloSimulator
from app.services.backtesting.staking import StakeType
from app.services.backtesting.strategies import ALL_STRATEGIES, BacktestStrategy, list_strategies

logger = logging.getLogger(__name__)

router = APIRouter()


# ============== Schemas ==============

class SituationalFiltersSchema(BaseModel):
    """Optional situational filters"""
    home_away: Literal["all", "home", "away"] = "all"
    sharp_money_alignment: bool = False
    exclude_back_to_back: bool = False
    conference_games_only: bool = False
    min_algorithms_agreeing: int = Field(default=1, ge=1, le=10)

    def to_filters(self) -> SituationalFilters:
        return SituationalFilters.from_dict(self.model_dump())


class DateWindowMixin(BaseModel):
    days: Optional[int] = Field(default_factory=lambda: settings.DEFAULT_LOOKBACK_DAYS, ge=1, le=3650)
    start_date: Optional[datetime] = Field(default=None, description="Overrides the days lookback")
    end_date: Optional[datetime] = Field(default=None, description="Defaults to now")
    league: Optional[str] = Field(default=None, description="League filter; 'all' or omitted for every league")
    filters: SituationalFiltersSchema = Field(default_factory=SituationalFiltersSchema)


class BacktestRequest(DateWindowMixin):
    """Backtest configuration"""
    strategy: str = Field(
        default=BacktestStrategy.MAJORITY_AGREE.value,
        description="Strategy id, or an algorithm name to follow"
    )
    starting_bankroll: float = Field(default_factory=lambda: settings.DEFAULT_BANKROLL, gt=0)
    stake_type: StakeType = Field(default_factory=lambda: StakeType(settings.DEFAULT_STAKE_TYPE))
    stake_amount: float = Field(default_factory=lambda: settings.DEFAULT_STAKE_AMOUNT, gt=0)
    min_confidence: float = Field(default_factory=lambda: settings.DEFAULT_MIN_CONFIDENCE, ge=0, le=100)

    def to_config(self) -> BacktestConfig:
        return BacktestConfig(
            strategy=self.strategy,
            starting_bankroll=self.starting_bankroll,
            stake_type=self.stake_type,
            stake_amount=self.stake_amount,
            min_confidence=self.min_confidence,
            days=self.days,
            start_date=self.start_date,
            end_date=self.end_date,
            league=self.league,
            filters=self.filters.to_filters(),
        )


class MonteCarloRequest(BacktestRequest):
    """Backtest configuration plus resampling parameters"""
    num_simulations: int = Field(default_factory=lambda: settings.MONTE_CARLO_SIMULATIONS, ge=1, le=20000)
    seed: Optional[int] = Field(default=None, description="Seed for reproducible runs")


class OptimizeRequest(DateWindowMixin):
    """Parameter sweep configuration"""
    strategies: List[str] = Field(default_factory=lambda: [s.value for s in ALL_STRATEGIES], min_length=1)
    starting_bankroll: float = Field(default_factory=lambda: settings.DEFAULT_BANKROLL, gt=0)
    confidence_min: float = Field(default=50.0, ge=0, le=100)
    confidence_max: float = Field(default=70.0, ge=0, le=100)
    confidence_step: float = Field(default=5.0, gt=0)
    stake_types: List[StakeType] = Field(
        default_factory=lambda: [StakeType.FLAT, StakeType.PERCENTAGE, StakeType.KELLY],
        min_length=1
    )
    kelly_fractions: List[float] = Field(default_factory=lambda: [25.0, 50.0])

    def to_config(self) -> OptimizationConfig:
        return OptimizationConfig(
            strategies=tuple(self.strategies),
            starting_bankroll=self.starting_bankroll,
            confidence_range=ConfidenceRange(self.confidence_min, self.confidence_max, self.confidence_step),
            stake_types=tuple(self.stake_types),
            kelly_fractions=tuple(self.kelly_fractions),
            days=self.days,
            start_date=self.start_date,
            end_date=self.end_date,
            league=self.league,
            filters=self.filters.to_filters(),
            n_jobs=settings.OPTIMIZER_N_JOBS,
        )


class CompareRequest(DateWindowMixin):
    """One configuration applied to several strategies"""
    strategies: List[str] = Field(
        default_factory=lambda: [
            BacktestStrategy.ALL_AGREE.value,
            BacktestStrategy.MAJORITY_AGREE.value,
            BacktestStrategy.HIGHEST_CONFIDENCE.value,
            BacktestStrategy.BEST_PERFORMER.value,
        ],
        min_length=1
    )
    starting_bankroll: float = Field(default_factory=lambda: settings.DEFAULT_BANKROLL, gt=0)
    stake_type: StakeType = Field(default_factory=lambda: StakeType(settings.DEFAULT_STAKE_TYPE))
    stake_amount: float = Field(default_factory=lambda: settings.DEFAULT_STAKE_AMOUNT, gt=0)
    min_confidence: float = Field(default_factory=lambda: settings.DEFAULT_MIN_CONFIDENCE, ge=0, le=100)
    num_simulations: int = Field(default_factory=lambda: settings.COMPARISON_SIMULATIONS, ge=1, le=20000)
    seed: Optional[int] = None

    def to_config(self) -> ComparisonConfig:
        return ComparisonConfig(
            strategies=tuple(self.strategies),
            starting_bankroll=self.starting_bankroll,
            stake_type=self.stake_type,
            stake_amount=self.stake_amount,
            min_confidence=self.min_confidence,
            days=self.days,
            start_date=self.start_date,
            end_date=self.end_date,
            league=self.league,
            filters=self.filters.to_filters(),
            num_simulations=self.num_simulations,
            seed=self.seed if self.seed is not None else settings.RANDOM_SEED,
        )


class StrategyInfo(BaseModel):
    id: str
    name: str
    description: str


class MonteCarloResponse(BaseModel):
    backtest: Dict[str, Any]
    monte_carlo: Optional[Dict[str, Any]] = None


class CompareResponse(BaseModel):
    results: List[Dict[str, Any]]


# ============== Endpoints ==============

@router.get("/strategies", response_model=List[StrategyInfo])
async def get_strategies():
    """Available selection strategies"""
    return [
        StrategyInfo(id=strategy, name=name, description=description)
        for strategy, name, description in list_strategies()
    ]


@router.post("/run", response_model=Dict[str, Any])
async def run_backtest(
    request: BacktestRequest,
    source: PredictionSource = Depends(get_prediction_source)
):
    """
    Replay a strategy over settled predictions.

    - **strategy**: all_agree, majority_agree, highest_confidence,
      best_performer, a per-algorithm strategy or an algorithm name
    - **stake_type**: flat, percentage or kelly
    - **stake_amount**: flat amount, bankroll percent or Kelly multiplier
    - **min_confidence**: drop selections below this confidence
    """
    config = request.to_config()
    engine = BacktestEngine(source)
    records = await engine.fetch(config)
    result = await run_in_threadpool(engine.simulate, records, config)
    return result.to_dict()


@router.post("/monte-carlo", response_model=MonteCarloResponse)
async def run_monte_carlo(
    request: MonteCarloRequest,
    source: PredictionSource = Depends(get_prediction_source)
):
    """
    Run a backtest, then reshuffle its bets to estimate the outcome distribution.

    ``monte_carlo`` is null when the backtest produced too few bets.
    """
    config = request.to_config()
    engine = BacktestEngine(source)
    records = await engine.fetch(config)
    result = await run_in_threadpool(engine.simulate, records, config)

    seed = request.seed if request.seed is not None else settings.RANDOM_SEED
    simulator = MonteCarloSimulator(seed=seed)
    mc_config = MonteCarloConfig.from_backtest(
        config,
        num_simulations=request.num_simulations,
        min_bets=settings.MONTE_CARLO_MIN_BETS,
        max_path_steps=settings.MONTE_CARLO_MAX_PATH_STEPS,
    )
    monte_carlo = await run_in_threadpool(simulator.run, result.bet_history, mc_config)

    return MonteCarloResponse(
        backtest=result.to_dict(),
        monte_carlo=monte_carlo.to_dict() if monte_carlo else None,
    )


@router.post("/optimize", response_model=Dict[str, Any])
async def run_optimization(
    request: OptimizeRequest,
    source: PredictionSource = Depends(get_prediction_source)
):
    """Sweep strategies, confidence thresholds and staking schemes, ranked by ROI"""
    config = request.to_config()
    optimizer = StrategyOptimizer(source)
    records = await optimizer.engine.fetch(config.base_config())
    report = await run_in_threadpool(optimizer.optimize, records, config)
    return report.to_dict()


@router.post("/compare", response_model=CompareResponse)
async def compare_strategies(
    request: CompareRequest,
    source: PredictionSource = Depends(get_prediction_source)
):
    """Backtest and Monte Carlo summary per strategy, best total profit first"""
    comparisons = await StrategyComparator(source).run(request.to_config())
    return CompareResponse(results=[c.to_dict() for c in comparisons])
