# Backtesting Services
from .predictions import (
    PredictionRecord,
    PredictionStatus,
    PredictionQuery,
    PredictionSource,
    InMemoryPredictionSource,
    DatabasePredictionSource,
    CachingPredictionSource,
    load_predictions_file,
)
from .strategies import BacktestStrategy, StrategySelector, Selection
from .filters import SituationalFilters, SituationalFilter, HomeAwayFilter
from .staking import StakeSizer, StakeType
from .backtest_engine import BacktestEngine, BacktestConfig, BacktestResult, BacktestBet
from .simulation import MonteCarloSimulator, MonteCarloConfig, MonteCarloResult, MonteCarloSummary
from .optimizer import (
    StrategyOptimizer,
    OptimizationConfig,
    OptimizationReport,
    OptimizationResult,
    OptimizationStatus,
    ConfidenceRange,
)
from .comparison import StrategyComparator, ComparisonConfig, StrategyComparison

__all__ = [
    'PredictionRecord',
    'PredictionStatus',
    'PredictionQuery',
    'PredictionSource',
    'InMemoryPredictionSource',
    'DatabasePredictionSource',
    'CachingPredictionSource',
    'load_predictions_file',
    'BacktestStrategy',
    'StrategySelector',
    'Selection',
    'SituationalFilters',
    'SituationalFilter',
    'HomeAwayFilter',
    'StakeSizer',
    'StakeType',
    'BacktestEngine',
    'BacktestConfig',
    'BacktestResult',
    'BacktestBet',
    'MonteCarloSimulator',
    'MonteCarloConfig',
    'MonteCarloResult',
    'MonteCarloSummary',
    'StrategyOptimizer',
    'OptimizationConfig',
    'OptimizationReport',
    'OptimizationResult',
    'OptimizationStatus',
    'ConfidenceRange',
    'StrategyComparator',
    'ComparisonConfig',
    'StrategyComparison',
]
