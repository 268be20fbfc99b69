"""
ODDSMITH - Services Module
"""

from app.services.backtesting import (
    BacktestEngine,
    MonteCarloSimulator,
    StrategyComparator,
    StrategyOptimizer,
)

__all__ = [
    "BacktestEngine",
    "MonteCarloSimulator",
    "StrategyOptimizer",
    "StrategyComparator",
]
