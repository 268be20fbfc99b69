"""
ODDSMITH - Backtest & Monte Carlo Risk Engine

Replays algorithm betting predictions to evaluate selection strategies:
- Strategy backtests with situational filters and stake sizing
- Monte Carlo resampling of realized bets
- Parameter optimization and side-by-side strategy comparison
"""

__version__ = "1.0.0"
__description__ = "Backtest & Monte Carlo Risk Engine"


def get_version() -> str:
    """Return the current version."""
    return __version__
