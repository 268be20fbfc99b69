"""
ODDSMITH - API Module
FastAPI routes and dependencies for the backtesting service.
"""

from app.api.routes import api_router, backtest, health

__all__ = [
    "api_router",
    "backtest",
    "health",
]
