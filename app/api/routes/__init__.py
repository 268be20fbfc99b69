"""
ODDSMITH - API Routes Package

Route modules:
- Backtesting (backtest)
- Health Checks (health)
"""

from fastapi import APIRouter

from app.api.routes import backtest
from app.api.routes import health

# Create main API router
api_router = APIRouter()

api_router.include_router(
    health.router,
    prefix="/health",
    tags=["Health"]
)

api_router.include_router(
    backtest.router,
    prefix="/backtest",
    tags=["Backtesting"]
)

# Export individual routers for direct imports
health_router = health.router
backtest_router = backtest.router

__all__ = [
    "api_router",
    "health_router",
    "backtest_router",
]
