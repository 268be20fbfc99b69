"""
ODDSMITH - API Dependencies
FastAPI dependency injection for the prediction cache and source
"""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends

from app.core.cache import PredictionCache
from app.core.config import get_settings
from app.core.database import DatabaseManager, get_database_manager
from app.services.backtesting.predictions import (
    CachingPredictionSource,
    DatabasePredictionSource,
    PredictionSource,
)

logger = logging.getLogger(__name__)


@lru_cache()
def get_prediction_cache() -> Optional[PredictionCache]:
    """Process-wide Redis lookup cache, or None when REDIS_URL is unset"""
    settings = get_settings()
    if not settings.REDIS_URL:
        return None
    logger.info("Prediction lookups cached in Redis")
    return PredictionCache.from_url(
        settings.REDIS_URL,
        ttl=settings.PREDICTION_CACHE_TTL,
        namespace=settings.APP_NAME.lower(),
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
    )


def get_prediction_source(
    database: DatabaseManager = Depends(get_database_manager),
    cache: Optional[PredictionCache] = Depends(get_prediction_cache),
) -> PredictionSource:
    """
    Prediction source dependency.

    Reads the prediction store, through the Redis cache when one is
    configured. Tests and alternative deployments override this dependency.
    """
    source = DatabasePredictionSource(database)
    if cache is None:
        return source
    return CachingPredictionSource(source, cache)
