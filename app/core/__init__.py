"""
ODDSMITH - Core Module
Configuration, caching, database and error types.
"""

from app.core.config import Settings, get_settings, settings, configure_logging
from app.core.database import (
    Base,
    DatabaseManager,
    db_manager,
    get_database_manager,
)
from app.core.cache import PredictionCache, CachePrefix
from app.core.exceptions import (
    OddsmithError,
    PredictionSourceError,
    OptimizationError,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "settings",
    "configure_logging",

    # Database
    "Base",
    "DatabaseManager",
    "db_manager",
    "get_database_manager",

    # Cache
    "PredictionCache",
    "CachePrefix",

    # Errors
    "OddsmithError",
    "PredictionSourceError",
    "OptimizationError",
]
