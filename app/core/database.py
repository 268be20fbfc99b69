"""
ODDSMITH - Database
Async database connections for the prediction store
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from app.core.config import settings

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()


class DatabaseManager:
    """Database manager with lazy engine creation and session scoping"""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.DATABASE_URL
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self._stats: Dict[str, Any] = {
            "sessions_opened": 0,
            "errors": 0
        }

    async def initialize(self) -> None:
        """Initialize database engine and session factory"""
        if self._engine is not None:
            return

        logger.info("Initializing database connection...")

        engine_kwargs: Dict[str, Any] = {"echo": settings.DATABASE_ECHO}
        if not self.database_url.startswith("sqlite"):
            engine_kwargs.update(
                pool_size=settings.DATABASE_POOL_SIZE,
                max_overflow=settings.DATABASE_MAX_OVERFLOW,
                pool_timeout=settings.DATABASE_POOL_TIMEOUT,
                pool_pre_ping=True,
            )

        self._engine = create_async_engine(self.database_url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False
        )

        logger.info("Database connection initialized successfully")

    @property
    def engine(self) -> Optional[AsyncEngine]:
        return self._engine

    async def create_all(self) -> None:
        """Create tables for all registered models"""
        await self.initialize()
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Close database connection pool"""
        if self._engine:
            logger.info("Closing database connection pool...")
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get async database session with automatic cleanup"""
        if not self._session_factory:
            await self.initialize()

        self._stats["sessions_opened"] += 1
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                await session.rollback()
                self._stats["errors"] += 1
                logger.error(f"Database session error: {e}")
                raise

    async def health_check(self) -> Dict[str, Any]:
        """Check database connectivity"""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return {"status": "healthy", **self._stats}
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "error": str(e), **self._stats}


# Global database manager instance
db_manager = DatabaseManager()


def get_database_manager() -> DatabaseManager:
    """Get the global database manager"""
    return db_manager
