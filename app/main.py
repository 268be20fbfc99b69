"""
ODDSMITH - Main FastAPI Application

Backtest and Monte Carlo risk engine over settled algorithm predictions:
- Strategy backtests with situational filters and stake sizing
- Monte Carlo resampling of realized bets
- Parameter optimization and strategy comparison
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Callable

import uvicorn
from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.dependencies import get_prediction_cache
from app.api.routes import api_router
from app.core.config import configure_logging, get_settings
from app.core.database import get_database_manager
from app.core.exceptions import PredictionSourceError

configure_logging()
logger = logging.getLogger(__name__)

settings = get_settings()


# ============================================================================
# Lifespan Management
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info("=" * 60)
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info("Starting up...")

    db_manager = get_database_manager()
    try:
        await db_manager.initialize()
        logger.info("Database engine initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database engine: {e}")
        raise

    yield

    logger.info("Shutting down...")
    try:
        await db_manager.close()
        logger.info("Database closed")
        cache = get_prediction_cache()
        if cache is not None:
            await cache.close()
    except Exception as e:
        logger.error(f"Error during shutdown: {e}")

    logger.info("Shutdown complete")


# ============================================================================
# Middleware
# ============================================================================

class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Add request tracking and timing."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"Unhandled error in request {request_id}: {e}")
            raise

        duration = time.perf_counter() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration:.4f}s"
        return response


# ============================================================================
# Exception Handlers
# ============================================================================

async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors."""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation Error",
            "detail": errors,
            "request_id": getattr(request.state, "request_id", None)
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code,
            "request_id": getattr(request.state, "request_id", None)
        }
    )


async def prediction_source_exception_handler(request: Request, exc: PredictionSourceError):
    """The prediction store could not be read."""
    logger.error(f"Prediction source '{exc.source}' failed: {exc}")
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={
            "error": "Prediction source unavailable",
            "detail": str(exc),
            "source": exc.source,
            "status_code": status.HTTP_502_BAD_GATEWAY,
            "request_id": getattr(request.state, "request_id", None)
        }
    )


async def config_exception_handler(request: Request, exc: ValueError):
    """Invalid backtest configuration."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": str(exc),
            "status_code": status.HTTP_400_BAD_REQUEST,
            "request_id": getattr(request.state, "request_id", None)
        }
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions."""
    request_id = getattr(request.state, "request_id", None)
    logger.error(f"Unhandled exception [{request_id}]: {exc}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "detail": "An unexpected error occurred" if not settings.DEBUG else str(exc),
            "request_id": request_id
        }
    )


# ============================================================================
# Create FastAPI Application
# ============================================================================

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="Backtest and Monte Carlo risk engine for algorithm betting strategies",
        version=settings.app_version,
        lifespan=lifespan,
    )

    # Order matters: first added is innermost
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Response-Time"],
    )
    app.add_middleware(RequestTrackingMiddleware)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(PredictionSourceError, prediction_source_exception_handler)
    app.add_exception_handler(ValueError, config_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(api_router, prefix=settings.API_PREFIX)

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "operational",
            "docs": "/docs",
            "health": f"{settings.API_PREFIX}/health"
        }

    return app


app = create_app()


# ============================================================================
# Run Application
# ============================================================================

def run():
    """Run the FastAPI application."""
    uvicorn.run(
        "app.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )


if __name__ == "__main__":
    run()
