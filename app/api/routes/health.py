"""
ODDSMITH - Health Check API Routes
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.core.config import settings
from app.core.database import DatabaseManager, get_database_manager


router = APIRouter()


# ============================================================================
# SCHEMAS
# ============================================================================

class HealthResponse(BaseModel):
    status: str  # healthy, degraded, unhealthy
    timestamp: datetime
    name: str
    version: str
    environment: str
    uptime_seconds: float


class ComponentHealth(BaseModel):
    name: str
    status: str
    detail: Optional[Dict[str, Any]] = None


_start_time = datetime.now(timezone.utc)


# ============================================================================
# ENDPOINTS
# ============================================================================

@router.get("", response_model=HealthResponse)
async def basic_health_check():
    """Liveness check for load balancers; touches no external dependency."""
    now = datetime.now(timezone.utc)
    return HealthResponse(
        status="healthy",
        timestamp=now,
        name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        uptime_seconds=(now - _start_time).total_seconds(),
    )


@router.get("/database", response_model=ComponentHealth)
async def database_health_check(database: DatabaseManager = Depends(get_database_manager)):
    """Prediction store connectivity"""
    result = await database.health_check()
    return ComponentHealth(
        name="prediction_store",
        status=result.get("status", "unhealthy"),
        detail=result,
    )
