"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cart_recovery_service import __version__
from cart_recovery_service.api.deps import get_cache
from cart_recovery_service.config import get_settings
from cart_recovery_service.infrastructure.database.connection import get_session
from cart_recovery_service.infrastructure.redis import CacheService

logger = structlog.get_logger()

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    environment: str
    timestamp: str
    dependencies: dict[str, Any]


class ReadinessResponse(BaseModel):
    """Readiness check response model."""

    ready: bool
    checks: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Basic health check endpoint.

    Returns the service status and version information.
    """
    settings = get_settings()

    return HealthResponse(
        status="healthy",
        version=__version__,
        environment=settings.app_env,
        timestamp=datetime.now(timezone.utc).isoformat(),
        dependencies={
            "database": "configured",
            "redis": "configured",
            "email": settings.email_service,
        },
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(
    session: AsyncSession = Depends(get_session),
    cache: CacheService = Depends(get_cache),
) -> ReadinessResponse:
    """
    Readiness check endpoint.

    The database must answer; Redis is optional (caching degrades to no-op)
    and is reported but does not affect readiness.
    """
    checks: dict[str, bool] = {}

    try:
        await session.execute(text("SELECT 1"))
        checks["database"] = True
    except SQLAlchemyError as e:
        logger.warning("Database readiness check failed", error=str(e))
        checks["database"] = False

    checks["redis"] = await cache.health_check()

    return ReadinessResponse(
        ready=checks["database"],
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    """Simple endpoint that returns 200 if the service is running."""
    return {"status": "alive"}
