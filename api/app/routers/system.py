"""System endpoints (health)."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, HTTPException, status

from .. import schemas
from ..cache import get_redis_client

router = APIRouter(prefix="", tags=["System"])
logger = logging.getLogger(__name__)

# Global startup time for uptime calculation
_STARTUP_TIME = time.time()


@router.get("/health", response_model=schemas.HealthResponse)
def get_health() -> schemas.HealthResponse:
    """Liveness & minimal readiness check."""
    uptime_s = time.time() - _STARTUP_TIME
    return schemas.HealthResponse(status="ok", uptime_s=uptime_s)


@router.get("/health/redis")
def check_redis_health() -> dict:
    """
    Redis health check endpoint.

    Returns 200 if Redis is available, 503 if not.
    """
    redis = get_redis_client()
    if not redis:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Redis unavailable",
        )

    try:
        redis.ping()
        return {"status": "ok", "message": "Redis is available"}
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Redis unavailable",
        )
