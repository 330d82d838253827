"""Simple health and readiness endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import get_settings
from app.db.session import engine
from app.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live", summary="Liveness probe")
async def live() -> dict[str, str]:
    """Indicates API process is running."""
    return {"status": "ok", "service": "batch-jobs-api"}


def _check_database() -> dict[str, str]:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"status": "healthy", "message": "Database connection successful"}
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"Database connection failed: {e}"}


def _check_redis() -> dict[str, str]:
    settings = get_settings()
    redis_client = create_redis_client(
        settings.redis_url, decode_responses=True, socket_connect_timeout=2
    )
    try:
        redis_client.ping()
        return {"status": "healthy", "message": "Redis connection successful"}
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"Redis connection failed: {e}"}
    finally:
        redis_client.close()


@router.get("/ready", summary="Readiness probe")
async def ready() -> dict[str, Any]:
    """Check the job store database and the Redis broker.

    Redis is only required when jobs travel through Celery.
    """
    settings = get_settings()
    checks: dict[str, Any] = {
        "status": "ok",
        "service": "batch-jobs-api",
        "checks": {"database": _check_database()},
    }
    all_healthy = checks["checks"]["database"]["status"] == "healthy"

    if settings.queue_backend == "celery":
        checks["checks"]["redis"] = _check_redis()
        all_healthy = all_healthy and checks["checks"]["redis"]["status"] == "healthy"

    if not all_healthy:
        checks["status"] = "unhealthy"
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=checks,
        )

    return checks
