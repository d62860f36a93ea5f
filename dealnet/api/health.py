"""
Health check endpoints - used by load balancers and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + partner registry + Redis)
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from dealnet.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
):
    """
    Readiness check. Database and partner registry are required; Redis only
    backs the admin cache, so its absence degrades but never blocks.
    """
    checks = {"database": False, "partners": False, "redis": False}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))

    try:
        from dealnet.services.partners import get_partners_config
        get_partners_config()
        checks["partners"] = True
    except Exception as e:
        logger.error("Partner registry check failed: %s", str(e))

    try:
        from dealnet.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.ping()
        checks["redis"] = True
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))

    required_ok = checks["database"] and checks["partners"]
    return {
        "status": ("ready" if checks["redis"] else "degraded") if required_ok else "unavailable",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
