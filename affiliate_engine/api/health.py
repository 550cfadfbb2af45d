"""
Health endpoints for load balancers and monitoring.

GET /health        liveness, no dependencies touched
GET /health/ready  database, Redis (attribution store, locks, cache) and
                   whether tier thresholds come from platform_config or defaults
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_engine.database import get_db
from affiliate_engine.models.platform_config import PlatformConfig
from affiliate_engine.services.tier_config import CONFIG_KEY, parse_thresholds

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": _now(), "version": VERSION}


async def _check_database(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))
        return False


async def _check_redis() -> bool:
    try:
        from affiliate_engine.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.ping()
        return True
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))
        return False


async def _tier_config_source(db: AsyncSession) -> str:
    """'configured' when a valid affiliate_tiers row exists, else 'default'."""
    try:
        row = await db.get(PlatformConfig, CONFIG_KEY)
    except Exception as e:
        logger.warning("Tier config health check failed: %s", str(e))
        return "unknown"
    return "configured" if row is not None and parse_thresholds(row.value) else "default"


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    checks = {"database": await _check_database(db), "redis": await _check_redis()}
    return {
        "status": "ready" if all(checks.values()) else "degraded",
        "checks": checks,
        "tier_config": await _tier_config_source(db) if checks["database"] else "unknown",
        "timestamp": _now(),
    }
