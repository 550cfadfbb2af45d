"""
Tier threshold configuration - the `affiliate_tiers` row of platform_config.

Reads go through Redis with a short TTL so every commission does not hit the
config table. A missing or malformed row falls back to the default thresholds
from settings; configuration problems never block commission processing.

Stored shape (as written by the admin dashboard):
    {"tiers": {"bronze": 0, "silver": 500, "gold": 2000, "platinum": 5000},
     "rates": {"bronze": 10, "silver": 12, "gold": 15, "platinum": 20}}
"""
import json
import logging
import uuid
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_engine.config import get_settings
from affiliate_engine.models.platform_config import PlatformConfig
from affiliate_engine.schemas.affiliates import TierThresholds
from affiliate_engine.services.tiers import COMMISSION_RATES
from affiliate_engine.utils.redis_client import get_redis

logger = logging.getLogger(__name__)

CONFIG_KEY = "affiliate_tiers"
CACHE_KEY = "affiliates:tier_thresholds_cache"


def default_thresholds() -> TierThresholds:
    settings = get_settings()
    return TierThresholds(
        bronze=Decimal("0"),
        silver=Decimal(str(settings.default_silver_threshold)),
        gold=Decimal(str(settings.default_gold_threshold)),
        platinum=Decimal(str(settings.default_platinum_threshold)),
    )


def parse_thresholds(value: Any) -> Optional[TierThresholds]:
    """
    Parse a stored config value into thresholds.

    Accepts the dashboard shape ({"tiers": {...}}) or a flat mapping.
    Returns None when the value is missing, non-numeric or not monotonic.
    """
    if not isinstance(value, dict):
        return None
    tiers = value.get("tiers", value)
    if not isinstance(tiers, dict):
        return None
    try:
        return TierThresholds(
            bronze=tiers.get("bronze", 0) or 0,
            silver=tiers.get("silver"),
            gold=tiers.get("gold"),
            platinum=tiers.get("platinum"),
        )
    except (ValidationError, TypeError, ValueError):
        return None


async def get_tier_thresholds(db: Optional[AsyncSession] = None) -> TierThresholds:
    """
    Return the active tier thresholds, cached in Redis.

    Falls back to defaults when the config row is absent or malformed.
    """
    settings = get_settings()

    try:
        redis = await get_redis()
        cached = await redis.get(CACHE_KEY)
        if cached:
            parsed = parse_thresholds(json.loads(cached))
            if parsed is not None:
                return parsed
    except Exception as e:
        logger.warning("Tier threshold cache read failed: %s", str(e))
        redis = None

    raw = await _load_from_db(db)
    thresholds = parse_thresholds(raw)
    if thresholds is None:
        if raw is not None:
            logger.warning("Malformed %s config, using default thresholds", CONFIG_KEY)
        thresholds = default_thresholds()

    if redis is not None:
        try:
            await redis.set(
                CACHE_KEY,
                json.dumps(thresholds.model_dump(mode="json")),
                ex=settings.tier_config_cache_ttl,
            )
        except Exception as e:
            logger.warning("Failed to cache tier thresholds: %s", str(e))

    return thresholds


async def invalidate_tier_thresholds() -> None:
    """Drop the cached thresholds. Call after any config update."""
    try:
        redis = await get_redis()
        await redis.delete(CACHE_KEY)
        logger.info("Tier threshold cache invalidated")
    except Exception as e:
        logger.warning("Failed to invalidate tier threshold cache: %s", str(e))


async def save_tier_thresholds(
    db: AsyncSession,
    thresholds: TierThresholds,
    updated_by: Optional[uuid.UUID] = None,
) -> PlatformConfig:
    """Upsert the affiliate_tiers row, then invalidate the cache and notify listeners."""
    value = {
        "tiers": {k: float(v) for k, v in thresholds.as_dict().items()},
        "rates": {k: float(v * 100) for k, v in COMMISSION_RATES.items()},
    }

    row = await db.get(PlatformConfig, CONFIG_KEY)
    if row is None:
        row = PlatformConfig(key=CONFIG_KEY, value=value, updated_by=updated_by)
        db.add(row)
    else:
        row.value = value
        row.updated_by = updated_by
    await db.commit()

    await invalidate_tier_thresholds()

    from affiliate_engine.services.event_bus import publish_event
    await publish_event("config_changed", {"key": CONFIG_KEY})

    logger.info(
        "Tier thresholds saved: silver=%s gold=%s platinum=%s",
        thresholds.silver, thresholds.gold, thresholds.platinum,
    )
    return row


async def _load_from_db(db: Optional[AsyncSession] = None) -> Optional[dict]:
    """Read the raw config value. Database errors degrade to None (defaults)."""
    try:
        if db is not None:
            row = await db.get(PlatformConfig, CONFIG_KEY)
            return row.value if row else None

        from affiliate_engine.database import async_session_factory
        async with async_session_factory() as session:
            result = await session.execute(
                select(PlatformConfig).where(PlatformConfig.key == CONFIG_KEY)
            )
            row = result.scalar_one_or_none()
            return row.value if row else None
    except Exception:
        logger.exception("Failed to load %s from database", CONFIG_KEY)
        return None
