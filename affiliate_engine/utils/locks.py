"""
Per-affiliate Redis mutex for balance-changing requests.

Key: affiliates:lock:<scope>:<affiliate_id>, written with NX and an expiry so
a crashed worker releases it after ttl seconds. The stored token lets release
delete only a lock this caller still owns.
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from affiliate_engine.utils.redis_client import get_redis

logger = logging.getLogger(__name__)

LOCK_TTL_SECONDS = 15
LOCK_WAIT_SECONDS = 5.0
LOCK_POLL_INTERVAL = 0.1

# Compare-and-delete
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class LockTimeoutError(Exception):
    """Another request kept the affiliate's lock for longer than the wait budget."""


def lock_key(affiliate_id: str, scope: str = "payout") -> str:
    return f"affiliates:lock:{scope}:{affiliate_id}"


@asynccontextmanager
async def affiliate_lock(
    affiliate_id: str,
    scope: str = "payout",
    ttl: int = LOCK_TTL_SECONDS,
    wait: float = LOCK_WAIT_SECONDS,
):
    """
    Hold one affiliate's lock for the duration of the block.

    With Redis unreachable the block runs unlocked; payout requests still
    take a row lock on the affiliate in the database.

        async with affiliate_lock(affiliate_id, scope="payout"):
            ...  # read balance, insert payout
    """
    key = lock_key(affiliate_id, scope)
    token = uuid.uuid4().hex

    held = await _try_acquire(key, token, ttl, wait)
    if held is False:
        raise LockTimeoutError(f"{scope} lock for affiliate {affiliate_id} still busy after {wait}s")
    try:
        yield
    finally:
        if held:
            await _release(key, token)


async def _try_acquire(key: str, token: str, ttl: int, wait: float) -> Optional[bool]:
    """True when acquired, False on timeout, None when Redis is unavailable."""
    try:
        redis = await get_redis()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait
        while True:
            if await redis.set(key, token, nx=True, ex=ttl):
                return True
            if loop.time() >= deadline:
                logger.warning("Timed out waiting for %s", key)
                return False
            await asyncio.sleep(LOCK_POLL_INTERVAL)
    except Exception as e:
        logger.warning("Redis unavailable for %s (%s), continuing on the row lock", key, str(e))
        return None


async def _release(key: str, token: str) -> None:
    try:
        redis = await get_redis()
        await redis.eval(_RELEASE_SCRIPT, 1, key, token)
    except Exception as e:
        logger.warning("Could not release %s: %s", key, str(e))
