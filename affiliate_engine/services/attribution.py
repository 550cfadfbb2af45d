"""
Referral attribution - remembers which affiliate code should get credit for
a visitor's eventual signup.

Attribution is last-touch: every captured code overwrites the previous one.
A captured code is valid for `attribution_window_days` (30) and expires
lazily - the first read after the window clears it.

State lives in a LocalStore (client-scoped key/value storage) so the tracker
can be exercised without a browser:
    visitor_id           stable id, generated once
    affiliate_code       last captured referral code
    affiliate_timestamp  capture time, epoch milliseconds
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

VISITOR_ID_KEY = "visitor_id"
CODE_KEY = "affiliate_code"
TIMESTAMP_KEY = "affiliate_timestamp"

DEFAULT_WINDOW_DAYS = 30

# Called as track_visit(code=..., visitor_id=..., user_agent=..., referral_url=...)
VisitTracker = Callable[..., Awaitable[Any]]


class LocalStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryLocalStore:
    """Dict-backed store for tests and single-process use."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


class RedisLocalStore:
    """
    Client-scoped store in Redis, namespaced by the visitor cookie.
    Keys expire after `ttl_seconds` of inactivity, like cleared browser storage.
    """

    def __init__(self, redis, client_key: str, ttl_seconds: int):
        self.redis = redis
        self.prefix = f"affiliates:client:{client_key}"
        self.ttl_seconds = ttl_seconds

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def get(self, key: str) -> Optional[str]:
        return await self.redis.get(self._key(key))

    async def set(self, key: str, value: str) -> None:
        await self.redis.set(self._key(key), value, ex=self.ttl_seconds)

    async def delete(self, key: str) -> None:
        await self.redis.delete(self._key(key))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


class AttributionTracker:
    """captureVisit / getActiveAttribution over an injected LocalStore."""

    def __init__(
        self,
        store: LocalStore,
        track_visit: Optional[VisitTracker] = None,
        window_days: int = DEFAULT_WINDOW_DAYS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.track_visit = track_visit
        self.window = timedelta(days=window_days)
        self.clock = clock

    async def ensure_visitor_id(self, preferred: Optional[str] = None) -> str:
        """Return the stored visitor id, creating it (from `preferred` or a UUID) if absent."""
        visitor_id = await self.store.get(VISITOR_ID_KEY)
        if visitor_id:
            return visitor_id
        visitor_id = preferred or str(uuid.uuid4())
        await self.store.set(VISITOR_ID_KEY, visitor_id)
        return visitor_id

    async def get_visitor_id(self) -> Optional[str]:
        return await self.store.get(VISITOR_ID_KEY)

    async def capture_visit(
        self,
        code: str,
        user_agent: Optional[str] = None,
        referral_url: Optional[str] = None,
    ) -> bool:
        """
        Record a referral visit and remember the code for signup attribution.

        Visit tracking is best-effort: a tracker failure is logged and the
        attribution is stored anyway. Returns True when tracking succeeded.
        """
        code = (code or "").strip()
        if not code:
            return False

        visitor_id = await self.ensure_visitor_id()

        tracked = False
        if self.track_visit is not None:
            try:
                await self.track_visit(
                    code=code,
                    visitor_id=visitor_id,
                    user_agent=user_agent,
                    referral_url=referral_url,
                )
                tracked = True
            except Exception as e:
                logger.warning(
                    "Affiliate visit tracking failed: %s", str(e),
                    extra={"code": code, "visitor_id": visitor_id},
                )

        # Last touch wins, even inside the window of an earlier code
        await self.store.set(CODE_KEY, code)
        await self.store.set(TIMESTAMP_KEY, str(_to_epoch_ms(self.clock())))
        return tracked

    async def get_active_attribution(self) -> Optional[str]:
        """The captured code if still inside the window, else None (expired records are cleared)."""
        code = await self.store.get(CODE_KEY)
        raw_ts = await self.store.get(TIMESTAMP_KEY)
        if not code and not raw_ts:
            return None

        try:
            captured_ms = int(raw_ts) if raw_ts else None
        except ValueError:
            captured_ms = None

        if not code or captured_ms is None:
            await self.clear()
            return None

        age_ms = _to_epoch_ms(self.clock()) - captured_ms
        if age_ms >= self.window.total_seconds() * 1000:
            logger.info("Affiliate attribution expired", extra={"code": code})
            await self.clear()
            return None

        return code

    async def clear(self) -> None:
        await self.store.delete(CODE_KEY)
        await self.store.delete(TIMESTAMP_KEY)
