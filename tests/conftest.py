"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Redis is replaced by a dict-backed AsyncMock.
"""
import os

os.environ.setdefault("APP_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

from affiliate_engine.database import Base
import affiliate_engine.models  # noqa: F401  (register tables on Base.metadata)
from affiliate_engine.models.affiliate_link import AffiliateLink
from affiliate_engine.models.commission import Commission
from affiliate_engine.models.user import User


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


def _build_redis_mock() -> AsyncMock:
    """AsyncMock whose key/value and list commands operate on a real dict."""
    store: dict = {}
    redis_mock = AsyncMock()
    redis_mock.store = store

    async def _get(key):
        value = store.get(key)
        return value if isinstance(value, str) else None

    async def _set(key, value, nx=False, ex=None):
        if nx and key in store:
            return None
        store[key] = str(value)
        return True

    async def _delete(*keys):
        return sum(1 for key in keys if store.pop(key, None) is not None)

    async def _lpush(key, value):
        store.setdefault(key, []).insert(0, value)
        return len(store[key])

    async def _ltrim(key, start, end):
        store[key] = store.get(key, [])[start:end + 1]
        return True

    async def _rpop(key):
        items = store.get(key) or []
        return items.pop() if items else None

    async def _lrange(key, start, end):
        items = store.get(key) or []
        return list(items[start:] if end == -1 else items[start:end + 1])

    async def _lrem(key, count, value):
        items = store.get(key) or []
        limit = abs(count) or len(items)
        # Negative count removes from the tail
        positions = range(len(items) - 1, -1, -1) if count < 0 else range(len(items))
        hits = [i for i in positions if items[i] == value][:limit]
        for i in sorted(hits, reverse=True):
            del items[i]
        return len(hits)

    async def _eval(script, numkeys, key, value):
        if store.get(key) == value:
            del store[key]
            return 1
        return 0

    redis_mock.get = AsyncMock(side_effect=_get)
    redis_mock.set = AsyncMock(side_effect=_set)
    redis_mock.delete = AsyncMock(side_effect=_delete)
    redis_mock.lpush = AsyncMock(side_effect=_lpush)
    redis_mock.ltrim = AsyncMock(side_effect=_ltrim)
    redis_mock.rpop = AsyncMock(side_effect=_rpop)
    redis_mock.lrange = AsyncMock(side_effect=_lrange)
    redis_mock.lrem = AsyncMock(side_effect=_lrem)
    redis_mock.eval = AsyncMock(side_effect=_eval)
    redis_mock.publish = AsyncMock(return_value=1)
    redis_mock.ping = AsyncMock(return_value=True)
    redis_mock.pubsub = MagicMock()
    return redis_mock


# Modules that bind get_redis at import time
_REDIS_IMPORTERS = (
    "affiliate_engine.utils.redis_client.get_redis",
    "affiliate_engine.utils.locks.get_redis",
    "affiliate_engine.services.tier_config.get_redis",
    "affiliate_engine.services.event_bus.get_redis",
    "affiliate_engine.api.referrals.get_redis",
)


@pytest.fixture(autouse=True)
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    redis_mock = _build_redis_mock()
    patchers = [patch(target, new=AsyncMock(return_value=redis_mock)) for target in _REDIS_IMPORTERS]
    for p in patchers:
        p.start()
    try:
        yield redis_mock
    finally:
        for p in patchers:
            p.stop()


@pytest.fixture
def make_user(db):
    """Factory: persist a plain marketplace user."""
    async def _make(email: str = None, **fields) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            **fields,
        )
        db.add(user)
        await db.commit()
        return user
    return _make


@pytest.fixture
def make_affiliate(db, make_user):
    """Factory: persist a user enrolled in the program with an active link."""
    async def _make(code: str = None, email: str = None, is_active: bool = True) -> User:
        user = await make_user(email=email)
        code = code or f"aff-{uuid.uuid4().hex[:4]}"
        user.is_affiliate = True
        user.affiliate_code = code
        db.add(AffiliateLink(user_id=user.id, code=code, landing_page="/", is_active=is_active))
        await db.commit()
        return user
    return _make


@pytest.fixture
def commit_after_next_query(db):
    """
    Factory: commit rows right after the session's next execute() returns,
    the way a concurrent writer slips in between a service's duplicate
    check and its insert. Use as a context manager.
    """
    def _patch(*rows):
        real_execute = db.execute
        pending = list(rows)

        async def _execute(*args, **kwargs):
            result = await real_execute(*args, **kwargs)
            if pending:
                db.add_all(pending)
                pending.clear()
                await db.commit()
            return result

        return patch.object(db, "execute", new=_execute)
    return _patch


@pytest.fixture
def add_commission(db):
    """Factory: insert a commission row directly with a given status."""
    async def _add(
        affiliate: User,
        amount,
        status: str = "confirmed",
        commission_type: str = "booking",
        referred_user_id: uuid.UUID = None,
        request_id: str = None,
    ) -> Commission:
        commission = Commission(
            affiliate_id=affiliate.id,
            referred_user_id=referred_user_id or affiliate.id,
            request_id=request_id or (uuid.uuid4().hex if commission_type == "booking" else None),
            amount=Decimal(str(amount)),
            status=status,
            commission_type=commission_type,
        )
        db.add(commission)
        await db.commit()
        return commission
    return _add
