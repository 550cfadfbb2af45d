"""
Realtime change notifications via Redis pub/sub.

Every committed write to commissions, payouts or affiliate users publishes
{"table", "action", "row"} on a per-table channel. Dashboards consume a
subscription as an async iterator. Delivery is best-effort: messages can be
late or lost, so consumers refetch full state on reconnect instead of
replaying. A bounded Redis list keeps recent changes for consumers that want
to drain what they missed.

Key events (non-row):
- config_changed: admin saved tier thresholds -> caches invalidate
"""
import json
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Optional

from sqlalchemy import inspect as sa_inspect

from affiliate_engine.utils.redis_client import get_redis

logger = logging.getLogger(__name__)

CHANGE_CHANNEL_PREFIX = "affiliates:changes"
EVENT_CHANNEL = "affiliates:events"
# Changes are also stored in a Redis list for consumers that missed the pub/sub
CHANGE_LIST_KEY = "affiliates:changes:pending"
CHANGE_LIST_MAX = 200


def channel_for(table: str) -> str:
    return f"{CHANGE_CHANNEL_PREFIX}:{table}"


def _json_default(value: Any) -> Any:
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def row_snapshot(obj: Any) -> dict[str, Any]:
    """Column values of an ORM instance as a JSON-safe dict."""
    mapper = sa_inspect(obj).mapper
    data = {attr.key: getattr(obj, attr.key) for attr in mapper.column_attrs}
    return json.loads(json.dumps(data, default=_json_default))


def matches(row: dict[str, Any], row_filter: Optional[dict[str, Any]]) -> bool:
    """True when every filter key equals the row value (compared as strings)."""
    if not row_filter:
        return True
    return all(str(row.get(k)) == str(v) for k, v in row_filter.items())


async def publish_change(table: str, action: str, obj: Any) -> None:
    """
    Publish an insert/update notification for one row.

    Never raises - a write is durable once the database acknowledges it,
    notification is a convenience.
    """
    try:
        row = obj if isinstance(obj, dict) else row_snapshot(obj)
        payload = json.dumps({"table": table, "action": action, "row": row}, default=_json_default)

        redis = await get_redis()
        await redis.publish(channel_for(table), payload)
        await redis.lpush(CHANGE_LIST_KEY, payload)
        await redis.ltrim(CHANGE_LIST_KEY, 0, CHANGE_LIST_MAX - 1)

        logger.debug("Change published: %s %s", table, action)
    except Exception as e:
        logger.warning("Failed to publish %s change on %s: %s", action, table, str(e))


async def publish_event(event_type: str, data: Optional[dict[str, Any]] = None) -> None:
    """Publish a non-row event (config_changed, ...)."""
    payload = json.dumps({"type": event_type, "data": data or {}}, default=_json_default)
    try:
        redis = await get_redis()
        await redis.publish(EVENT_CHANNEL, payload)
        logger.debug("Event published: %s", event_type)
    except Exception:
        logger.warning("Failed to publish event: %s", event_type)


async def subscribe(
    table: str,
    row_filter: Optional[dict[str, Any]] = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Subscribe to changes on a table, optionally filtered by column values.

    Usage:
        async for change in subscribe("affiliate_payouts", {"affiliate_id": uid}):
            ...  # change = {"table", "action", "row"}
    """
    redis = await get_redis()
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel_for(table))
    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                raw = message["data"]
                change = json.loads(raw if isinstance(raw, str) else raw.decode())
            except (json.JSONDecodeError, UnicodeDecodeError, KeyError):
                continue
            if matches(change.get("row") or {}, row_filter):
                yield change
    finally:
        try:
            await pubsub.unsubscribe(channel_for(table))
            await pubsub.aclose()
        except Exception as e:
            logger.debug("Pub/sub cleanup failed: %s", str(e))


async def drain_changes(
    max_events: int = 50,
    table: Optional[str] = None,
) -> list[dict[str, Any]]:
    """
    Take pending changes off the catch-up list, oldest first. Non-blocking.

    With a table, only that table's entries are removed; changes for other
    tables stay queued for their own consumers.
    """
    changes: list[dict[str, Any]] = []

    try:
        redis = await get_redis()
        if table is None:
            for _ in range(max_events):
                raw = await redis.rpop(CHANGE_LIST_KEY)
                if raw is None:
                    break
                change = _decode_change(raw)
                if change is not None:
                    changes.append(change)
            return changes

        # Newest is at the head, so walk the snapshot from the tail
        for raw in reversed(await redis.lrange(CHANGE_LIST_KEY, 0, -1)):
            if len(changes) >= max_events:
                break
            change = _decode_change(raw)
            if change is None or change.get("table") != table:
                continue
            # 0 removed means another consumer took it first
            if await redis.lrem(CHANGE_LIST_KEY, -1, raw):
                changes.append(change)
    except Exception:
        logger.warning("Failed to drain changes from bus")

    return changes


def _decode_change(raw: Any) -> Optional[dict[str, Any]]:
    try:
        change = json.loads(raw if isinstance(raw, str) else raw.decode())
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return change if isinstance(change, dict) else None
