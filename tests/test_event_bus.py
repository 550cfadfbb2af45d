"""
Tests for affiliate_engine/services/event_bus.py - change publishing, the
catch-up list and filtered subscriptions.
"""
import json
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

from affiliate_engine.services.event_bus import (
    CHANGE_LIST_KEY,
    CHANGE_LIST_MAX,
    channel_for,
    drain_changes,
    matches,
    publish_change,
    publish_event,
    row_snapshot,
    subscribe,
)


class TestHelpers:
    def test_channel_for(self):
        assert channel_for("affiliate_payouts") == "affiliates:changes:affiliate_payouts"

    def test_matches(self):
        row = {"affiliate_id": "abc", "status": "pending"}
        assert matches(row, None) is True
        assert matches(row, {"affiliate_id": "abc"}) is True
        assert matches(row, {"affiliate_id": "xyz"}) is False

    async def test_row_snapshot_is_json_safe(self, db, make_affiliate, add_commission):
        affiliate = await make_affiliate()
        commission = await add_commission(affiliate, "12.50", status="pending")

        row = row_snapshot(commission)

        assert row["amount"] == "12.50"
        assert row["affiliate_id"] == str(affiliate.id)
        assert row["status"] == "pending"
        json.dumps(row)


class TestPublishChange:
    async def test_publishes_and_buffers(self, mock_redis):
        await publish_change("affiliate_payouts", "insert", {"id": "p1", "amount": Decimal("5.00")})

        channel, payload = mock_redis.publish.call_args.args
        assert channel == "affiliates:changes:affiliate_payouts"
        change = json.loads(payload)
        assert change == {"table": "affiliate_payouts", "action": "insert", "row": {"id": "p1", "amount": "5.00"}}
        assert len(mock_redis.store[CHANGE_LIST_KEY]) == 1

    async def test_catch_up_list_is_bounded(self, mock_redis):
        for i in range(CHANGE_LIST_MAX + 5):
            await publish_change("affiliate_payouts", "update", {"id": str(i)})
        assert len(mock_redis.store[CHANGE_LIST_KEY]) == CHANGE_LIST_MAX

    async def test_redis_failure_never_raises(self):
        with patch(
            "affiliate_engine.services.event_bus.get_redis",
            new_callable=AsyncMock, side_effect=ConnectionError("down"),
        ):
            await publish_change("affiliate_payouts", "insert", {"id": "p1"})
            await publish_event("config_changed")


class TestDrainChanges:
    async def test_oldest_first_and_table_filter(self, mock_redis):
        await publish_change("affiliate_payouts", "insert", {"id": "1"})
        await publish_change("affiliate_commissions", "insert", {"id": "2"})
        await publish_change("affiliate_payouts", "update", {"id": "1"})

        changes = await drain_changes(table="affiliate_payouts")

        assert [c["action"] for c in changes] == ["insert", "update"]
        assert [c["table"] for c in await drain_changes()] == ["affiliate_commissions"]
        assert await drain_changes() == []

    async def test_table_drain_keeps_other_tables(self, mock_redis):
        """Catching up on payouts leaves the commission backlog for its own consumer."""
        await publish_change("affiliate_commissions", "insert", {"id": "c1"})
        await publish_change("affiliate_payouts", "insert", {"id": "p1"})
        await publish_change("users", "update", {"id": "u1"})

        payouts = await drain_changes(table="affiliate_payouts")
        commissions = await drain_changes(table="affiliate_commissions")

        assert [c["row"]["id"] for c in payouts] == ["p1"]
        assert [c["row"]["id"] for c in commissions] == ["c1"]
        assert await drain_changes(table="affiliate_payouts") == []
        assert len(mock_redis.store[CHANGE_LIST_KEY]) == 1

    async def test_table_drain_respects_max_events(self, mock_redis):
        for i in range(3):
            await publish_change("affiliate_payouts", "insert", {"id": str(i)})

        first = await drain_changes(max_events=2, table="affiliate_payouts")
        rest = await drain_changes(table="affiliate_payouts")

        assert [c["row"]["id"] for c in first] == ["0", "1"]
        assert [c["row"]["id"] for c in rest] == ["2"]

    async def test_skips_garbage(self, mock_redis):
        mock_redis.store[CHANGE_LIST_KEY] = ["not json"]
        assert await drain_changes() == []

    async def test_table_drain_leaves_garbage_in_place(self, mock_redis):
        mock_redis.store[CHANGE_LIST_KEY] = ["not json"]
        assert await drain_changes(table="affiliate_payouts") == []
        assert mock_redis.store[CHANGE_LIST_KEY] == ["not json"]


class TestSubscribe:
    async def test_filters_rows(self, mock_redis):
        messages = [
            {"type": "subscribe", "data": 1},
            {"type": "message", "data": json.dumps(
                {"table": "affiliate_payouts", "action": "insert", "row": {"affiliate_id": "other"}}
            )},
            {"type": "message", "data": "{broken"},
            {"type": "message", "data": json.dumps(
                {"table": "affiliate_payouts", "action": "update", "row": {"affiliate_id": "mine"}}
            )},
        ]

        async def _listen():
            for message in messages:
                yield message

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.unsubscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        pubsub.listen = _listen
        mock_redis.pubsub.return_value = pubsub

        received = [c async for c in subscribe("affiliate_payouts", {"affiliate_id": "mine"})]

        assert received == [
            {"table": "affiliate_payouts", "action": "update", "row": {"affiliate_id": "mine"}}
        ]
        pubsub.subscribe.assert_called_once_with("affiliates:changes:affiliate_payouts")
        pubsub.unsubscribe.assert_called_once()
