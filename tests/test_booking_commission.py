"""
Tests for booking commissions in affiliate_engine/services/commissions.py -
live tier rate, per-request dedup, unreferred bookings.
"""
import uuid
import pytest
from decimal import Decimal
from sqlalchemy import select

from affiliate_engine.models.commission import Commission
from affiliate_engine.models.tracking_event import TrackingEvent
from affiliate_engine.models.user import User
from affiliate_engine.schemas.affiliates import TierThresholds
from affiliate_engine.services.commissions import (
    get_earnings,
    live_tier,
    record_booking_commission,
)
from affiliate_engine.services.tier_config import save_tier_thresholds


@pytest.fixture
def referred_pair(make_affiliate, make_user):
    """Factory: an affiliate and a user they referred."""
    async def _make():
        affiliate = await make_affiliate()
        customer = await make_user(referrer_id=affiliate.id)
        return affiliate, customer
    return _make


class TestRecordBookingCommission:
    async def test_bronze_commission(self, db, referred_pair):
        affiliate, customer = await referred_pair()

        commission = await record_booking_commission(db, customer.id, "req-1", Decimal("200"))

        assert commission.affiliate_id == affiliate.id
        assert commission.referred_user_id == customer.id
        assert commission.request_id == "req-1"
        assert commission.amount == Decimal("20.00")
        assert commission.status == "pending"
        assert commission.commission_type == "booking"

    async def test_writes_booking_event(self, db, referred_pair):
        affiliate, customer = await referred_pair()
        await record_booking_commission(db, customer.id, "req-1", "150.00", visitor_id="v1")

        event = (await db.execute(
            select(TrackingEvent).where(TrackingEvent.event_type == "booking")
        )).scalar_one()
        assert event.affiliate_id == affiliate.id
        assert event.visitor_id == "v1"
        assert event.extra_data["request_id"] == "req-1"
        assert Decimal(event.extra_data["amount"]) == Decimal("150.00")

    async def test_gold_rate_from_live_earnings(self, db, referred_pair, add_commission):
        """A gold-tier referrer earns 15% even when the cached label says bronze."""
        affiliate, customer = await referred_pair()
        await add_commission(affiliate, "2500.00", status="confirmed")

        commission = await record_booking_commission(db, customer.id, "req-9", 200)

        assert commission.amount == Decimal("30.00")
        refreshed = await db.get(User, affiliate.id)
        assert refreshed.affiliate_tier == "gold"

    async def test_paid_commissions_count_toward_tier(self, db, referred_pair, add_commission):
        affiliate, customer = await referred_pair()
        await add_commission(affiliate, "300.00", status="confirmed")
        await add_commission(affiliate, "250.00", status="paid")

        commission = await record_booking_commission(db, customer.id, "req-2", 100)
        assert commission.amount == Decimal("12.00")

    async def test_pending_and_cancelled_do_not_count(self, db, referred_pair, add_commission):
        affiliate, customer = await referred_pair()
        await add_commission(affiliate, "5000.00", status="pending")
        await add_commission(affiliate, "5000.00", status="cancelled")

        commission = await record_booking_commission(db, customer.id, "req-3", 100)
        assert commission.amount == Decimal("10.00")

    async def test_configured_thresholds_apply(self, db, referred_pair, add_commission):
        affiliate, customer = await referred_pair()
        await add_commission(affiliate, "60.00", status="confirmed")
        await save_tier_thresholds(db, TierThresholds(silver=10, gold=50, platinum=1000))

        commission = await record_booking_commission(db, customer.id, "req-4", 100)
        assert commission.amount == Decimal("15.00")

    async def test_duplicate_request_returns_existing(self, db, referred_pair, caplog):
        """Retrying the same booking never produces a second commission."""
        _, customer = await referred_pair()
        first = await record_booking_commission(db, customer.id, "req-1", 200)
        second = await record_booking_commission(db, customer.id, "req-1", 200)

        assert second.id == first.id
        rows = (await db.execute(select(Commission))).scalars().all()
        assert len(rows) == 1
        events = (await db.execute(
            select(TrackingEvent).where(TrackingEvent.event_type == "booking")
        )).scalars().all()
        assert len(events) == 1
        assert "Duplicate booking commission" in caplog.text

    async def test_concurrent_insert_returns_winner(
        self, db, referred_pair, commit_after_next_query, caplog,
    ):
        """A booking commission committed after the duplicate check is returned instead of ours."""
        affiliate, customer = await referred_pair()
        affiliate_id, customer_id = affiliate.id, customer.id
        winner_id = uuid.uuid4()
        winner = Commission(
            id=winner_id,
            affiliate_id=affiliate_id,
            referred_user_id=customer_id,
            request_id="req-race",
            amount=Decimal("20.00"),
            status="pending",
            commission_type="booking",
        )

        with commit_after_next_query(winner):
            result = await record_booking_commission(db, customer_id, "req-race", 200)

        assert result.id == winner_id
        assert "Concurrent booking commission insert suppressed" in caplog.text
        rows = (await db.execute(
            select(Commission).where(Commission.request_id == "req-race")
        )).scalars().all()
        assert [c.id for c in rows] == [winner_id]
        events = (await db.execute(
            select(TrackingEvent).where(TrackingEvent.event_type == "booking")
        )).scalars().all()
        assert events == []

    async def test_unreferred_user_returns_none(self, db, make_user):
        customer = await make_user()
        assert await record_booking_commission(db, customer.id, "req-1", 200) is None
        assert (await db.execute(select(Commission))).scalars().all() == []

    async def test_unknown_user_returns_none(self, db):
        assert await record_booking_commission(db, uuid.uuid4(), "req-1", 200) is None

    @pytest.mark.parametrize("amount", [0, -5, "-0.01", "NaN", "-Infinity"])
    async def test_non_positive_amount_rejected(self, db, referred_pair, amount):
        _, customer = await referred_pair()
        with pytest.raises(ValueError):
            await record_booking_commission(db, customer.id, "req-1", amount)

    async def test_rounding_half_up(self, db, referred_pair):
        _, customer = await referred_pair()
        commission = await record_booking_commission(db, customer.id, "req-5", Decimal("33.33"))
        assert commission.amount == Decimal("3.33")


class TestEarnings:
    async def test_get_earnings(self, db, make_affiliate, add_commission):
        affiliate = await make_affiliate()
        await add_commission(affiliate, "100.00", status="confirmed")
        await add_commission(affiliate, "50.00", status="paid")
        await add_commission(affiliate, "25.00", status="pending")
        await add_commission(affiliate, "999.00", status="cancelled")

        earnings = await get_earnings(db, affiliate.id)
        assert earnings == {"confirmed": Decimal("150.00"), "pending": Decimal("25.00")}

    async def test_live_tier(self, db, make_affiliate, add_commission):
        affiliate = await make_affiliate()
        await add_commission(affiliate, "5000.00", status="confirmed")
        tier, earned = await live_tier(db, affiliate.id)
        assert tier == "platinum"
        assert earned == Decimal("5000.00")
