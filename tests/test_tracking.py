"""
Tests for affiliate_engine/services/tracking.py - visit recording, repeat-visit
dedup and event counts.
"""
import pytest
from sqlalchemy import select

from affiliate_engine.errors import AffiliateNotFound
from affiliate_engine.models.tracking_event import TrackingEvent
from affiliate_engine.schemas.affiliates import SignupMetadata
from affiliate_engine.services.tracking import (
    build_event,
    count_events,
    record_visit,
    resolve_active_link,
)


class TestResolveActiveLink:
    async def test_active_code(self, db, make_affiliate):
        affiliate = await make_affiliate(code="alice-9f2a")
        link = await resolve_active_link(db, "alice-9f2a")
        assert link.user_id == affiliate.id

    async def test_inactive_code(self, db, make_affiliate):
        await make_affiliate(code="gone-0000", is_active=False)
        assert await resolve_active_link(db, "gone-0000") is None

    async def test_unknown_or_empty(self, db):
        assert await resolve_active_link(db, "nobody-1234") is None
        assert await resolve_active_link(db, "") is None


class TestRecordVisit:
    async def test_first_visit_recorded(self, db, make_affiliate):
        affiliate = await make_affiliate(code="alice-9f2a")

        is_new = await record_visit(
            db, "alice-9f2a", "visitor-1",
            ip_address="203.0.113.7", user_agent="Mozilla/5.0", referral_url="https://blog.test",
        )

        assert is_new is True
        event = (await db.execute(select(TrackingEvent))).scalar_one()
        assert event.affiliate_id == affiliate.id
        assert event.event_type == "visit"
        assert event.visitor_id == "visitor-1"
        assert event.ip_address == "203.0.113.7"
        assert event.extra_data["kind"] == "visit"
        assert event.extra_data["landing_page"] == "/"

    async def test_repeat_visitor_not_recorded(self, db, make_affiliate):
        await make_affiliate(code="alice-9f2a")
        assert await record_visit(db, "alice-9f2a", "visitor-1") is True
        assert await record_visit(db, "alice-9f2a", "visitor-1") is False

        events = (await db.execute(select(TrackingEvent))).scalars().all()
        assert len(events) == 1

    async def test_same_visitor_different_affiliates(self, db, make_affiliate):
        await make_affiliate(code="alice-9f2a")
        await make_affiliate(code="bob-1234")
        assert await record_visit(db, "alice-9f2a", "visitor-1") is True
        assert await record_visit(db, "bob-1234", "visitor-1") is True

    async def test_invalid_code_raises(self, db):
        with pytest.raises(AffiliateNotFound):
            await record_visit(db, "nobody-1234", "visitor-1")

    async def test_inactive_link_raises(self, db, make_affiliate):
        await make_affiliate(code="gone-0000", is_active=False)
        with pytest.raises(AffiliateNotFound):
            await record_visit(db, "gone-0000", "visitor-1")

    @pytest.mark.parametrize("code,visitor", [("", "v"), ("alice-9f2a", "")])
    async def test_missing_arguments(self, db, code, visitor):
        with pytest.raises(ValueError):
            await record_visit(db, code, visitor)


class TestCountEvents:
    async def test_zero_filled(self, db, make_affiliate):
        affiliate = await make_affiliate()
        assert await count_events(db, affiliate.id) == {"visit": 0, "signup": 0, "booking": 0}

    async def test_counts_by_type(self, db, make_affiliate):
        affiliate = await make_affiliate(code="alice-9f2a")
        await record_visit(db, "alice-9f2a", "v1")
        await record_visit(db, "alice-9f2a", "v2")
        db.add(build_event(affiliate.id, SignupMetadata(user_id="u1"), visitor_id="v1"))
        await db.commit()

        counts = await count_events(db, affiliate.id)
        assert counts == {"visit": 2, "signup": 1, "booking": 0}


class TestBuildEvent:
    def test_event_type_from_metadata(self):
        event = build_event("aff", SignupMetadata(user_id="u1"))
        assert event.event_type == "signup"
        assert event.extra_data["user_id"] == "u1"
