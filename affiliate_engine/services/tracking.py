"""
Affiliate tracking events - append-only visit/signup/booking log.

record_visit() is the server-side half of visit capture: it resolves the code,
records at most one visit per (affiliate, visitor) and reports whether the
visit was new.
"""
import logging
import uuid
from typing import Optional, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_engine.errors import AffiliateNotFound
from affiliate_engine.models.affiliate_link import AffiliateLink
from affiliate_engine.models.tracking_event import TrackingEvent, EVENT_TYPES
from affiliate_engine.schemas.affiliates import VisitMetadata, SignupMetadata, BookingMetadata

logger = logging.getLogger(__name__)

Metadata = Union[VisitMetadata, SignupMetadata, BookingMetadata]


async def resolve_active_link(db: AsyncSession, code: str) -> Optional[AffiliateLink]:
    """Look up an active affiliate link by code."""
    if not code:
        return None
    result = await db.execute(
        select(AffiliateLink).where(
            AffiliateLink.code == code.strip(),
            AffiliateLink.is_active == True,  # noqa: E712
        )
    )
    return result.scalar_one_or_none()


def build_event(
    affiliate_id: uuid.UUID,
    metadata: Metadata,
    visitor_id: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    referral_url: Optional[str] = None,
) -> TrackingEvent:
    """Build (not add) a tracking event. The event type comes from the metadata variant."""
    return TrackingEvent(
        affiliate_id=affiliate_id,
        event_type=metadata.kind,
        visitor_id=visitor_id,
        ip_address=ip_address,
        user_agent=user_agent,
        referral_url=referral_url,
        extra_data=metadata.model_dump(mode="json"),
    )


async def record_visit(
    db: AsyncSession,
    code: str,
    visitor_id: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    referral_url: Optional[str] = None,
) -> bool:
    """
    Record a referral visit.

    Returns:
        True when a new visit event was written, False for a repeat visitor.

    Raises:
        ValueError: code or visitor id missing
        AffiliateNotFound: code does not match an active link
    """
    if not code or not visitor_id:
        raise ValueError("Affiliate code and visitor ID are required")

    link = await resolve_active_link(db, code)
    if link is None:
        raise AffiliateNotFound(f"Invalid affiliate code: {code}")

    existing = await db.execute(
        select(TrackingEvent.id).where(
            TrackingEvent.affiliate_id == link.user_id,
            TrackingEvent.visitor_id == visitor_id,
            TrackingEvent.event_type == "visit",
        ).limit(1)
    )
    if existing.scalar_one_or_none() is not None:
        logger.info(
            "Repeat visit not recorded",
            extra={"affiliate_id": str(link.user_id), "visitor_id": visitor_id},
        )
        return False

    db.add(build_event(
        link.user_id,
        VisitMetadata(landing_page=link.landing_page),
        visitor_id=visitor_id,
        ip_address=ip_address,
        user_agent=user_agent,
        referral_url=referral_url,
    ))
    await db.commit()
    logger.info(
        "Affiliate visit recorded",
        extra={"affiliate_id": str(link.user_id), "visitor_id": visitor_id},
    )
    return True


async def count_events(db: AsyncSession, affiliate_id: uuid.UUID) -> dict[str, int]:
    """Event counts by type for one affiliate, zero-filled."""
    result = await db.execute(
        select(TrackingEvent.event_type, func.count(TrackingEvent.id))
        .where(TrackingEvent.affiliate_id == affiliate_id)
        .group_by(TrackingEvent.event_type)
    )
    counts = {event_type: 0 for event_type in EVENT_TYPES}
    for event_type, count in result.all():
        counts[event_type] = int(count)
    return counts
