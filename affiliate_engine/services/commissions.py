"""
Commission accrual - signup linking, booking commissions, status lifecycle.

Idempotency is the concurrency guard here, not locking:
- users.referrer_id is written with a conditional UPDATE (only while NULL)
- one signup commission per referred user and one booking commission per
  request id, enforced by partial unique indexes
Duplicate attempts are absorbed as no-ops with a warning log.

Rate lookup always re-derives the referrer's tier from current earnings.
The cached users.affiliate_tier label is refreshed as a side effect and is
never used for money.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_engine.errors import AffiliateNotFound, InvalidStatusTransition
from affiliate_engine.models.commission import Commission, COMMISSION_TRANSITIONS
from affiliate_engine.models.user import User
from affiliate_engine.schemas.affiliates import SignupMetadata, BookingMetadata, TierThresholds
from affiliate_engine.services.attribution import AttributionTracker
from affiliate_engine.services.event_bus import publish_change
from affiliate_engine.services.tier_config import get_tier_thresholds
from affiliate_engine.services.tiers import tier_for, calculate_commission
from affiliate_engine.services.tracking import build_event, resolve_active_link
from affiliate_engine.utils.money import to_money

logger = logging.getLogger(__name__)

EARNED_STATUSES = ("confirmed", "paid")


# ---------------------------------------------------------------------------
# Earnings and live tier
# ---------------------------------------------------------------------------

async def sum_commissions(
    db: AsyncSession,
    affiliate_id: uuid.UUID,
    statuses: tuple[str, ...],
) -> Decimal:
    result = await db.execute(
        select(func.coalesce(func.sum(Commission.amount), 0)).where(
            Commission.affiliate_id == affiliate_id,
            Commission.status.in_(statuses),
        )
    )
    return to_money(result.scalar_one())


async def get_earnings(db: AsyncSession, affiliate_id: uuid.UUID) -> dict[str, Decimal]:
    """Confirmed (confirmed + paid) and pending commission totals."""
    return {
        "confirmed": await sum_commissions(db, affiliate_id, EARNED_STATUSES),
        "pending": await sum_commissions(db, affiliate_id, ("pending",)),
    }


async def live_tier(
    db: AsyncSession,
    affiliate_id: uuid.UUID,
    thresholds: Optional[TierThresholds] = None,
) -> tuple[str, Decimal]:
    """(tier, earnings) computed from the commission table right now."""
    if thresholds is None:
        thresholds = await get_tier_thresholds(db)
    earned = await sum_commissions(db, affiliate_id, EARNED_STATUSES)
    return tier_for(earned, thresholds), earned


async def refresh_affiliate_tier(db: AsyncSession, affiliate_id: uuid.UUID) -> str:
    """Recompute and cache tier + earnings on the user row. Idempotent."""
    user = await db.get(User, affiliate_id)
    if user is None:
        raise AffiliateNotFound(f"Affiliate {affiliate_id} not found")

    tier, earned = await live_tier(db, affiliate_id)
    changed = user.affiliate_tier != tier or to_money(user.affiliate_earnings) != earned
    if changed:
        previous = user.affiliate_tier
        user.affiliate_tier = tier
        user.affiliate_earnings = earned
        await db.commit()
        if previous != tier:
            logger.info(
                "Affiliate tier changed %s -> %s (earnings %s)", previous, tier, earned,
                extra={"affiliate_id": str(affiliate_id)},
            )
        await publish_change("users", "update", user)
    return tier


# ---------------------------------------------------------------------------
# Signup linking
# ---------------------------------------------------------------------------

async def link_signup(
    db: AsyncSession,
    tracker: AttributionTracker,
    new_user_id: uuid.UUID,
) -> Optional[uuid.UUID]:
    """
    Bind a newly registered user to the affiliate holding the active attribution.

    Returns the referrer's user id, or None when there is nothing to link.
    """
    code = await tracker.get_active_attribution()
    if not code:
        logger.debug("No active attribution for signup", extra={"user_id": str(new_user_id)})
        return None
    visitor_id = await tracker.get_visitor_id()
    return await link_signup_to_code(db, new_user_id, code, visitor_id=visitor_id)


async def link_signup_to_code(
    db: AsyncSession,
    new_user_id: uuid.UUID,
    code: str,
    visitor_id: Optional[str] = None,
) -> Optional[uuid.UUID]:
    """
    Set users.referrer_id once, then record the signup event and a pending
    zero-amount signup commission.

    referrer_id is committed first and is the source of truth. If the
    bookkeeping writes fail the error propagates; calling again completes
    them without touching referrer_id.
    """
    link = await resolve_active_link(db, code)
    if link is None:
        logger.info("Signup attribution code has no active link", extra={"code": code})
        return None

    user = await db.get(User, new_user_id)
    if user is None:
        raise AffiliateNotFound(f"User {new_user_id} not found")

    if link.user_id == user.id:
        logger.warning("Self-referral ignored", extra={"user_id": str(user.id), "code": code})
        return None

    result = await db.execute(
        update(User)
        .where(User.id == new_user_id, User.referrer_id.is_(None))
        .values(referrer_id=link.user_id)
    )
    await db.commit()
    await db.refresh(user)

    if result.rowcount == 0:
        if user.referrer_id != link.user_id:
            logger.warning(
                "User already referred by another affiliate, keeping original referrer",
                extra={"user_id": str(user.id), "affiliate_id": str(user.referrer_id)},
            )
            return user.referrer_id
        logger.warning(
            "Signup already linked, completing bookkeeping only",
            extra={"user_id": str(user.id), "affiliate_id": str(link.user_id)},
        )
    else:
        logger.info(
            "Signup linked to affiliate",
            extra={"user_id": str(user.id), "affiliate_id": str(link.user_id), "code": code},
        )
        await publish_change("users", "update", user)

    await record_signup_commission(db, link.user_id, user.id, visitor_id=visitor_id)
    return link.user_id


async def record_signup_commission(
    db: AsyncSession,
    affiliate_id: uuid.UUID,
    referred_user_id: uuid.UUID,
    visitor_id: Optional[str] = None,
) -> Optional[Commission]:
    """
    Signup event + pending signup commission (amount 0), written together.
    Returns None when the user already has a signup commission.
    """
    existing = await db.execute(
        select(Commission.id).where(
            Commission.referred_user_id == referred_user_id,
            Commission.commission_type == "signup",
        ).limit(1)
    )
    if existing.scalar_one_or_none() is not None:
        logger.warning(
            "Duplicate signup commission suppressed",
            extra={"user_id": str(referred_user_id), "affiliate_id": str(affiliate_id)},
        )
        return None

    commission = Commission(
        affiliate_id=affiliate_id,
        referred_user_id=referred_user_id,
        amount=Decimal("0.00"),
        status="pending",
        commission_type="signup",
    )
    db.add(build_event(
        affiliate_id,
        SignupMetadata(user_id=str(referred_user_id)),
        visitor_id=visitor_id,
    ))
    db.add(commission)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(
            "Concurrent signup commission insert suppressed",
            extra={"user_id": str(referred_user_id), "affiliate_id": str(affiliate_id)},
        )
        return None

    await publish_change("affiliate_commissions", "insert", commission)
    return commission


# ---------------------------------------------------------------------------
# Booking commissions
# ---------------------------------------------------------------------------

async def _booking_commission_for(db: AsyncSession, request_id: str) -> Optional[Commission]:
    result = await db.execute(
        select(Commission).where(
            Commission.request_id == request_id,
            Commission.commission_type == "booking",
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def record_booking_commission(
    db: AsyncSession,
    booking_user_id: uuid.UUID,
    request_id: Any,
    booking_amount: Any,
    visitor_id: Optional[str] = None,
) -> Optional[Commission]:
    """
    Record the commission a referrer earns on a completed paid booking.

    The amount is booking_amount x rate(tier the referrer holds right now),
    rounded half-up to the minor unit, and is never recalculated.

    Returns:
        The booking commission for this request (existing one on a duplicate
        call), or None when the booking user was not referred.
    """
    request_id = str(request_id)
    amount = to_money(booking_amount)
    if amount <= 0:
        raise ValueError(f"Booking amount must be positive, got {booking_amount}")

    user = await db.get(User, booking_user_id)
    if user is None or user.referrer_id is None:
        return None
    referrer_id = user.referrer_id

    existing = await _booking_commission_for(db, request_id)
    if existing is not None:
        logger.warning(
            "Duplicate booking commission suppressed",
            extra={"request_id": request_id, "affiliate_id": str(referrer_id)},
        )
        return existing

    tier, earned = await live_tier(db, referrer_id)
    referrer = await db.get(User, referrer_id)
    if referrer is not None and referrer.affiliate_tier != tier:
        logger.info(
            "Cached tier %s is stale, paying live tier %s", referrer.affiliate_tier, tier,
            extra={"affiliate_id": str(referrer_id)},
        )
        referrer.affiliate_tier = tier
        referrer.affiliate_earnings = earned

    commission = Commission(
        affiliate_id=referrer_id,
        referred_user_id=booking_user_id,
        request_id=request_id,
        amount=calculate_commission(amount, tier),
        status="pending",
        commission_type="booking",
    )
    db.add(build_event(
        referrer_id,
        BookingMetadata(user_id=str(booking_user_id), request_id=request_id, amount=amount),
        visitor_id=visitor_id,
    ))
    db.add(commission)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.warning(
            "Concurrent booking commission insert suppressed",
            extra={"request_id": request_id, "affiliate_id": str(referrer_id)},
        )
        return await _booking_commission_for(db, request_id)

    logger.info(
        "Booking commission %s recorded at %s tier", commission.amount, tier,
        extra={"request_id": request_id, "affiliate_id": str(referrer_id)},
    )
    await publish_change("affiliate_commissions", "insert", commission)
    return commission


# ---------------------------------------------------------------------------
# Status lifecycle
# ---------------------------------------------------------------------------

async def transition_commission(
    db: AsyncSession,
    commission_id: uuid.UUID,
    new_status: str,
) -> Commission:
    """
    Move a commission along pending -> confirmed|cancelled, confirmed -> paid.

    Confirming or paying refreshes the affiliate's cached tier.
    """
    commission = await db.get(Commission, commission_id)
    if commission is None:
        raise AffiliateNotFound(f"Commission {commission_id} not found")

    allowed = COMMISSION_TRANSITIONS.get(commission.status, frozenset())
    if new_status not in allowed:
        raise InvalidStatusTransition("commission", commission.status, new_status)

    now = datetime.now(timezone.utc)
    commission.status = new_status
    commission.updated_at = now
    if new_status == "paid":
        commission.paid_at = now
    await db.commit()

    logger.info(
        "Commission %s -> %s", commission.id, new_status,
        extra={"affiliate_id": str(commission.affiliate_id)},
    )
    await publish_change("affiliate_commissions", "update", commission)

    if new_status in EARNED_STATUSES:
        await refresh_affiliate_tier(db, commission.affiliate_id)
    return commission


async def list_commissions(
    db: AsyncSession,
    affiliate_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    limit: int = 100,
) -> list[Commission]:
    """Newest first. No affiliate_id means all affiliates (admin view)."""
    query = select(Commission).order_by(Commission.created_at.desc()).limit(limit)
    if affiliate_id is not None:
        query = query.where(Commission.affiliate_id == affiliate_id)
    if status:
        query = query.where(Commission.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())
