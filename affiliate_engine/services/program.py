"""
Affiliate program enrollment and dashboard aggregates.
"""
import logging
import re
import secrets
import string
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_engine.config import get_settings
from affiliate_engine.errors import AffiliateNotFound, AlreadyAffiliate
from affiliate_engine.models.affiliate_link import AffiliateLink
from affiliate_engine.models.commission import Commission
from affiliate_engine.models.payout import Payout
from affiliate_engine.models.user import User
from affiliate_engine.services.commissions import get_earnings
from affiliate_engine.services.event_bus import publish_change
from affiliate_engine.services.tier_config import get_tier_thresholds
from affiliate_engine.services.tiers import tier_progress
from affiliate_engine.services.tracking import count_events
from affiliate_engine.utils.email_validation import email_local_part
from affiliate_engine.utils.money import to_money

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_lowercase + string.digits
CODE_SUFFIX_LENGTH = 4
MAX_CODE_ATTEMPTS = 5


def generate_affiliate_code(email: str) -> str:
    """<email local part>-<4 random base36 chars>, e.g. alice-9f2a."""
    base = re.sub(r"[^a-z0-9._-]", "", email_local_part(email))[:40] or "affiliate"
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))
    return f"{base}-{suffix}"


def referral_link(code: str, landing_page: str = "/") -> str:
    base_url = get_settings().app_base_url.rstrip("/")
    path = landing_page if landing_page.startswith("/") else f"/{landing_page}"
    return f"{base_url}{path}?ref={code}"


async def _code_taken(db: AsyncSession, code: str) -> bool:
    result = await db.execute(select(AffiliateLink.id).where(AffiliateLink.code == code).limit(1))
    return result.scalar_one_or_none() is not None


async def join_program(db: AsyncSession, user_id: uuid.UUID) -> AffiliateLink:
    """
    Enroll a user as an affiliate: issue a unique code and create their link.

    Raises:
        AffiliateNotFound: user does not exist
        AlreadyAffiliate: user already has a link
    """
    user = await db.get(User, user_id)
    if user is None:
        raise AffiliateNotFound(f"User {user_id} not found")

    existing = await db.execute(select(AffiliateLink).where(AffiliateLink.user_id == user_id))
    if user.is_affiliate or existing.scalar_one_or_none() is not None:
        raise AlreadyAffiliate(f"User {user_id} is already an affiliate")

    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_affiliate_code(user.email)
        if await _code_taken(db, code):
            continue

        link = AffiliateLink(user_id=user.id, code=code, landing_page="/", is_active=True)
        user.is_affiliate = True
        user.affiliate_code = code
        user.affiliate_tier = "bronze"
        user.affiliate_joined_at = datetime.now(timezone.utc)
        db.add(link)
        try:
            await db.commit()
        except IntegrityError:
            # Lost a race on the code (or the user joined concurrently)
            await db.rollback()
            await db.refresh(user)
            if user.is_affiliate:
                raise AlreadyAffiliate(f"User {user_id} is already an affiliate")
            continue

        logger.info("Affiliate joined program", extra={"user_id": str(user.id), "code": code})
        await publish_change("users", "update", user)
        return link

    raise RuntimeError(f"Could not generate a unique affiliate code after {MAX_CODE_ATTEMPTS} attempts")


async def get_link_for_user(db: AsyncSession, user_id: uuid.UUID) -> Optional[AffiliateLink]:
    result = await db.execute(select(AffiliateLink).where(AffiliateLink.user_id == user_id))
    return result.scalar_one_or_none()


async def get_affiliate_stats(db: AsyncSession, user_id: uuid.UUID) -> dict[str, Any]:
    """Everything the affiliate dashboard header shows. Tier is computed live."""
    link = await get_link_for_user(db, user_id)
    if link is None:
        raise AffiliateNotFound(f"User {user_id} is not an affiliate")

    counts = await count_events(db, user_id)
    earnings = await get_earnings(db, user_id)
    thresholds = await get_tier_thresholds(db)
    progress = tier_progress(earnings["confirmed"], thresholds)

    return {
        "code": link.code,
        "referral_link": referral_link(link.code, link.landing_page),
        "is_active": link.is_active,
        "visits": counts["visit"],
        "signups": counts["signup"],
        "conversions": counts["booking"],
        "earnings": earnings["confirmed"],
        "pending_earnings": earnings["pending"],
        "tier": progress["tier"],
        "commission_rate": progress["rate"],
        "next_tier": progress["next_tier"],
        "next_tier_rate": progress["next_rate"],
        "remaining_to_next_tier": progress["remaining"],
        "progress_percent": progress["percent"],
        "thresholds": thresholds.as_dict(),
    }


async def admin_overview(db: AsyncSession) -> dict[str, Any]:
    """Program-wide totals for the admin dashboard."""
    total_affiliates = (await db.execute(select(func.count(AffiliateLink.id)))).scalar_one()
    active_affiliates = (await db.execute(
        select(func.count(User.id)).where(User.is_affiliate == True)  # noqa: E712
    )).scalar_one()

    commission_rows = await db.execute(
        select(Commission.status, func.coalesce(func.sum(Commission.amount), 0))
        .group_by(Commission.status)
    )
    commission_totals = {status: to_money(total) for status, total in commission_rows.all()}

    payout_rows = await db.execute(
        select(Payout.status, func.coalesce(func.sum(Payout.amount), 0))
        .group_by(Payout.status)
    )
    payout_totals = {status: to_money(total) for status, total in payout_rows.all()}

    return {
        "total_affiliates": int(total_affiliates),
        "active_affiliates": int(active_affiliates),
        "total_commissions": commission_totals.get("confirmed", to_money(0)),
        "pending_commissions": commission_totals.get("pending", to_money(0)),
        "total_payouts": payout_totals.get("completed", to_money(0)),
        "pending_payouts": payout_totals.get("pending", to_money(0)),
    }
