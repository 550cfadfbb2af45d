"""
Affiliate payouts - withdrawal requests against confirmed commission balance.

available = sum(confirmed commissions) - sum(payouts processing|completed)

A pending payout does not reserve funds by default. Concurrent requests for
one affiliate are serialized with a Redis lock plus a row lock on the user;
settings.payout_reserve_pending also counts pending payouts at request time.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_engine.config import get_settings
from affiliate_engine.errors import (
    AffiliateNotFound,
    InsufficientBalance,
    InvalidPayoutAmount,
    InvalidStatusTransition,
)
from affiliate_engine.models.commission import Commission
from affiliate_engine.models.payout import Payout, PAYOUT_TRANSITIONS, RESERVED_PAYOUT_STATUSES
from affiliate_engine.models.user import User
from affiliate_engine.schemas.affiliates import parse_payout_details
from affiliate_engine.services.event_bus import publish_change
from affiliate_engine.utils.locks import affiliate_lock
from affiliate_engine.utils.money import to_money, ZERO

logger = logging.getLogger(__name__)


async def _sum_payouts(db: AsyncSession, affiliate_id: uuid.UUID, statuses: tuple[str, ...]) -> Decimal:
    result = await db.execute(
        select(func.coalesce(func.sum(Payout.amount), 0)).where(
            Payout.affiliate_id == affiliate_id,
            Payout.status.in_(statuses),
        )
    )
    return to_money(result.scalar_one())


async def available_balance(
    db: AsyncSession,
    affiliate_id: uuid.UUID,
    include_pending: bool = False,
) -> Decimal:
    """Confirmed commissions minus reserved payouts, floored at zero."""
    confirmed = await db.execute(
        select(func.coalesce(func.sum(Commission.amount), 0)).where(
            Commission.affiliate_id == affiliate_id,
            Commission.status == "confirmed",
        )
    )
    reserved_statuses = RESERVED_PAYOUT_STATUSES + (("pending",) if include_pending else ())
    reserved = await _sum_payouts(db, affiliate_id, reserved_statuses)
    return max(ZERO, to_money(confirmed.scalar_one()) - reserved)


async def balance_summary(db: AsyncSession, affiliate_id: uuid.UUID) -> dict[str, Decimal]:
    return {
        "available": await available_balance(db, affiliate_id),
        "pending_payouts": await _sum_payouts(db, affiliate_id, ("pending",)),
        "paid_out": await _sum_payouts(db, affiliate_id, ("completed",)),
    }


async def request_payout(
    db: AsyncSession,
    affiliate_id: uuid.UUID,
    amount: Any,
    method: str,
    method_details: Optional[dict] = None,
) -> Payout:
    """
    Create a pending payout request.

    Raises:
        InvalidPayoutAmount: amount is not a positive number
        InsufficientBalance: amount exceeds the available balance
        InvalidPayoutDetails: method unknown or its details missing/malformed
        AffiliateNotFound: affiliate does not exist
        LockTimeoutError: another request for this affiliate is in flight
    """
    try:
        requested = to_money(amount)
    except ValueError:
        raise InvalidPayoutAmount(f"Invalid payout amount: {amount!r}")
    if requested <= 0:
        raise InvalidPayoutAmount("Payout amount must be greater than zero")

    settings = get_settings()

    async with affiliate_lock(
        str(affiliate_id), scope="payout",
        ttl=settings.payout_lock_ttl, wait=settings.payout_lock_wait,
    ):
        result = await db.execute(
            select(User).where(User.id == affiliate_id).with_for_update()
        )
        if result.scalar_one_or_none() is None:
            raise AffiliateNotFound(f"Affiliate {affiliate_id} not found")

        available = await available_balance(
            db, affiliate_id, include_pending=settings.payout_reserve_pending
        )
        if requested > available:
            logger.info(
                "Payout of %s rejected, available %s", requested, available,
                extra={"affiliate_id": str(affiliate_id), "error_code": "insufficient_balance"},
            )
            raise InsufficientBalance(requested, available)

        details = parse_payout_details(method, method_details)

        payout = Payout(
            affiliate_id=affiliate_id,
            amount=requested,
            payout_method=details.method,
            payout_details=details.model_dump(exclude={"method"}),
            status="pending",
        )
        db.add(payout)
        await db.commit()

    logger.info(
        "Payout of %s requested via %s", requested, details.method,
        extra={
            "affiliate_id": str(affiliate_id),
            "payout_method": details.method,
            "email": getattr(details, "email", None),
        },
    )
    await publish_change("affiliate_payouts", "insert", payout)
    return payout


async def transition_payout(
    db: AsyncSession,
    payout_id: uuid.UUID,
    new_status: str,
    notes: Optional[str] = None,
) -> Payout:
    """pending -> processing|completed|failed, processing -> completed|failed."""
    payout = await db.get(Payout, payout_id)
    if payout is None:
        raise AffiliateNotFound(f"Payout {payout_id} not found")

    allowed = PAYOUT_TRANSITIONS.get(payout.status, frozenset())
    if new_status not in allowed:
        raise InvalidStatusTransition("payout", payout.status, new_status)

    payout.status = new_status
    if new_status in ("completed", "failed"):
        payout.processed_at = datetime.now(timezone.utc)
    if notes:
        payout.notes = notes
    await db.commit()

    logger.info(
        "Payout %s -> %s", payout.id, new_status,
        extra={"affiliate_id": str(payout.affiliate_id)},
    )
    await publish_change("affiliate_payouts", "update", payout)
    return payout


async def list_payouts(
    db: AsyncSession,
    affiliate_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    limit: int = 100,
) -> list[Payout]:
    query = select(Payout).order_by(Payout.created_at.desc()).limit(limit)
    if affiliate_id is not None:
        query = query.where(Payout.affiliate_id == affiliate_id)
    if status:
        query = query.where(Payout.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())
