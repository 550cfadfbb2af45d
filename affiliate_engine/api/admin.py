"""
Admin affiliate management - status changes, tier settings, overview, and
the booking hook called after a payment is captured.
"""
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_engine.api.auth import get_current_admin
from affiliate_engine.database import get_db
from affiliate_engine.errors import AffiliateNotFound, InvalidStatusTransition
from affiliate_engine.models.user import User
from affiliate_engine.schemas.affiliates import TierThresholds
from affiliate_engine.schemas.api_responses import (
    BookingCommissionBody,
    CommissionSummary,
    PayoutSummary,
    StatusUpdateBody,
    TierSettingsBody,
)
from affiliate_engine.services import payouts as payout_service
from affiliate_engine.services import program
from affiliate_engine.services.commissions import (
    list_commissions,
    record_booking_commission,
    transition_commission,
)
from affiliate_engine.services.tier_config import get_tier_thresholds, save_tier_thresholds
from affiliate_engine.services.tiers import COMMISSION_RATES

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/admin/affiliates", tags=["admin"])


@router.get("/overview")
async def overview(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    return await program.admin_overview(db)


@router.get("/commissions", response_model=list[CommissionSummary])
async def all_commissions(
    status: str = "",
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    return await list_commissions(db, status=status or None, limit=500)


@router.get("/payouts", response_model=list[PayoutSummary])
async def all_payouts(
    status: str = "",
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    return await payout_service.list_payouts(db, status=status or None, limit=500)


@router.patch("/commissions/{commission_id}", response_model=CommissionSummary)
async def update_commission_status(
    commission_id: uuid.UUID,
    body: StatusUpdateBody,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    try:
        return await transition_commission(db, commission_id, body.status)
    except AffiliateNotFound:
        raise HTTPException(status_code=404, detail="Commission not found")
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.patch("/payouts/{payout_id}", response_model=PayoutSummary)
async def update_payout_status(
    payout_id: uuid.UUID,
    body: StatusUpdateBody,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    try:
        return await payout_service.transition_payout(db, payout_id, body.status, notes=body.notes)
    except AffiliateNotFound:
        raise HTTPException(status_code=404, detail="Payout not found")
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/tiers")
async def get_tiers(
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    thresholds = await get_tier_thresholds(db)
    return {
        "tiers": thresholds.as_dict(),
        "rates": {tier: rate * 100 for tier, rate in COMMISSION_RATES.items()},
    }


@router.put("/tiers")
async def put_tiers(
    body: TierSettingsBody,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    try:
        thresholds = TierThresholds(silver=body.silver, gold=body.gold, platinum=body.platinum)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Thresholds must satisfy 0 <= silver < gold < platinum")
    await save_tier_thresholds(db, thresholds, updated_by=admin.id)
    return {"tiers": thresholds.as_dict()}


@router.post("/bookings")
async def record_booking(
    body: BookingCommissionBody,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin),
):
    """Record the referrer commission for a captured booking payment. Safe to retry."""
    try:
        commission = await record_booking_commission(db, body.user_id, body.request_id, body.amount)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if commission is None:
        return {"recorded": False, "commission": None}
    return {
        "recorded": True,
        "commission": CommissionSummary.model_validate(commission).model_dump(mode="json"),
    }
