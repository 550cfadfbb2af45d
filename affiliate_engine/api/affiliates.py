"""
Affiliate dashboard API - enrollment, stats, commissions, payouts.
All endpoints act on the authenticated user's own affiliate account.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_engine.api.auth import get_current_user
from affiliate_engine.config import get_settings
from affiliate_engine.database import get_db
from affiliate_engine.errors import (
    AffiliateNotFound,
    AlreadyAffiliate,
    InsufficientBalance,
    InvalidPayoutAmount,
    InvalidPayoutDetails,
)
from affiliate_engine.models.user import User
from affiliate_engine.schemas.api_responses import (
    BalanceResponse,
    CommissionSummary,
    JoinResponse,
    PayoutRequestBody,
    PayoutSummary,
)
from affiliate_engine.services import payouts as payout_service
from affiliate_engine.services import program
from affiliate_engine.services.commissions import list_commissions
from affiliate_engine.utils.locks import LockTimeoutError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/affiliates", tags=["affiliates"])


def _require_affiliate(user: User) -> None:
    if not user.is_affiliate:
        raise HTTPException(status_code=403, detail="Join the affiliate program first")


@router.post("/join", response_model=JoinResponse)
async def join(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    try:
        link = await program.join_program(db, user.id)
    except AlreadyAffiliate:
        raise HTTPException(status_code=409, detail="Already an affiliate")
    return JoinResponse(code=link.code, referral_link=program.referral_link(link.code, link.landing_page))


@router.get("/me")
async def my_stats(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Visits, signups, conversions, earnings and live tier progress."""
    try:
        return await program.get_affiliate_stats(db, user.id)
    except AffiliateNotFound:
        raise HTTPException(status_code=404, detail="Not an affiliate")


@router.get("/commissions", response_model=list[CommissionSummary])
async def my_commissions(
    status: str = "",
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _require_affiliate(user)
    return await list_commissions(db, affiliate_id=user.id, status=status or None)


@router.get("/payouts", response_model=list[PayoutSummary])
async def my_payouts(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _require_affiliate(user)
    return await payout_service.list_payouts(db, affiliate_id=user.id)


@router.get("/balance", response_model=BalanceResponse)
async def my_balance(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    _require_affiliate(user)
    summary = await payout_service.balance_summary(db, user.id)
    return BalanceResponse(currency=get_settings().currency, **summary)


@router.post("/payouts", response_model=PayoutSummary)
async def create_payout(
    body: PayoutRequestBody,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Request a withdrawal of confirmed earnings."""
    _require_affiliate(user)
    try:
        return await payout_service.request_payout(
            db, user.id, body.amount, body.method, body.details
        )
    except InsufficientBalance as e:
        raise HTTPException(
            status_code=400,
            detail={"error": e.error_code, "available": str(e.available)},
        )
    except (InvalidPayoutDetails, InvalidPayoutAmount) as e:
        raise HTTPException(status_code=400, detail={"error": e.error_code, "message": str(e)})
    except LockTimeoutError:
        raise HTTPException(status_code=409, detail="Another payout request is in progress")
