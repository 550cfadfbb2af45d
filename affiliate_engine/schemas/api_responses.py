"""
Request and response schemas for the affiliate and admin endpoints.
"""
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class VisitCaptureResponse(BaseModel):
    captured: bool
    tracked: bool
    visitor_id: str


class SignupLinkResponse(BaseModel):
    linked: bool
    referrer_id: Optional[str] = None


class JoinResponse(BaseModel):
    code: str
    referral_link: str


class CommissionSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    affiliate_id: uuid.UUID
    referred_user_id: uuid.UUID
    request_id: Optional[str] = None
    amount: Decimal
    status: str
    commission_type: str
    created_at: datetime
    paid_at: Optional[datetime] = None


class PayoutSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    affiliate_id: uuid.UUID
    amount: Decimal
    payout_method: str
    payout_details: dict = Field(default_factory=dict)
    status: str
    created_at: datetime
    processed_at: Optional[datetime] = None


class BalanceResponse(BaseModel):
    available: Decimal
    pending_payouts: Decimal
    paid_out: Decimal
    currency: str


class PayoutRequestBody(BaseModel):
    amount: Decimal
    method: str
    details: dict = Field(default_factory=dict)


class BookingCommissionBody(BaseModel):
    user_id: uuid.UUID
    request_id: str = Field(min_length=1)
    amount: Decimal


class StatusUpdateBody(BaseModel):
    status: str
    notes: Optional[str] = None


class TierSettingsBody(BaseModel):
    silver: Decimal
    gold: Decimal
    platinum: Decimal
