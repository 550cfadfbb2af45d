"""
Affiliate domain schemas - typed variants for the JSON blobs stored on
tracking events and payouts, and the tier threshold configuration.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator

from affiliate_engine.errors import InvalidPayoutDetails
from affiliate_engine.utils.email_validation import is_valid_email_format


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Tracking event metadata
# ---------------------------------------------------------------------------

class VisitMetadata(BaseModel):
    kind: Literal["visit"] = "visit"
    landing_page: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class SignupMetadata(BaseModel):
    kind: Literal["signup"] = "signup"
    user_id: str
    timestamp: datetime = Field(default_factory=_utcnow)


class BookingMetadata(BaseModel):
    kind: Literal["booking"] = "booking"
    user_id: str
    request_id: str
    amount: Decimal
    timestamp: datetime = Field(default_factory=_utcnow)


TrackingMetadata = Annotated[
    Union[VisitMetadata, SignupMetadata, BookingMetadata],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Payout method details
# ---------------------------------------------------------------------------

class PaypalDetails(BaseModel):
    method: Literal["paypal"] = "paypal"
    email: str

    @field_validator("email")
    @classmethod
    def _valid_email(cls, v: str) -> str:
        v = (v or "").strip()
        if not is_valid_email_format(v):
            raise ValueError("a valid PayPal email is required")
        return v


class BankTransferDetails(BaseModel):
    method: Literal["bank_transfer"] = "bank_transfer"
    bank_details: str

    @field_validator("bank_details")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("bank details are required")
        return v


class WalletCreditDetails(BaseModel):
    """Credit to the affiliate's own marketplace wallet - nothing to collect."""
    method: Literal["wallet_credit"] = "wallet_credit"


PayoutDetails = Annotated[
    Union[PaypalDetails, BankTransferDetails, WalletCreditDetails],
    Field(discriminator="method"),
]

_payout_details_adapter = TypeAdapter(PayoutDetails)


def parse_payout_details(
    method: str, details: Optional[dict]
) -> Union[PaypalDetails, BankTransferDetails, WalletCreditDetails]:
    """
    Validate method-specific payout details.

    Raises InvalidPayoutDetails for an unknown method or missing/malformed fields.
    """
    payload = dict(details or {})
    payload["method"] = method
    try:
        return _payout_details_adapter.validate_python(payload)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        raise InvalidPayoutDetails(first.get("msg", "invalid payout details")) from e


# ---------------------------------------------------------------------------
# Tier thresholds
# ---------------------------------------------------------------------------

class TierThresholds(BaseModel):
    """Minimum confirmed earnings for each tier. Must satisfy 0 <= silver < gold < platinum."""
    bronze: Decimal = Decimal("0")
    silver: Decimal
    gold: Decimal
    platinum: Decimal

    @model_validator(mode="after")
    def _monotonic(self) -> "TierThresholds":
        if self.bronze != 0:
            raise ValueError("bronze threshold must be 0")
        if not (Decimal("0") <= self.silver < self.gold < self.platinum):
            raise ValueError("thresholds must satisfy 0 <= silver < gold < platinum")
        return self

    def as_dict(self) -> dict[str, Decimal]:
        return {
            "bronze": self.bronze,
            "silver": self.silver,
            "gold": self.gold,
            "platinum": self.platinum,
        }
