"""
Affiliate commission - money owed to an affiliate for one referred event.

Lifecycle: pending -> confirmed | cancelled, confirmed -> paid.
Dedup keys live in the database: one signup commission per referred user,
one booking commission per request.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, Numeric, ForeignKey, Index, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_engine.database import Base

COMMISSION_STATUSES = ("pending", "confirmed", "cancelled", "paid")
COMMISSION_TYPES = ("signup", "booking", "recurring")

# Allowed status moves; anything else is rejected
COMMISSION_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"paid"}),
    "cancelled": frozenset(),
    "paid": frozenset(),
}

_SIGNUP_ONLY = text("commission_type = 'signup'")
_BOOKING_ONLY = text("commission_type = 'booking'")


class Commission(Base):
    __tablename__ = "affiliate_commissions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    referred_user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    request_id: Mapped[Optional[str]] = mapped_column(String(64))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    status: Mapped[str] = mapped_column(
        String(20), default="pending", nullable=False
    )  # pending, confirmed, cancelled, paid
    commission_type: Mapped[str] = mapped_column(
        String(20), nullable=False
    )  # signup, booking, recurring

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_affiliate_commissions_affiliate_status", "affiliate_id", "status"),
        Index(
            "uq_affiliate_commissions_signup_user", "referred_user_id",
            unique=True, postgresql_where=_SIGNUP_ONLY, sqlite_where=_SIGNUP_ONLY,
        ),
        Index(
            "uq_affiliate_commissions_booking_request", "request_id",
            unique=True, postgresql_where=_BOOKING_ONLY, sqlite_where=_BOOKING_ONLY,
        ),
    )

    def __repr__(self) -> str:
        return f"<Commission {self.commission_type} {self.amount} status={self.status}>"
