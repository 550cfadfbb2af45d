"""
Affiliate payout - a withdrawal request against confirmed commission balance.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Text, DateTime, Numeric, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_engine.database import Base

PAYOUT_STATUSES = ("pending", "processing", "completed", "failed")
PAYOUT_METHODS = ("paypal", "bank_transfer", "wallet_credit")

# Payouts in these states are deducted from the available balance
RESERVED_PAYOUT_STATUSES = ("processing", "completed")

PAYOUT_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing", "completed", "failed"}),
    "processing": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}


class Payout(Base):
    __tablename__ = "affiliate_payouts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payout_method: Mapped[str] = mapped_column(String(20), nullable=False)
    payout_details: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String(20), default="pending", nullable=False
    )  # pending, processing, completed, failed
    notes: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_affiliate_payouts_affiliate_status", "affiliate_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Payout {self.amount} via {self.payout_method} status={self.status}>"
