"""
User model - the slice of the marketplace user row the affiliate engine reads and writes.
Accounts are created by the auth service; referrer_id is written once by signup linking.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, Numeric, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_engine.database import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(
        String(20), default="fan", nullable=False
    )  # fan, creator, admin
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)

    # Set once, by signup linking. Never overwritten.
    referrer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )

    # Affiliate program
    is_affiliate: Mapped[bool] = mapped_column(Boolean, default=False)
    affiliate_code: Mapped[Optional[str]] = mapped_column(String(100))
    # Display cache only - money paths recompute the tier from earnings
    affiliate_tier: Mapped[str] = mapped_column(String(20), default="bronze")
    affiliate_earnings: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    affiliate_joined_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_users_referrer_id", "referrer_id"),
        Index("ix_users_is_affiliate", "is_affiliate"),
    )

    def __repr__(self) -> str:
        return f"<User {self.email} role={self.role}>"
