"""
Affiliate link - a user's referral code. One per user, code unique and immutable.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_engine.database import Base


class AffiliateLink(Base):
    __tablename__ = "affiliate_links"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    code: Mapped[str] = mapped_column(String(100), nullable=False)
    landing_page: Mapped[str] = mapped_column(String(255), default="/")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_affiliate_links_code", "code", unique=True),
        Index("ix_affiliate_links_user_id", "user_id", unique=True),
    )

    def __repr__(self) -> str:
        return f"<AffiliateLink {self.code} active={self.is_active}>"
