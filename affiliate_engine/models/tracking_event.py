"""
Affiliate tracking event - append-only visit/signup/booking log, used for counts.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Text, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from affiliate_engine.database import Base

EVENT_TYPES = ("visit", "signup", "booking")


class TrackingEvent(Base):
    __tablename__ = "affiliate_tracking"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)  # visit, signup, booking
    visitor_id: Mapped[Optional[str]] = mapped_column(String(64))

    # Request context (visits only)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    referral_url: Mapped[Optional[str]] = mapped_column(Text)

    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSONB, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    __table_args__ = (
        Index("ix_affiliate_tracking_affiliate_event", "affiliate_id", "event_type"),
        Index("ix_affiliate_tracking_visitor", "affiliate_id", "visitor_id", "event_type"),
    )

    def __repr__(self) -> str:
        return f"<TrackingEvent {self.event_type} affiliate={self.affiliate_id}>"
