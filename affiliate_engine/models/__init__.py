"""
Database models - import all models here so Alembic can discover them.
"""
from affiliate_engine.models.user import User
from affiliate_engine.models.affiliate_link import AffiliateLink
from affiliate_engine.models.tracking_event import TrackingEvent
from affiliate_engine.models.commission import Commission
from affiliate_engine.models.payout import Payout
from affiliate_engine.models.platform_config import PlatformConfig

__all__ = [
    "User",
    "AffiliateLink",
    "TrackingEvent",
    "Commission",
    "Payout",
    "PlatformConfig",
]
