"""
Referral entry point - the `?ref=<code>` landing hit and signup attribution.

The visitor is identified by a long-lived cookie; its attribution state is
kept in a Redis-backed client store namespaced by that cookie.
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_engine.api.auth import get_current_user
from affiliate_engine.config import get_settings
from affiliate_engine.database import get_db
from affiliate_engine.models.user import User
from affiliate_engine.schemas.api_responses import VisitCaptureResponse, SignupLinkResponse
from affiliate_engine.services.attribution import AttributionTracker, RedisLocalStore
from affiliate_engine.services.commissions import link_signup
from affiliate_engine.services.tracking import record_visit
from affiliate_engine.utils.redis_client import get_redis

logger = logging.getLogger(__name__)
router = APIRouter(tags=["referrals"])


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else "unknown")


async def build_tracker(
    db: AsyncSession,
    client_key: str,
    ip_address: Optional[str] = None,
) -> AttributionTracker:
    """Tracker bound to one visitor's store, recording visits through the database."""
    settings = get_settings()
    redis = await get_redis()
    store = RedisLocalStore(
        redis,
        client_key,
        ttl_seconds=settings.visitor_cookie_max_age_days * 86400,
    )

    async def track_visit(code, visitor_id, user_agent=None, referral_url=None):
        return await record_visit(
            db,
            code=code,
            visitor_id=visitor_id,
            ip_address=ip_address,
            user_agent=user_agent,
            referral_url=referral_url,
        )

    return AttributionTracker(
        store,
        track_visit=track_visit,
        window_days=settings.attribution_window_days,
    )


@router.get("/api/v1/ref", response_model=VisitCaptureResponse)
async def capture_referral(
    request: Request,
    response: Response,
    ref: str = "",
    db: AsyncSession = Depends(get_db),
):
    """Capture a referral landing. Tracking failures never fail the request."""
    settings = get_settings()
    client_key = request.cookies.get(settings.visitor_cookie_name) or str(uuid.uuid4())

    try:
        tracker = await build_tracker(db, client_key, ip_address=client_ip(request))
        visitor_id = await tracker.ensure_visitor_id(preferred=client_key)
        tracked = await tracker.capture_visit(
            ref,
            user_agent=request.headers.get("user-agent"),
            referral_url=request.headers.get("referer"),
        )
    except Exception as e:
        logger.error("Attribution store unavailable: %s", str(e))
        raise HTTPException(status_code=503, detail="Attribution store unavailable")

    response.set_cookie(
        settings.visitor_cookie_name,
        client_key,
        max_age=settings.visitor_cookie_max_age_days * 86400,
        httponly=True,
        samesite="lax",
    )
    return VisitCaptureResponse(captured=bool(ref.strip()), tracked=tracked, visitor_id=visitor_id)


@router.post("/api/v1/affiliates/signup-link", response_model=SignupLinkResponse)
async def link_new_signup(
    request: Request,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Called once right after registration to credit the referring affiliate."""
    settings = get_settings()
    client_key = request.cookies.get(settings.visitor_cookie_name)
    if not client_key:
        return SignupLinkResponse(linked=False)

    tracker = await build_tracker(db, client_key)
    referrer_id = await link_signup(db, tracker, user.id)
    return SignupLinkResponse(
        linked=referrer_id is not None,
        referrer_id=str(referrer_id) if referrer_id else None,
    )
