"""
Request authentication. Tokens are issued by the marketplace auth service;
here we only verify the HS256 bearer JWT and load the user.
"""
import logging
import uuid

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from affiliate_engine.database import get_db
from affiliate_engine.models.user import User
from affiliate_engine.utils.logging import bind_request_user

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency to extract and verify the user from a JWT Bearer token."""
    import jwt as pyjwt
    from affiliate_engine.config import get_settings
    settings = get_settings()

    try:
        payload = pyjwt.decode(
            credentials.credentials,
            settings.jwt_secret or settings.app_secret_key,
            algorithms=["HS256"],
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("user_id") or payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    try:
        user_uuid = uuid.UUID(str(user_id))
    except (ValueError, AttributeError):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user = await db.get(User, user_uuid)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    bind_request_user(user.id)
    return user


async def get_current_admin(
    user: User = Depends(get_current_user),
) -> User:
    """Dependency that requires an admin user."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
