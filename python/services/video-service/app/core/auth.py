"""
Authentication dependencies for the Video Upload Service.

Login itself happens upstream. Requests carry a bearer token issued to the
login gateway or the frontend, plus identity headers set by the gateway.
"""

import hmac
from enum import Enum
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from app.core.config import settings
from app.core.manager.quota_tracker import quota_tracker
from app.models.user import User

BEARER_PREFIX = "Bearer "


class Caller(str, Enum):
    """Who presented the bearer token."""
    GATEWAY = "gateway"
    FRONTEND = "frontend"


def _challenge(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _match_caller(token: str) -> Optional[Caller]:
    known = (
        (settings.INTERNAL_SECRET_KEY, Caller.GATEWAY),
        (settings.FRONTEND_API_KEY, Caller.FRONTEND),
    )
    for secret, caller in known:
        if secret and hmac.compare_digest(token.encode(), secret.encode()):
            return caller
    return None


async def verify_bearer_token(authorization: Optional[str] = Header(None)) -> Caller:
    """
    Check the bearer token against the gateway and frontend keys.

    Raises:
        HTTPException: 401 when the header is absent or malformed, 403 when
            the token matches neither key
    """
    if not authorization:
        raise _challenge("Authorization header missing")
    if not authorization.startswith(BEARER_PREFIX):
        raise _challenge("Expected 'Authorization: Bearer <token>'")

    caller = _match_caller(authorization[len(BEARER_PREFIX):])
    if caller is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown API token")
    return caller


async def get_current_user(
    caller: Caller = Depends(verify_bearer_token),
    x_user_id: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_user_avatar: Optional[str] = Header(None),
) -> User:
    """
    Resolve the uploader from gateway identity headers.

    The first request seen for a user registers their quota record.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise _challenge("Authentication required")

    user = User(
        id=user_id,
        username=x_user_name or "Unknown User",
        avatar=x_user_avatar or ""
    )
    quota_tracker.register_user(user.id)
    return user
