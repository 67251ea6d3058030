"""
Identity dependencies for routes that act on the signed-in user
"""

from dataclasses import dataclass
from typing import Optional
from fastapi import HTTPException, Header, Cookie
import logging

from auth_utils import decode_jwt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: Optional[str] = None


async def get_current_identity(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Identity:
    """
    Dependency function to get the authenticated user from the identity
    provider's access token.

    Authentication priority:
    1. Check auth_token cookie first
    2. Fallback to Authorization header (Bearer token) for API consumers
    3. Raise 401 if neither is found
    """
    token = None
    if auth_token:
        token = auth_token
    elif authorization and authorization.startswith("Bearer "):
        token = authorization.replace("Bearer ", "").strip()

    if not token:
        raise HTTPException(status_code=401, detail="Missing authentication token")

    try:
        payload = decode_jwt(token)
    except ValueError as e:
        logger.error(f"Cannot verify access token: {e}")
        raise HTTPException(status_code=503, detail="Authentication is not configured")

    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    return Identity(user_id=str(user_id), email=payload.get("email"))
