"""
Auth utilities for the SubTrack API.

Validates HS256 bearer tokens and extracts user_id from request context.
Falls back to X-User-Id header (service calls, tests).
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import jwt
import logging
from fastapi import Header, Request

from backend.core.clock import resolve_now
from backend.core.config import settings
from backend.core.errors import AuthenticationError
from backend.models.user import User

logger = logging.getLogger("subtrack")

DEFAULT_TOKEN_TTL = timedelta(hours=24)


def create_access_token(
    user_id: str,
    *,
    role: str = "user",
    email: Optional[str] = None,
    ttl: timedelta = DEFAULT_TOKEN_TTL,
    now: Optional[datetime] = None,
) -> str:
    """Issue a signed token. Used by tooling and tests; login flows live elsewhere."""
    if not settings.JWT_SECRET:
        raise RuntimeError("JWT_SECRET is not configured")
    issued = resolve_now(now)
    claims = {"sub": user_id, "role": role, "iat": issued, "exp": issued + ttl}
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Verify signature and expiry, returning the claims.

    Raises:
        AuthenticationError: expired, malformed or missing 'sub'
    """
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise AuthenticationError("Invalid token")

    if not claims.get("sub"):
        raise AuthenticationError("Invalid token")
    return claims


def get_bearer_claims(request: Request) -> Optional[Dict[str, Any]]:
    """Claims of a valid bearer token, None when no token is sent or no secret is configured."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    if not token or not settings.JWT_SECRET:
        return None
    return decode_access_token(token)


def _upsert(user_id: str, role: Optional[str] = None, email: Optional[str] = None) -> Optional[User]:
    from backend.features.users.service import get_or_create_user

    try:
        return get_or_create_user(user_id, role=role, email=email)
    except Exception as e:
        # Don't block auth if upsert fails
        logger.warning(f"Failed to upsert user {user_id}: {e}")
        return None


def _authenticate(request: Request, user_id: str, role: Optional[str] = None, email: Optional[str] = None) -> str:
    user = _upsert(user_id, role=role, email=email)
    if user is not None and not user.is_active:
        raise AuthenticationError("User account is deactivated")
    request.state.user_id = user_id
    return user_id


async def get_current_user_id(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Service/test user ID"),
) -> str:
    """
    Extract current user ID from request context.

    Priority:
    1. Bearer token from Authorization header (an invalid token is a 401)
    2. X-User-Id header
    3. 401 Unauthorized

    Users are upserted on first sight; deactivated accounts are a 401.
    """
    claims = get_bearer_claims(request)
    if claims:
        return _authenticate(request, claims["sub"], role=claims.get("role"), email=claims.get("email"))

    if x_user_id:
        return _authenticate(request, x_user_id)

    raise AuthenticationError("Missing Authorization (Bearer token) or X-User-Id header")
