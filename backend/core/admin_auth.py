"""
Admin authentication.

Supports hybrid authentication:
- User role (preferred): bearer token with role=admin, or X-User-Id of a stored admin
- Legacy X-Admin-Key: shared secret (deprecated, feature-flagged)

Auth modes (ADMIN_AUTH_MODE):
- "user": only admin users allowed (production default)
- "legacy": only X-Admin-Key allowed (testing/migration)
- "hybrid": both allowed (default for rollout)

In prod (ENVIRONMENT=prod), legacy keys are blocked unless the mode is "legacy".
All admin actions are audited with the actor identity.
"""
import hashlib
from dataclasses import dataclass
from typing import Literal, Optional

from fastapi import Request

from backend.core.auth import get_bearer_claims
from backend.core.config import settings
from backend.core.errors import AuthenticationError, PermissionError


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_type: Literal["user", "legacy_key"]
    actor_id: str  # user ID or "legacy:<hash>"
    actor_email: Optional[str] = None
    actor_display: Optional[str] = None
    auth_mechanism: Literal["jwt", "x_user_id", "x_admin_key"] = "jwt"


def verify_legacy_key(request: Request) -> Optional[AdminActor]:
    """AdminActor for a matching X-Admin-Key, None if not present/invalid."""
    expected_key = settings.ADMIN_KEY
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or header_key != expected_key:
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(
        actor_type="legacy_key",
        actor_id=f"legacy:{key_hash}",
        actor_display="Legacy Admin Key",
        auth_mechanism="x_admin_key",
    )


def verify_admin_user(request: Request) -> Optional[AdminActor]:
    """AdminActor for an admin-role user, None otherwise. Invalid tokens still raise 401."""
    from backend.features.users.service import get_user

    claims = get_bearer_claims(request)
    if claims:
        stored = get_user(claims["sub"])
        role = stored.role.value if stored else claims.get("role")
        if role != "admin" or (stored and not stored.is_active):
            return None
        return AdminActor(
            actor_type="user",
            actor_id=claims["sub"],
            actor_email=claims.get("email"),
            actor_display=claims.get("name") or claims.get("email"),
            auth_mechanism="jwt",
        )

    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        return None
    user = get_user(user_id)
    if not user or not user.is_admin or not user.is_active:
        return None
    return AdminActor(
        actor_type="user",
        actor_id=user.user_id,
        actor_email=user.email,
        actor_display=user.full_name,
        auth_mechanism="x_user_id",
    )


def get_admin_actor(request: Request) -> Optional[AdminActor]:
    """
    Attempt to authenticate admin from request. Returns AdminActor or None.

    Order of preference:
    1. Admin user (if ADMIN_AUTH_MODE in {"user", "hybrid"})
    2. Legacy key (if ADMIN_AUTH_MODE in {"legacy", "hybrid"} AND env allows)
    """
    mode = settings.ADMIN_AUTH_MODE.lower()
    env = settings.ENVIRONMENT.lower()

    if mode in {"user", "hybrid"}:
        actor = verify_admin_user(request)
        if actor:
            return actor

    if mode in {"legacy", "hybrid"}:
        if env == "prod" and mode != "legacy":
            return None
        return verify_legacy_key(request)

    return None


def _has_identity(request: Request) -> bool:
    return bool(
        request.headers.get("Authorization", "").startswith("Bearer ")
        or request.headers.get("X-User-Id")
    )


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: require admin authentication.

    Usage:
        @router.get("/api/admin/users")
        def list_users(actor: AdminActor = Depends(require_admin)):
            ...

    Raises:
        PermissionError: authenticated caller without the admin role (403)
        AuthenticationError: no usable credentials (401)
    """
    actor = get_admin_actor(request)
    if actor:
        request.state.user_id = actor.actor_id
        return actor

    if _has_identity(request):
        raise PermissionError("Admin access required")
    mode = settings.ADMIN_AUTH_MODE.lower()
    raise AuthenticationError(f"Invalid or missing admin credentials (mode: {mode})")
