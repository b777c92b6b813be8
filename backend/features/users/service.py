"""
User domain service.
- get_or_create_user(user_id)
- get_user / require_user
- list_users, update_user, toggle_user_status (admin)
- get_user_stats
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func, insert, or_, select, update

from backend.core.clock import resolve_now
from backend.core.database import (
    get_db_session,
    row_to_dict,
    subscriptions,
    usage_records,
    users as app_users,
)
from backend.core.errors import NotFoundError, ValidationError
from backend.features.audit.service import log_action
from backend.features.usage.aggregator import round2
from backend.models.audit import AuditCategory, AuditResource, AuditSeverity
from backend.models.user import User, UserRole

UPDATABLE_FIELDS = {"username", "email", "first_name", "last_name", "role", "is_active"}


def _to_model(row) -> User:
    return User(**row_to_dict(row))


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
    return _to_model(row) if row else None


def require_user(user_id: str) -> User:
    user = get_user(user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def get_or_create_user(
    user_id: str,
    *,
    role: Optional[str] = None,
    email: Optional[str] = None,
    username: Optional[str] = None,
    now: Optional[datetime] = None,
) -> User:
    """Upsert on first sight. Existing users are returned unchanged."""
    existing = get_user(user_id)
    if existing:
        return existing

    now = resolve_now(now)
    values = {
        "user_id": user_id,
        "username": username or user_id,
        "email": email,
        "role": UserRole(role or UserRole.USER).value,
        "is_active": True,
        "created_at": now,
    }
    with get_db_session() as session:
        session.execute(insert(app_users).values(**values))
    return User(**values)


def list_users(
    *,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[User], int]:
    page = max(1, page)
    limit = max(1, min(limit, 100))

    def _filtered(query):
        if role:
            query = query.where(app_users.c.role == role)
        if is_active is not None:
            query = query.where(app_users.c.is_active == is_active)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(
                app_users.c.username.ilike(pattern),
                app_users.c.email.ilike(pattern),
                app_users.c.first_name.ilike(pattern),
                app_users.c.last_name.ilike(pattern),
            ))
        return query

    with get_db_session() as session:
        total = session.execute(_filtered(select(func.count()).select_from(app_users))).scalar_one()
        rows = session.execute(
            _filtered(select(app_users))
            .order_by(app_users.c.created_at.desc(), app_users.c.user_id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).fetchall()
    return [_to_model(r) for r in rows], total


def load_all_users() -> List[User]:
    """Every user in registration order (analytics input)."""
    with get_db_session() as session:
        rows = session.execute(select(app_users).order_by(app_users.c.created_at.asc(), app_users.c.user_id)).fetchall()
    return [_to_model(r) for r in rows]


def update_user(
    user_id: str,
    updates: Dict[str, Any],
    *,
    actor_id: Optional[str] = None,
    action: str = "admin_update_user",
) -> User:
    """Update profile fields (and role, for admins)."""
    before = require_user(user_id)
    changes = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS and v is not None}
    if "role" in changes:
        try:
            changes["role"] = UserRole(changes["role"]).value
        except ValueError:
            raise ValidationError("role must be 'user' or 'admin'")
    if not changes:
        return before

    with get_db_session() as session:
        session.execute(update(app_users).where(app_users.c.user_id == user_id).values(**changes))

    log_action(
        user_id=actor_id,
        action=action,
        resource=AuditResource.USER.value,
        resource_id=user_id,
        old_values={k: getattr(before, k) for k in changes},
        new_values=changes,
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.DATA_MODIFICATION,
    )
    return require_user(user_id)


def toggle_user_status(user_id: str, *, actor_id: Optional[str] = None) -> User:
    user = require_user(user_id)
    with get_db_session() as session:
        session.execute(
            update(app_users).where(app_users.c.user_id == user_id).values(is_active=not user.is_active)
        )
    log_action(
        user_id=actor_id,
        action="admin_toggle_user_status",
        resource=AuditResource.USER.value,
        resource_id=user_id,
        old_values={"is_active": user.is_active},
        new_values={"is_active": not user.is_active},
        severity=AuditSeverity.HIGH,
        category=AuditCategory.SECURITY,
    )
    return require_user(user_id)


def get_user_stats(user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Subscription and usage totals for one user."""
    user = require_user(user_id)
    now = resolve_now(now)
    with get_db_session() as session:
        sub_rows = session.execute(
            select(subscriptions.c.status, subscriptions.c.total_paid)
            .where(subscriptions.c.user_id == user_id)
        ).fetchall()
        usage = session.execute(
            select(
                func.count(usage_records.c.record_id),
                func.coalesce(func.sum(usage_records.c.data_used), 0.0),
                func.coalesce(func.avg(usage_records.c.average_speed), 0.0),
            ).where(usage_records.c.user_id == user_id)
        ).one()

    return {
        "user_id": user_id,
        "account_age_days": max(0, (now - user.created_at).days),
        "total_subscriptions": len(sub_rows),
        "active_subscriptions": sum(1 for r in sub_rows if r.status == "active"),
        "total_spent": round2(sum(r.total_paid or 0.0 for r in sub_rows)),
        "usage_records": usage[0],
        "total_data_used": round2(float(usage[1])),
        "average_speed": round2(float(usage[2])),
    }
