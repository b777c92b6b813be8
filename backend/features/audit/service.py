import logging
from datetime import datetime, timedelta
from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, insert, select

from backend.core.clock import resolve_now
from backend.core.config import settings
from backend.core.database import audit_logs, get_db_session, row_to_dict
from backend.core.errors import NotFoundError
from backend.core.logging import get_request_id
from backend.models.audit import AuditCategory, AuditLog, AuditSeverity

logger = logging.getLogger(__name__)

AUDIT_BUFFER_SIZE = 1000

# Fallback buffer when the audit write fails; oldest entries drop first
_memory_events: Deque[Dict[str, Any]] = deque(maxlen=AUDIT_BUFFER_SIZE)

SECURITY_SEVERITIES = (AuditSeverity.MEDIUM, AuditSeverity.HIGH, AuditSeverity.CRITICAL)


def _safe_truncate(value: Any, limit: int = 500):
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) <= limit:
        return text
    return text[:limit] + "...<truncated>"


def _safe_values(values: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not values:
        return None
    safe = {}
    for k, v in values.items():
        if isinstance(v, (int, float, bool)) or v is None:
            safe[k] = v
        else:
            safe[k] = _safe_truncate(v)
    return safe


def log_action(
    *,
    action: str,
    resource: str,
    user_id: Optional[str] = None,
    resource_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    severity: AuditSeverity = AuditSeverity.LOW,
    category: AuditCategory = AuditCategory.DATA_ACCESS,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    request_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> None:
    """Record an audit entry.

    Never raises: a failed write is logged and buffered so the
    operation being audited still succeeds.
    """
    if not settings.AUDIT_ENABLED:
        return

    record = {
        "timestamp": resolve_now(now),
        "request_id": request_id or get_request_id(),
        "user_id": user_id,
        "action": action,
        "resource": resource,
        "resource_id": resource_id,
        "details": _safe_values(details),
        "old_values": _safe_values(old_values),
        "new_values": _safe_values(new_values),
        "severity": AuditSeverity(severity).value,
        "category": AuditCategory(category).value,
        "ip_address": ip_address,
        "user_agent": _safe_truncate(user_agent) if user_agent else None,
    }

    try:
        with get_db_session() as session:
            session.execute(insert(audit_logs).values(**record))
    except Exception as exc:
        logger.warning(f"Audit log write failed: {exc}")
        _memory_events.append(record)


def get_buffered_audit_events():
    return list(_memory_events)


def clear_buffered_audit_events() -> None:
    _memory_events.clear()


def _to_model(row) -> AuditLog:
    return AuditLog(**row_to_dict(row))


def _apply_filters(
    query,
    *,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource: Optional[str] = None,
    resource_id: Optional[str] = None,
    category: Optional[str] = None,
    severities: Optional[Iterable[str]] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
):
    if user_id:
        query = query.where(audit_logs.c.user_id == user_id)
    if action:
        query = query.where(audit_logs.c.action.ilike(f"%{action}%"))
    if resource:
        query = query.where(audit_logs.c.resource == resource)
    if resource_id:
        query = query.where(audit_logs.c.resource_id == resource_id)
    if category:
        query = query.where(audit_logs.c.category == category)
    if severities:
        query = query.where(audit_logs.c.severity.in_([getattr(s, "value", s) for s in severities]))
    if start:
        query = query.where(audit_logs.c.timestamp >= start)
    if end:
        query = query.where(audit_logs.c.timestamp <= end)
    return query


def list_audit_logs(
    *,
    page: int = 1,
    limit: int = 50,
    **filters,
) -> Tuple[List[AuditLog], int]:
    """Newest first. Returns (page of logs, total matching)."""
    page = max(1, page)
    limit = max(1, min(limit, 500))
    with get_db_session() as session:
        total = session.execute(
            _apply_filters(select(func.count()).select_from(audit_logs), **filters)
        ).scalar_one()
        rows = session.execute(
            _apply_filters(select(audit_logs), **filters)
            .order_by(audit_logs.c.timestamp.desc(), audit_logs.c.log_id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).fetchall()
    return [_to_model(r) for r in rows], total


def get_audit_log(log_id: int) -> AuditLog:
    with get_db_session() as session:
        row = session.execute(select(audit_logs).where(audit_logs.c.log_id == log_id)).first()
    if not row:
        raise NotFoundError("Audit log not found")
    return _to_model(row)


def get_user_audit_logs(user_id: str, page: int = 1, limit: int = 50) -> Tuple[List[AuditLog], int]:
    return list_audit_logs(user_id=user_id, page=page, limit=limit)


def get_resource_audit_logs(
    resource: str,
    resource_id: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> Tuple[List[AuditLog], int]:
    return list_audit_logs(resource=resource, resource_id=resource_id, page=page, limit=limit)


def get_security_logs(
    *,
    severities: Optional[Iterable[str]] = None,
    page: int = 1,
    limit: int = 50,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Tuple[List[AuditLog], int]:
    return list_audit_logs(
        category=AuditCategory.SECURITY.value,
        severities=severities or SECURITY_SEVERITIES,
        start=start,
        end=end,
        page=page,
        limit=limit,
    )


def _ranked(counter: Dict[Optional[str], int], limit: Optional[int] = None) -> List[Dict[str, Any]]:
    ranked = sorted(counter.items(), key=lambda kv: kv[1], reverse=True)
    if limit is not None:
        ranked = ranked[:limit]
    return [{"key": k, "count": c} for k, c in ranked]


def get_audit_stats(days: int = 30, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Counts over the trailing `days`: by action (top 10), category, severity, day and user (top 10)."""
    end = resolve_now(now)
    start = end - timedelta(days=days)
    with get_db_session() as session:
        rows = session.execute(
            select(audit_logs)
            .where(audit_logs.c.timestamp >= start, audit_logs.c.timestamp <= end)
            .order_by(audit_logs.c.timestamp.asc(), audit_logs.c.log_id.asc())
        ).fetchall()
    logs = [_to_model(r) for r in rows]

    by_action: Dict[str, int] = {}
    by_category: Dict[str, int] = {}
    by_severity: Dict[str, int] = {}
    by_day: Dict[str, int] = {}
    by_user: Dict[Optional[str], int] = {}
    for log in logs:
        by_action[log.action] = by_action.get(log.action, 0) + 1
        by_category[log.category.value] = by_category.get(log.category.value, 0) + 1
        by_severity[log.severity.value] = by_severity.get(log.severity.value, 0) + 1
        day = log.timestamp.strftime("%Y-%m-%d")
        by_day[day] = by_day.get(day, 0) + 1
        if log.user_id:
            by_user[log.user_id] = by_user.get(log.user_id, 0) + 1

    return {
        "period_days": days,
        "total_logs": len(logs),
        "by_action": _ranked(by_action, 10),
        "by_category": _ranked(by_category),
        "by_severity": _ranked(by_severity),
        "daily": [{"date": d, "count": by_day[d]} for d in sorted(by_day)],
        "top_users": _ranked(by_user, 10),
    }
