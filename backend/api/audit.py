"""
Audit log API (admin only).
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from backend.api.params import now_param, pagination
from backend.core.admin_auth import AdminActor, require_admin
from backend.core.clock import parse_now_param
from backend.core.errors import ValidationError
from backend.features.audit import service as audit_service
from backend.models.audit import AuditCategory, AuditSeverity

router = APIRouter(prefix="/api/audit", tags=["audit"])


def _parse_date(value: Optional[str], name: str) -> Optional[datetime]:
    try:
        return parse_now_param(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date")


@router.get("")
def list_audit_logs(
    user_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None, description="Substring match, case-insensitive"),
    resource: Optional[str] = Query(None),
    resource_id: Optional[str] = Query(None),
    category: Optional[AuditCategory] = Query(None),
    severity: Optional[AuditSeverity] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    logs, total = audit_service.list_audit_logs(
        user_id=user_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        category=category.value if category else None,
        severities=[severity.value] if severity else None,
        start=_parse_date(start_date, "start_date"),
        end=_parse_date(end_date, "end_date"),
        page=page,
        limit=limit,
    )
    return {"success": True, "data": logs, "pagination": pagination(page, limit, total)}


@router.get("/stats")
def audit_stats(
    days: int = Query(30, ge=1, le=365),
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    return {"success": True, "data": audit_service.get_audit_stats(days=days, now=now)}


@router.get("/security")
def security_logs(
    severity: Optional[List[AuditSeverity]] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    logs, total = audit_service.get_security_logs(
        severities=[s.value for s in severity] if severity else None,
        start=_parse_date(start_date, "start_date"),
        end=_parse_date(end_date, "end_date"),
        page=page,
        limit=limit,
    )
    return {"success": True, "data": logs, "pagination": pagination(page, limit, total)}


@router.get("/user/{user_id}")
def user_audit_logs(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    logs, total = audit_service.get_user_audit_logs(user_id, page=page, limit=limit)
    return {"success": True, "data": logs, "pagination": pagination(page, limit, total)}


@router.get("/resource/{resource}")
def resource_audit_logs(
    resource: str,
    resource_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    logs, total = audit_service.get_resource_audit_logs(resource, resource_id, page=page, limit=limit)
    return {"success": True, "data": logs, "pagination": pagination(page, limit, total)}


@router.get("/{log_id}")
def get_audit_log(log_id: int, actor: AdminActor = Depends(require_admin)) -> dict:
    return {"success": True, "data": audit_service.get_audit_log(log_id)}
