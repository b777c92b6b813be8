"""
backend/api/dashboard.py

Dashboard endpoints: the caller's own summary plus admin overviews.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.api.params import now_param
from backend.core.admin_auth import AdminActor, require_admin
from backend.core.auth import get_current_user_id
from backend.features.dashboard.service import DashboardService

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])

_service = DashboardService()


@router.get("/user")
def user_dashboard(
    user_id: str = Depends(get_current_user_id),
    now: Optional[datetime] = Depends(now_param),
) -> dict:
    return {"success": True, "data": _service.user_dashboard(user_id, now=now)}


@router.get("/admin")
def admin_dashboard(
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    return {"success": True, "data": _service.admin_dashboard(now=now)}


@router.get("/analytics")
def dashboard_analytics(
    period: str = Query("30d", description="7d | 30d | 90d | 1y"),
    type: str = Query("subscriptions", description="subscriptions | revenue | usage"),
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    return {"success": True, "data": _service.analytics(period, type, now=now)}
