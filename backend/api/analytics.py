"""
backend/api/analytics.py

Admin analytics endpoints.
Rows -> pure rollups -> read models -> API.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.api.params import now_param
from backend.core.admin_auth import AdminActor, require_admin
from backend.core.errors import ValidationError
from backend.features.analytics.service import AnalyticsService

router = APIRouter(prefix="/api/analytics", tags=["analytics"])

_service = AnalyticsService()


def _report(report_type: str, period: str, now: Optional[datetime]) -> dict:
    return {"success": True, "data": _service.report(report_type, period, now=now)}


@router.get("")
def analytics(
    type: str = Query("overview", description="overview | subscriptions | revenue | usage | users"),
    period: str = Query("30d", description="7d | 30d | 90d | 1y"),
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    return _report(type, period, now)


@router.get("/subscriptions")
def subscription_analytics(
    period: str = Query("30d"),
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    return _report("subscriptions", period, now)


@router.get("/revenue")
def revenue_analytics(
    period: str = Query("30d"),
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    return _report("revenue", period, now)


@router.get("/usage")
def usage_analytics(
    period: str = Query("30d"),
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    return _report("usage", period, now)


@router.get("/users")
def user_analytics(
    period: str = Query("30d"),
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    return _report("users", period, now)


@router.get("/top-plans")
def top_plans(
    period: str = Query("30d"),
    limit: int = Query(10, ge=1, le=50),
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    return {"success": True, "data": _service.top_plans(period, limit=limit, now=now)}


@router.get("/top-plans/by-year")
def top_plans_by_year(
    limit: int = Query(5, ge=1, le=50),
    start_year: Optional[int] = Query(None),
    end_year: Optional[int] = Query(None),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    if start_year is not None and end_year is not None and start_year > end_year:
        raise ValidationError("start_year must not be after end_year")
    years = _service.top_plans_by_year(per_year=limit, start_year=start_year, end_year=end_year)
    return {"success": True, "data": years}


@router.get("/top-plans/current")
def top_plans_current(
    limit: int = Query(5, ge=1, le=50),
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    return {"success": True, "data": _service.top_plans_current(limit=limit, now=now)}


@router.get("/churn")
def churn_analytics(
    period: str = Query("30d"),
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    return {"success": True, "data": _service.churn(period, now=now)}
