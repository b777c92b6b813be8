"""
User self-service API: profile, history, usage ingest, notifications, stats.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from backend.api.params import now_param
from backend.core.auth import get_current_user_id
from backend.core.clock import parse_now_param
from backend.core.errors import NotFoundError, ValidationError
from backend.features.notifications.service import get_notification_service
from backend.features.subscriptions.service import get_active_subscription, list_user_subscriptions
from backend.features.usage.service import get_usage_history, record_usage
from backend.features.users.service import get_user_stats, require_user, update_user

router = APIRouter(prefix="/api/users", tags=["users"])


class ProfileUpdateRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class UsageRecordRequest(BaseModel):
    data_used: float
    date: Optional[datetime] = None
    data_downloaded: float = 0.0
    data_uploaded: float = 0.0
    average_speed: Optional[float] = None
    peak_speed: Optional[float] = None
    latency: Optional[float] = None
    packet_loss: Optional[float] = Field(None, description="Percent, 0-100")


def _parse_date(value: Optional[str], name: str) -> Optional[datetime]:
    try:
        return parse_now_param(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date")


@router.get("/profile")
def get_profile(user_id: str = Depends(get_current_user_id)) -> dict:
    return {
        "success": True,
        "data": {
            "user": require_user(user_id),
            "current_subscription": get_active_subscription(user_id),
        },
    }


@router.put("/profile")
def update_profile(body: ProfileUpdateRequest, user_id: str = Depends(get_current_user_id)) -> dict:
    user = update_user(
        user_id, body.model_dump(exclude_none=True), actor_id=user_id, action="update_profile"
    )
    return {"success": True, "message": "Profile updated successfully", "data": user}


@router.get("/subscription-history")
def subscription_history(user_id: str = Depends(get_current_user_id)) -> dict:
    items = list_user_subscriptions(user_id, include_expired=True)
    return {"success": True, "data": items, "count": len(items)}


@router.get("/usage-history")
def usage_history(
    page: int = Query(1, ge=1),
    limit: int = Query(30, ge=1, le=365),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
) -> dict:
    history = get_usage_history(
        user_id,
        page=page,
        limit=limit,
        start=_parse_date(start_date, "start_date"),
        end=_parse_date(end_date, "end_date"),
    )
    return {"success": True, "data": history}


@router.post("/usage", status_code=201)
def ingest_usage(
    body: UsageRecordRequest,
    user_id: str = Depends(get_current_user_id),
    now: Optional[datetime] = Depends(now_param),
) -> dict:
    record = record_usage(user_id, now=now, **body.model_dump())
    return {"success": True, "message": "Usage recorded", "data": record}


@router.get("/notifications")
def list_notifications(
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False),
    user_id: str = Depends(get_current_user_id),
) -> dict:
    service = get_notification_service()
    items = service.list(user_id, limit=limit, unread_only=unread_only)
    return {
        "success": True,
        "data": items,
        "unread_count": service.unread_count(user_id),
    }


@router.patch("/notifications/read-all")
def mark_all_notifications_read(
    user_id: str = Depends(get_current_user_id),
    now: Optional[datetime] = Depends(now_param),
) -> dict:
    changed = get_notification_service().mark_all_read(user_id, now=now)
    return {"success": True, "message": f"{changed} notification(s) marked as read", "updated": changed}


@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    now: Optional[datetime] = Depends(now_param),
) -> dict:
    if not get_notification_service().mark_read(user_id, notification_id, now=now):
        raise NotFoundError("Notification not found")
    return {"success": True, "message": "Notification marked as read"}


@router.get("/stats")
def user_stats(
    user_id: str = Depends(get_current_user_id),
    now: Optional[datetime] = Depends(now_param),
) -> dict:
    return {"success": True, "data": get_user_stats(user_id, now=now)}
