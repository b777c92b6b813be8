"""
Admin API routes: user management, discount codes and notifications.

All routes require an admin user or (hybrid/legacy mode) the X-Admin-Key header.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from backend.api.params import now_param, pagination
from backend.core.admin_auth import AdminActor, require_admin
from backend.core.errors import ValidationError
from backend.features.discounts import service as discounts_service
from backend.features.notifications.service import get_notification_service
from backend.features.users import service as users_service
from backend.models.discount import DiscountType
from backend.models.notification import NotificationType
from backend.models.user import UserRole

router = APIRouter(prefix="/api/admin", tags=["admin"])


class AdminUserUpdateRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


class DiscountCreateRequest(BaseModel):
    name: str
    description: Optional[str] = None
    code: str
    type: DiscountType
    value: float
    max_discount_amount: Optional[float] = None
    min_order_amount: float = 0.0
    applicable_plans: List[str] = Field(default_factory=list)
    applicable_product_types: List[str] = Field(default_factory=list)
    conditions: Dict[str, Any] = Field(default_factory=dict)
    start_date: datetime
    end_date: datetime
    usage_limit: Optional[int] = None
    is_active: bool = True
    is_public: bool = False


class DiscountUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    code: Optional[str] = None
    type: Optional[DiscountType] = None
    value: Optional[float] = None
    max_discount_amount: Optional[float] = None
    min_order_amount: Optional[float] = None
    applicable_plans: Optional[List[str]] = None
    applicable_product_types: Optional[List[str]] = None
    conditions: Optional[Dict[str, Any]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    usage_limit: Optional[int] = None
    is_active: Optional[bool] = None
    is_public: Optional[bool] = None


class NotificationRequest(BaseModel):
    message: str
    type: NotificationType = NotificationType.INFO
    user_ids: List[str] = Field(default_factory=list)
    role: Optional[UserRole] = None
    data: Dict[str, Any] = Field(default_factory=dict)


def _discount_fields(body: BaseModel) -> Dict[str, Any]:
    data = body.model_dump(exclude_none=True)
    if "type" in data:
        data["type"] = data["type"].value
    return data


# Users

@router.get("/users")
def list_users(
    role: Optional[UserRole] = Query(None),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    users, total = users_service.list_users(
        role=role.value if role else None,
        is_active=is_active,
        search=search,
        page=page,
        limit=limit,
    )
    return {"success": True, "data": users, "pagination": pagination(page, limit, total)}


@router.get("/users/{user_id}")
def get_user(user_id: str, actor: AdminActor = Depends(require_admin)) -> dict:
    return {"success": True, "data": users_service.require_user(user_id)}


@router.put("/users/{user_id}")
def update_user(user_id: str, body: AdminUserUpdateRequest, actor: AdminActor = Depends(require_admin)) -> dict:
    updates = body.model_dump(exclude_none=True)
    if "role" in updates:
        updates["role"] = updates["role"].value
    user = users_service.update_user(user_id, updates, actor_id=actor.actor_id)
    return {"success": True, "message": "User updated successfully", "data": user}


@router.patch("/users/{user_id}/toggle-status")
def toggle_user_status(user_id: str, actor: AdminActor = Depends(require_admin)) -> dict:
    if user_id == actor.actor_id:
        raise ValidationError("Cannot change the status of your own account")
    user = users_service.toggle_user_status(user_id, actor_id=actor.actor_id)
    state = "activated" if user.is_active else "deactivated"
    return {"success": True, "message": f"User {state} successfully", "data": user}


@router.get("/users/{user_id}/stats")
def user_stats(
    user_id: str,
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    return {"success": True, "data": users_service.get_user_stats(user_id, now=now)}


# Discounts

@router.get("/discounts")
def list_discounts(
    is_active: Optional[bool] = Query(None),
    is_public: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    items, total = discounts_service.list_discounts(
        is_active=is_active, is_public=is_public, search=search, page=page, limit=limit
    )
    return {"success": True, "data": items, "pagination": pagination(page, limit, total)}


@router.post("/discounts", status_code=201)
def create_discount(
    body: DiscountCreateRequest,
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    discount = discounts_service.create_discount(_discount_fields(body), actor_id=actor.actor_id, now=now)
    return {"success": True, "message": "Discount created successfully", "data": discount}


@router.get("/discounts/{discount_id}")
def get_discount(discount_id: str, actor: AdminActor = Depends(require_admin)) -> dict:
    return {"success": True, "data": discounts_service.get_discount(discount_id)}


@router.put("/discounts/{discount_id}")
def update_discount(
    discount_id: str,
    body: DiscountUpdateRequest,
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    discount = discounts_service.update_discount(
        discount_id, _discount_fields(body), actor_id=actor.actor_id, now=now
    )
    return {"success": True, "message": "Discount updated successfully", "data": discount}


@router.delete("/discounts/{discount_id}")
def delete_discount(discount_id: str, actor: AdminActor = Depends(require_admin)) -> dict:
    discounts_service.delete_discount(discount_id, actor_id=actor.actor_id)
    return {"success": True, "message": "Discount deleted successfully"}


@router.get("/discounts/{discount_id}/usage")
def discount_usage(discount_id: str, actor: AdminActor = Depends(require_admin)) -> dict:
    return {"success": True, "data": discounts_service.get_discount_usage(discount_id)}


# Notifications

@router.post("/notifications", status_code=201)
def send_notification(
    body: NotificationRequest,
    now: Optional[datetime] = Depends(now_param),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    service = get_notification_service()
    data = dict(body.data, sent_by=actor.actor_id)
    if body.role is not None:
        sent = service.send_to_role(body.role.value, body.message, body.type, data, now)
    elif body.user_ids:
        sent = service.send_bulk(body.user_ids, body.message, body.type, data, now)
    else:
        raise ValidationError("Provide user_ids or role")
    return {"success": True, "message": f"Notification sent to {len(sent)} user(s)", "count": len(sent)}
