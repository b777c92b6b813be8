"""
Subscription lifecycle API.

Owners act on their own subscriptions; admins may act on any.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from backend.api.params import now_param, pagination
from backend.core.admin_auth import AdminActor, get_admin_actor, require_admin
from backend.core.auth import get_current_user_id
from backend.features.subscriptions import service as subscriptions_service
from backend.models.subscription import PaymentMethod, SubscriptionStatus

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


class SubscribeRequest(BaseModel):
    plan_id: str
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD
    auto_renew: bool = True
    discount_code: Optional[str] = None
    notes: Optional[str] = None


class ModifyRequest(BaseModel):
    new_plan_id: str
    reason: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    immediate: bool = False


def _is_admin(request: Request) -> bool:
    return get_admin_actor(request) is not None


@router.post("", status_code=201)
def subscribe(
    body: SubscribeRequest,
    user_id: str = Depends(get_current_user_id),
    now: Optional[datetime] = Depends(now_param),
) -> dict:
    subscription = subscriptions_service.subscribe(
        user_id,
        body.plan_id,
        payment_method=body.payment_method.value,
        auto_renew=body.auto_renew,
        discount_code=body.discount_code,
        notes=body.notes,
        now=now,
    )
    return {"success": True, "message": "Subscription created successfully", "data": subscription}


@router.get("/my-subscriptions")
def my_subscriptions(
    status: Optional[SubscriptionStatus] = Query(None),
    include_expired: bool = Query(False),
    user_id: str = Depends(get_current_user_id),
) -> dict:
    items = subscriptions_service.list_user_subscriptions(
        user_id,
        status=status.value if status else None,
        include_expired=include_expired,
    )
    return {"success": True, "data": items, "count": len(items)}


@router.get("/all")
def list_all_subscriptions(
    status: Optional[SubscriptionStatus] = Query(None),
    plan_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    items, total = subscriptions_service.list_all_subscriptions(
        status=status.value if status else None,
        plan_id=plan_id,
        user_id=user_id,
        page=page,
        limit=limit,
    )
    return {"success": True, "data": items, "pagination": pagination(page, limit, total)}


@router.get("/{subscription_id}")
def get_subscription(
    subscription_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    subscription = subscriptions_service.get_subscription(
        subscription_id, user_id, is_admin=_is_admin(request)
    )
    return {"success": True, "data": subscription}


@router.put("/{subscription_id}/modify")
def modify_subscription(
    subscription_id: str,
    body: ModifyRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    now: Optional[datetime] = Depends(now_param),
) -> dict:
    subscription, change = subscriptions_service.modify_subscription(
        subscription_id,
        user_id,
        body.new_plan_id,
        reason=body.reason,
        is_admin=_is_admin(request),
        now=now,
    )
    return {"success": True, "message": f"Subscription {change} successfully", "data": subscription}


@router.put("/{subscription_id}/cancel")
def cancel_subscription(
    subscription_id: str,
    request: Request,
    body: Optional[CancelRequest] = None,
    user_id: str = Depends(get_current_user_id),
    now: Optional[datetime] = Depends(now_param),
) -> dict:
    body = body or CancelRequest()
    subscription = subscriptions_service.cancel_subscription(
        subscription_id,
        user_id,
        reason=body.reason,
        immediate=body.immediate,
        is_admin=_is_admin(request),
        now=now,
    )
    return {"success": True, "message": "Subscription cancelled successfully", "data": subscription}


@router.put("/{subscription_id}/renew")
def renew_subscription(
    subscription_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    now: Optional[datetime] = Depends(now_param),
) -> dict:
    subscription = subscriptions_service.renew_subscription(
        subscription_id, user_id, is_admin=_is_admin(request), now=now
    )
    return {"success": True, "message": "Subscription renewed successfully", "data": subscription}


@router.patch("/{subscription_id}/toggle-auto-renew")
def toggle_auto_renew(
    subscription_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    now: Optional[datetime] = Depends(now_param),
) -> dict:
    subscription = subscriptions_service.toggle_auto_renew(
        subscription_id, user_id, is_admin=_is_admin(request), now=now
    )
    state = "enabled" if subscription.auto_renew else "disabled"
    return {"success": True, "message": f"Auto-renew {state}", "data": subscription}
