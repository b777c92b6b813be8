"""
Subscription lifecycle service.

Handles:
- subscribe (one active subscription per user, optional discount code)
- modify (upgrade/downgrade), cancel, renew, auto-renew toggle
- owner/admin reads and the admin listing

Every mutation is audited and sends a subscription notification once its
transaction has committed.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4
from sqlalchemy import func, insert, select, update

from backend.core.clock import add_months, resolve_now
from backend.core.database import get_db_session, row_to_dict, subscriptions
from backend.core.errors import ConflictError, NotFoundError, PermissionError, ValidationError
from backend.core.logging import log_event
from backend.features.audit.service import log_action
from backend.features.discounts.service import redeem_in_session
from backend.features.notifications.service import get_notification_service
from backend.features.plans.service import get_plan, get_plans_map
from backend.features.users.service import get_or_create_user
from backend.features.usage.aggregator import round2
from backend.models.audit import AuditCategory, AuditResource, AuditSeverity
from backend.models.plan import BillingCycle, Plan
from backend.models.subscription import PaymentMethod, Subscription, SubscriptionStatus

BILLING_INTERVAL_MONTHS = {
    BillingCycle.MONTHLY: 1,
    BillingCycle.QUARTERLY: 3,
    BillingCycle.YEARLY: 12,
}


def _to_model(row, plan: Optional[Plan] = None) -> Subscription:
    return Subscription(**row_to_dict(row), plan=plan)


def _with_plan(row) -> Subscription:
    try:
        plan = get_plan(row.plan_id)
    except NotFoundError:
        plan = None
    return _to_model(row, plan)


def _load(subscription_id: str) -> Subscription:
    with get_db_session() as session:
        row = session.execute(
            select(subscriptions).where(subscriptions.c.subscription_id == subscription_id)
        ).first()
    if not row:
        raise NotFoundError("Subscription not found")
    return _with_plan(row)


def _load_owned(subscription_id: str, user_id: str, is_admin: bool = False) -> Subscription:
    subscription = _load(subscription_id)
    if subscription.user_id != user_id and not is_admin:
        raise PermissionError("Access denied")
    return subscription


def _notify(user_id: str, event: str, plan_name: str, subscription_id: str, now: datetime) -> None:
    get_notification_service().subscription_event(
        user_id, event, plan_name, data={"subscription_id": subscription_id}, now=now
    )


def get_active_subscription(user_id: str) -> Optional[Subscription]:
    """The user's single active subscription with its plan populated, or None."""
    with get_db_session() as session:
        row = session.execute(
            select(subscriptions)
            .where(subscriptions.c.user_id == user_id, subscriptions.c.status == SubscriptionStatus.ACTIVE.value)
            .order_by(subscriptions.c.created_at.desc())
        ).first()
    return _with_plan(row) if row else None


def subscribe(
    user_id: str,
    plan_id: str,
    *,
    payment_method: str = PaymentMethod.CREDIT_CARD.value,
    auto_renew: bool = True,
    discount_code: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Subscription:
    """Create an active subscription. End date is start + the plan's contract length in months."""
    now = resolve_now(now)
    try:
        method = PaymentMethod(payment_method).value
    except ValueError:
        raise ValidationError("Invalid payment method")

    plan = get_plan(plan_id)
    if not plan.is_active:
        raise ValidationError("Plan is not available")
    get_or_create_user(user_id, now=now)

    subscription_id = uuid4().hex
    with get_db_session() as session:
        existing = session.execute(
            select(subscriptions.c.subscription_id).where(
                subscriptions.c.user_id == user_id,
                subscriptions.c.status == SubscriptionStatus.ACTIVE.value,
            )
        ).first()
        if existing:
            raise ConflictError("User already has an active subscription")

        amount = plan.price
        discount_id = None
        if discount_code:
            discount, usage = redeem_in_session(
                session,
                code=discount_code,
                user_id=user_id,
                plan=plan,
                amount=plan.price,
                subscription_id=subscription_id,
                now=now,
            )
            amount = usage.amount_after
            discount_id = discount.discount_id

        interval = BILLING_INTERVAL_MONTHS[plan.billing_cycle]
        session.execute(insert(subscriptions).values(
            subscription_id=subscription_id,
            user_id=user_id,
            plan_id=plan_id,
            status=SubscriptionStatus.ACTIVE.value,
            start_date=now,
            end_date=add_months(now, plan.contract_length),
            next_billing_date=add_months(now, interval),
            auto_renew=auto_renew,
            payment_method=method,
            last_payment_date=now,
            next_payment_amount=amount,
            discount_id=discount_id,
            total_paid=round2(amount + plan.setup_fee),
            notes=notes,
            created_at=now,
            updated_at=now,
        ))

    log_action(
        user_id=user_id,
        action="create_subscription",
        resource=AuditResource.SUBSCRIPTION.value,
        resource_id=subscription_id,
        new_values={"plan_id": plan_id, "amount": amount, "discount_code": discount_code},
        category=AuditCategory.DATA_MODIFICATION,
        now=now,
    )
    log_event("info", "subscription.created", request_id=None, user_id=user_id,
              subscription_id=subscription_id, plan_id=plan_id)
    _notify(user_id, "created", plan.name, subscription_id, now)
    return _load(subscription_id)


def list_user_subscriptions(
    user_id: str,
    *,
    status: Optional[str] = None,
    include_expired: bool = False,
) -> List[Subscription]:
    query = select(subscriptions).where(subscriptions.c.user_id == user_id)
    if status:
        query = query.where(subscriptions.c.status == status)
    elif not include_expired:
        query = query.where(subscriptions.c.status != SubscriptionStatus.EXPIRED.value)
    with get_db_session() as session:
        rows = session.execute(
            query.order_by(subscriptions.c.created_at.desc(), subscriptions.c.subscription_id)
        ).fetchall()
    plans_by_id = get_plans_map()
    return [_to_model(r, plans_by_id.get(r.plan_id)) for r in rows]


def get_subscription(subscription_id: str, user_id: str, *, is_admin: bool = False) -> Subscription:
    return _load_owned(subscription_id, user_id, is_admin)


def modify_subscription(
    subscription_id: str,
    user_id: str,
    new_plan_id: str,
    *,
    reason: Optional[str] = None,
    is_admin: bool = False,
    now: Optional[datetime] = None,
) -> Tuple[Subscription, str]:
    """Switch an active subscription to another plan. Returns (subscription, 'upgraded' | 'downgraded').

    A non-empty `reason` replaces the subscription notes.
    """
    now = resolve_now(now)
    current = _load_owned(subscription_id, user_id, is_admin)
    if current.status != SubscriptionStatus.ACTIVE:
        raise ValidationError("Only active subscriptions can be modified")
    if current.plan_id == new_plan_id:
        raise ValidationError("Subscription is already on this plan")

    new_plan = get_plan(new_plan_id)
    if not new_plan.is_active:
        raise ValidationError("Plan is not available")

    old_price = current.plan.price if current.plan else 0.0
    change = "upgraded" if new_plan.price > old_price else "downgraded"

    with get_db_session() as session:
        session.execute(
            update(subscriptions)
            .where(subscriptions.c.subscription_id == subscription_id)
            .values(
                plan_id=new_plan_id,
                next_payment_amount=new_plan.price,
                notes=reason or current.notes,
                updated_at=now,
            )
        )

    log_action(
        user_id=user_id,
        action=f"subscription_{change}",
        resource=AuditResource.SUBSCRIPTION.value,
        resource_id=subscription_id,
        old_values={"plan_id": current.plan_id, "price": old_price},
        new_values={"plan_id": new_plan_id, "price": new_plan.price},
        details={"reason": reason} if reason else None,
        category=AuditCategory.DATA_MODIFICATION,
        now=now,
    )
    _notify(current.user_id, change, new_plan.name, subscription_id, now)
    return _load(subscription_id), change


def cancel_subscription(
    subscription_id: str,
    user_id: str,
    *,
    reason: Optional[str] = None,
    immediate: bool = False,
    is_admin: bool = False,
    now: Optional[datetime] = None,
) -> Subscription:
    """Cancel an active subscription; `immediate` also ends it now."""
    now = resolve_now(now)
    current = _load_owned(subscription_id, user_id, is_admin)
    if current.status != SubscriptionStatus.ACTIVE:
        raise ValidationError("Only active subscriptions can be cancelled")

    values: Dict[str, Any] = {
        "status": SubscriptionStatus.CANCELLED.value,
        "cancellation_reason": reason,
        "cancelled_at": now,
        "auto_renew": False,
        "updated_at": now,
    }
    if immediate:
        values["end_date"] = now

    with get_db_session() as session:
        session.execute(
            update(subscriptions).where(subscriptions.c.subscription_id == subscription_id).values(**values)
        )

    log_action(
        user_id=user_id,
        action="cancel_subscription",
        resource=AuditResource.SUBSCRIPTION.value,
        resource_id=subscription_id,
        details={"reason": reason, "immediate": immediate},
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.DATA_MODIFICATION,
        now=now,
    )
    _notify(current.user_id, "cancelled", current.plan.name if current.plan else current.plan_id, subscription_id, now)
    return _load(subscription_id)


def renew_subscription(
    subscription_id: str,
    user_id: str,
    *,
    is_admin: bool = False,
    now: Optional[datetime] = None,
) -> Subscription:
    """Extend an active or expired subscription by its plan's contract length."""
    now = resolve_now(now)
    current = _load_owned(subscription_id, user_id, is_admin)
    if current.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED):
        raise ValidationError("Only active or expired subscriptions can be renewed")
    plan = current.plan or get_plan(current.plan_id)

    with get_db_session() as session:
        if current.status == SubscriptionStatus.EXPIRED:
            other_active = session.execute(
                select(subscriptions.c.subscription_id).where(
                    subscriptions.c.user_id == current.user_id,
                    subscriptions.c.status == SubscriptionStatus.ACTIVE.value,
                )
            ).first()
            if other_active:
                raise ConflictError("User already has an active subscription")

        base = max(current.end_date, now)
        amount = current.next_payment_amount if current.next_payment_amount is not None else plan.price
        session.execute(
            update(subscriptions)
            .where(subscriptions.c.subscription_id == subscription_id)
            .values(
                status=SubscriptionStatus.ACTIVE.value,
                end_date=add_months(base, plan.contract_length),
                last_payment_date=now,
                total_paid=round2(current.total_paid + amount),
                updated_at=now,
            )
        )

    log_action(
        user_id=user_id,
        action="renew_subscription",
        resource=AuditResource.SUBSCRIPTION.value,
        resource_id=subscription_id,
        category=AuditCategory.DATA_MODIFICATION,
        now=now,
    )
    _notify(current.user_id, "renewed", plan.name, subscription_id, now)
    return _load(subscription_id)


def toggle_auto_renew(
    subscription_id: str,
    user_id: str,
    *,
    is_admin: bool = False,
    now: Optional[datetime] = None,
) -> Subscription:
    now = resolve_now(now)
    current = _load_owned(subscription_id, user_id, is_admin)
    if current.status != SubscriptionStatus.ACTIVE:
        raise ValidationError("Auto-renew can only be changed on active subscriptions")
    with get_db_session() as session:
        session.execute(
            update(subscriptions)
            .where(subscriptions.c.subscription_id == subscription_id)
            .values(auto_renew=not current.auto_renew, updated_at=now)
        )
    log_action(
        user_id=user_id,
        action="toggle_auto_renew",
        resource=AuditResource.SUBSCRIPTION.value,
        resource_id=subscription_id,
        old_values={"auto_renew": current.auto_renew},
        new_values={"auto_renew": not current.auto_renew},
        category=AuditCategory.DATA_MODIFICATION,
        now=now,
    )
    return _load(subscription_id)


def list_all_subscriptions(
    *,
    status: Optional[str] = None,
    plan_id: Optional[str] = None,
    user_id: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Subscription], int]:
    """Admin listing, newest first."""
    page = max(1, page)
    limit = max(1, min(limit, 100))

    def _filtered(query):
        if status:
            query = query.where(subscriptions.c.status == status)
        if plan_id:
            query = query.where(subscriptions.c.plan_id == plan_id)
        if user_id:
            query = query.where(subscriptions.c.user_id == user_id)
        return query

    with get_db_session() as session:
        total = session.execute(_filtered(select(func.count()).select_from(subscriptions))).scalar_one()
        rows = session.execute(
            _filtered(select(subscriptions))
            .order_by(subscriptions.c.created_at.desc(), subscriptions.c.subscription_id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).fetchall()
    plans_by_id = get_plans_map()
    return [_to_model(r, plans_by_id.get(r.plan_id)) for r in rows], total


def load_all_subscriptions() -> List[Subscription]:
    """Every subscription in creation order (analytics input)."""
    with get_db_session() as session:
        rows = session.execute(
            select(subscriptions).order_by(subscriptions.c.created_at.asc(), subscriptions.c.subscription_id)
        ).fetchall()
    return [_to_model(r) for r in rows]
