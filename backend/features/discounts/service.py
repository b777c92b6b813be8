"""
Discount code service.

Admin CRUD, the public offers list, price calculation and redemption.
Redemption runs inside the caller's session so a subscription and its
discount usage commit together.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4
from sqlalchemy import delete, func, insert, or_, select, update

from backend.core.clock import ensure_utc, resolve_now
from backend.core.database import discount_usages, discounts, get_db_session, row_to_dict
from backend.core.errors import ConflictError, NotFoundError, ValidationError
from backend.features.audit.service import log_action
from backend.features.usage.aggregator import round2
from backend.models.audit import AuditCategory, AuditResource, AuditSeverity
from backend.models.discount import Discount, DiscountType, DiscountUsage
from backend.models.plan import Plan

REQUIRED_FIELDS = ("name", "code", "type", "value", "start_date", "end_date")
UPDATABLE_FIELDS = {
    "name", "description", "code", "type", "value", "max_discount_amount", "min_order_amount",
    "applicable_plans", "applicable_product_types", "conditions", "start_date", "end_date",
    "usage_limit", "is_active", "is_public",
}


def _to_model(row) -> Discount:
    data = row_to_dict(row)
    data["applicable_plans"] = data.get("applicable_plans") or []
    data["applicable_product_types"] = data.get("applicable_product_types") or []
    data["conditions"] = data.get("conditions") or {}
    return Discount(**data)


def _validate(data: Dict[str, Any], *, partial: bool = False, current: Optional[Discount] = None) -> Dict[str, Any]:
    if not partial:
        missing = [f for f in REQUIRED_FIELDS if data.get(f) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    clean = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}
    if "code" in clean:
        clean["code"] = str(clean["code"]).strip().upper()
        if not clean["code"]:
            raise ValidationError("code must not be empty")
    if "type" in clean:
        try:
            clean["type"] = DiscountType(clean["type"]).value
        except ValueError:
            raise ValidationError("type must be percentage or fixed_amount")

    discount_type = clean.get("type") or (current.type.value if current else None)
    if "value" in clean:
        if clean["value"] <= 0:
            raise ValidationError("value must be greater than 0")
        if discount_type == DiscountType.PERCENTAGE.value and clean["value"] > 100:
            raise ValidationError("percentage discounts cannot exceed 100")
    if clean.get("usage_limit") is not None and clean["usage_limit"] < 1:
        raise ValidationError("usage_limit must be at least 1")
    if clean.get("min_order_amount") is not None and clean["min_order_amount"] < 0:
        raise ValidationError("min_order_amount must not be negative")

    for field in ("start_date", "end_date"):
        if clean.get(field) is not None:
            clean[field] = ensure_utc(clean[field])
    start = clean.get("start_date") or (current.start_date if current else None)
    end = clean.get("end_date") or (current.end_date if current else None)
    if start and end and end <= start:
        raise ValidationError("end_date must be after start_date")
    return clean


def _code_taken(session, code: str, exclude_id: Optional[str] = None) -> bool:
    query = select(discounts.c.discount_id).where(discounts.c.code == code)
    if exclude_id:
        query = query.where(discounts.c.discount_id != exclude_id)
    return session.execute(query).first() is not None


def create_discount(data: Dict[str, Any], *, actor_id: Optional[str] = None, now: Optional[datetime] = None) -> Discount:
    values = _validate(data)
    now = resolve_now(now)
    discount_id = uuid4().hex
    values.update(discount_id=discount_id, created_by=actor_id, created_at=now, updated_at=now, used_count=0)
    values.setdefault("is_active", True)
    values.setdefault("is_public", False)
    values.setdefault("min_order_amount", 0.0)

    with get_db_session() as session:
        if _code_taken(session, values["code"]):
            raise ConflictError("Discount code already exists")
        session.execute(insert(discounts).values(**values))

    log_action(
        user_id=actor_id,
        action="create_discount",
        resource=AuditResource.DISCOUNT.value,
        resource_id=discount_id,
        new_values={"code": values["code"], "type": values["type"], "value": values["value"]},
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.DATA_MODIFICATION,
    )
    return get_discount(discount_id)


def get_discount(discount_id: str) -> Discount:
    with get_db_session() as session:
        row = session.execute(select(discounts).where(discounts.c.discount_id == discount_id)).first()
    if not row:
        raise NotFoundError("Discount not found")
    return _to_model(row)


def list_discounts(
    *,
    is_active: Optional[bool] = None,
    is_public: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Discount], int]:
    page = max(1, page)
    limit = max(1, min(limit, 100))

    def _filtered(query):
        if is_active is not None:
            query = query.where(discounts.c.is_active == is_active)
        if is_public is not None:
            query = query.where(discounts.c.is_public == is_public)
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(discounts.c.name.ilike(pattern), discounts.c.code.ilike(pattern)))
        return query

    with get_db_session() as session:
        total = session.execute(_filtered(select(func.count()).select_from(discounts))).scalar_one()
        rows = session.execute(
            _filtered(select(discounts))
            .order_by(discounts.c.created_at.desc(), discounts.c.discount_id)
            .offset((page - 1) * limit)
            .limit(limit)
        ).fetchall()
    return [_to_model(r) for r in rows], total


def list_public_discounts(now: Optional[datetime] = None) -> List[Discount]:
    """Active public offers whose date window contains `now` and that still have uses left."""
    now = resolve_now(now)
    with get_db_session() as session:
        rows = session.execute(
            select(discounts)
            .where(
                discounts.c.is_active.is_(True),
                discounts.c.is_public.is_(True),
                discounts.c.start_date <= now,
                discounts.c.end_date >= now,
            )
            .order_by(discounts.c.end_date.asc(), discounts.c.discount_id)
        ).fetchall()
    return [d for d in (_to_model(r) for r in rows) if d.is_currently_valid(now)]


def update_discount(
    discount_id: str,
    updates: Dict[str, Any],
    *,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Discount:
    current = get_discount(discount_id)
    changes = _validate({k: v for k, v in updates.items() if v is not None}, partial=True, current=current)
    if not changes:
        return current
    changes["updated_at"] = resolve_now(now)

    with get_db_session() as session:
        if "code" in changes and _code_taken(session, changes["code"], exclude_id=discount_id):
            raise ConflictError("Discount code already exists")
        session.execute(update(discounts).where(discounts.c.discount_id == discount_id).values(**changes))

    log_action(
        user_id=actor_id,
        action="update_discount",
        resource=AuditResource.DISCOUNT.value,
        resource_id=discount_id,
        new_values={k: v for k, v in changes.items() if k != "updated_at"},
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.DATA_MODIFICATION,
    )
    return get_discount(discount_id)


def delete_discount(discount_id: str, *, actor_id: Optional[str] = None) -> None:
    discount = get_discount(discount_id)
    with get_db_session() as session:
        session.execute(delete(discount_usages).where(discount_usages.c.discount_id == discount_id))
        session.execute(delete(discounts).where(discounts.c.discount_id == discount_id))
    log_action(
        user_id=actor_id,
        action="delete_discount",
        resource=AuditResource.DISCOUNT.value,
        resource_id=discount_id,
        old_values={"code": discount.code},
        severity=AuditSeverity.HIGH,
        category=AuditCategory.DATA_MODIFICATION,
    )


def is_applicable(discount: Discount, plan: Plan) -> bool:
    if discount.applicable_plans and plan.plan_id not in discount.applicable_plans:
        return False
    if discount.applicable_product_types and plan.product_type.value not in discount.applicable_product_types:
        return False
    return True


def calculate_discount(discount: Discount, plan: Plan, amount: float) -> float:
    """
    Discount amount for `amount` on `plan`.

    Zero when the plan is not covered or the amount is below min_order_amount.
    Percentage discounts are capped by max_discount_amount; nothing exceeds the amount.
    """
    if not is_applicable(discount, plan) or amount < discount.min_order_amount:
        return 0.0
    if discount.type == DiscountType.PERCENTAGE:
        value = amount * discount.value / 100
        if discount.max_discount_amount is not None:
            value = min(value, discount.max_discount_amount)
    else:
        value = discount.value
    return round2(min(value, amount))


def redeem_in_session(
    session,
    *,
    code: str,
    user_id: str,
    plan: Plan,
    amount: float,
    subscription_id: Optional[str],
    now: datetime,
) -> Tuple[Discount, DiscountUsage]:
    """Validate `code` for `plan`, record the usage and bump used_count in the given session."""
    row = session.execute(select(discounts).where(discounts.c.code == code.strip().upper())).first()
    if not row:
        raise ValidationError("Invalid discount code")
    discount = _to_model(row)
    if not discount.is_currently_valid(now):
        raise ValidationError("Discount code is expired or no longer available")
    if not is_applicable(discount, plan):
        raise ValidationError("Discount code does not apply to this plan")

    discount_amount = calculate_discount(discount, plan, amount)
    # Re-check the limit in the UPDATE itself so concurrent redemptions cannot overshoot it
    claimed = session.execute(
        update(discounts)
        .where(
            discounts.c.discount_id == discount.discount_id,
            or_(discounts.c.usage_limit.is_(None), discounts.c.used_count < discounts.c.usage_limit),
        )
        .values(used_count=discounts.c.used_count + 1, updated_at=now)
    ).rowcount
    if not claimed:
        raise ValidationError("Discount code usage limit reached")

    usage = DiscountUsage(
        discount_id=discount.discount_id,
        user_id=user_id,
        subscription_id=subscription_id,
        code=discount.code,
        amount_before=round2(amount),
        discount_amount=discount_amount,
        amount_after=round2(amount - discount_amount),
        applied_at=now,
    )
    session.execute(insert(discount_usages).values(**usage.model_dump()))
    return discount, usage


def get_discount_usage(discount_id: str) -> Dict[str, Any]:
    """Redemptions for one discount plus totals."""
    discount = get_discount(discount_id)
    with get_db_session() as session:
        rows = session.execute(
            select(discount_usages)
            .where(discount_usages.c.discount_id == discount_id)
            .order_by(discount_usages.c.applied_at.desc(), discount_usages.c.id.desc())
        ).fetchall()
    usages = [DiscountUsage(**{k: v for k, v in row_to_dict(r).items() if k != "id"}) for r in rows]
    return {
        "discount": discount,
        "usages": usages,
        "total_uses": len(usages),
        "total_discount_amount": round2(sum(u.discount_amount for u in usages)),
    }
