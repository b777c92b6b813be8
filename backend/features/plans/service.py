"""
backend/features/plans/service.py

Plan catalog service.

Handles:
- Plan CRUD with validation (admin)
- Active catalog ordered by price (input to the recommendation engine)
- Product-type listings and status toggling
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4
from sqlalchemy import delete, func, insert, select, update

from backend.core.clock import resolve_now
from backend.core.database import get_db_session, plans, row_to_dict, subscriptions
from backend.core.errors import ConflictError, NotFoundError, ValidationError
from backend.features.audit.service import log_action
from backend.models.audit import AuditCategory, AuditResource, AuditSeverity
from backend.models.plan import BillingCycle, Plan, ProductType

REQUIRED_FIELDS = ("name", "product_type", "price", "quota", "download_speed", "upload_speed")
POSITIVE_FIELDS = ("quota", "download_speed", "upload_speed")
NON_NEGATIVE_FIELDS = ("price", "setup_fee")
SORTABLE_FIELDS = {"price", "quota", "download_speed", "upload_speed", "name", "created_at"}
UPDATABLE_FIELDS = {
    "name", "description", "product_type", "price", "quota", "download_speed", "upload_speed",
    "features", "is_active", "billing_cycle", "max_users", "setup_fee", "contract_length",
}


def _to_model(row) -> Plan:
    data = row_to_dict(row)
    data["features"] = data.get("features") or []
    return Plan(**data)


def _validate(data: Dict[str, Any], *, partial: bool = False) -> Dict[str, Any]:
    if not partial:
        missing = [f for f in REQUIRED_FIELDS if data.get(f) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    clean = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}

    for field in POSITIVE_FIELDS:
        if field in clean and clean[field] is not None and clean[field] <= 0:
            raise ValidationError(f"{field} must be greater than 0")
    for field in NON_NEGATIVE_FIELDS:
        if field in clean and clean[field] is not None and clean[field] < 0:
            raise ValidationError(f"{field} must not be negative")
    if clean.get("max_users") is not None and clean["max_users"] < 1:
        raise ValidationError("max_users must be at least 1")
    if clean.get("contract_length") is not None and clean["contract_length"] < 1:
        raise ValidationError("contract_length must be at least 1 month")

    if clean.get("product_type") is not None:
        try:
            clean["product_type"] = ProductType(clean["product_type"]).value
        except ValueError:
            raise ValidationError("product_type must be Fibernet or BroadbandCopper")
    if clean.get("billing_cycle") is not None:
        try:
            clean["billing_cycle"] = BillingCycle(clean["billing_cycle"]).value
        except ValueError:
            raise ValidationError("billing_cycle must be monthly, quarterly or yearly")
    if "features" in clean:
        clean["features"] = [
            f.model_dump() if hasattr(f, "model_dump") else dict(f) for f in (clean["features"] or [])
        ]
    if isinstance(clean.get("name"), str):
        clean["name"] = clean["name"].strip()
    return clean


def _name_taken(session, name: str, exclude_plan_id: Optional[str] = None) -> bool:
    query = select(plans.c.plan_id).where(func.lower(plans.c.name) == name.lower())
    if exclude_plan_id:
        query = query.where(plans.c.plan_id != exclude_plan_id)
    return session.execute(query).first() is not None


def create_plan(data: Dict[str, Any], *, actor_id: Optional[str] = None, now: Optional[datetime] = None) -> Plan:
    values = _validate(data)
    now = resolve_now(now)
    plan_id = uuid4().hex
    values.update(plan_id=plan_id, created_at=now, updated_at=now)
    values.setdefault("is_active", True)
    values.setdefault("features", [])

    with get_db_session() as session:
        if _name_taken(session, values["name"]):
            raise ConflictError("Plan with this name already exists")
        session.execute(insert(plans).values(**values))

    log_action(
        user_id=actor_id,
        action="create_plan",
        resource=AuditResource.PLAN.value,
        resource_id=plan_id,
        new_values={"name": values["name"], "price": values["price"], "product_type": values["product_type"]},
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.DATA_MODIFICATION,
    )
    return get_plan(plan_id)


def get_plan(plan_id: str) -> Plan:
    with get_db_session() as session:
        row = session.execute(select(plans).where(plans.c.plan_id == plan_id)).first()
    if not row:
        raise NotFoundError("Plan not found")
    return _to_model(row)


def get_plans_by_ids(plan_ids: Sequence[str]) -> List[Plan]:
    """Plans in the order requested; unknown ids are skipped."""
    if not plan_ids:
        return []
    with get_db_session() as session:
        rows = session.execute(select(plans).where(plans.c.plan_id.in_(list(plan_ids)))).fetchall()
    by_id = {r.plan_id: _to_model(r) for r in rows}
    return [by_id[pid] for pid in plan_ids if pid in by_id]


def list_plans(
    *,
    product_type: Optional[str] = None,
    is_active: Optional[bool] = None,
    sort_by: str = "price",
    order: str = "asc",
) -> List[Plan]:
    if sort_by not in SORTABLE_FIELDS:
        raise ValidationError(f"sort_by must be one of: {', '.join(sorted(SORTABLE_FIELDS))}")
    column = plans.c[sort_by]
    ordering = column.desc() if order == "desc" else column.asc()

    query = select(plans)
    if product_type:
        query = query.where(plans.c.product_type == product_type)
    if is_active is not None:
        query = query.where(plans.c.is_active == is_active)

    with get_db_session() as session:
        rows = session.execute(query.order_by(ordering, plans.c.created_at, plans.c.plan_id)).fetchall()
    return [_to_model(r) for r in rows]


def get_active_catalog() -> List[Plan]:
    """Active plans sorted ascending by price."""
    return list_plans(is_active=True, sort_by="price", order="asc")


def list_plans_by_product_type(product_type: str) -> List[Plan]:
    try:
        ProductType(product_type)
    except ValueError:
        raise ValidationError("Invalid product type. Must be Fibernet or BroadbandCopper")
    return list_plans(product_type=product_type, is_active=True)


def get_plans_map() -> Dict[str, Plan]:
    return {p.plan_id: p for p in list_plans()}


def update_plan(
    plan_id: str,
    updates: Dict[str, Any],
    *,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Plan:
    before = get_plan(plan_id)
    changes = _validate({k: v for k, v in updates.items() if v is not None}, partial=True)
    if not changes:
        return before
    changes["updated_at"] = resolve_now(now)

    with get_db_session() as session:
        if "name" in changes and _name_taken(session, changes["name"], exclude_plan_id=plan_id):
            raise ConflictError("Plan with this name already exists")
        session.execute(update(plans).where(plans.c.plan_id == plan_id).values(**changes))

    log_action(
        user_id=actor_id,
        action="update_plan",
        resource=AuditResource.PLAN.value,
        resource_id=plan_id,
        old_values={k: getattr(before, k, None) for k in changes if k != "updated_at"},
        new_values={k: v for k, v in changes.items() if k != "updated_at"},
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.DATA_MODIFICATION,
    )
    return get_plan(plan_id)


def delete_plan(plan_id: str, *, actor_id: Optional[str] = None) -> None:
    """Delete a plan. Refused while any active subscription references it."""
    plan = get_plan(plan_id)
    with get_db_session() as session:
        active = session.execute(
            select(func.count()).select_from(subscriptions).where(
                subscriptions.c.plan_id == plan_id,
                subscriptions.c.status == "active",
            )
        ).scalar_one()
        if active:
            raise ConflictError(f"Cannot delete plan with {active} active subscription(s)")
        session.execute(delete(plans).where(plans.c.plan_id == plan_id))

    log_action(
        user_id=actor_id,
        action="delete_plan",
        resource=AuditResource.PLAN.value,
        resource_id=plan_id,
        old_values={"name": plan.name, "price": plan.price},
        severity=AuditSeverity.HIGH,
        category=AuditCategory.DATA_MODIFICATION,
    )


def toggle_plan_status(plan_id: str, *, actor_id: Optional[str] = None, now: Optional[datetime] = None) -> Plan:
    plan = get_plan(plan_id)
    with get_db_session() as session:
        session.execute(
            update(plans)
            .where(plans.c.plan_id == plan_id)
            .values(is_active=not plan.is_active, updated_at=resolve_now(now))
        )
    log_action(
        user_id=actor_id,
        action="toggle_plan_status",
        resource=AuditResource.PLAN.value,
        resource_id=plan_id,
        old_values={"is_active": plan.is_active},
        new_values={"is_active": not plan.is_active},
        severity=AuditSeverity.MEDIUM,
        category=AuditCategory.DATA_MODIFICATION,
    )
    return get_plan(plan_id)
