"""
Plan catalog API.

Public reads (active plans), admin writes, plan comparison and the public
discount offers list.
"""

from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from backend.api.params import now_param
from backend.core.admin_auth import AdminActor, require_admin
from backend.features.discounts.service import list_public_discounts
from backend.features.plans import service as plans_service
from backend.features.recommendations.service import RecommendationService
from backend.models.plan import BillingCycle, PlanFeature, ProductType

router = APIRouter(prefix="/api/plans", tags=["plans"])


class PlanCreateRequest(BaseModel):
    name: str
    description: Optional[str] = None
    product_type: ProductType
    price: float
    quota: float
    download_speed: float
    upload_speed: float
    features: List[PlanFeature] = Field(default_factory=list)
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    max_users: int = 1
    setup_fee: float = 0.0
    contract_length: int = 12
    is_active: bool = True


class PlanUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    product_type: Optional[ProductType] = None
    price: Optional[float] = None
    quota: Optional[float] = None
    download_speed: Optional[float] = None
    upload_speed: Optional[float] = None
    features: Optional[List[PlanFeature]] = None
    billing_cycle: Optional[BillingCycle] = None
    max_users: Optional[int] = None
    setup_fee: Optional[float] = None
    contract_length: Optional[int] = None
    is_active: Optional[bool] = None


class CompareRequest(BaseModel):
    plan_ids: List[str]


@router.get("")
def list_plans(
    product_type: Optional[ProductType] = Query(None),
    sort_by: str = Query("price"),
    order: Literal["asc", "desc"] = Query("asc"),
) -> dict:
    """Active plans only."""
    plans = plans_service.list_plans(
        product_type=product_type.value if product_type else None,
        is_active=True,
        sort_by=sort_by,
        order=order,
    )
    return {"success": True, "data": plans, "count": len(plans)}


@router.get("/all")
def list_all_plans(
    is_active: Optional[bool] = Query(None),
    product_type: Optional[ProductType] = Query(None),
    sort_by: str = Query("price"),
    order: Literal["asc", "desc"] = Query("asc"),
    actor: AdminActor = Depends(require_admin),
) -> dict:
    plans = plans_service.list_plans(
        product_type=product_type.value if product_type else None,
        is_active=is_active,
        sort_by=sort_by,
        order=order,
    )
    return {"success": True, "data": plans, "count": len(plans)}


@router.post("/compare")
def compare_plans(body: CompareRequest) -> dict:
    comparison = RecommendationService().compare(body.plan_ids)
    return {"success": True, "data": comparison}


@router.get("/product-type/{product_type}")
def plans_by_product_type(product_type: str) -> dict:
    plans = plans_service.list_plans_by_product_type(product_type)
    return {"success": True, "data": plans, "count": len(plans)}


@router.get("/discounts/public")
def public_discounts(now: Optional[datetime] = Depends(now_param)) -> dict:
    return {"success": True, "data": list_public_discounts(now=now)}


@router.get("/{plan_id}")
def get_plan(plan_id: str) -> dict:
    return {"success": True, "data": plans_service.get_plan(plan_id)}


@router.post("", status_code=201)
def create_plan(body: PlanCreateRequest, actor: AdminActor = Depends(require_admin)) -> dict:
    plan = plans_service.create_plan(body.model_dump(mode="json"), actor_id=actor.actor_id)
    return {"success": True, "message": "Plan created successfully", "data": plan}


@router.put("/{plan_id}")
def update_plan(plan_id: str, body: PlanUpdateRequest, actor: AdminActor = Depends(require_admin)) -> dict:
    plan = plans_service.update_plan(
        plan_id, body.model_dump(mode="json", exclude_none=True), actor_id=actor.actor_id
    )
    return {"success": True, "message": "Plan updated successfully", "data": plan}


@router.delete("/{plan_id}")
def delete_plan(plan_id: str, actor: AdminActor = Depends(require_admin)) -> dict:
    plans_service.delete_plan(plan_id, actor_id=actor.actor_id)
    return {"success": True, "message": "Plan deleted successfully"}


@router.patch("/{plan_id}/toggle-status")
def toggle_plan_status(plan_id: str, actor: AdminActor = Depends(require_admin)) -> dict:
    plan = plans_service.toggle_plan_status(plan_id, actor_id=actor.actor_id)
    state = "activated" if plan.is_active else "deactivated"
    return {"success": True, "message": f"Plan {state} successfully", "data": plan}
