"""
Recommendation API.

Personalized plan suggestions, churn risk, seasonal offers and the
most popular plan. All reads accept `now` for deterministic results.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from backend.api.params import now_param
from backend.core.auth import get_current_user_id
from backend.features.recommendations.service import RecommendationService

router = APIRouter(prefix="/api/recommendations", tags=["recommendations"])

_service = RecommendationService()


class CompareRequest(BaseModel):
    plan_ids: List[str]


@router.get("")
def get_recommendations(
    include_churn_prediction: bool = Query(False),
    user_id: str = Depends(get_current_user_id),
    now: Optional[datetime] = Depends(now_param),
) -> dict:
    result = _service.get_recommendations(
        user_id, include_churn_prediction=include_churn_prediction, now=now
    )
    return {"success": True, "data": result}


@router.get("/churn-prediction")
def churn_prediction(
    user_id: str = Depends(get_current_user_id),
    now: Optional[datetime] = Depends(now_param),
) -> dict:
    return {"success": True, "data": _service.get_churn_prediction(user_id, now=now)}


@router.get("/usage-based")
def usage_based(
    days: int = Query(30),
    user_id: str = Depends(get_current_user_id),
    now: Optional[datetime] = Depends(now_param),
) -> dict:
    return {"success": True, "data": _service.get_usage_based(user_id, days=days, now=now)}


@router.get("/seasonal")
def seasonal(now: Optional[datetime] = Depends(now_param)) -> dict:
    recommendations = _service.get_seasonal(now=now)
    return {"success": True, "data": recommendations, "count": len(recommendations)}


@router.get("/global")
def global_recommendation() -> dict:
    return {"success": True, "data": _service.get_global_recommendation()}


@router.post("/compare")
def compare(body: CompareRequest, user_id: str = Depends(get_current_user_id)) -> dict:
    return {"success": True, "data": _service.compare(body.plan_ids)}
