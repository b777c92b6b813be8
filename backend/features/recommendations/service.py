"""
Recommendation service.

Loads the user's active subscription, usage window and the active catalog,
then runs the pure engine and churn heuristic over that snapshot.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select

from backend.core.clock import resolve_now
from backend.core.config import settings
from backend.core.database import get_db_session, subscriptions
from backend.core.errors import NotFoundError, ValidationError
from backend.features.plans.service import get_active_catalog, get_plan, get_plans_by_ids
from backend.features.recommendations.churn import predict_churn
from backend.features.recommendations.comparison import MAX_PLANS, MIN_PLANS, compare_plans
from backend.features.recommendations.engine import RecommendationEngine
from backend.features.subscriptions.service import get_active_subscription
from backend.features.usage.aggregator import aggregate_usage
from backend.features.usage.service import count_usage_records, get_recent_usage
from backend.models.plan import PlanComparison
from backend.models.recommendation import ChurnPrediction, Recommendation, RecommendationsResponse
from backend.models.usage import UsageAggregate


class RecommendationService:
    """Per-request orchestration; holds no state between calls."""

    def __init__(self, engine: Optional[RecommendationEngine] = None):
        self.engine = engine or RecommendationEngine()

    def get_recommendations(
        self,
        user_id: str,
        *,
        include_churn_prediction: bool = False,
        now: Optional[datetime] = None,
    ) -> RecommendationsResponse:
        now = resolve_now(now)
        churn = self.get_churn_prediction(user_id, now=now) if include_churn_prediction else None

        subscription = get_active_subscription(user_id)
        if subscription is None or subscription.plan is None:
            return RecommendationsResponse(
                current_plan=None,
                usage_stats=None,
                recommendations=[self.engine.default_recommendation()],
                churn_prediction=churn,
            )

        stats = self._usage_stats(user_id, subscription.plan, settings.RECOMMENDATION_WINDOW_DAYS, now)
        recommendations = self.engine.generate(stats, subscription.plan, get_active_catalog(), now=now)
        return RecommendationsResponse(
            current_plan=subscription.plan,
            usage_stats=stats,
            recommendations=recommendations,
            churn_prediction=churn,
        )

    def get_churn_prediction(self, user_id: str, *, now: Optional[datetime] = None) -> ChurnPrediction:
        now = resolve_now(now)
        subscription = get_active_subscription(user_id)
        if subscription is None:
            return predict_churn(None, 0, now=now)
        window_start = now - timedelta(days=settings.CHURN_WINDOW_DAYS)
        count = count_usage_records(user_id, window_start, now)
        return predict_churn(subscription, count, now=now)

    def get_usage_based(self, user_id: str, *, days: int = 30, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Upgrade/downgrade/speed suggestions over a caller-chosen window."""
        if days < 1 or days > 365:
            raise ValidationError("days must be between 1 and 365")
        now = resolve_now(now)
        subscription = get_active_subscription(user_id)
        if subscription is None or subscription.plan is None:
            raise NotFoundError("No active subscription found")

        stats = self._usage_stats(user_id, subscription.plan, days, now)
        return {
            "current_plan": subscription.plan,
            "usage_stats": stats,
            "recommendations": self.engine.usage_based(stats, subscription.plan, get_active_catalog()),
            "period": f"{days} days",
        }

    def get_seasonal(self, *, now: Optional[datetime] = None) -> List[Recommendation]:
        return self.engine.seasonal(get_active_catalog(), now=now)

    def get_global_recommendation(self) -> Dict[str, Any]:
        """Most popular plan among active subscriptions."""
        with get_db_session() as session:
            top = session.execute(
                select(subscriptions.c.plan_id, func.count().label("subscribers"))
                .where(subscriptions.c.status == "active")
                .group_by(subscriptions.c.plan_id)
                .order_by(func.count().desc())
                .limit(1)
            ).first()
        if top is None:
            return {"recommendation": None, "reason": "No subscriptions yet"}

        try:
            plan = get_plan(top.plan_id)
        except NotFoundError:
            plan = None
        if plan is None or not plan.is_active:
            return {"recommendation": None, "reason": "Top plan not available"}

        return {
            "recommendation": {
                "plan": plan,
                "rationale": "Most popular among active subscribers",
                "subscribers": top.subscribers,
            }
        }

    def compare(self, plan_ids: Sequence[str]) -> PlanComparison:
        if len(plan_ids) < MIN_PLANS:
            raise ValidationError(f"At least {MIN_PLANS} plan IDs are required for comparison")
        if len(plan_ids) > MAX_PLANS:
            raise ValidationError(f"Maximum {MAX_PLANS} plans can be compared at once")
        if len(set(plan_ids)) != len(plan_ids):
            raise ValidationError("Plan IDs must be unique")
        plans = [p for p in get_plans_by_ids(plan_ids) if p.is_active]
        if len(plans) != len(plan_ids):
            raise NotFoundError("One or more plans not found or inactive")
        return compare_plans(plans)

    def _usage_stats(self, user_id: str, plan, days: int, now: datetime) -> UsageAggregate:
        return aggregate_usage(get_recent_usage(user_id, days, now), plan)
