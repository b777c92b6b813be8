"""Plan comparison: ranges plus best value, fastest and cheapest picks."""

from typing import Sequence

from backend.core.errors import ValidationError
from backend.models.plan import Plan, PlanComparison, PlanRange

MIN_PLANS = 2
MAX_PLANS = 4


def _range(values: Sequence[float]) -> PlanRange:
    return PlanRange(min=min(values), max=max(values), average=sum(values) / len(values))


def compare_plans(plans: Sequence[Plan]) -> PlanComparison:
    """
    Compare 2-4 plans.

    Ties keep the earlier plan: reduce-style selection only replaces the
    current pick on a strictly better candidate.
    """
    if len(plans) < MIN_PLANS:
        raise ValidationError(f"At least {MIN_PLANS} plans are required for comparison")
    if len(plans) > MAX_PLANS:
        raise ValidationError(f"Maximum {MAX_PLANS} plans can be compared at once")

    best_value = plans[0]
    fastest = plans[0]
    cheapest = plans[0]
    for plan in plans[1:]:
        if plan.value_ratio > best_value.value_ratio:
            best_value = plan
        if plan.download_speed > fastest.download_speed:
            fastest = plan
        if plan.price < cheapest.price:
            cheapest = plan

    return PlanComparison(
        plans=list(plans),
        price_range=_range([p.price for p in plans]),
        quota_range=_range([p.quota for p in plans]),
        speed_range=_range([p.download_speed for p in plans]),
        best_value=best_value,
        fastest=fastest,
        cheapest=cheapest,
    )
