"""
Churn heuristic.

Deterministic risk estimate from subscription age, recent usage volume
and the auto-renew flag.
"""

from datetime import datetime
from typing import Optional

from backend.core.clock import ensure_utc, resolve_now
from backend.models.recommendation import ChurnFactors, ChurnPrediction, ChurnRisk
from backend.models.subscription import Subscription

NEW_SUBSCRIPTION_MONTHS = 1
DAYS_PER_MONTH = 30
HIGH_CONFIDENCE_RECORDS = 10
MEDIUM_CONFIDENCE_RECORDS = 5


def subscription_age_months(start_date: datetime, now: datetime) -> float:
    return (now - ensure_utc(start_date)).total_seconds() / (DAYS_PER_MONTH * 86400)


def predict_churn(
    subscription: Optional[Subscription],
    usage_record_count: int,
    now: Optional[datetime] = None,
) -> ChurnPrediction:
    """
    Estimate churn risk for the user's active subscription.

    Checks run in order: age, then usage emptiness, then auto-renew.
    Each check only escalates, so a high set by an earlier check is
    not lowered to medium by the auto-renew check.

    Args:
        subscription: Active subscription, or None
        usage_record_count: Usage records in the trailing window
        now: Fixed timestamp for deterministic results
    """
    if subscription is None:
        return ChurnPrediction(churn_risk=ChurnRisk.LOW, confidence=0.5)

    now = resolve_now(now)
    age_months = subscription_age_months(subscription.start_date, now)

    risk = ChurnRisk.LOW
    if age_months < NEW_SUBSCRIPTION_MONTHS:
        risk = ChurnRisk.HIGH
    if usage_record_count == 0:
        risk = ChurnRisk.HIGH
    if subscription.auto_renew is False and risk != ChurnRisk.HIGH:
        risk = ChurnRisk.MEDIUM

    confidence = 0.5
    if usage_record_count > HIGH_CONFIDENCE_RECORDS:
        confidence = 0.8
    elif usage_record_count > MEDIUM_CONFIDENCE_RECORDS:
        confidence = 0.6

    return ChurnPrediction(
        churn_risk=risk,
        confidence=confidence,
        factors=ChurnFactors(
            subscription_age=round(age_months, 1),
            has_usage_data=usage_record_count > 0,
            auto_renew=subscription.auto_renew,
        ),
    )
