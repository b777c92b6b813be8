"""
backend/models/analytics.py

Read models for admin dashboards: time-bucketed series, group counts
and top-plan rankings. All models frozen (immutable).
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class Granularity(str, Enum):
    DAY = "day"
    MONTH = "month"
    YEAR = "year"


class Bucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    bucket: str  # "YYYY-MM-DD" | "YYYY-MM" | "YYYY"
    count: int
    value: float


class TimeSeries(BaseModel):
    """Buckets in ascending calendar order; total == sum(bucket.value)."""
    model_config = ConfigDict(frozen=True)

    granularity: Granularity
    buckets: List[Bucket] = Field(default_factory=list)
    total: float = 0.0


class UsageBucket(BaseModel):
    model_config = ConfigDict(frozen=True)

    bucket: str
    total_usage: float
    average_speed: float
    user_count: int


class UsageSeries(BaseModel):
    model_config = ConfigDict(frozen=True)

    granularity: Granularity
    buckets: List[UsageBucket] = Field(default_factory=list)
    total: float = 0.0
    user_count: int = 0


class GroupCount(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: Optional[str]
    count: int


class TopPlanEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_id: str
    plan_name: str
    plan_price: float
    plan_type: str
    subscription_count: int
    active_subscriptions: int = 0
    unique_subscribers: int = 0
    total_revenue: float = 0.0
    average_revenue_per_subscription: float = 0.0


class YearTopPlans(BaseModel):
    model_config = ConfigDict(frozen=True)

    year: int
    plans: List[TopPlanEntry]


class CurrentTopPlans(BaseModel):
    model_config = ConfigDict(frozen=True)

    month: List[TopPlanEntry]
    year: List[TopPlanEntry]


class PlanRevenue(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_id: str
    plan_name: str
    plan_type: str
    total_revenue: float
    subscription_count: int
    average_revenue: float


class PlanUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_id: str
    plan_name: str
    plan_type: str
    total_usage: float
    average_usage: float
    user_count: int


class ChurnAnalytics(BaseModel):
    model_config = ConfigDict(frozen=True)

    churn_data: TimeSeries
    lost_revenue: float
    total_churned: int
    churn_rate: float
    cancellation_reasons: List[GroupCount]


class OverviewTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_users: int
    total_subscriptions: int
    active_subscriptions: int
    total_revenue: float


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start_date: datetime
    end_date: datetime


class AnalyticsReport(BaseModel):
    """Envelope for period-scoped reports."""
    model_config = ConfigDict(frozen=True)

    period: str
    type: str
    date_range: DateRange
    data: Dict[str, Any]
    computed_at: datetime
