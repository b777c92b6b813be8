"""
backend/models/dashboard.py

Read models for the user and admin dashboards. All models frozen (immutable).
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict

from backend.models.analytics import GroupCount, TimeSeries, TopPlanEntry
from backend.models.subscription import Subscription
from backend.models.usage import UsageRecord
from backend.models.user import User


class DashboardUsageStats(BaseModel):
    """Trailing-window usage; usage_percentage is total / plan quota * 100."""
    model_config = ConfigDict(frozen=True)

    total_usage: float = 0.0
    average_daily_usage: float = 0.0
    peak_usage: float = 0.0
    usage_percentage: float = 0.0
    days_with_data: int = 0


class UpcomingBilling(BaseModel):
    model_config = ConfigDict(frozen=True)

    next_billing_date: Optional[datetime] = None
    amount: Optional[float] = None
    auto_renew: bool = False


class UserDashboard(BaseModel):
    model_config = ConfigDict(frozen=True)

    active_subscription: Optional[Subscription] = None
    recent_subscriptions: List[Subscription]
    usage_stats: DashboardUsageStats
    upcoming_billing: Optional[UpcomingBilling] = None
    unread_notifications: int = 0
    recent_usage: List[UsageRecord]


class DashboardOverview(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_users: int
    total_subscriptions: int
    active_subscriptions: int
    total_plans: int
    churn_rate: float


class RevenueStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_monthly_revenue: float = 0.0
    average_subscription_value: float = 0.0


class AdminDashboard(BaseModel):
    model_config = ConfigDict(frozen=True)

    overview: DashboardOverview
    status_breakdown: List[GroupCount]
    top_plans: List[TopPlanEntry]
    monthly_trends: Dict[str, TimeSeries]
    recent_users: List[User]
    recent_subscriptions: List[Subscription]
    revenue_stats: RevenueStats
