"""
Dashboard service: one call per screen, composed from the subscription,
usage, notification and analytics services.

The user dashboard only ever sees the caller's own rows; the admin
dashboard and the analytics shortcut are admin-only at the router.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from backend.core.clock import add_months, resolve_now
from backend.core.config import settings
from backend.features.analytics import rollups
from backend.features.analytics.service import AnalyticsService
from backend.features.notifications.service import get_notification_service
from backend.features.plans.service import get_plans_map
from backend.features.subscriptions.service import (
    get_active_subscription,
    list_user_subscriptions,
    load_all_subscriptions,
)
from backend.features.usage.aggregator import round2, summarize_usage
from backend.features.usage.service import get_recent_usage
from backend.features.users.service import load_all_users
from backend.models.analytics import AnalyticsReport
from backend.models.dashboard import (
    AdminDashboard,
    DashboardOverview,
    DashboardUsageStats,
    RevenueStats,
    UpcomingBilling,
    UserDashboard,
)
from backend.models.plan import Plan
from backend.models.subscription import Subscription, SubscriptionStatus
from backend.models.usage import UsageRecord

USAGE_WINDOW_DAYS = 30
RECENT_SUBSCRIPTIONS = 5
RECENT_USAGE = 7
ADMIN_RECENT_ROWS = 10
ADMIN_TOP_PLANS = 5
TREND_MONTHS = 12
ANALYTICS_TYPES = ("subscriptions", "revenue", "usage")


def usage_stats(records: List[UsageRecord], plan: Optional[Plan]) -> DashboardUsageStats:
    """Window totals; the percentage is 0 without a plan or quota."""
    summary = summarize_usage(records)
    quota = plan.quota if plan else 0
    return DashboardUsageStats(
        total_usage=summary.total_data_used,
        average_daily_usage=summary.average_daily_usage,
        peak_usage=summary.peak_usage,
        usage_percentage=round2(sum(r.data_used for r in records) / quota * 100) if quota else 0.0,
        days_with_data=summary.record_count,
    )


def churn_rate(subscriptions: List[Subscription], now: datetime, days: int) -> float:
    """Cancellations in the trailing window as a percentage of active subscriptions."""
    active = sum(1 for s in subscriptions if s.status == SubscriptionStatus.ACTIVE)
    if not active:
        return 0.0
    since = now - timedelta(days=days)
    cancelled = sum(
        1 for s in subscriptions
        if s.status == SubscriptionStatus.CANCELLED and s.cancelled_at and since <= s.cancelled_at <= now
    )
    return round2(cancelled / active * 100)


class DashboardService:
    def __init__(self, analytics: Optional[AnalyticsService] = None):
        self.analytics_service = analytics or AnalyticsService()

    def user_dashboard(self, user_id: str, now: Optional[datetime] = None) -> UserDashboard:
        now = resolve_now(now)
        active = get_active_subscription(user_id)
        records = get_recent_usage(user_id, USAGE_WINDOW_DAYS, now=now)

        billing = None
        if active is not None:
            billing = UpcomingBilling(
                next_billing_date=active.next_billing_date,
                amount=active.next_payment_amount,
                auto_renew=active.auto_renew,
            )

        return UserDashboard(
            active_subscription=active,
            recent_subscriptions=list_user_subscriptions(user_id, include_expired=True)[:RECENT_SUBSCRIPTIONS],
            usage_stats=usage_stats(records, active.plan if active else None),
            upcoming_billing=billing,
            unread_notifications=get_notification_service().unread_count(user_id),
            recent_usage=list(reversed(records))[:RECENT_USAGE],
        )

    def admin_dashboard(self, now: Optional[datetime] = None) -> AdminDashboard:
        now = resolve_now(now)
        subs = load_all_subscriptions()
        users = load_all_users()
        plans_by_id = get_plans_map()
        active = [s for s in subs if s.status == SubscriptionStatus.ACTIVE]
        monthly_revenue = sum(s.next_payment_amount or 0.0 for s in active)

        newest_subs = sorted(subs, key=lambda s: s.created_at or now, reverse=True)[:ADMIN_RECENT_ROWS]
        return AdminDashboard(
            overview=DashboardOverview(
                total_users=len(users),
                total_subscriptions=len(subs),
                active_subscriptions=len(active),
                total_plans=len(plans_by_id),
                churn_rate=churn_rate(subs, now, settings.CHURN_WINDOW_DAYS),
            ),
            status_breakdown=rollups.group_counts(subs, lambda s: s.status),
            top_plans=rollups.top_plans(active, plans_by_id, limit=ADMIN_TOP_PLANS),
            monthly_trends=rollups.monthly_trends(subs, add_months(now, -TREND_MONTHS), now),
            recent_users=sorted(users, key=lambda u: u.created_at, reverse=True)[:ADMIN_RECENT_ROWS],
            recent_subscriptions=[
                s.model_copy(update={"plan": plans_by_id.get(s.plan_id)}) for s in newest_subs
            ],
            revenue_stats=RevenueStats(
                total_monthly_revenue=round2(monthly_revenue),
                average_subscription_value=round2(monthly_revenue / len(active)) if active else 0.0,
            ),
        )

    def analytics(self, period: str = "30d", report_type: str = "subscriptions", now: Optional[datetime] = None) -> AnalyticsReport:
        """Unknown report types fall back to subscriptions."""
        if report_type not in ANALYTICS_TYPES:
            report_type = "subscriptions"
        return self.analytics_service.report(report_type, period, now=now)
