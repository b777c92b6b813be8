"""
Analytics service: loads a snapshot of subscriptions, users and usage,
then hands it to the pure rollups in rollups.py.

One named method per dashboard report.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from backend.core.clock import resolve_now
from backend.features.analytics import rollups
from backend.features.plans.service import get_plans_map
from backend.features.subscriptions.service import load_all_subscriptions
from backend.features.usage.aggregator import round2
from backend.features.usage.service import get_usage_records
from backend.features.users.service import load_all_users
from backend.models.analytics import (
    AnalyticsReport,
    ChurnAnalytics,
    CurrentTopPlans,
    DateRange,
    Granularity,
    OverviewTotals,
    TopPlanEntry,
    YearTopPlans,
)
from backend.models.subscription import SubscriptionStatus

OVERVIEW_TOP_PLANS = 5


class AnalyticsService:
    """Admin dashboard reports. Every method accepts `now` for deterministic tests."""

    def report(self, report_type: str = "overview", period: str = "30d", now: Optional[datetime] = None) -> AnalyticsReport:
        """Dispatch by type; unknown types fall back to the overview."""
        builders: Dict[str, Callable[[datetime, datetime], Dict[str, Any]]] = {
            "overview": self.overview,
            "subscriptions": self.subscriptions,
            "revenue": self.revenue,
            "usage": self.usage,
            "users": self.users,
        }
        if report_type not in builders:
            report_type = "overview"
        now = resolve_now(now)
        period, start, end = rollups.resolve_period(period, now)
        return AnalyticsReport(
            period=period,
            type=report_type,
            date_range=DateRange(start_date=start, end_date=end),
            data=builders[report_type](start, end),
            computed_at=now,
        )

    def overview(self, start: datetime, end: datetime) -> Dict[str, Any]:
        subs = load_all_subscriptions()
        active = [s for s in subs if s.status == SubscriptionStatus.ACTIVE]
        plans_by_id = get_plans_map()
        totals = OverviewTotals(
            total_users=len(load_all_users()),
            total_subscriptions=len(subs),
            active_subscriptions=len(active),
            total_revenue=round2(sum(s.next_payment_amount or 0.0 for s in active)),
        )
        return {
            "overview": totals,
            "monthly_trends": rollups.monthly_trends(subs, start, end),
            "top_plans": rollups.top_plans(active, plans_by_id, limit=OVERVIEW_TOP_PLANS),
        }

    def subscriptions(self, start: datetime, end: datetime) -> Dict[str, Any]:
        subs = load_all_subscriptions()
        plans_by_id = get_plans_map()
        daily = rollups.rollup_subscriptions(subs, start, end, Granularity.DAY)
        return {
            "daily_subscriptions": daily,
            "status_breakdown": rollups.group_counts(subs, lambda s: s.status),
            "plan_breakdown": rollups.group_counts(
                [s for s in subs if s.plan_id in plans_by_id],
                lambda s: plans_by_id[s.plan_id].name,
            ),
            "total": daily.total,
        }

    def revenue(self, start: datetime, end: datetime) -> Dict[str, Any]:
        subs = load_all_subscriptions()
        daily = rollups.rollup_revenue(subs, start, end, Granularity.DAY)
        amounts = [s.next_payment_amount for s in subs if s.next_payment_amount is not None]
        return {
            "daily_revenue": daily,
            "revenue_by_plan": rollups.revenue_by_plan(subs, get_plans_map()),
            "average_revenue": {
                "average_revenue": round2(sum(amounts) / len(amounts)) if amounts else 0.0,
                "total_revenue": round2(sum(amounts)),
            },
            "total": daily.total,
        }

    def usage(self, start: datetime, end: datetime) -> Dict[str, Any]:
        records = get_usage_records(None, start, end)
        daily = rollups.rollup_usage(records, start, end, Granularity.DAY)
        all_records = get_usage_records(None)
        subs_by_id = {s.subscription_id: s for s in load_all_subscriptions()}
        total_all = sum(r.data_used for r in all_records)
        return {
            "daily_usage": daily,
            "usage_by_plan": rollups.usage_by_plan(all_records, subs_by_id, get_plans_map()),
            "average_usage": {
                "average_daily_usage": round2(total_all / len(all_records)) if all_records else 0.0,
                "total_usage": round2(total_all),
            },
            "total": daily.total,
        }

    def users(self, start: datetime, end: datetime) -> Dict[str, Any]:
        users = load_all_users()
        subscribed = {s.user_id for s in load_all_subscriptions()}
        daily = rollups.rollup_registrations(users, start, end, Granularity.DAY)
        return {
            "daily_registrations": daily,
            "role_breakdown": rollups.group_counts(users, lambda u: u.role),
            "user_activity": rollups.group_counts(
                users,
                lambda u: f"{'active' if u.is_active else 'inactive'}:"
                          f"{'subscribed' if u.user_id in subscribed else 'no_subscription'}",
            ),
            "total": daily.total,
        }

    def top_plans(self, period: str = "30d", limit: int = rollups.TOP_PLANS_LIMIT, now: Optional[datetime] = None) -> Dict[str, Any]:
        period, start, end = rollups.resolve_period(period, now)
        entries: List[TopPlanEntry] = rollups.top_plans(
            load_all_subscriptions(), get_plans_map(), start, end, limit=limit
        )
        return {
            "period": period,
            "date_range": DateRange(start_date=start, end_date=end),
            "top_plans": entries,
        }

    def top_plans_by_year(
        self,
        per_year: int = rollups.TOP_PLANS_PER_YEAR,
        start_year: Optional[int] = None,
        end_year: Optional[int] = None,
    ) -> List[YearTopPlans]:
        return rollups.top_plans_by_year(
            load_all_subscriptions(), get_plans_map(), per_year=per_year, start_year=start_year, end_year=end_year
        )

    def top_plans_current(self, limit: int = rollups.TOP_PLANS_CURRENT_LIMIT, now: Optional[datetime] = None) -> CurrentTopPlans:
        return rollups.top_plans_current(load_all_subscriptions(), get_plans_map(), now=now, limit=limit)

    def churn(self, period: str = "30d", now: Optional[datetime] = None) -> Dict[str, Any]:
        period, start, end = rollups.resolve_period(period, now)
        data: ChurnAnalytics = rollups.rollup_churn(load_all_subscriptions(), start, end, Granularity.DAY)
        return {
            "period": period,
            "date_range": DateRange(start_date=start, end_date=end),
            "data": data,
        }
