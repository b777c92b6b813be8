"""
backend/features/analytics/rollups.py

Pure deterministic rollups for admin analytics.
All rollups: (rows, range, granularity) -> immutable read model.

Buckets are keyed by UTC calendar unit and emitted in ascending order.
Empty buckets are omitted, and every series total equals the sum of its
bucket values. Top-N rankings sort by descending count and keep first-seen
order for ties.
"""

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from backend.core.clock import add_months, ensure_utc, resolve_now
from backend.features.usage.aggregator import round2
from backend.models.analytics import (
    Bucket,
    ChurnAnalytics,
    CurrentTopPlans,
    Granularity,
    GroupCount,
    PlanRevenue,
    PlanUsage,
    TimeSeries,
    TopPlanEntry,
    UsageBucket,
    UsageSeries,
    YearTopPlans,
)
from backend.models.plan import Plan
from backend.models.subscription import Subscription, SubscriptionStatus
from backend.models.usage import UsageRecord
from backend.models.user import User

T = TypeVar("T")

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}
DEFAULT_PERIOD = "30d"
TOP_PLANS_LIMIT = 10
TOP_PLANS_PER_YEAR = 5
TOP_PLANS_CURRENT_LIMIT = 5

_BUCKET_FORMATS = {
    Granularity.DAY: "%Y-%m-%d",
    Granularity.MONTH: "%Y-%m",
    Granularity.YEAR: "%Y",
}


def resolve_period(period: Optional[str], now: Optional[datetime] = None) -> Tuple[str, datetime, datetime]:
    """Map '7d' | '30d' | '90d' | '1y' to (period, start, end). Unknown values fall back to 30d."""
    end = resolve_now(now)
    if period == "1y":
        return period, add_months(end, -12), end
    if period in PERIOD_DAYS:
        return period, end - timedelta(days=PERIOD_DAYS[period]), end
    return DEFAULT_PERIOD, end - timedelta(days=PERIOD_DAYS[DEFAULT_PERIOD]), end


def bucket_key(ts: datetime, granularity: Granularity = Granularity.DAY) -> str:
    return ensure_utc(ts).strftime(_BUCKET_FORMATS[Granularity(granularity)])


def _in_range(ts: Optional[datetime], start: Optional[datetime], end: Optional[datetime]) -> bool:
    if ts is None:
        return False
    ts = ensure_utc(ts)
    if start is not None and ts < ensure_utc(start):
        return False
    if end is not None and ts > ensure_utc(end):
        return False
    return True


def _series(
    items: Iterable[T],
    timestamp: Callable[[T], Optional[datetime]],
    value: Callable[[T], float],
    start: Optional[datetime],
    end: Optional[datetime],
    granularity: Granularity,
) -> TimeSeries:
    counts: Dict[str, int] = {}
    sums: Dict[str, float] = {}
    for item in items:
        ts = timestamp(item)
        if not _in_range(ts, start, end):
            continue
        key = bucket_key(ts, granularity)
        counts[key] = counts.get(key, 0) + 1
        sums[key] = sums.get(key, 0.0) + value(item)

    buckets = [
        Bucket(bucket=key, count=counts[key], value=round2(sums[key]))
        for key in sorted(counts)
    ]
    return TimeSeries(
        granularity=granularity,
        buckets=buckets,
        total=round2(sum(b.value for b in buckets)),
    )


def _amount(subscription: Subscription) -> float:
    return subscription.next_payment_amount or 0.0


def rollup_subscriptions(
    subscriptions: Iterable[Subscription],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    granularity: Granularity = Granularity.DAY,
) -> TimeSeries:
    """New subscriptions per bucket (by created_at); value is the count."""
    return _series(subscriptions, lambda s: s.created_at, lambda s: 1, start, end, granularity)


def rollup_revenue(
    subscriptions: Iterable[Subscription],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    granularity: Granularity = Granularity.DAY,
) -> TimeSeries:
    """Sum of next_payment_amount per bucket (by created_at)."""
    return _series(subscriptions, lambda s: s.created_at, _amount, start, end, granularity)


def monthly_trends(
    subscriptions: Sequence[Subscription],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Dict[str, TimeSeries]:
    """New subscriptions and revenue per calendar month."""
    return {
        "subscriptions": rollup_subscriptions(subscriptions, start, end, Granularity.MONTH),
        "revenue": rollup_revenue(subscriptions, start, end, Granularity.MONTH),
    }


def rollup_registrations(
    users: Iterable[User],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    granularity: Granularity = Granularity.DAY,
) -> TimeSeries:
    return _series(users, lambda u: u.created_at, lambda u: 1, start, end, granularity)


def rollup_usage(
    records: Iterable[UsageRecord],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    granularity: Granularity = Granularity.DAY,
) -> UsageSeries:
    """
    Usage totals per bucket with average speed and distinct users.

    Average speed only counts records that report a speed.
    """
    grouped: "OrderedDict[str, List[UsageRecord]]" = OrderedDict()
    all_users = set()
    for record in records:
        if not _in_range(record.date, start, end):
            continue
        grouped.setdefault(bucket_key(record.date, granularity), []).append(record)
        all_users.add(record.user_id)

    buckets = []
    for key in sorted(grouped):
        rows = grouped[key]
        speeds = [r.average_speed for r in rows if r.average_speed is not None]
        buckets.append(UsageBucket(
            bucket=key,
            total_usage=round2(sum(r.data_used for r in rows)),
            average_speed=round2(sum(speeds) / len(speeds)) if speeds else 0.0,
            user_count=len({r.user_id for r in rows}),
        ))

    return UsageSeries(
        granularity=granularity,
        buckets=buckets,
        total=round2(sum(b.total_usage for b in buckets)),
        user_count=len(all_users),
    )


def group_counts(items: Iterable[T], key: Callable[[T], Optional[str]]) -> List[GroupCount]:
    """Flat breakdown by key, largest group first (ties keep first-seen order)."""
    counts: "OrderedDict[Optional[str], int]" = OrderedDict()
    for item in items:
        k = key(item)
        if hasattr(k, "value"):
            k = k.value
        counts[k] = counts.get(k, 0) + 1
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    return [GroupCount(key=k, count=c) for k, c in ranked]


def _rank_plans(
    subscriptions: Iterable[Subscription],
    plans_by_id: Dict[str, Plan],
    limit: int,
) -> List[TopPlanEntry]:
    grouped: "OrderedDict[str, List[Subscription]]" = OrderedDict()
    for sub in subscriptions:
        grouped.setdefault(sub.plan_id, []).append(sub)

    entries = []
    for plan_id, rows in grouped.items():
        plan = plans_by_id.get(plan_id)
        if plan is None:
            # Subscriptions pointing at deleted plans drop out, like an inner join
            continue
        revenue = sum(_amount(s) for s in rows)
        entries.append(TopPlanEntry(
            plan_id=plan_id,
            plan_name=plan.name,
            plan_price=plan.price,
            plan_type=plan.product_type.value,
            subscription_count=len(rows),
            active_subscriptions=sum(1 for s in rows if s.status == SubscriptionStatus.ACTIVE),
            unique_subscribers=len({s.user_id for s in rows}),
            total_revenue=round2(revenue),
            average_revenue_per_subscription=round2(revenue / len(rows)),
        ))

    entries.sort(key=lambda e: e.subscription_count, reverse=True)
    return entries[:limit]


def top_plans(
    subscriptions: Iterable[Subscription],
    plans_by_id: Dict[str, Plan],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = TOP_PLANS_LIMIT,
) -> List[TopPlanEntry]:
    """Plans ranked by subscriptions created within [start, end]."""
    in_range = [
        s for s in subscriptions
        if (start is None and end is None) or _in_range(s.created_at, start, end)
    ]
    return _rank_plans(in_range, plans_by_id, limit)


def top_plans_by_year(
    subscriptions: Iterable[Subscription],
    plans_by_id: Dict[str, Plan],
    per_year: int = TOP_PLANS_PER_YEAR,
    start_year: Optional[int] = None,
    end_year: Optional[int] = None,
) -> List[YearTopPlans]:
    """Per calendar year (newest first), the top plans capped at per_year."""
    by_year: Dict[int, List[Subscription]] = {}
    for sub in subscriptions:
        if sub.created_at is None:
            continue
        year = ensure_utc(sub.created_at).year
        if start_year is not None and year < start_year:
            continue
        if end_year is not None and year > end_year:
            continue
        by_year.setdefault(year, []).append(sub)

    return [
        YearTopPlans(year=year, plans=_rank_plans(by_year[year], plans_by_id, per_year))
        for year in sorted(by_year, reverse=True)
    ]


def top_plans_current(
    subscriptions: Sequence[Subscription],
    plans_by_id: Dict[str, Plan],
    now: Optional[datetime] = None,
    limit: int = TOP_PLANS_CURRENT_LIMIT,
) -> CurrentTopPlans:
    """Most popular plans for the current calendar month and year (UTC)."""
    now = resolve_now(now)
    month_rows = []
    year_rows = []
    for sub in subscriptions:
        if sub.created_at is None:
            continue
        created = ensure_utc(sub.created_at)
        if created.year == now.year:
            year_rows.append(sub)
            if created.month == now.month:
                month_rows.append(sub)
    return CurrentTopPlans(
        month=_rank_plans(month_rows, plans_by_id, limit),
        year=_rank_plans(year_rows, plans_by_id, limit),
    )


def revenue_by_plan(subscriptions: Iterable[Subscription], plans_by_id: Dict[str, Plan]) -> List[PlanRevenue]:
    rows = []
    for entry in _rank_plans(subscriptions, plans_by_id, limit=len(plans_by_id) or 1):
        rows.append(PlanRevenue(
            plan_id=entry.plan_id,
            plan_name=entry.plan_name,
            plan_type=entry.plan_type,
            total_revenue=entry.total_revenue,
            subscription_count=entry.subscription_count,
            average_revenue=entry.average_revenue_per_subscription,
        ))
    rows.sort(key=lambda r: r.total_revenue, reverse=True)
    return rows


def usage_by_plan(
    records: Iterable[UsageRecord],
    subscriptions_by_id: Dict[str, Subscription],
    plans_by_id: Dict[str, Plan],
) -> List[PlanUsage]:
    """Usage joined through subscription -> plan, heaviest plan first."""
    grouped: "OrderedDict[str, List[UsageRecord]]" = OrderedDict()
    for record in records:
        sub = subscriptions_by_id.get(record.subscription_id)
        if sub is None or sub.plan_id not in plans_by_id:
            continue
        grouped.setdefault(sub.plan_id, []).append(record)

    rows = []
    for plan_id, recs in grouped.items():
        plan = plans_by_id[plan_id]
        total = sum(r.data_used for r in recs)
        rows.append(PlanUsage(
            plan_id=plan_id,
            plan_name=plan.name,
            plan_type=plan.product_type.value,
            total_usage=round2(total),
            average_usage=round2(total / len(recs)),
            user_count=len({r.user_id for r in recs}),
        ))
    rows.sort(key=lambda r: r.total_usage, reverse=True)
    return rows


def rollup_churn(
    subscriptions: Sequence[Subscription],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    granularity: Granularity = Granularity.DAY,
) -> ChurnAnalytics:
    """
    Cancellations within [start, end] bucketed by cancelled_at.

    churn_rate is churned / currently active * 100 (0 when nothing is active).
    """
    churned = [
        s for s in subscriptions
        if s.status == SubscriptionStatus.CANCELLED and _in_range(s.cancelled_at, start, end)
    ]
    active = sum(1 for s in subscriptions if s.status == SubscriptionStatus.ACTIVE)
    series = _series(churned, lambda s: s.cancelled_at, lambda s: 1, start, end, granularity)
    total_churned = len(churned)
    churn_rate = round2(total_churned / active * 100) if active > 0 else 0.0

    return ChurnAnalytics(
        churn_data=series,
        lost_revenue=round2(sum(_amount(s) for s in churned)),
        total_churned=total_churned,
        churn_rate=churn_rate,
        cancellation_reasons=group_counts(
            [s for s in churned if s.cancellation_reason],
            lambda s: s.cancellation_reason,
        ),
    )
