"""
backend/features/usage/aggregator.py

Pure usage aggregation: (records, plan) -> UsageAggregate.

Same records + same plan => identical output. No database access here;
the usage service loads the window and hands it over.
"""

import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence

from backend.models.plan import Plan
from backend.models.usage import UsageAggregate, UsagePattern, UsageRecord, UsageSummary

HEAVY_THRESHOLD = 80
LIGHT_THRESHOLD = 30

_TWO_PLACES = Decimal("0.01")


def round2(value: float) -> float:
    """Round half away from zero at the 2nd decimal. NaN and infinities pass through."""
    if math.isnan(value) or math.isinf(value):
        return value
    return float(Decimal(str(value)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def classify_usage(usage_percentage: float) -> UsagePattern:
    """heavy above 80%, light below 30%, moderate otherwise (boundaries are moderate)."""
    if usage_percentage > HEAVY_THRESHOLD:
        return UsagePattern.HEAVY
    if usage_percentage < LIGHT_THRESHOLD:
        return UsagePattern.LIGHT
    return UsagePattern.MODERATE


def _safe_divide(numerator: float, denominator: float) -> float:
    # A zero quota mirrors IEEE division: x/0 -> inf, 0/0 -> nan
    if denominator == 0:
        if numerator == 0 or math.isnan(numerator):
            return float("nan")
        return math.copysign(float("inf"), numerator)
    return numerator / denominator


def _speed(value: Optional[float]) -> float:
    return value if value is not None else 0.0


def aggregate_usage(records: Sequence[UsageRecord], plan: Plan) -> UsageAggregate:
    """
    Reduce a window of usage records against the plan quota.

    usage_percentage is total / (quota * record_count) * 100: the quota is
    scaled by the number of records, not by elapsed days.

    Args:
        records: Usage records already restricted to the window
        plan: The user's current plan (for quota)

    Returns:
        UsageAggregate; the all-zero sentinel with pattern no_data when empty
    """
    if not records:
        return UsageAggregate()

    count = len(records)
    total = sum(r.data_used for r in records)
    peak = max(r.data_used for r in records)
    average = total / count
    percentage = _safe_divide(total, plan.quota * count) * 100

    average_speed = sum(_speed(r.average_speed) for r in records) / count
    peak_speed = max(_speed(r.peak_speed) for r in records)
    days_with_usage = sum(1 for r in records if r.data_used > 0)

    usage_percentage = round2(percentage)
    return UsageAggregate(
        total_usage=round2(total),
        average_daily_usage=round2(average),
        peak_usage=round2(peak),
        usage_percentage=usage_percentage,
        average_speed=round2(average_speed),
        peak_speed=round2(peak_speed),
        days_with_usage=days_with_usage,
        usage_pattern=classify_usage(usage_percentage),
    )


def summarize_usage(records: Iterable[UsageRecord]) -> UsageSummary:
    """History summary: totals over every record in the filter, no quota involved."""
    records = list(records)
    if not records:
        return UsageSummary()
    count = len(records)
    total = sum(r.data_used for r in records)
    return UsageSummary(
        total_data_used=round2(total),
        average_daily_usage=round2(total / count),
        peak_usage=round2(max(r.data_used for r in records)),
        average_speed=round2(sum(_speed(r.average_speed) for r in records) / count),
        record_count=count,
    )
