"""
backend/features/usage/service.py

Usage record persistence and queries.

Records are written against the user's active subscription and read back
for the aggregator (trailing window), usage history and analytics.
"""

import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, insert, select

from backend.core.clock import ensure_utc, resolve_now
from backend.core.database import get_db_session, row_to_dict, subscriptions, usage_records
from backend.core.errors import NotFoundError, ValidationError
from backend.core.logging import log_event
from backend.features.usage.aggregator import round2
from backend.models.usage import UsageRecord, UsageSummary

NON_NEGATIVE_FIELDS = ("data_used", "data_downloaded", "data_uploaded", "average_speed", "peak_speed", "latency")


def _to_model(row) -> UsageRecord:
    data = row_to_dict(row)
    data.pop("created_at", None)
    return UsageRecord(**data)


def record_usage(
    user_id: str,
    *,
    data_used: float,
    date: Optional[datetime] = None,
    data_downloaded: float = 0.0,
    data_uploaded: float = 0.0,
    average_speed: Optional[float] = None,
    peak_speed: Optional[float] = None,
    latency: Optional[float] = None,
    packet_loss: Optional[float] = None,
    now: Optional[datetime] = None,
) -> UsageRecord:
    """Persist one observation against the user's active subscription."""
    values = {
        "data_used": data_used,
        "data_downloaded": data_downloaded,
        "data_uploaded": data_uploaded,
        "average_speed": average_speed,
        "peak_speed": peak_speed,
        "latency": latency,
        "packet_loss": packet_loss,
    }
    for field, value in values.items():
        if value is not None and not math.isfinite(value):
            raise ValidationError(f"{field} must be a finite number")
    for field in NON_NEGATIVE_FIELDS:
        if values[field] is not None and values[field] < 0:
            raise ValidationError(f"{field} must not be negative")
    if packet_loss is not None and not 0 <= packet_loss <= 100:
        raise ValidationError("packet_loss must be between 0 and 100")

    now = resolve_now(now)
    with get_db_session() as session:
        subscription_id = session.execute(
            select(subscriptions.c.subscription_id).where(
                subscriptions.c.user_id == user_id,
                subscriptions.c.status == "active",
            )
        ).scalar()
        if subscription_id is None:
            raise NotFoundError("No active subscription found")

        values.update(
            user_id=user_id,
            subscription_id=subscription_id,
            date=ensure_utc(date) if date else now,
            created_at=now,
        )
        record_id = session.execute(insert(usage_records).values(**values)).inserted_primary_key[0]

    log_event("info", "usage.recorded", request_id=None, user_id=user_id, subscription_id=subscription_id)
    values.pop("created_at")
    return UsageRecord(record_id=record_id, **values)


def _window_query(query, user_id: Optional[str], start: Optional[datetime], end: Optional[datetime]):
    if user_id is not None:
        query = query.where(usage_records.c.user_id == user_id)
    if start is not None:
        query = query.where(usage_records.c.date >= start)
    if end is not None:
        query = query.where(usage_records.c.date <= end)
    return query


def get_usage_records(
    user_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[UsageRecord]:
    """Records ordered by date ascending. user_id None means every user (analytics)."""
    with get_db_session() as session:
        rows = session.execute(
            _window_query(select(usage_records), user_id, start, end)
            .order_by(usage_records.c.date.asc(), usage_records.c.record_id.asc())
        ).fetchall()
    return [_to_model(r) for r in rows]


def get_recent_usage(user_id: str, days: int, now: Optional[datetime] = None) -> List[UsageRecord]:
    """Trailing window [now - days, now]."""
    now = resolve_now(now)
    return get_usage_records(user_id, now - timedelta(days=days), now)


def count_usage_records(
    user_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> int:
    with get_db_session() as session:
        return session.execute(
            _window_query(select(func.count()).select_from(usage_records), user_id, start, end)
        ).scalar_one()


def _summary(session, user_id: str, start: Optional[datetime], end: Optional[datetime]) -> UsageSummary:
    """SQL-side totals; average speed counts missing speeds as 0 like the aggregator."""
    row = session.execute(
        _window_query(
            select(
                func.count(),
                func.coalesce(func.sum(usage_records.c.data_used), 0.0),
                func.coalesce(func.max(usage_records.c.data_used), 0.0),
                func.coalesce(func.sum(func.coalesce(usage_records.c.average_speed, 0.0)), 0.0),
            ).select_from(usage_records),
            user_id,
            start,
            end,
        )
    ).one()
    count, total, peak, speed_sum = row
    if not count:
        return UsageSummary()
    return UsageSummary(
        total_data_used=round2(total),
        average_daily_usage=round2(total / count),
        peak_usage=round2(peak),
        average_speed=round2(speed_sum / count),
        record_count=count,
    )


def get_usage_history(
    user_id: str,
    *,
    page: int = 1,
    limit: int = 30,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Dict[str, Any]:
    """One page of records (newest first) and a summary over the whole filter."""
    page = max(1, page)
    limit = max(1, min(limit, 365))
    with get_db_session() as session:
        summary = _summary(session, user_id, start, end)
        rows = session.execute(
            _window_query(select(usage_records), user_id, start, end)
            .order_by(usage_records.c.date.desc(), usage_records.c.record_id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).fetchall()
    total = summary.record_count
    return {
        "records": [_to_model(r) for r in rows],
        "summary": summary,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }
