"""UTC helpers shared by services and reducers.

Timestamps are stored as UTC. Some drivers (sqlite) hand back naive datetimes,
so anything read from the database goes through ensure_utc before comparison.
"""

import calendar
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_now(now: Optional[datetime] = None) -> datetime:
    """Normalize an optional `now` argument (deterministic tests pass one in)."""
    if now is None:
        return utcnow()
    return ensure_utc(now)


def parse_now_param(now: Optional[str]) -> Optional[datetime]:
    """Parse the optional `now` query parameter used by read endpoints.

    Raises ValueError on malformed input; callers map it to a 400.
    """
    if not now:
        return None
    return ensure_utc(datetime.fromisoformat(now.replace("Z", "+00:00")))


def add_months(value: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))
