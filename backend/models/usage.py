"""
backend/models/usage.py

Usage records (one observation per user per day, nominally) and the
derived aggregate used by the recommendation engine.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class UsagePattern(str, Enum):
    HEAVY = "heavy"
    MODERATE = "moderate"
    LIGHT = "light"
    NO_DATA = "no_data"


class UsageRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    record_id: Optional[int] = None
    user_id: Optional[str] = None
    subscription_id: Optional[str] = None
    date: datetime
    data_used: float
    data_downloaded: float = 0.0
    data_uploaded: float = 0.0
    average_speed: Optional[float] = None
    peak_speed: Optional[float] = None
    latency: Optional[float] = None
    packet_loss: Optional[float] = None


class UsageAggregate(BaseModel):
    """
    Summary statistics over a window of usage records.

    Numeric fields are rounded to 2 decimals except days_with_usage.
    """
    model_config = ConfigDict(frozen=True)

    total_usage: float = 0.0
    average_daily_usage: float = 0.0
    peak_usage: float = 0.0
    usage_percentage: float = 0.0
    average_speed: float = 0.0
    peak_speed: float = 0.0
    days_with_usage: int = 0
    usage_pattern: UsagePattern = UsagePattern.NO_DATA


class UsageSummary(BaseModel):
    """Summary block returned alongside paginated usage history."""
    model_config = ConfigDict(frozen=True)

    total_data_used: float = 0.0
    average_daily_usage: float = 0.0
    peak_usage: float = 0.0
    average_speed: float = 0.0
    record_count: int = 0
