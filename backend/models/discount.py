"""
backend/models/discount.py

Discount codes and their redemptions.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class Discount(BaseModel):
    model_config = ConfigDict(frozen=True)

    discount_id: str
    name: str
    description: Optional[str] = None
    code: str
    type: DiscountType
    value: float
    max_discount_amount: Optional[float] = None
    min_order_amount: float = 0.0
    applicable_plans: List[str] = Field(default_factory=list)
    applicable_product_types: List[str] = Field(default_factory=list)
    conditions: Dict[str, Any] = Field(default_factory=dict)
    start_date: datetime
    end_date: datetime
    usage_limit: Optional[int] = None
    used_count: int = 0
    is_active: bool = True
    is_public: bool = False
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_currently_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        if not self.is_active:
            return False
        if not (self.start_date <= now <= self.end_date):
            return False
        return self.usage_limit is None or self.used_count < self.usage_limit

    @property
    def remaining_uses(self) -> Optional[int]:
        if self.usage_limit is None:
            return None
        return max(0, self.usage_limit - self.used_count)


class DiscountUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    discount_id: str
    user_id: str
    subscription_id: Optional[str] = None
    code: str
    amount_before: float
    discount_amount: float
    amount_after: float
    applied_at: datetime
