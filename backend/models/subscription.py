"""
backend/models/subscription.py

Subscription model. Exactly one subscription per user may be active at a time;
the subscriptions service enforces that on create.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict

from backend.models.plan import Plan


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    PENDING = "pending"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    PAYPAL = "paypal"


class Subscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    subscription_id: str
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime
    next_billing_date: Optional[datetime] = None
    auto_renew: bool = True
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD
    last_payment_date: Optional[datetime] = None
    next_payment_amount: Optional[float] = None
    discount_id: Optional[str] = None
    total_paid: float = 0.0
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    plan: Optional[Plan] = None

    def days_remaining(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        seconds = (self.end_date - now).total_seconds()
        return max(0, -int(-seconds // 86400))

    def is_expiring_soon(self, now: Optional[datetime] = None) -> bool:
        remaining = self.days_remaining(now)
        return 0 < remaining <= 7
