"""
backend/models/plan.py

Plan catalog models.

A plan is an internet service tier: price, data quota (GB) and line speeds.
Plans are immutable for the duration of a recommendation computation.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ProductType(str, Enum):
    FIBERNET = "Fibernet"
    BROADBAND_COPPER = "BroadbandCopper"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class PlanFeature(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: Optional[str] = None
    included: bool = True


class Plan(BaseModel):
    """
    A catalog entry.

    Prices are in dollars, quota in GB, speeds in Mbps.
    """
    model_config = ConfigDict(frozen=True)

    plan_id: str
    name: str
    description: Optional[str] = None
    product_type: ProductType
    price: float
    quota: float
    download_speed: float
    upload_speed: float
    features: List[PlanFeature] = Field(default_factory=list)
    is_active: bool = True
    billing_cycle: BillingCycle = BillingCycle.MONTHLY
    max_users: int = 1
    setup_fee: float = 0.0
    contract_length: int = 12
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def value_ratio(self) -> float:
        """GB per dollar; free plans rank as infinitely valuable."""
        if self.price == 0:
            return float("inf")
        return self.quota / self.price


class PlanRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: float
    max: float
    average: float


class PlanComparison(BaseModel):
    """Side-by-side summary of 2-4 plans."""
    model_config = ConfigDict(frozen=True)

    plans: List[Plan]
    price_range: PlanRange
    quota_range: PlanRange
    speed_range: PlanRange
    best_value: Plan
    fastest: Plan
    cheapest: Plan
