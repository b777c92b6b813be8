"""
backend/models/recommendation.py

Recommendation and churn prediction models. Derived per request, never persisted.
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from backend.models.plan import Plan
from backend.models.usage import UsageAggregate


class RecommendationType(str, Enum):
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    SPEED_UPGRADE = "speed_upgrade"
    SEASONAL = "seasonal"
    DEFAULT = "default"


class RecommendationPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> int:
        return PRIORITY_WEIGHTS[self]


PRIORITY_WEIGHTS = {
    RecommendationPriority.HIGH: 3,
    RecommendationPriority.MEDIUM: 2,
    RecommendationPriority.LOW: 1,
}


class Recommendation(BaseModel):
    """
    One suggested plan change.

    monetary_delta is the additional monthly cost for upgrades and the
    monthly savings for downgrades; None for seasonal and default entries.
    """
    model_config = ConfigDict(frozen=True)

    type: RecommendationType
    target_plan: Optional[Plan] = None
    reason: str
    description: str
    priority: RecommendationPriority
    monetary_delta: Optional[float] = None
    speed_increase: Optional[float] = None
    discount: Optional[str] = None


class ChurnRisk(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ChurnFactors(BaseModel):
    model_config = ConfigDict(frozen=True)

    subscription_age: float
    has_usage_data: bool
    auto_renew: bool


class ChurnPrediction(BaseModel):
    model_config = ConfigDict(frozen=True)

    churn_risk: ChurnRisk
    confidence: float = Field(..., ge=0.0, le=1.0)
    factors: Optional[ChurnFactors] = None


class RecommendationsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_plan: Optional[Plan] = None
    usage_stats: Optional[UsageAggregate] = None
    recommendations: List[Recommendation] = Field(default_factory=list)
    churn_prediction: Optional[ChurnPrediction] = None
