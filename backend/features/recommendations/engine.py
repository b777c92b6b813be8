"""
Recommendation rule engine.

Turns a usage aggregate, the current plan and the active catalog into a
ranked list of plan suggestions. All rules are deterministic and explainable;
the calendar-gated rules read the month from `now`.
"""

from datetime import datetime
from typing import List, Optional, Sequence

from backend.core.clock import resolve_now
from backend.models.plan import Plan, ProductType
from backend.models.recommendation import (
    Recommendation,
    RecommendationPriority,
    RecommendationType,
)
from backend.models.usage import UsageAggregate


class RecommendationEngine:
    """
    Rule-based plan recommendations.

    Rules are evaluated independently and merged. A rule that finds no
    qualifying plan contributes nothing.
    """

    UPGRADE_USAGE_PERCENT = 80
    DOWNGRADE_USAGE_PERCENT = 30
    DOWNGRADE_HEADROOM = 1.2  # candidate quota must cover usage + 20%
    SPEED_SHORTFALL_RATIO = 0.7
    MAX_RECOMMENDATIONS = 5

    # Zero-indexed month ranges (0 = January)
    SUMMER_MONTHS = (5, 7)
    BACK_TO_SCHOOL_MONTHS = (7, 8)
    HOLIDAY_LATE_MONTHS = 10
    HOLIDAY_EARLY_MONTHS = 1

    SUMMER_MIN_DOWNLOAD = 100
    HOLIDAY_MAX_PRICE = 50
    BACK_TO_SCHOOL_MAX_PRICE = 30
    BACK_TO_SCHOOL_MIN_QUOTA = 100

    def generate(
        self,
        stats: Optional[UsageAggregate],
        current_plan: Optional[Plan],
        catalog: Sequence[Plan],
        now: Optional[datetime] = None,
    ) -> List[Recommendation]:
        """
        Produce at most MAX_RECOMMENDATIONS suggestions, highest priority first.

        Without a current plan the user gets the single default recommendation.
        """
        if current_plan is None:
            return [self.default_recommendation()]

        now = resolve_now(now)
        plans = self._active_by_price(catalog)
        stats = stats or UsageAggregate()

        recommendations = self._usage_rules(stats, current_plan, plans)
        recommendations.extend(self._seasonal_rules(plans, now))
        return self.rank(recommendations)

    def usage_based(
        self,
        stats: UsageAggregate,
        current_plan: Plan,
        catalog: Sequence[Plan],
    ) -> List[Recommendation]:
        """Upgrade, downgrade and speed rules only."""
        return self.rank(self._usage_rules(stats, current_plan, self._active_by_price(catalog)))

    def seasonal(self, catalog: Sequence[Plan], now: Optional[datetime] = None) -> List[Recommendation]:
        return self._seasonal_rules(self._active_by_price(catalog), resolve_now(now))

    def rank(self, recommendations: List[Recommendation]) -> List[Recommendation]:
        """Stable sort by priority weight (high first), then truncate."""
        ordered = sorted(recommendations, key=lambda r: r.priority.weight, reverse=True)
        return ordered[: self.MAX_RECOMMENDATIONS]

    @staticmethod
    def default_recommendation() -> Recommendation:
        return Recommendation(
            type=RecommendationType.DEFAULT,
            target_plan=None,
            reason="New user",
            description="Start with our basic plan and upgrade as needed based on your usage.",
            priority=RecommendationPriority.LOW,
        )

    @staticmethod
    def _active_by_price(catalog: Sequence[Plan]) -> List[Plan]:
        # sorted() is stable: equal prices keep catalog order
        return sorted((p for p in catalog if p.is_active), key=lambda p: p.price)

    def _usage_rules(self, stats: UsageAggregate, current: Plan, plans: List[Plan]) -> List[Recommendation]:
        recommendations: List[Recommendation] = []

        upgrade = self._upgrade(stats, current, plans)
        if upgrade:
            recommendations.append(upgrade)

        downgrade = self._downgrade(stats, current, plans)
        if downgrade:
            recommendations.append(downgrade)

        speed = self._speed_upgrade(stats, current, plans)
        if speed:
            recommendations.append(speed)

        return recommendations

    def _upgrade(self, stats: UsageAggregate, current: Plan, plans: List[Plan]) -> Optional[Recommendation]:
        if not stats.usage_percentage > self.UPGRADE_USAGE_PERCENT:
            return None

        candidate = next(
            (p for p in plans if p.price > current.price and p.quota > current.quota),
            None,
        )
        if candidate is None:
            return None

        return Recommendation(
            type=RecommendationType.UPGRADE,
            target_plan=candidate,
            reason="High usage detected",
            description=(
                f"You're using {stats.usage_percentage}% of your quota. "
                "Consider upgrading to avoid overage charges."
            ),
            priority=RecommendationPriority.HIGH,
            monetary_delta=candidate.price - current.price,
        )

    def _downgrade(self, stats: UsageAggregate, current: Plan, plans: List[Plan]) -> Optional[Recommendation]:
        if not stats.usage_percentage < self.DOWNGRADE_USAGE_PERCENT:
            return None
        if not plans or current.price <= plans[0].price:
            return None

        required_quota = stats.total_usage * self.DOWNGRADE_HEADROOM
        qualifying = [p for p in plans if p.price < current.price and p.quota >= required_quota]
        if not qualifying:
            return None

        # Most expensive qualifying plan (last in ascending price order)
        candidate = qualifying[-1]
        return Recommendation(
            type=RecommendationType.DOWNGRADE,
            target_plan=candidate,
            reason="Low usage detected",
            description=(
                f"You're only using {stats.usage_percentage}% of your quota. "
                "You could save money with a lower plan."
            ),
            priority=RecommendationPriority.MEDIUM,
            monetary_delta=current.price - candidate.price,
        )

    def _speed_upgrade(self, stats: UsageAggregate, current: Plan, plans: List[Plan]) -> Optional[Recommendation]:
        if not stats.average_speed < current.download_speed * self.SPEED_SHORTFALL_RATIO:
            return None

        candidate = next((p for p in plans if p.download_speed > current.download_speed), None)
        if candidate is None:
            return None

        return Recommendation(
            type=RecommendationType.SPEED_UPGRADE,
            target_plan=candidate,
            reason="Speed optimization",
            description=(
                f"Your average speed is {stats.average_speed} Mbps. "
                "Consider upgrading for better performance."
            ),
            priority=RecommendationPriority.MEDIUM,
            monetary_delta=candidate.price - current.price,
            speed_increase=candidate.download_speed - current.download_speed,
        )

    def _seasonal_rules(self, plans: List[Plan], now: datetime) -> List[Recommendation]:
        month = now.month - 1
        recommendations: List[Recommendation] = []

        # Summer and back-to-school both fire in August; no dedup
        if self.SUMMER_MONTHS[0] <= month <= self.SUMMER_MONTHS[1]:
            plan = next(
                (
                    p for p in plans
                    if p.product_type == ProductType.FIBERNET and p.download_speed >= self.SUMMER_MIN_DOWNLOAD
                ),
                None,
            )
            if plan:
                recommendations.append(self._seasonal(
                    plan,
                    "Summer promotion",
                    "Special summer offer on high-speed fiber plans!",
                    "10% off first 3 months",
                ))

        if month >= self.HOLIDAY_LATE_MONTHS or month <= self.HOLIDAY_EARLY_MONTHS:
            plan = next((p for p in plans if p.price < self.HOLIDAY_MAX_PRICE), None)
            if plan:
                recommendations.append(self._seasonal(
                    plan,
                    "Holiday savings",
                    "Holiday season special - save money with our budget-friendly plans!",
                    "15% off first 6 months",
                ))

        if self.BACK_TO_SCHOOL_MONTHS[0] <= month <= self.BACK_TO_SCHOOL_MONTHS[1]:
            plan = next(
                (
                    p for p in plans
                    if p.price < self.BACK_TO_SCHOOL_MAX_PRICE and p.quota >= self.BACK_TO_SCHOOL_MIN_QUOTA
                ),
                None,
            )
            if plan:
                recommendations.append(self._seasonal(
                    plan,
                    "Back to school",
                    "Special student pricing for the new academic year!",
                    "20% off for students",
                ))

        return recommendations

    @staticmethod
    def _seasonal(plan: Plan, reason: str, description: str, discount: str) -> Recommendation:
        return Recommendation(
            type=RecommendationType.SEASONAL,
            target_plan=plan,
            reason=reason,
            description=description,
            priority=RecommendationPriority.LOW,
            discount=discount,
        )


_engine = RecommendationEngine()


def generate_recommendations(
    stats: Optional[UsageAggregate],
    current_plan: Optional[Plan],
    plans: Sequence[Plan],
    now: Optional[datetime] = None,
) -> List[Recommendation]:
    return _engine.generate(stats, current_plan, plans, now=now)


def usage_based_recommendations(stats: UsageAggregate, current_plan: Plan, plans: Sequence[Plan]) -> List[Recommendation]:
    return _engine.usage_based(stats, current_plan, plans)


def seasonal_recommendations(plans: Sequence[Plan], now: Optional[datetime] = None) -> List[Recommendation]:
    return _engine.seasonal(plans, now=now)


def default_recommendation() -> Recommendation:
    return RecommendationEngine.default_recommendation()
