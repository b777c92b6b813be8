"""
backend/tests/test_recommendation_engine.py

Rule engine tests: upgrade, downgrade, speed, seasonal and ranking.
"""

from datetime import datetime, timezone

import pytest

from backend.features.recommendations.engine import (
    RecommendationEngine,
    default_recommendation,
    generate_recommendations,
    seasonal_recommendations,
    usage_based_recommendations,
)
from backend.models.plan import Plan
from backend.models.recommendation import RecommendationPriority, RecommendationType
from backend.models.usage import UsageAggregate, UsagePattern

# March: no seasonal rule applies
NEUTRAL_NOW = datetime(2025, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


def plan(price, quota, download=50.0, product_type="Fibernet", name=None, is_active=True):
    return Plan(
        plan_id=name or f"p-{price}-{quota}",
        name=name or f"${price}/{quota}",
        product_type=product_type,
        price=price,
        quota=quota,
        download_speed=download,
        upload_speed=10.0,
        is_active=is_active,
    )


def stats(percentage, total=0.0, speed=1000.0):
    return UsageAggregate(
        total_usage=total,
        usage_percentage=percentage,
        average_speed=speed,
        usage_pattern=UsagePattern.MODERATE,
    )


@pytest.fixture
def catalog():
    return [plan(20, 50), plan(30, 100), plan(50, 200), plan(80, 500)]


class TestUpgradeRule:
    def test_recommends_cheapest_plan_larger_on_both_dimensions(self, catalog):
        current = plan(30, 100)
        recs = usage_based_recommendations(stats(85), current, catalog)
        upgrades = [r for r in recs if r.type == RecommendationType.UPGRADE]
        assert len(upgrades) == 1
        assert upgrades[0].target_plan.price == 50
        assert upgrades[0].target_plan.quota == 200
        assert upgrades[0].priority == RecommendationPriority.HIGH
        assert upgrades[0].monetary_delta == 20
        assert "85.0%" in upgrades[0].description

    def test_exactly_80_percent_does_not_upgrade(self, catalog):
        recs = usage_based_recommendations(stats(80.0), plan(30, 100), catalog)
        assert all(r.type != RecommendationType.UPGRADE for r in recs)

    def test_no_candidate_contributes_nothing(self):
        current = plan(80, 500)
        recs = usage_based_recommendations(stats(95), current, [plan(20, 50), current])
        assert recs == []


class TestDowngradeRule:
    def test_recommends_most_expensive_qualifying_cheaper_plan(self):
        current = plan(50, 200)
        catalog = [plan(20, 50), plan(30, 100), plan(50, 200)]
        recs = usage_based_recommendations(stats(10, total=20), current, catalog)
        downgrades = [r for r in recs if r.type == RecommendationType.DOWNGRADE]
        assert len(downgrades) == 1
        assert downgrades[0].target_plan.price == 30
        assert downgrades[0].target_plan.quota == 100
        assert downgrades[0].monetary_delta == 20
        assert downgrades[0].priority == RecommendationPriority.MEDIUM

    def test_headroom_excludes_small_plans(self):
        current = plan(50, 200)
        catalog = [plan(20, 50), plan(30, 100), plan(50, 200)]
        # 90 GB * 1.2 = 108 GB: nothing cheaper is big enough
        recs = usage_based_recommendations(stats(10, total=90), current, catalog)
        assert all(r.type != RecommendationType.DOWNGRADE for r in recs)

    def test_cheapest_plan_cannot_downgrade(self, catalog):
        recs = usage_based_recommendations(stats(5, total=1), plan(20, 50), catalog)
        assert all(r.type != RecommendationType.DOWNGRADE for r in recs)

    def test_exactly_30_percent_does_not_downgrade(self):
        current = plan(50, 200)
        recs = usage_based_recommendations(stats(30.0, total=5), current, [plan(20, 50), current])
        assert all(r.type != RecommendationType.DOWNGRADE for r in recs)


class TestSpeedRule:
    def test_slow_average_speed_suggests_faster_plan(self):
        current = plan(30, 100, download=100.0)
        faster = plan(40, 100, download=300.0)
        recs = usage_based_recommendations(stats(50, speed=60.0), current, [current, faster])
        assert len(recs) == 1
        assert recs[0].type == RecommendationType.SPEED_UPGRADE
        assert recs[0].speed_increase == 200.0
        assert recs[0].monetary_delta == 10

    def test_speed_at_threshold_is_fine(self):
        current = plan(30, 100, download=100.0)
        faster = plan(40, 100, download=300.0)
        recs = usage_based_recommendations(stats(50, speed=70.0), current, [current, faster])
        assert recs == []


class TestSeasonalRules:
    @pytest.fixture
    def seasonal_catalog(self):
        return [
            plan(25, 150, download=30.0, product_type="BroadbandCopper", name="student"),
            plan(45, 200, download=80.0, product_type="BroadbandCopper", name="budget"),
            plan(60, 500, download=150.0, product_type="Fibernet", name="fiber"),
        ]

    def test_july_triggers_summer_only(self, seasonal_catalog):
        recs = seasonal_recommendations(seasonal_catalog, now=datetime(2025, 7, 15, tzinfo=timezone.utc))
        assert [r.reason for r in recs] == ["Summer promotion"]
        assert recs[0].target_plan.name == "fiber"
        assert recs[0].discount == "10% off first 3 months"

    def test_august_triggers_summer_and_back_to_school(self, seasonal_catalog):
        recs = seasonal_recommendations(seasonal_catalog, now=datetime(2025, 8, 15, tzinfo=timezone.utc))
        assert [r.reason for r in recs] == ["Summer promotion", "Back to school"]
        assert recs[1].target_plan.name == "student"

    @pytest.mark.parametrize("month", [11, 12, 1, 2])
    def test_holiday_months_pick_cheapest_plan_under_50(self, seasonal_catalog, month):
        recs = seasonal_recommendations(seasonal_catalog, now=datetime(2025, month, 10, tzinfo=timezone.utc))
        assert [r.reason for r in recs] == ["Holiday savings"]
        assert recs[0].target_plan.name == "student"

    def test_no_seasonal_rule_in_march(self, seasonal_catalog):
        assert seasonal_recommendations(seasonal_catalog, now=NEUTRAL_NOW) == []

    def test_inactive_plans_are_ignored(self):
        catalog = [plan(60, 500, download=150.0, is_active=False)]
        assert seasonal_recommendations(catalog, now=datetime(2025, 7, 1, tzinfo=timezone.utc)) == []


class TestGenerate:
    def test_without_plan_returns_default(self, catalog):
        recs = generate_recommendations(None, None, catalog, now=NEUTRAL_NOW)
        assert recs == [default_recommendation()]
        assert recs[0].type == RecommendationType.DEFAULT
        assert recs[0].reason == "New user"
        assert recs[0].priority == RecommendationPriority.LOW

    def test_ranked_by_priority_weight(self):
        current = plan(30, 100, download=100.0)
        catalog = [
            plan(25, 150, download=30.0, product_type="BroadbandCopper", name="student"),
            current,
            plan(60, 500, download=150.0, name="fiber"),
        ]
        recs = generate_recommendations(
            stats(90, speed=10.0), current, catalog, now=datetime(2025, 8, 15, tzinfo=timezone.utc)
        )
        weights = [r.priority.weight for r in recs]
        assert weights == sorted(weights, reverse=True)
        assert recs[0].type == RecommendationType.UPGRADE

    def test_stable_order_within_priority(self):
        engine = RecommendationEngine()
        catalog = [
            plan(25, 150, download=30.0, product_type="BroadbandCopper", name="student"),
            plan(60, 500, download=150.0, name="fiber"),
        ]
        seasonal = engine.seasonal(catalog, now=datetime(2025, 8, 15, tzinfo=timezone.utc))
        ranked = engine.rank(list(seasonal))
        assert [r.reason for r in ranked] == [r.reason for r in seasonal]

    def test_truncated_to_five(self):
        engine = RecommendationEngine()
        current = plan(30, 100)
        many = [engine.default_recommendation()] * 8
        assert len(engine.rank(many)) == RecommendationEngine.MAX_RECOMMENDATIONS
        assert len(generate_recommendations(stats(50), current, [current], now=NEUTRAL_NOW)) <= 5
