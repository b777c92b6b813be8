"""
backend/tests/test_analytics_api.py
Admin analytics endpoints over real rows.
"""

import pytest

from backend.features.users.service import get_or_create_user

NOW = "2025-06-15T12:00:00Z"


@pytest.fixture
def seeded(client, make_plan):
    """Three subscribers: two on Plus, one on Basic (later cancelled)."""
    basic = make_plan(name="Basic", price=30.0)
    plus = make_plan(name="Plus", price=50.0, quota=200.0)
    created = {}
    for uid, plan, day in (("a", plus, "10"), ("b", plus, "12"), ("c", basic, "12")):
        resp = client.post(
            "/api/subscriptions",
            json={"plan_id": plan.plan_id},
            headers={"X-User-Id": uid},
            params={"now": f"2025-06-{day}T09:00:00Z"},
        )
        created[uid] = resp.json()["data"]
    client.put(
        f"/api/subscriptions/{created['c']['subscription_id']}/cancel",
        json={"reason": "Too expensive"},
        headers={"X-User-Id": "c"},
        params={"now": "2025-06-14T09:00:00Z"},
    )
    client.post(
        "/api/users/usage",
        json={"data_used": 12.5, "average_speed": 80.0, "date": "2025-06-13T08:00:00Z"},
        headers={"X-User-Id": "a"},
        params={"now": NOW},
    )
    return {"basic": basic, "plus": plus, "subscriptions": created}


def get(client, path, admin_headers, **params):
    resp = client.get(path, headers=admin_headers, params={"now": NOW, **params})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


class TestAccess:
    def test_requires_admin(self, client):
        assert client.get("/api/analytics").status_code == 401
        assert client.get("/api/analytics", headers={"X-User-Id": "u"}).status_code == 403

    def test_admin_user_allowed(self, client):
        get_or_create_user("boss", role="admin")
        assert client.get("/api/analytics", headers={"X-User-Id": "boss"}).status_code == 200


class TestReports:
    def test_overview(self, client, admin_headers, seeded):
        data = get(client, "/api/analytics", admin_headers)
        assert data["type"] == "overview"
        assert data["period"] == "30d"
        overview = data["data"]["overview"]
        assert overview == {
            "total_users": 3,
            "total_subscriptions": 3,
            "active_subscriptions": 2,
            "total_revenue": 100.0,
        }
        trends = data["data"]["monthly_trends"]
        assert trends["subscriptions"]["buckets"] == [{"bucket": "2025-06", "count": 3, "value": 3.0}]
        assert data["data"]["top_plans"][0]["plan_name"] == "Plus"

    def test_unknown_type_falls_back_to_overview(self, client, admin_headers, seeded):
        assert get(client, "/api/analytics", admin_headers, type="bogus")["type"] == "overview"

    def test_unknown_period_falls_back_to_30d(self, client, admin_headers):
        assert get(client, "/api/analytics", admin_headers, period="forever")["period"] == "30d"

    def test_subscriptions(self, client, admin_headers, seeded):
        data = get(client, "/api/analytics/subscriptions", admin_headers, period="7d")["data"]
        assert [b["bucket"] for b in data["daily_subscriptions"]["buckets"]] == ["2025-06-10", "2025-06-12"]
        assert data["total"] == 3
        assert data["status_breakdown"] == [
            {"key": "active", "count": 2},
            {"key": "cancelled", "count": 1},
        ]
        assert data["plan_breakdown"][0] == {"key": "Plus", "count": 2}

    def test_revenue(self, client, admin_headers, seeded):
        data = get(client, "/api/analytics/revenue", admin_headers)["data"]
        assert data["total"] == 130.0
        assert sum(b["value"] for b in data["daily_revenue"]["buckets"]) == data["total"]
        assert data["revenue_by_plan"][0]["plan_name"] == "Plus"
        assert data["average_revenue"]["total_revenue"] == 130.0

    def test_usage(self, client, admin_headers, seeded):
        data = get(client, "/api/analytics/usage", admin_headers)["data"]
        assert data["total"] == 12.5
        assert data["daily_usage"]["buckets"][0]["average_speed"] == 80.0
        assert data["usage_by_plan"][0]["plan_name"] == "Plus"

    def test_users(self, client, admin_headers, seeded):
        data = get(client, "/api/analytics/users", admin_headers)["data"]
        assert data["role_breakdown"] == [{"key": "user", "count": 3}]
        assert {g["key"] for g in data["user_activity"]} == {"active:subscribed"}


class TestTopPlans:
    def test_top_plans(self, client, admin_headers, seeded):
        data = get(client, "/api/analytics/top-plans", admin_headers, limit=1)
        assert data["period"] == "30d"
        assert [p["plan_name"] for p in data["top_plans"]] == ["Plus"]
        assert data["top_plans"][0]["subscription_count"] == 2

    def test_by_year(self, client, admin_headers, seeded):
        data = get(client, "/api/analytics/top-plans/by-year", admin_headers)
        assert [y["year"] for y in data] == [2025]

    def test_by_year_range_validation(self, client, admin_headers):
        resp = client.get(
            "/api/analytics/top-plans/by-year",
            params={"start_year": 2025, "end_year": 2024},
            headers=admin_headers,
        )
        assert resp.status_code == 400

    def test_current(self, client, admin_headers, seeded):
        data = get(client, "/api/analytics/top-plans/current", admin_headers)
        assert data["month"][0]["plan_name"] == "Plus"
        assert len(data["year"]) == 2


class TestChurn:
    def test_churn(self, client, admin_headers, seeded):
        data = get(client, "/api/analytics/churn", admin_headers)
        churn = data["data"]
        assert churn["total_churned"] == 1
        assert churn["churn_rate"] == 50.0
        assert churn["lost_revenue"] == 30.0
        assert churn["cancellation_reasons"] == [{"key": "Too expensive", "count": 1}]
