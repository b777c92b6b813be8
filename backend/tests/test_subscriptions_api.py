"""
backend/tests/test_subscriptions_api.py
Subscription lifecycle: subscribe, modify, cancel, renew, auto-renew, access control.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import update

from backend.core.database import discounts, get_db_session
from backend.features.discounts.service import create_discount, get_discount
from backend.features.notifications.service import get_notification_service
from backend.features.users.service import get_or_create_user

NOW = "2025-06-15T12:00:00Z"
USER = {"X-User-Id": "alice"}
OTHER = {"X-User-Id": "mallory"}


@pytest.fixture
def plan(make_plan):
    return make_plan(name="Basic", price=30.0, quota=100.0)


@pytest.fixture
def big_plan(make_plan):
    return make_plan(name="Premium", price=50.0, quota=200.0)


def subscribe(client, plan_id, headers=USER, **extra):
    return client.post("/api/subscriptions", json={"plan_id": plan_id, **extra}, headers=headers, params={"now": NOW})


@pytest.fixture
def subscription(client, plan):
    resp = subscribe(client, plan.plan_id)
    assert resp.status_code == 201
    return resp.json()["data"]


class TestSubscribe:
    def test_creates_active_subscription(self, client, plan):
        resp = subscribe(client, plan.plan_id, payment_method="paypal")
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["status"] == "active"
        assert data["user_id"] == "alice"
        assert data["payment_method"] == "paypal"
        assert data["next_payment_amount"] == 30.0
        assert data["total_paid"] == 30.0
        assert data["start_date"].startswith("2025-06-15")
        # contract_length defaults to 12 months
        assert data["end_date"].startswith("2026-06-15")
        assert data["next_billing_date"].startswith("2025-07-15")
        assert data["plan"]["name"] == "Basic"

    def test_requires_identity(self, client, plan):
        resp = client.post("/api/subscriptions", json={"plan_id": plan.plan_id})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_second_active_subscription_conflicts(self, client, plan, big_plan, subscription):
        resp = subscribe(client, big_plan.plan_id)
        assert resp.status_code == 409

    def test_inactive_plan_rejected(self, client, make_plan):
        retired = make_plan(is_active=False)
        assert subscribe(client, retired.plan_id).status_code == 400

    def test_unknown_plan_is_404(self, client):
        assert subscribe(client, "missing").status_code == 404

    def test_sends_notification(self, client, plan, subscription):
        items = get_notification_service().list("alice")
        assert len(items) == 1
        assert items[0].data["subscription_id"] == subscription["subscription_id"]


class TestDiscountCodes:
    @pytest.fixture
    def discount(self):
        return create_discount({
            "name": "Summer",
            "code": "save10",
            "type": "percentage",
            "value": 10,
            "start_date": datetime(2025, 1, 1, tzinfo=timezone.utc),
            "end_date": datetime(2025, 12, 31, tzinfo=timezone.utc),
            "usage_limit": 1,
        })

    def test_discount_applied_and_counted(self, client, plan, discount):
        resp = subscribe(client, plan.plan_id, discount_code="SAVE10")
        assert resp.status_code == 201
        data = resp.json()["data"]
        assert data["next_payment_amount"] == 27.0
        assert data["discount_id"] == discount.discount_id
        assert get_discount(discount.discount_id).used_count == 1

    def test_exhausted_code_rejected_without_side_effects(self, client, plan, discount):
        subscribe(client, plan.plan_id, discount_code="SAVE10")
        resp = subscribe(client, plan.plan_id, headers=OTHER, discount_code="SAVE10")
        assert resp.status_code == 400
        listed = client.get("/api/subscriptions/my-subscriptions", headers=OTHER).json()
        assert listed["count"] == 0

    def test_limit_rechecked_when_claiming_the_use(self, client, plan, discount, monkeypatch):
        from backend.features.discounts import service as discounts_service

        # Another redemption takes the last use after this request has read the row
        with get_db_session() as session:
            session.execute(
                update(discounts).where(discounts.c.discount_id == discount.discount_id).values(used_count=1)
            )
        read_row = discounts_service._to_model
        monkeypatch.setattr(
            discounts_service, "_to_model", lambda row: read_row(row).model_copy(update={"used_count": 0})
        )

        resp = subscribe(client, plan.plan_id, discount_code="SAVE10")
        monkeypatch.undo()

        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Discount code usage limit reached"
        assert get_discount(discount.discount_id).used_count == 1
        listed = client.get("/api/subscriptions/my-subscriptions", headers=USER).json()
        assert listed["count"] == 0

    def test_unknown_code(self, client, plan):
        resp = subscribe(client, plan.plan_id, discount_code="NOPE")
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Invalid discount code"


class TestReadAccess:
    def test_owner_can_read(self, client, subscription):
        resp = client.get(f"/api/subscriptions/{subscription['subscription_id']}", headers=USER)
        assert resp.status_code == 200

    def test_other_user_forbidden(self, client, subscription):
        resp = client.get(f"/api/subscriptions/{subscription['subscription_id']}", headers=OTHER)
        assert resp.status_code == 403

    def test_admin_user_can_read(self, client, subscription):
        get_or_create_user("boss", role="admin")
        resp = client.get(f"/api/subscriptions/{subscription['subscription_id']}", headers={"X-User-Id": "boss"})
        assert resp.status_code == 200

    def test_my_subscriptions(self, client, subscription):
        resp = client.get("/api/subscriptions/my-subscriptions", headers=USER)
        assert resp.json()["count"] == 1

    def test_admin_listing_paginated(self, client, plan, admin_headers):
        for uid in ("u1", "u2", "u3"):
            subscribe(client, plan.plan_id, headers={"X-User-Id": uid})
        resp = client.get("/api/subscriptions/all", params={"limit": 2}, headers=admin_headers)
        body = resp.json()
        assert len(body["data"]) == 2
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}


class TestModify:
    def test_upgrade(self, client, subscription, big_plan):
        resp = client.put(
            f"/api/subscriptions/{subscription['subscription_id']}/modify",
            json={"new_plan_id": big_plan.plan_id},
            headers=USER,
        )
        assert resp.status_code == 200
        assert resp.json()["message"] == "Subscription upgraded successfully"
        assert resp.json()["data"]["next_payment_amount"] == 50.0

    def test_downgrade(self, client, make_plan, big_plan):
        sub = subscribe(client, big_plan.plan_id).json()["data"]
        cheap = make_plan(price=10.0)
        resp = client.put(
            f"/api/subscriptions/{sub['subscription_id']}/modify",
            json={"new_plan_id": cheap.plan_id},
            headers=USER,
        )
        assert resp.json()["message"] == "Subscription downgraded successfully"

    def test_reason_stored_in_notes(self, client, subscription, big_plan):
        resp = client.put(
            f"/api/subscriptions/{subscription['subscription_id']}/modify",
            json={"new_plan_id": big_plan.plan_id, "reason": "Need more data"},
            headers=USER,
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["notes"] == "Need more data"

    def test_notes_kept_without_reason(self, client, plan, big_plan):
        sub = subscribe(client, plan.plan_id, notes="Gate code 1234").json()["data"]
        resp = client.put(
            f"/api/subscriptions/{sub['subscription_id']}/modify",
            json={"new_plan_id": big_plan.plan_id},
            headers=USER,
        )
        assert resp.json()["data"]["notes"] == "Gate code 1234"

    def test_same_plan_rejected(self, client, subscription, plan):
        resp = client.put(
            f"/api/subscriptions/{subscription['subscription_id']}/modify",
            json={"new_plan_id": plan.plan_id},
            headers=USER,
        )
        assert resp.status_code == 400


class TestCancelRenew:
    def test_cancel_with_reason(self, client, subscription):
        resp = client.put(
            f"/api/subscriptions/{subscription['subscription_id']}/cancel",
            json={"reason": "Moving"},
            headers=USER,
            params={"now": NOW},
        )
        data = resp.json()["data"]
        assert data["status"] == "cancelled"
        assert data["cancellation_reason"] == "Moving"
        assert data["auto_renew"] is False
        assert data["end_date"].startswith("2026-06-15")

    def test_immediate_cancel_ends_now(self, client, subscription):
        resp = client.put(
            f"/api/subscriptions/{subscription['subscription_id']}/cancel",
            json={"immediate": True},
            headers=USER,
            params={"now": NOW},
        )
        assert resp.json()["data"]["end_date"].startswith("2025-06-15")

    def test_cancel_without_body(self, client, subscription):
        resp = client.put(f"/api/subscriptions/{subscription['subscription_id']}/cancel", headers=USER)
        assert resp.status_code == 200

    def test_cancel_twice_rejected(self, client, subscription):
        url = f"/api/subscriptions/{subscription['subscription_id']}/cancel"
        client.put(url, headers=USER)
        assert client.put(url, headers=USER).status_code == 400

    def test_other_user_cannot_cancel(self, client, subscription):
        resp = client.put(f"/api/subscriptions/{subscription['subscription_id']}/cancel", headers=OTHER)
        assert resp.status_code == 403

    def test_renew_extends_from_end_date(self, client, subscription):
        resp = client.put(
            f"/api/subscriptions/{subscription['subscription_id']}/renew",
            headers=USER,
            params={"now": NOW},
        )
        data = resp.json()["data"]
        assert data["end_date"].startswith("2027-06-15")
        assert data["total_paid"] == 60.0

    def test_cancelled_cannot_renew(self, client, subscription):
        client.put(f"/api/subscriptions/{subscription['subscription_id']}/cancel", headers=USER)
        resp = client.put(f"/api/subscriptions/{subscription['subscription_id']}/renew", headers=USER)
        assert resp.status_code == 400

    def test_toggle_auto_renew(self, client, subscription):
        url = f"/api/subscriptions/{subscription['subscription_id']}/toggle-auto-renew"
        first = client.patch(url, headers=USER).json()
        assert first["data"]["auto_renew"] is False
        assert first["message"] == "Auto-renew disabled"
        assert client.patch(url, headers=USER).json()["data"]["auto_renew"] is True
