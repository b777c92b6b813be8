"""
backend/tests/test_discounts.py
Discount calculation, the public offers list and the admin discount endpoints.
"""

from datetime import datetime, timezone

import pytest

from backend.core.errors import ConflictError, ValidationError
from backend.features.discounts.service import calculate_discount, create_discount, list_public_discounts
from backend.models.discount import Discount
from backend.models.plan import Plan

START = datetime(2025, 1, 1, tzinfo=timezone.utc)
END = datetime(2025, 12, 31, tzinfo=timezone.utc)


def plan(plan_id="p1", product_type="Fibernet"):
    return Plan(
        plan_id=plan_id,
        name=plan_id,
        product_type=product_type,
        price=40.0,
        quota=100.0,
        download_speed=50.0,
        upload_speed=10.0,
    )


def discount(**overrides):
    data = dict(
        discount_id="d1",
        name="Promo",
        code="PROMO",
        type="percentage",
        value=25.0,
        start_date=START,
        end_date=END,
    )
    data.update(overrides)
    return Discount(**data)


def discount_body(**overrides):
    data = {
        "name": "Promo",
        "code": "promo",
        "type": "percentage",
        "value": 20,
        "start_date": START,
        "end_date": END,
    }
    data.update(overrides)
    return data


class TestCalculateDiscount:
    def test_percentage(self):
        assert calculate_discount(discount(), plan(), 40.0) == 10.0

    def test_percentage_capped(self):
        assert calculate_discount(discount(max_discount_amount=5.0), plan(), 40.0) == 5.0

    def test_fixed_amount_never_exceeds_price(self):
        assert calculate_discount(discount(type="fixed_amount", value=15.0), plan(), 40.0) == 15.0
        assert calculate_discount(discount(type="fixed_amount", value=80.0), plan(), 40.0) == 40.0

    def test_below_minimum_order(self):
        assert calculate_discount(discount(min_order_amount=50.0), plan(), 40.0) == 0.0

    def test_plan_restrictions(self):
        assert calculate_discount(discount(applicable_plans=["other"]), plan(), 40.0) == 0.0
        assert calculate_discount(discount(applicable_product_types=["BroadbandCopper"]), plan(), 40.0) == 0.0
        assert calculate_discount(discount(applicable_product_types=["Fibernet"]), plan(), 40.0) == 10.0


class TestValidity:
    def test_window_and_usage_limit(self):
        inside = datetime(2025, 6, 1, tzinfo=timezone.utc)
        assert discount().is_currently_valid(inside)
        assert not discount().is_currently_valid(datetime(2026, 1, 2, tzinfo=timezone.utc))
        assert not discount(usage_limit=2, used_count=2).is_currently_valid(inside)
        assert not discount(is_active=False).is_currently_valid(inside)
        assert discount(usage_limit=3, used_count=1).remaining_uses == 2


class TestDiscountService:
    def test_codes_are_uppercased_and_unique(self):
        created = create_discount(discount_body())
        assert created.code == "PROMO"
        with pytest.raises(ConflictError):
            create_discount(discount_body(code="PROMO "))

    @pytest.mark.parametrize(
        "overrides",
        [
            {"value": 0},
            {"value": 150},
            {"type": "bogus"},
            {"end_date": START},
            {"usage_limit": 0},
        ],
    )
    def test_invalid_discounts(self, overrides):
        with pytest.raises(ValidationError):
            create_discount(discount_body(**overrides))

    def test_public_list_filters(self, fixed_now):
        create_discount(discount_body(code="PUBLIC", is_public=True))
        create_discount(discount_body(code="PRIVATE"))
        create_discount(discount_body(code="OLD", is_public=True, end_date=datetime(2025, 3, 1, tzinfo=timezone.utc)))
        assert [d.code for d in list_public_discounts(now=fixed_now)] == ["PUBLIC"]


class TestDiscountEndpoints:
    def test_admin_crud(self, client, admin_headers):
        body = {**discount_body(), "start_date": START.isoformat(), "end_date": END.isoformat()}
        created = client.post("/api/admin/discounts", json=body, headers=admin_headers)
        assert created.status_code == 201
        discount_id = created.json()["data"]["discount_id"]

        listed = client.get("/api/admin/discounts", headers=admin_headers).json()
        assert listed["pagination"]["total"] == 1

        updated = client.put(f"/api/admin/discounts/{discount_id}", json={"value": 30}, headers=admin_headers)
        assert updated.json()["data"]["value"] == 30

        usage = client.get(f"/api/admin/discounts/{discount_id}/usage", headers=admin_headers).json()["data"]
        assert usage["total_uses"] == 0

        assert client.delete(f"/api/admin/discounts/{discount_id}", headers=admin_headers).status_code == 200
        assert client.get(f"/api/admin/discounts/{discount_id}", headers=admin_headers).status_code == 404

    def test_requires_admin(self, client):
        assert client.get("/api/admin/discounts").status_code == 401
        assert client.get("/api/admin/discounts", headers={"X-User-Id": "nobody"}).status_code == 403

    def test_usage_after_redemption(self, client, admin_headers, make_plan):
        plan_row = make_plan(price=40.0)
        create_discount(discount_body(code="TWENTY"))
        client.post(
            "/api/subscriptions",
            json={"plan_id": plan_row.plan_id, "discount_code": "twenty"},
            headers={"X-User-Id": "buyer"},
            params={"now": "2025-06-15T12:00:00Z"},
        )
        listed = client.get("/api/admin/discounts", headers=admin_headers).json()["data"]
        usage = client.get(f"/api/admin/discounts/{listed[0]['discount_id']}/usage", headers=admin_headers)
        data = usage.json()["data"]
        assert data["total_uses"] == 1
        assert data["total_discount_amount"] == 8.0
        assert data["usages"][0]["amount_after"] == 32.0

    def test_public_offers_endpoint(self, client):
        create_discount(discount_body(code="OPEN", is_public=True))
        resp = client.get("/api/plans/discounts/public", params={"now": "2025-06-15T12:00:00Z"})
        assert [d["code"] for d in resp.json()["data"]] == ["OPEN"]
