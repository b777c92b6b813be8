"""Tests for normalized error responses."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend.core.errors import register_error_handlers
from backend.core.middleware.request_id import RequestIdMiddleware


def assert_envelope(resp, status, code):
    assert resp.status_code == status
    body = resp.json()
    assert body["error"]["code"] == code
    assert body["error"]["request_id"] == resp.headers.get("x-request-id")
    assert body["detail"] == body["error"]["message"]


def test_validation_error_has_standard_shape(client):
    resp = client.get("/api/plans", params={"sort_by": "color"})
    assert_envelope(resp, 400, "validation_error")


def test_permission_error_normalized(client, make_plan):
    plan = make_plan()
    created = client.post("/api/subscriptions", json={"plan_id": plan.plan_id}, headers={"X-User-Id": "owner"})
    sub_id = created.json()["data"]["subscription_id"]

    resp = client.get(f"/api/subscriptions/{sub_id}", headers={"X-User-Id": "other"})
    assert_envelope(resp, 403, "forbidden")


def test_conflict_error_code(client, make_plan, admin_headers):
    make_plan(name="Fiber 100")
    resp = client.post(
        "/api/plans",
        json={
            "name": "fiber 100",
            "product_type": "Fibernet",
            "price": 10,
            "quota": 50,
            "download_speed": 20,
            "upload_speed": 5,
        },
        headers=admin_headers,
    )
    assert_envelope(resp, 409, "conflict")


def test_unknown_route_uses_envelope(client):
    resp = client.get("/api/nowhere")
    assert_envelope(resp, 404, "not_found")


def test_unhandled_exception_is_internal_error():
    test_app = FastAPI()
    test_app.add_middleware(RequestIdMiddleware)
    register_error_handlers(test_app)

    @test_app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    client = TestClient(test_app, raise_server_exceptions=False)
    resp = client.get("/boom", headers={"X-Request-Id": "rid-500"})
    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == {"code": "internal_error", "message": "Unexpected error", "request_id": "rid-500"}
