from fastapi.testclient import TestClient

import backend.api.health as health_api
from backend.main import app

client = TestClient(app)


class FakeInspector:
    def __init__(self, tables):
        self.tables = set(tables)

    def has_table(self, name):
        return name in self.tables


def test_healthz_always_ok():
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json().get("status") == "ok"


def test_readyz_ok_with_real_schema():
    resp = client.get("/readyz")
    assert resp.status_code == 200
    assert resp.json().get("status") == "ok"


def test_readyz_reports_missing_tables(monkeypatch):
    monkeypatch.setattr(health_api, "inspect", lambda engine: FakeInspector(["plans", "subscriptions"]))

    resp = client.get("/readyz")
    assert resp.status_code == 503
    assert "app_users" in resp.json()["detail"]


def test_readyz_handles_db_down(monkeypatch):
    monkeypatch.setattr(health_api, "check_connection", lambda: False)

    resp = client.get("/readyz")
    body = resp.json()
    assert resp.status_code == 503
    assert body.get("status") == "error"
    assert "database" in body.get("detail", "")


def test_health_db_is_deterministic_with_now():
    resp = client.get("/api/health/db", params={"now": "2025-06-15T12:00:00Z"})
    body = resp.json()
    assert body["ok"] is True
    assert body["db"]["latency_ms"] is None
    assert body["db"]["tables_present"] == health_api.REQUIRED_TABLES
    assert body["computed_at"].startswith("2025-06-15T12:00:00")


def test_health_db_when_disconnected(monkeypatch):
    monkeypatch.setattr(health_api, "check_connection", lambda: False)

    body = client.get("/api/health/db").json()
    assert body["ok"] is False
    assert body["db"]["tables_present"] == []
