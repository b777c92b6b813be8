from contextlib import contextmanager
from datetime import timedelta

from sqlalchemy import select

from backend.core.config import settings
from backend.core.database import audit_logs, get_engine
from backend.features.audit import service as audit_service
from backend.features.audit.service import get_audit_stats, get_buffered_audit_events, list_audit_logs, log_action
from backend.models.audit import AuditCategory, AuditSeverity


def test_log_action_inserts_row(fixed_now):
    log_action(
        action="create_plan",
        resource="plan",
        user_id="admin-1",
        resource_id="p-1",
        new_values={"name": "Basic", "price": 30.0},
        request_id="rid-123",
        user_agent="pytest",
        now=fixed_now,
    )

    with get_engine().connect() as conn:
        rows = conn.execute(select(audit_logs)).fetchall()
    assert len(rows) == 1
    row = rows[0]
    assert row.request_id == "rid-123"
    assert row.user_id == "admin-1"
    assert row.action == "create_plan"
    assert row.new_values == {"name": "Basic", "price": 30.0}


def test_long_values_truncated(fixed_now):
    log_action(action="x", resource="system", details={"blob": "a" * 2000}, now=fixed_now)
    logs, _ = list_audit_logs()
    assert logs[0].details["blob"].endswith("...<truncated>")
    assert len(logs[0].details["blob"]) < 600


def test_disabled_audit_writes_nothing(monkeypatch):
    monkeypatch.setattr(settings, "AUDIT_ENABLED", False)
    log_action(action="x", resource="system")
    assert list_audit_logs()[1] == 0


def test_audit_buffer_when_write_fails(monkeypatch):
    @contextmanager
    def broken_session():
        raise RuntimeError("database unavailable")
        yield

    monkeypatch.setattr(audit_service, "get_db_session", broken_session)

    before = len(get_buffered_audit_events())
    log_action(action="cancel_subscription", resource="subscription", user_id="u1")
    after = len(get_buffered_audit_events())

    assert after == before + 1
    assert get_buffered_audit_events()[-1]["action"] == "cancel_subscription"


def test_audit_buffer_is_bounded(monkeypatch):
    @contextmanager
    def broken_session():
        raise RuntimeError("database unavailable")
        yield

    monkeypatch.setattr(audit_service, "get_db_session", broken_session)

    for i in range(audit_service.AUDIT_BUFFER_SIZE + 5):
        log_action(action="update_plan", resource="plan", resource_id=f"p-{i}")

    buffered = get_buffered_audit_events()
    assert len(buffered) == audit_service.AUDIT_BUFFER_SIZE
    # oldest entries are dropped first
    assert buffered[0]["resource_id"] == "p-5"
    assert buffered[-1]["resource_id"] == f"p-{audit_service.AUDIT_BUFFER_SIZE + 4}"


def test_filters_and_newest_first(fixed_now):
    log_action(action="create_plan", resource="plan", user_id="a", now=fixed_now - timedelta(hours=2))
    log_action(action="update_plan", resource="plan", user_id="a", now=fixed_now - timedelta(hours=1))
    log_action(action="cancel_subscription", resource="subscription", user_id="b", now=fixed_now)

    logs, total = list_audit_logs()
    assert total == 3
    assert [l.action for l in logs] == ["cancel_subscription", "update_plan", "create_plan"]

    plan_logs, plan_total = list_audit_logs(action="PLAN")
    assert plan_total == 2
    assert {l.action for l in plan_logs} == {"create_plan", "update_plan"}

    assert list_audit_logs(user_id="b")[1] == 1
    assert list_audit_logs(start=fixed_now - timedelta(minutes=90))[1] == 2


def test_stats(fixed_now):
    log_action(action="create_plan", resource="plan", user_id="a", now=fixed_now - timedelta(days=1))
    log_action(action="create_plan", resource="plan", user_id="a", now=fixed_now)
    log_action(
        action="admin_toggle_user_status",
        resource="user",
        user_id="b",
        severity=AuditSeverity.HIGH,
        category=AuditCategory.SECURITY,
        now=fixed_now,
    )
    log_action(action="ancient", resource="plan", now=fixed_now - timedelta(days=90))

    stats = get_audit_stats(days=30, now=fixed_now)
    assert stats["total_logs"] == 3
    assert stats["by_action"][0] == {"key": "create_plan", "count": 2}
    assert stats["daily"] == [{"date": "2025-06-14", "count": 1}, {"date": "2025-06-15", "count": 2}]
    assert stats["top_users"][0] == {"key": "a", "count": 2}


def test_service_mutations_are_audited(make_plan):
    plan = make_plan()
    logs, _ = list_audit_logs(resource="plan", resource_id=plan.plan_id)
    assert [l.action for l in logs] == ["create_plan"]
    assert logs[0].category == AuditCategory.DATA_MODIFICATION


class TestAuditEndpoints:
    def test_admin_only(self, client):
        assert client.get("/api/audit").status_code == 401
        assert client.get("/api/audit", headers={"X-User-Id": "someone"}).status_code == 403

    def test_plan_creation_attributed_to_actor(self, client, admin_headers):
        client.post(
            "/api/plans",
            json={
                "name": "Audited",
                "product_type": "Fibernet",
                "price": 10,
                "quota": 50,
                "download_speed": 20,
                "upload_speed": 5,
            },
            headers=admin_headers,
        )
        body = client.get("/api/audit", params={"resource": "plan"}, headers=admin_headers).json()
        assert body["pagination"]["total"] == 1
        entry = body["data"][0]
        assert entry["user_id"].startswith("legacy:")
        assert entry["request_id"]

    def test_security_feed(self, client, admin_headers, fixed_now):
        log_action(action="login_failed", resource="user", severity=AuditSeverity.HIGH,
                   category=AuditCategory.SECURITY, now=fixed_now)
        log_action(action="noise", resource="user", severity=AuditSeverity.LOW,
                   category=AuditCategory.SECURITY, now=fixed_now)
        body = client.get("/api/audit/security", headers=admin_headers).json()
        assert [e["action"] for e in body["data"]] == ["login_failed"]

    def test_get_single_and_missing(self, client, admin_headers, fixed_now):
        log_action(action="x", resource="system", now=fixed_now)
        log_id = client.get("/api/audit", headers=admin_headers).json()["data"][0]["log_id"]
        assert client.get(f"/api/audit/{log_id}", headers=admin_headers).status_code == 200
        assert client.get("/api/audit/999999", headers=admin_headers).status_code == 404

    def test_stats_endpoint(self, client, admin_headers, fixed_now):
        log_action(action="x", resource="system", now=fixed_now)
        resp = client.get("/api/audit/stats", params={"days": 7, "now": "2025-06-15T13:00:00Z"}, headers=admin_headers)
        assert resp.json()["data"]["total_logs"] == 1
