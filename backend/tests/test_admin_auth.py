"""
Admin authentication: hybrid user/legacy-key modes and bearer tokens.
"""
from datetime import timedelta

import pytest

from backend.core.auth import create_access_token
from backend.core.config import settings
from backend.features.users.service import get_or_create_user, get_user

ADMIN_URL = "/api/admin/users"


class TestLegacyKey:
    def test_allowed_in_hybrid_mode(self, client, admin_headers):
        assert client.get(ADMIN_URL, headers=admin_headers).status_code == 200

    def test_wrong_key_rejected(self, client):
        resp = client.get(ADMIN_URL, headers={"X-Admin-Key": "nope"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_blocked_in_prod_hybrid(self, client, admin_headers, monkeypatch):
        monkeypatch.setattr(settings, "ENVIRONMENT", "prod")
        assert client.get(ADMIN_URL, headers=admin_headers).status_code == 401

    def test_legacy_mode_allows_key_in_prod(self, client, admin_headers, monkeypatch):
        monkeypatch.setattr(settings, "ENVIRONMENT", "prod")
        monkeypatch.setattr(settings, "ADMIN_AUTH_MODE", "legacy")
        assert client.get(ADMIN_URL, headers=admin_headers).status_code == 200

    def test_user_mode_ignores_key(self, client, admin_headers, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_AUTH_MODE", "user")
        assert client.get(ADMIN_URL, headers=admin_headers).status_code == 401


class TestAdminUsers:
    def test_stored_admin_via_user_header(self, client):
        get_or_create_user("boss", role="admin")
        assert client.get(ADMIN_URL, headers={"X-User-Id": "boss"}).status_code == 200

    def test_regular_user_forbidden(self, client):
        get_or_create_user("pleb")
        resp = client.get(ADMIN_URL, headers={"X-User-Id": "pleb"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_no_credentials_unauthorized(self, client):
        assert client.get(ADMIN_URL).status_code == 401


class TestBearerTokens:
    def test_admin_role_claim(self, client):
        token = create_access_token("root", role="admin", email="root@example.com")
        resp = client.get(ADMIN_URL, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200

    def test_token_user_is_upserted_with_role(self, client):
        token = create_access_token("root", role="admin")
        client.get("/api/users/profile", headers={"Authorization": f"Bearer {token}"})
        assert get_user("root").role.value == "admin"

    def test_stored_role_wins_over_claim(self, client):
        get_or_create_user("sneaky")
        token = create_access_token("sneaky", role="admin")
        assert client.get(ADMIN_URL, headers={"Authorization": f"Bearer {token}"}).status_code == 403

    def test_user_token_forbidden(self, client):
        token = create_access_token("someone")
        assert client.get(ADMIN_URL, headers={"Authorization": f"Bearer {token}"}).status_code == 403

    @pytest.mark.parametrize("token", ["garbage", "a.b.c"])
    def test_invalid_token_unauthorized(self, client, token):
        resp = client.get("/api/users/profile", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_expired_token_unauthorized(self, client, fixed_now):
        token = create_access_token("late", ttl=timedelta(minutes=5), now=fixed_now - timedelta(days=1))
        resp = client.get("/api/users/profile", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Token expired"
