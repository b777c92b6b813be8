# backend/conftest.py
import os

# Test settings must be in place before backend.core.config is imported
os.environ["ENV"] = "test"
os.environ["ENVIRONMENT"] = "test"
os.environ["TEST_DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-with-at-least-32-bytes!")
os.environ.setdefault("ADMIN_KEY", "test-admin-key")
os.environ.setdefault("ADMIN_AUTH_MODE", "hybrid")
os.environ.pop("DATABASE_URL", None)

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402

ADMIN_KEY = os.environ["ADMIN_KEY"]


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    """Create all tables once per session (in-memory sqlite, shared connection)."""
    from backend.core.database import create_all_tables

    create_all_tables()
    yield


@pytest.fixture(scope="function", autouse=True)
def reset_state():
    """Empty every table, the notification store and the audit fallback buffer before each test."""
    from backend.core.database import clear_all_tables
    from backend.features.audit.service import clear_buffered_audit_events
    from backend.features.notifications.service import get_notification_service

    clear_all_tables()
    get_notification_service().store.clear()
    clear_buffered_audit_events()
    yield


@pytest.fixture
def fixed_now():
    """Fixed timestamp for deterministic testing."""
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from backend.main import app

    return TestClient(app)


@pytest.fixture
def admin_headers():
    """Legacy shared-key admin credentials (hybrid mode)."""
    return {"X-Admin-Key": ADMIN_KEY}


@pytest.fixture
def make_plan():
    """Factory for catalog plans with sensible defaults."""
    from backend.features.plans.service import create_plan

    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "name": f"Plan {counter['n']}",
            "product_type": "Fibernet",
            "price": 30.0,
            "quota": 100.0,
            "download_speed": 50.0,
            "upload_speed": 10.0,
        }
        data.update(overrides)
        return create_plan(data)

    return _make
