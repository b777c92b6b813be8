"""
Health and diagnostics API.

Lightweight endpoints for operational monitoring without exposing secrets.
"""

import logging
import time
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import inspect

from backend.api.params import now_param
from backend.core.clock import resolve_now
from backend.core.database import check_connection, get_engine
from backend.core.logging import get_request_id, latency_bucket_ms

logger = logging.getLogger("subtrack")

router = APIRouter(prefix="/api/health", tags=["health"])
root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = [
    "app_users",
    "plans",
    "subscriptions",
    "usage_records",
    "audit_logs",
    "discounts",
    "discount_usages",
]


class DBHealth(BaseModel):
    """Database health status."""
    connected: bool
    latency_ms: Optional[float] = None  # None when `now` is pinned, for determinism
    tables_present: List[str] = []


class HealthResponse(BaseModel):
    ok: bool
    db: DBHealth
    computed_at: datetime


def _missing_tables() -> List[str]:
    inspector = inspect(get_engine())
    return [t for t in REQUIRED_TABLES if not inspector.has_table(t)]


@root_router.get("/healthz")
def healthz():
    """Liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    if not check_connection():
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    missing = _missing_tables()
    if missing:
        detail = f"missing tables: {', '.join(missing)}"
        logger.warning(f"[readyz] {detail}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})
    return {"status": "ok"}


@router.get("/db", response_model=HealthResponse)
def health_db(now: Optional[datetime] = Depends(now_param)):
    """Database connectivity, latency and which required tables exist."""
    start = time.perf_counter()
    is_connected = check_connection()
    latency_ms = (time.perf_counter() - start) * 1000

    present: List[str] = []
    if is_connected:
        missing = set(_missing_tables())
        present = [t for t in REQUIRED_TABLES if t not in missing]

    logger.info(
        "health.db",
        extra={
            "request_id": get_request_id(),
            "ok": is_connected,
            "latency_bucket": latency_bucket_ms(None if now else latency_ms),
        },
    )
    return HealthResponse(
        ok=is_connected,
        db=DBHealth(
            connected=is_connected,
            latency_ms=None if now else round(latency_ms, 2),
            tables_present=present,
        ),
        computed_at=resolve_now(now),
    )
