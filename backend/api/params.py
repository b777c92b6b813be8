"""Shared query parameters for API routers."""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Query

from backend.core.clock import parse_now_param
from backend.core.errors import ValidationError


def now_param(
    now: Optional[str] = Query(None, description="ISO timestamp for deterministic results (testing only)"),
) -> Optional[datetime]:
    try:
        return parse_now_param(now)
    except ValueError:
        raise ValidationError("now must be an ISO-8601 timestamp")


def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": (total + limit - 1) // limit if limit else 0,
    }
