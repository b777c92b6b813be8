"""
Structured logging for the subtrack logger.

JSON lines in production, a compact key=value line elsewhere. Every record
carries the request_id bound by RequestIdMiddleware so a subscription change,
its audit row and its access log line can be correlated.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional

LOGGER_NAME = "subtrack"

# Record attributes promoted to top-level keys in structured output
CONTEXT_FIELDS = (
    "user_id",
    "subscription_id",
    "plan_id",
    "event_type",
    "error_code",
    "status",
    "method",
    "path",
    "latency_bucket",
)

_LATENCY_BUCKETS = ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms"))

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    """Coarse latency label; exact timings are noisy in logs."""
    if latency_ms is None:
        return "unknown"
    for upper, label in _LATENCY_BUCKETS:
        if latency_ms < upper:
            return label
    return ">=1000ms"


def _iso_utc(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")


def _context(record: logging.LogRecord) -> Dict[str, object]:
    return {
        field: getattr(record, field)
        for field in CONTEXT_FIELDS
        if getattr(record, field, None) is not None
    }


class RequestIdFilter(logging.Filter):
    """Fill request_id from the context var when the caller did not pass one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _iso_utc(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update(_context(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [_iso_utc(record), record.levelname, f"[{LOGGER_NAME}]"]
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"[rid={rid}]")
        parts.append(record.getMessage())
        parts.extend(f"{k}={v}" for k, v in _context(record).items())
        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development", level: str = "INFO", fmt: str = "auto") -> None:
    """Install a single stdout handler on the subtrack logger.

    fmt is "json", "pretty" or "auto" (json only in production).
    """
    use_json = fmt == "json" or (fmt == "auto" and env.lower() in {"production", "prod"})

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if use_json else PrettyFormatter())
    handler.addFilter(RequestIdFilter())

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper())
    logger.handlers = [handler]
    # Keep propagation so pytest's caplog sees records
    logger.propagate = True

    logging.getLogger("uvicorn.access").propagate = False


def _truncate(value: object, limit: int = 500) -> str:
    text = str(value)
    return text if len(text) <= limit else text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str],
    user_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
    plan_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
) -> None:
    """Emit a domain event (usage.recorded, subscription.created, ...) with correlation fields.

    Values in `extra` are stringified and truncated; None fields are dropped.
    """
    fields = {
        "request_id": request_id or get_request_id(),
        "user_id": user_id,
        "subscription_id": subscription_id,
        "plan_id": plan_id,
        "event_type": event_type,
        "error_code": error_code,
    }
    payload = {k: v for k, v in fields.items() if v is not None}
    for key, value in (extra or {}).items():
        payload[key] = _truncate(value)

    levelno = logging.getLevelName(level.upper())
    if not isinstance(levelno, int):
        levelno = logging.INFO
    logging.getLogger(LOGGER_NAME).log(levelno, msg, extra=payload)
