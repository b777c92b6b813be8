"""
Domain errors and the JSON error envelope.

Services raise AppError subclasses; the handlers below turn them into

    {"error": {"code", "message", "request_id"}, "detail": message}

with the x-request-id header set, so clients see one shape for every failure.
"""

import builtins
import logging
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

from backend.core.logging import get_request_id

logger = logging.getLogger("subtrack")

# Codes for framework-raised HTTP errors (unknown routes, wrong methods)
HTTP_STATUS_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
}


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.request_id = request_id


class ValidationError(AppError, ValueError):
    """Bad input or a state transition that is not allowed (cancel twice, renew cancelled)."""
    code = "validation_error"
    status_code = 400


class AuthenticationError(AppError):
    code = "unauthorized"
    status_code = 401


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    """Uniqueness or referential conflicts: duplicate plan names, second active subscription."""
    code = "conflict"
    status_code = 409


def _request_id_for(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def error_response(status_code: int, code: str, message: str, request_id: str) -> JSONResponse:
    body = {
        "error": {"code": code, "message": message, "request_id": request_id},
        "detail": message,
    }
    return JSONResponse(status_code=status_code, content=body, headers={"x-request-id": request_id})


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _request_id_for(request)
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "status": exc.status_code, "path": request.url.path},
    )
    return error_response(exc.status_code, exc.code, exc.message, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _request_id_for(request)
    code = HTTP_STATUS_CODES.get(exc.status_code, "http_error")
    logger.warning(
        "http.error",
        extra={"request_id": rid, "error_code": code, "status": exc.status_code, "path": request.url.path},
    )
    return error_response(exc.status_code, code, str(exc.detail or "HTTP error"), rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _request_id_for(request)
    logger.error("unhandled.exception", exc_info=exc, extra={"request_id": rid, "error_code": "internal_error"})
    return error_response(500, "internal_error", "Unexpected error", rid)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
