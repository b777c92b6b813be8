from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from backend.core.errors import AppError, NotFoundError, app_error_handler
from backend.core.middleware.request_id import RequestIdMiddleware


def _make_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(AppError, app_error_handler)

    @app.get("/")
    async def root(request: Request):
        return {"request_id": getattr(request.state, "request_id", None)}

    @app.get("/missing")
    async def missing():
        raise NotFoundError("Plan not found")

    return app


def test_generates_request_id_when_missing():
    client = TestClient(_make_app())

    resp = client.get("/")
    assert resp.status_code == 200
    rid_header = resp.headers.get("x-request-id")
    assert rid_header
    assert rid_header == resp.json().get("request_id")


def test_echoes_provided_request_id():
    client = TestClient(_make_app())

    provided = "test-rid-123"
    resp = client.get("/", headers={"X-Request-Id": provided})

    assert resp.headers.get("x-request-id") == provided
    assert resp.json().get("request_id") == provided


def test_request_id_carried_into_error_envelope():
    client = TestClient(_make_app())

    resp = client.get("/missing", headers={"X-Request-Id": "rid-err"})
    assert resp.status_code == 404
    assert resp.headers.get("x-request-id") == "rid-err"
    assert resp.json()["error"] == {"code": "not_found", "message": "Plan not found", "request_id": "rid-err"}
