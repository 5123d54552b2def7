from __future__ import annotations

import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel

from inbox_identity.api.middleware.security import RequestIDMiddleware
from inbox_identity.identity.errors import MergeConflictError
from inbox_identity.kernel.errors import IdentityError
from inbox_identity.kernel.http.errors import register_exception_handlers


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)
    register_exception_handlers(app)
    return app


@pytest.mark.unit
def test_identity_error_payload_shape_includes_code_and_request_id():
    app = _app()

    @app.get("/boom")
    async def boom():  # pragma: no cover - exercised via request
        raise IdentityError(code="test.bad_request", message="Nope", status_code=400)

    client = TestClient(app)
    response = client.get("/boom", headers={"X-Request-ID": "req_123"})
    assert response.status_code == 400
    assert response.json() == {"detail": "Nope", "code": "test.bad_request", "request_id": "req_123"}
    assert response.headers["X-Request-ID"] == "req_123"


@pytest.mark.unit
def test_merge_error_payload_carries_rediscover_hint():
    app = _app()

    @app.get("/conflict")
    async def conflict():  # pragma: no cover - exercised via request
        raise MergeConflictError(meta={"secondary_id": "s"})

    client = TestClient(app)
    response = client.get("/conflict")
    assert response.status_code == 409
    payload = response.json()
    assert payload["code"] == "merge.conflict"
    assert payload["meta"] == {"secondary_id": "s", "rediscover": True}
    assert payload["request_id"]


@pytest.mark.unit
def test_http_exception_payload_shape_preserves_detail():
    app = _app()

    @app.get("/forbidden")
    async def forbidden():  # pragma: no cover - exercised via request
        raise HTTPException(status_code=403, detail="Forbidden")

    client = TestClient(app)
    response = client.get("/forbidden", headers={"X-Request-ID": "req_999"})
    assert response.status_code == 403
    payload = response.json()
    assert payload["detail"] == "Forbidden"
    assert payload["code"] == "http.403"
    assert payload["request_id"] == "req_999"


@pytest.mark.unit
def test_request_validation_error_payload_shape_is_stable():
    app = _app()

    class Body(BaseModel):
        value: int

    @app.post("/validate")
    async def validate(body: Body):  # pragma: no cover - exercised via request
        return {"ok": True, "value": body.value}

    client = TestClient(app)
    response = client.post("/validate", json={"value": "not-an-int"})
    assert response.status_code == 422
    payload = response.json()
    assert isinstance(payload.get("detail"), list)
    assert payload.get("code") == "http.validation_error"


@pytest.mark.unit
def test_unhandled_exception_is_opaque():
    app = _app()

    @app.get("/crash")
    async def crash():  # pragma: no cover - exercised via request
        raise RuntimeError("secret internals")

    client = TestClient(app, raise_server_exceptions=False)
    response = client.get("/crash")
    assert response.status_code == 500
    assert response.json()["code"] == "internal.unhandled"
    assert "secret" not in response.text
