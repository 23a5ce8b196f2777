import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from registry_core.api.errors import install_error_handlers
from registry_core.errors import (
    ArchiveTooLargeError,
    BackendError,
    ConflictError,
    ForbiddenError,
    InvalidError,
    NotFoundError,
    UnauthorizedError,
    error_envelope,
)


@pytest.fixture
def client():
    app = install_error_handlers(FastAPI())
    raised = {
        "unauthorized": UnauthorizedError('Token "ci" expired'),
        "forbidden": ForbiddenError("Missing required scope: admin"),
        "missing": NotFoundError("Package not found: foo"),
        "conflict": ConflictError("Version 1.0.0 of foo already exists"),
        "invalid": InvalidError("pubspec.yaml not found in archive"),
        "too-large": ArchiveTooLargeError("Archive is too big"),
        "backend": BackendError("Database unavailable"),
    }

    @app.get("/raise/{kind}")
    async def _raise(kind: str):
        raise raised[kind]

    return TestClient(app)


@pytest.mark.parametrize(
    "kind, status, code",
    [
        ("forbidden", 403, "forbidden"),
        ("missing", 404, "not_found"),
        ("conflict", 409, "conflict"),
        ("invalid", 400, "invalid"),
        ("too-large", 413, "invalid"),
        ("backend", 503, "backend"),
    ],
)
def test_errors_render_the_envelope(client, kind, status, code):
    response = client.get(f"/raise/{kind}")

    assert response.status_code == status
    assert response.json()["error"]["code"] == code
    assert "WWW-Authenticate" not in response.headers


def test_unauthorized_carries_bearer_challenge(client):
    response = client.get("/raise/unauthorized")

    assert response.status_code == 401
    assert response.json() == {"error": {"code": "unauthorized", "message": 'Token "ci" expired'}}
    assert response.headers["WWW-Authenticate"] == "Bearer realm=\"pub\", message=\"Token 'ci' expired\""


def test_default_messages():
    assert error_envelope(NotFoundError()) == {"error": {"code": "not_found", "message": "Resource not found."}}
    assert str(ConflictError("taken")) == "taken"
