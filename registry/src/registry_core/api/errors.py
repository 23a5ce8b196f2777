"""FastAPI integration for registry errors."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..errors import RegistryError, UnauthorizedError, error_envelope


def _www_authenticate(message: str) -> str:
    escaped = message.replace('"', "'")
    return f'Bearer realm="pub", message="{escaped}"'


async def registry_error_handler(request: Request, exc: RegistryError) -> JSONResponse:
    headers: dict[str, str] = {}
    if isinstance(exc, UnauthorizedError):
        headers["WWW-Authenticate"] = _www_authenticate(exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(exc),
        headers=headers or None,
    )


def install_error_handlers(app: FastAPI) -> FastAPI:
    """Register the error envelope handler on ``app``."""

    app.add_exception_handler(RegistryError, registry_error_handler)
    return app


__all__ = ["install_error_handlers", "registry_error_handler"]
