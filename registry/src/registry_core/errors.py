"""Error taxonomy shared by every registry component."""

from __future__ import annotations

from typing import Any


class RegistryError(Exception):
    """Base class for errors surfaced to registry callers."""

    code = "internal"
    status_code = 500

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return error_envelope(self)


class UnauthorizedError(RegistryError):
    """Authentication required."""

    code = "unauthorized"
    status_code = 401


class ForbiddenError(RegistryError):
    """Insufficient permissions."""

    code = "forbidden"
    status_code = 403


class NotFoundError(RegistryError):
    """Resource not found."""

    code = "not_found"
    status_code = 404


class ConflictError(RegistryError):
    """Resource state conflicts with the request."""

    code = "conflict"
    status_code = 409


class InvalidError(RegistryError):
    """Request payload is invalid."""

    code = "invalid"
    status_code = 400


class ArchiveTooLargeError(InvalidError):
    """Archive exceeds the maximum upload size."""

    status_code = 413


class ConfigurationError(InvalidError):
    """Registry configuration is invalid."""

    status_code = 500


class BackendError(RegistryError):
    """Storage backend unavailable."""

    code = "backend"
    status_code = 503


def error_envelope(exc: RegistryError) -> dict[str, Any]:
    """Render the wire-level error body."""

    return {"error": {"code": exc.code, "message": exc.message}}


__all__ = [
    "RegistryError",
    "UnauthorizedError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "InvalidError",
    "ArchiveTooLargeError",
    "ConfigurationError",
    "BackendError",
    "error_envelope",
]
