"""Content-addressed archive key scheme."""

from __future__ import annotations

import hashlib
import re

from ..errors import InvalidError

KEY_PREFIX = "packages"
ARCHIVE_SUFFIX = ".tar.gz"

_DIGEST_PATTERN = re.compile(r"^[0-9a-f]{64}$")
_SAFE_COMPONENT = re.compile(r"^[A-Za-z0-9_.+-]+$")


def compute_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _ensure_component(value: str, label: str) -> str:
    if not value or value in {".", ".."} or not _SAFE_COMPONENT.match(value):
        raise InvalidError(f"Invalid {label} for archive key: {value!r}")
    return value


def archive_key(name: str, version: str, digest: str) -> str:
    """Return ``packages/<name>/<version>/<digest>.tar.gz``."""

    _ensure_component(name, "package name")
    _ensure_component(version, "version")
    if not _DIGEST_PATTERN.match(digest):
        raise InvalidError(f"Invalid sha256 digest for archive key: {digest!r}")
    return f"{KEY_PREFIX}/{name}/{version}/{digest}{ARCHIVE_SUFFIX}"


def parse_archive_key(key: str) -> tuple[str, str, str]:
    """Split an archive key into ``(name, version, digest)``."""

    parts = key.split("/")
    if len(parts) != 4 or parts[0] != KEY_PREFIX or not parts[3].endswith(ARCHIVE_SUFFIX):
        raise InvalidError(f"Malformed archive key: {key!r}")
    name, version, filename = parts[1], parts[2], parts[3]
    digest = filename[: -len(ARCHIVE_SUFFIX)]
    # Round-trip through archive_key for component validation.
    archive_key(name, version, digest)
    return name, version, digest


__all__ = ["archive_key", "parse_archive_key", "compute_digest", "KEY_PREFIX"]
