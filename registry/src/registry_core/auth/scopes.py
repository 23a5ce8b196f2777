"""Capability checks for token scopes.

Scopes are plain strings:

* ``admin`` grants every capability.
* ``publish:all`` grants ``publish:pkg:<name>`` for every package.
* ``publish:pkg:<name>`` grants publishing that one package.
* ``read:all`` grants every ``read:*`` capability.

No other wildcard exists; anything else must match exactly.
"""

from __future__ import annotations

import re
from typing import Iterable

from ..errors import ForbiddenError, InvalidError

ADMIN = "admin"
PUBLISH_ALL = "publish:all"
READ_ALL = "read:all"
PUBLISH_PACKAGE_PREFIX = "publish:pkg:"
READ_PREFIX = "read:"

_PACKAGE_NAME = re.compile(r"^[a-z][a-z0-9_]*$")


def publish_capability(package_name: str) -> str:
    return f"{PUBLISH_PACKAGE_PREFIX}{package_name}"


def authorize(scopes: Iterable[str], capability: str) -> bool:
    held = frozenset(scopes)
    if ADMIN in held:
        return True
    if capability in held:
        return True
    if capability.startswith(PUBLISH_PACKAGE_PREFIX) and PUBLISH_ALL in held:
        return True
    if capability.startswith(READ_PREFIX) and READ_ALL in held:
        return True
    return False


def require(scopes: Iterable[str], capability: str) -> None:
    if not authorize(scopes, capability):
        raise ForbiddenError(f"Missing required scope: {capability}")


def can_publish_any(scopes: Iterable[str]) -> bool:
    """True when the scopes allow publishing at least one package."""

    return any(
        scope in {ADMIN, PUBLISH_ALL} or scope.startswith(PUBLISH_PACKAGE_PREFIX) for scope in scopes
    )


def is_valid_scope(scope: str) -> bool:
    if scope in {ADMIN, PUBLISH_ALL, READ_ALL}:
        return True
    if scope.startswith(PUBLISH_PACKAGE_PREFIX):
        return bool(_PACKAGE_NAME.match(scope[len(PUBLISH_PACKAGE_PREFIX):]))
    return False


def validate_scopes(scopes: Iterable[str]) -> frozenset[str]:
    selected = frozenset(scope.strip() for scope in scopes if scope and scope.strip())
    if not selected:
        raise InvalidError("At least one scope is required")
    invalid = sorted(scope for scope in selected if not is_valid_scope(scope))
    if invalid:
        raise InvalidError(f"Invalid scopes: {', '.join(invalid)}")
    return selected


__all__ = [
    "ADMIN",
    "PUBLISH_ALL",
    "READ_ALL",
    "authorize",
    "can_publish_any",
    "is_valid_scope",
    "publish_capability",
    "require",
    "validate_scopes",
]
