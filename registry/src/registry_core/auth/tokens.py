"""Bearer token hashing and authentication."""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from ..errors import UnauthorizedError
from .scopes import ADMIN

if TYPE_CHECKING:
    from ..store import MetadataStore

LOGGER = logging.getLogger(__name__)

BEARER_PREFIX = "bearer "


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_token() -> str:
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class Principal:
    """An authenticated caller and the scopes its token carries."""

    user_id: str
    scopes: frozenset[str]
    token_hash: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return ADMIN in self.scopes


def extract_bearer(authorization: Optional[str]) -> str:
    if not authorization or not authorization.strip():
        raise UnauthorizedError("Authentication required")
    value = authorization.strip()
    if not value.lower().startswith(BEARER_PREFIX):
        raise UnauthorizedError("Expected a Bearer token")
    token = value[len(BEARER_PREFIX):].strip()
    if not token:
        raise UnauthorizedError("Empty Bearer token")
    return token


class Authenticator:
    def __init__(
        self,
        store: "MetadataStore",
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._logger = logger or LOGGER

    def authenticate(self, authorization: Optional[str]) -> Principal:
        """Resolve an ``Authorization`` header value into a principal."""

        token_hash = hash_token(extract_bearer(authorization))
        token = self._store.get_token_by_hash(token_hash)
        if token is None:
            raise UnauthorizedError("Invalid token")
        if token.is_expired(self._clock()):
            raise UnauthorizedError("Token expired")
        user = self._store.get_user(token.user_id)
        if user is None or not user.is_active:
            self._logger.info("Rejected token for inactive user %s", token.user_id)
            raise UnauthorizedError("Account disabled")
        self._store.touch_token(token_hash)
        return Principal(user_id=token.user_id, scopes=token.scopes, token_hash=token_hash)


__all__ = ["Authenticator", "Principal", "extract_bearer", "generate_token", "hash_token"]
