"""Publish protocol: initiate, upload and finalize.

A session moves ``created -> awaiting_finalize -> finalized``; an
unfinalized session past its TTL is ``expired``. Both terminal states are
final: nothing is ever published twice from one session.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Optional

from ..auth.scopes import can_publish_any, publish_capability, require
from ..auth.tokens import Principal
from ..config.settings import DEFAULT_MAX_UPLOAD_BYTES
from ..domain.models import Actor, UploadSession, UpsertOutcome
from ..errors import (
    ArchiveTooLargeError,
    ConflictError,
    ForbiddenError,
    InvalidError,
    NotFoundError,
)
from ..storage.base import BlobStore
from ..storage.keys import archive_key, compute_digest
from ..store import MetadataStore
from .archive import read_archive_manifest
from .webhooks import WebhookDispatcher

LOGGER = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = timedelta(hours=1)
DEFAULT_COMPLETED_RETENTION = timedelta(days=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_session_id() -> str:
    return uuid.uuid4().hex


class UploadState(str, Enum):
    CREATED = "created"
    AWAITING_FINALIZE = "awaiting_finalize"
    FINALIZED = "finalized"
    EXPIRED = "expired"


def session_state(session: UploadSession, now: datetime) -> UploadState:
    if session.completed:
        return UploadState.FINALIZED
    if session.is_expired(now):
        return UploadState.EXPIRED
    if session.archive_sha256:
        return UploadState.AWAITING_FINALIZE
    return UploadState.CREATED


@dataclass(frozen=True)
class UploadTicket:
    session_id: str
    url: str
    fields: dict[str, str] = field(default_factory=dict)
    expires_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "fields": dict(self.fields)}


@dataclass(frozen=True)
class PublishResult:
    package_name: str
    version: str
    archive_sha256: str
    archive_key: str
    created: bool

    @property
    def message(self) -> str:
        return f"Successfully published {self.package_name} {self.version}"

    def to_dict(self) -> dict[str, Any]:
        return {"success": {"message": self.message}}


@dataclass(frozen=True)
class SweepResult:
    expired: int
    pruned: int


class UploadSessionManager:
    def __init__(
        self,
        store: MetadataStore,
        blobs: BlobStore,
        webhooks: WebhookDispatcher,
        *,
        base_url: str,
        session_ttl: timedelta = DEFAULT_SESSION_TTL,
        completed_retention: timedelta = DEFAULT_COMPLETED_RETENTION,
        max_upload_size: int = DEFAULT_MAX_UPLOAD_BYTES,
        clock: Callable[[], datetime] = _utcnow,
        session_id_factory: Callable[[], str] = _new_session_id,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._blobs = blobs
        self._webhooks = webhooks
        self._base_url = base_url.rstrip("/")
        self._session_ttl = session_ttl
        self._completed_retention = completed_retention
        self._max_upload_size = max_upload_size
        self._clock = clock
        self._session_id_factory = session_id_factory
        self._logger = logger or LOGGER

    def upload_url(self, session_id: str) -> str:
        return f"{self._base_url}/api/packages/versions/upload/{session_id}"

    def finalize_url(self, session_id: str) -> str:
        return f"{self._base_url}/api/packages/versions/finalize/{session_id}"

    def _open_session(self, principal: Principal, session_id: str) -> UploadSession:
        session = self._store.get_upload_session(session_id)
        if session is None:
            raise NotFoundError("Upload session not found")
        if session.user_id != principal.user_id and not principal.is_admin:
            raise ForbiddenError("Upload session belongs to another user")
        state = session_state(session, self._clock())
        if state is UploadState.FINALIZED:
            raise ConflictError("Upload session has already been finalized")
        if state is UploadState.EXPIRED:
            raise NotFoundError("Upload session has expired")
        return session

    def _create_session(self, principal: Principal) -> UploadSession:
        if not can_publish_any(principal.scopes):
            raise ForbiddenError("Token does not allow publishing")
        return self._store.create_upload_session(
            session_id=self._session_id_factory(),
            user_id=principal.user_id,
            ttl=self._session_ttl,
        )

    async def initiate(self, principal: Principal) -> UploadTicket:
        session = await asyncio.to_thread(self._create_session, principal)
        self._logger.debug("Opened upload session %s for %s", session.id, principal.user_id)
        return UploadTicket(
            session_id=session.id,
            url=self.upload_url(session.id),
            expires_at=session.expires_at,
        )

    def _stage(self, principal: Principal, session_id: str, data: bytes) -> None:
        self._open_session(principal, session_id)
        if not data:
            raise InvalidError("No archive data received")
        if len(data) > self._max_upload_size:
            raise ArchiveTooLargeError(
                f"Archive is {len(data)} bytes; the limit is {self._max_upload_size} bytes"
            )
        parsed = read_archive_manifest(data)
        self._store.attach_upload_archive(
            session_id,
            archive=data,
            archive_sha256=compute_digest(data),
            package_name=parsed.name,
            version=parsed.version,
        )

    async def upload(self, principal: Principal, session_id: str, data: bytes) -> str:
        """Stage ``data`` on the session; return the finalize URL."""

        await asyncio.to_thread(self._stage, principal, session_id, data)
        return self.finalize_url(session_id)

    def _authorize_publish(self, principal: Principal, name: str) -> None:
        require(principal.scopes, publish_capability(name))
        package = self._store.get_package(name)
        if package is None:
            return
        if package.is_upstream_cache:
            raise ForbiddenError(f"{name} is mirrored from upstream and cannot be published here")
        if principal.is_admin:
            return
        if not package.can_publish(principal.user_id):
            raise ForbiddenError(f"You do not have permission to publish {name}")

    def _publish(self, principal: Principal, session_id: str) -> PublishResult:
        self._open_session(principal, session_id)
        data = self._store.get_upload_archive(session_id)
        if not data:
            raise InvalidError("No upload data found for session")

        # Re-derive from the staged bytes; nothing recorded at upload time is trusted.
        parsed = read_archive_manifest(data)
        self._authorize_publish(principal, parsed.name)

        digest = compute_digest(data)
        existing = self._store.get_package_version(parsed.name, parsed.version)
        if existing is not None and existing.archive_sha256 != digest:
            raise ConflictError(f"Version {parsed.version} of {parsed.name} already exists")

        key = archive_key(parsed.name, parsed.version, digest)
        self._blobs.put_archive(key, data)

        outcome = self._store.publish_version(
            session_id=session_id,
            name=parsed.name,
            version=parsed.version,
            manifest=parsed.manifest,
            archive_key=key,
            archive_sha256=digest,
            owner_id=principal.user_id,
            actor=Actor(actor_type="user", actor_id=principal.user_id),
        )
        return PublishResult(
            package_name=parsed.name,
            version=parsed.version,
            archive_sha256=digest,
            archive_key=key,
            created=outcome is UpsertOutcome.CREATED,
        )

    async def finalize(self, principal: Principal, session_id: str) -> PublishResult:
        result = await asyncio.to_thread(self._publish, principal, session_id)
        if result.created:
            self._logger.info("Published %s %s (%s)", result.package_name, result.version, result.archive_key)
            self._webhooks.on_package_published(
                package=result.package_name,
                version=result.version,
                sha256=result.archive_sha256,
                user_id=principal.user_id,
            )
        else:
            self._logger.info(
                "%s %s already published with identical content", result.package_name, result.version
            )
        return result

    def sweep(self) -> SweepResult:
        """Reclaim expired sessions and completed sessions past retention."""

        expired = self._store.cleanup_expired_upload_sessions()
        pruned = self._store.prune_completed_upload_sessions(self._completed_retention)
        if expired or pruned:
            self._logger.info("Upload sweep removed %s expired and %s completed sessions", expired, pruned)
        return SweepResult(expired=expired, pruned=pruned)


__all__ = [
    "PublishResult",
    "SweepResult",
    "UploadSessionManager",
    "UploadState",
    "UploadTicket",
    "session_state",
]
