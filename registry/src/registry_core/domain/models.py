"""Immutable domain snapshots returned by the metadata store."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, Sequence, TypeVar

ANONYMOUS_USER_ID = "00000000-0000-0000-0000-000000000000"

T = TypeVar("T")

_SEMVER_PATTERN = re.compile(
    r"^(?P<major>0|[1-9]\d*|\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)


def version_sort_key(version: str) -> tuple[Any, ...]:
    """Semver ordering; a prerelease sorts below its release.

    Unparseable strings sort below every valid version.
    """

    match = _SEMVER_PATTERN.match(version)
    if match is None:
        return (0, (), 0, (), version)
    core = (int(match.group("major")), int(match.group("minor")), int(match.group("patch")))
    pre = match.group("pre")
    if pre is None:
        return (1, core, 1, (), version)
    identifiers = tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part) for part in pre.split(".")
    )
    return (1, core, 0, identifiers, version)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class Page(Generic[T]):
    items: Sequence[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


@dataclass(frozen=True)
class Package:
    name: str
    owner_id: str
    created_at: datetime
    updated_at: datetime
    is_discontinued: bool = False
    replaced_by: Optional[str] = None
    is_upstream_cache: bool = False

    def can_publish(self, user_id: str) -> bool:
        """Upstream mirrors are read-only; anonymous-owned packages are open."""

        if self.is_upstream_cache:
            return False
        if self.owner_id == ANONYMOUS_USER_ID:
            return True
        return self.owner_id == user_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "ownerId": self.owner_id,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "isDiscontinued": self.is_discontinued,
            "replacedBy": self.replaced_by,
            "isUpstreamCache": self.is_upstream_cache,
        }


@dataclass(frozen=True)
class PackageVersion:
    package_name: str
    version: str
    manifest: dict[str, Any]
    archive_key: str
    archive_sha256: str
    published_at: datetime
    is_retracted: bool = False
    retracted_at: Optional[datetime] = None
    retraction_message: Optional[str] = None

    def to_wire(self, archive_url: str) -> dict[str, Any]:
        """Render the pub repository protocol version object."""

        payload: dict[str, Any] = {
            "version": self.version,
            "pubspec": self.manifest,
            "archive_url": archive_url,
            "archive_sha256": self.archive_sha256,
            "published": _iso(self.published_at),
        }
        if self.is_retracted:
            payload["retracted"] = True
        return payload


@dataclass(frozen=True)
class PackageInfo:
    package: Package
    versions: tuple[PackageVersion, ...]

    @property
    def latest(self) -> Optional[PackageVersion]:
        """Highest non-retracted version, falling back to the highest overall."""

        if not self.versions:
            return None
        candidates = [item for item in self.versions if not item.is_retracted] or list(self.versions)
        return max(candidates, key=lambda item: version_sort_key(item.version))

    def sorted_versions(self) -> list[PackageVersion]:
        return sorted(self.versions, key=lambda item: version_sort_key(item.version))


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class AuthToken:
    token_hash: str
    user_id: str
    label: str
    scopes: frozenset[str]
    created_at: datetime
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "userId": self.user_id,
            "scopes": sorted(self.scopes),
            "createdAt": _iso(self.created_at),
            "lastUsedAt": _iso(self.last_used_at),
            "expiresAt": _iso(self.expires_at),
        }


@dataclass(frozen=True)
class UploadSession:
    id: str
    user_id: str
    state: str
    created_at: datetime
    expires_at: datetime
    completed: bool = False
    completed_at: Optional[datetime] = None
    archive_sha256: Optional[str] = None
    package_name: Optional[str] = None
    version: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return not self.completed and self.expires_at <= now


@dataclass(frozen=True)
class User:
    id: str
    email: str
    created_at: datetime
    name: Optional[str] = None
    password_hash: Optional[str] = None
    is_active: bool = True
    last_login_at: Optional[datetime] = None

    @property
    def is_anonymous(self) -> bool:
        return self.id == ANONYMOUS_USER_ID

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
            "lastLoginAt": _iso(self.last_login_at),
        }


@dataclass(frozen=True)
class AdminUser:
    id: str
    username: str
    password_hash: str
    created_at: datetime
    name: Optional[str] = None
    is_active: bool = True
    must_change_password: bool = False
    last_login_at: Optional[datetime] = None


class SessionType(str, Enum):
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class UserSession:
    session_id: str
    user_id: str
    session_type: SessionType
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class Webhook:
    id: str
    url: str
    events: frozenset[str]
    created_at: datetime
    secret: Optional[str] = None
    is_active: bool = True
    last_triggered_at: Optional[datetime] = None
    failure_count: int = 0

    def should_trigger(self, event_type: str) -> bool:
        return self.is_active and ("*" in self.events or event_type in self.events)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "events": sorted(self.events),
            "hasSecret": bool(self.secret),
            "isActive": self.is_active,
            "createdAt": _iso(self.created_at),
            "lastTriggeredAt": _iso(self.last_triggered_at),
            "failureCount": self.failure_count,
        }


@dataclass(frozen=True)
class WebhookDelivery:
    id: str
    webhook_id: str
    event_type: str
    payload: dict[str, Any]
    success: bool
    duration_ms: int
    delivered_at: datetime
    status_code: Optional[int] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class ActivityLogEntry:
    id: str
    timestamp: datetime
    activity_type: str
    actor_type: str
    actor_id: Optional[str] = None
    actor_email: Optional[str] = None
    actor_username: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": _iso(self.timestamp),
            "activityType": self.activity_type,
            "actorType": self.actor_type,
            "actorId": self.actor_id,
            "actorEmail": self.actor_email,
            "actorUsername": self.actor_username,
            "targetType": self.target_type,
            "targetId": self.target_id,
            "metadata": self.metadata,
            "ipAddress": self.ip_address,
        }


@dataclass(frozen=True)
class Actor:
    """Who performed an action, as recorded in the activity log."""

    actor_type: str
    actor_id: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    ip_address: Optional[str] = None

    @classmethod
    def system(cls) -> "Actor":
        return cls(actor_type="system")


class ConfigValueType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"


@dataclass(frozen=True)
class SiteConfig:
    name: str
    value_type: ConfigValueType
    value: str
    description: Optional[str] = None

    @property
    def bool_value(self) -> bool:
        return self.value.strip().lower() == "true"

    @property
    def number_value(self) -> float:
        return float(self.value)


@dataclass(frozen=True)
class AdminStats:
    total_packages: int
    local_packages: int
    cached_packages: int
    total_versions: int
    total_users: int
    active_tokens: int

    def to_dict(self) -> dict[str, int]:
        return {
            "totalPackages": self.total_packages,
            "localPackages": self.local_packages,
            "cachedPackages": self.cached_packages,
            "totalVersions": self.total_versions,
            "totalUsers": self.total_users,
            "activeTokens": self.active_tokens,
        }


@dataclass(frozen=True)
class ArchiveRemoval:
    """Metadata removed by an admin operation plus the blobs it referenced."""

    count: int
    archive_keys: tuple[str, ...] = field(default_factory=tuple)


__all__ = [
    "ANONYMOUS_USER_ID",
    "ActivityLogEntry",
    "Actor",
    "AdminStats",
    "AdminUser",
    "ArchiveRemoval",
    "AuthToken",
    "ConfigValueType",
    "Package",
    "PackageInfo",
    "PackageVersion",
    "Page",
    "SessionType",
    "SiteConfig",
    "UploadSession",
    "UpsertOutcome",
    "User",
    "UserSession",
    "Webhook",
    "WebhookDelivery",
    "version_sort_key",
]
