"""Metadata store: the single persistence interface used by the services.

Every public method runs in its own transaction via ``Database.session``;
backend differences stay behind the dialect adapter and driver errors reach
callers only as ``RegistryError`` subclasses.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.orm import Session

from .auth.scopes import validate_scopes
from .auth.tokens import generate_token, hash_token
from .db.models import (
    ActivityLogRecord,
    AdminUserRecord,
    AuthTokenRecord,
    PackageRecord,
    PackageVersionRecord,
    SiteConfigRecord,
    UploadSessionRecord,
    UserRecord,
    UserSessionRecord,
    WebhookDeliveryRecord,
    WebhookRecord,
)
from .db.session import Database
from .domain.events import validate_events
from .domain.models import (
    ANONYMOUS_USER_ID,
    ActivityLogEntry,
    Actor,
    AdminStats,
    AdminUser,
    ArchiveRemoval,
    AuthToken,
    ConfigValueType,
    Package,
    PackageInfo,
    PackageVersion,
    Page,
    SessionType,
    SiteConfig,
    UploadSession,
    UpsertOutcome,
    User,
    UserSession,
    Webhook,
    WebhookDelivery,
)
from .errors import ConflictError, InvalidError, NotFoundError
from .repo.activity import ActivityRepository
from .repo.common import normalize_page
from .repo.packages import PackageRepository
from .repo.site_config import SiteConfigRepository
from .repo.tokens import TokenRepository
from .repo.uploads import UploadSessionRepository
from .repo.users import AdminUserRepository, UserRepository, UserSessionRepository
from .repo.webhooks import WebhookRepository

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _generate_id() -> str:
    return str(uuid.uuid4())


# -- record -> domain ---------------------------------------------------------


def _package(record: PackageRecord) -> Package:
    return Package(
        name=record.name,
        owner_id=record.owner_id,
        created_at=record.created_at,
        updated_at=record.updated_at,
        is_discontinued=bool(record.is_discontinued),
        replaced_by=record.replaced_by,
        is_upstream_cache=bool(record.is_upstream_cache),
    )


def _version(record: PackageVersionRecord) -> PackageVersion:
    return PackageVersion(
        package_name=record.package_name,
        version=record.version,
        manifest=dict(record.manifest or {}),
        archive_key=record.archive_key,
        archive_sha256=record.archive_sha256,
        published_at=record.published_at,
        is_retracted=bool(record.is_retracted),
        retracted_at=record.retracted_at,
        retraction_message=record.retraction_message,
    )


def _token(record: AuthTokenRecord) -> AuthToken:
    return AuthToken(
        token_hash=record.token_hash,
        user_id=record.user_id,
        label=record.label,
        scopes=frozenset(record.scopes or ()),
        created_at=record.created_at,
        last_used_at=record.last_used_at,
        expires_at=record.expires_at,
    )


def _upload_session(record: UploadSessionRecord) -> UploadSession:
    return UploadSession(
        id=record.id,
        user_id=record.user_id,
        state=record.state,
        created_at=record.created_at,
        expires_at=record.expires_at,
        completed=bool(record.completed),
        completed_at=record.completed_at,
        archive_sha256=record.archive_sha256,
        package_name=record.package_name,
        version=record.version,
    )


def _user(record: UserRecord) -> User:
    return User(
        id=record.id,
        email=record.email,
        created_at=record.created_at,
        name=record.name,
        password_hash=record.password_hash,
        is_active=bool(record.is_active),
        last_login_at=record.last_login_at,
    )


def _admin_user(record: AdminUserRecord) -> AdminUser:
    return AdminUser(
        id=record.id,
        username=record.username,
        password_hash=record.password_hash,
        created_at=record.created_at,
        name=record.name,
        is_active=bool(record.is_active),
        must_change_password=bool(record.must_change_password),
        last_login_at=record.last_login_at,
    )


def _user_session(record: UserSessionRecord) -> UserSession:
    return UserSession(
        session_id=record.session_id,
        user_id=record.user_id,
        session_type=SessionType(record.session_type),
        created_at=record.created_at,
        expires_at=record.expires_at,
    )


def _webhook(record: WebhookRecord) -> Webhook:
    return Webhook(
        id=record.id,
        url=record.url,
        events=frozenset(record.events or ()),
        created_at=record.created_at,
        secret=record.secret,
        is_active=bool(record.is_active),
        last_triggered_at=record.last_triggered_at,
        failure_count=int(record.failure_count or 0),
    )


def _delivery(record: WebhookDeliveryRecord) -> WebhookDelivery:
    return WebhookDelivery(
        id=record.id,
        webhook_id=record.webhook_id,
        event_type=record.event_type,
        payload=dict(record.payload or {}),
        success=bool(record.success),
        duration_ms=int(record.duration_ms or 0),
        delivered_at=record.delivered_at,
        status_code=record.status_code,
        error=record.error,
    )


def _activity(record: ActivityLogRecord) -> ActivityLogEntry:
    return ActivityLogEntry(
        id=record.id,
        timestamp=record.timestamp,
        activity_type=record.activity_type,
        actor_type=record.actor_type,
        actor_id=record.actor_id,
        actor_email=record.actor_email,
        actor_username=record.actor_username,
        target_type=record.target_type,
        target_id=record.target_id,
        metadata=record.details,
        ip_address=record.ip_address,
    )


def _site_config(record: SiteConfigRecord) -> SiteConfig:
    return SiteConfig(
        name=record.name,
        value_type=ConfigValueType(record.value_type),
        value=record.value,
        description=record.description,
    )


def _coerce_config_value(value_type: ConfigValueType, value: Any) -> str:
    if value_type is ConfigValueType.BOOLEAN:
        if isinstance(value, bool):
            return "true" if value else "false"
        text = str(value).strip().lower()
        if text not in {"true", "false"}:
            raise InvalidError(f"Expected a boolean, got {value!r}")
        return text
    if value_type is ConfigValueType.NUMBER:
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise InvalidError(f"Expected a number, got {value!r}") from exc
        return str(int(number)) if number.is_integer() else str(number)
    if value_type is ConfigValueType.JSON:
        if isinstance(value, str):
            try:
                json.loads(value)
            except ValueError as exc:
                raise InvalidError(f"Invalid JSON value: {exc}") from exc
            return value
        return json.dumps(value)
    return str(value)


class MetadataStore:
    """Facade over the repositories with one transaction per call."""

    def __init__(
        self,
        database: Database,
        *,
        clock: Clock = _utcnow,
        id_factory: Callable[[], str] = _generate_id,
        token_factory: Callable[[], str] = generate_token,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._db = database
        self._clock = clock
        self._id_factory = id_factory
        self._token_factory = token_factory
        self._logger = logger or LOGGER
        self._packages = PackageRepository(database.adapter)
        self._tokens = TokenRepository()
        self._uploads = UploadSessionRepository()
        self._users = UserRepository()
        self._admins = AdminUserRepository()
        self._user_sessions = UserSessionRepository()
        self._webhooks = WebhookRepository()
        self._activity = ActivityRepository()
        self._site_config = SiteConfigRepository()

    @property
    def database(self) -> Database:
        return self._db

    def now(self) -> datetime:
        return self._clock()

    # -- packages --------------------------------------------------------------

    def get_package(self, name: str) -> Optional[Package]:
        def _get(session: Session) -> Optional[Package]:
            record = self._packages.get(name=name, session=session)
            return _package(record) if record else None

        return self._db.run_in_session(_get)

    def get_package_versions(self, name: str) -> list[PackageVersion]:
        def _get(session: Session) -> list[PackageVersion]:
            return [_version(item) for item in self._packages.get_versions(name=name, session=session)]

        return self._db.run_in_session(_get)

    def get_package_info(self, name: str) -> Optional[PackageInfo]:
        def _get(session: Session) -> Optional[PackageInfo]:
            record = self._packages.get(name=name, session=session)
            if record is None:
                return None
            versions = self._packages.get_versions(name=name, session=session)
            return PackageInfo(package=_package(record), versions=tuple(_version(item) for item in versions))

        return self._db.run_in_session(_get)

    def get_package_version(self, name: str, version: str) -> Optional[PackageVersion]:
        def _get(session: Session) -> Optional[PackageVersion]:
            record = self._packages.get_version(name=name, version=version, session=session)
            return _version(record) if record else None

        return self._db.run_in_session(_get)

    def version_exists(self, name: str, version: str) -> bool:
        return self.get_package_version(name, version) is not None

    def _info_page(
        self,
        *,
        page: int,
        limit: int,
        query: Optional[str],
        is_upstream_cache: Optional[bool],
    ) -> Page[PackageInfo]:
        page, limit = normalize_page(page, limit)

        def _list(session: Session) -> Page[PackageInfo]:
            records, total = self._packages.list_page(
                page=page,
                limit=limit,
                query=query,
                is_upstream_cache=is_upstream_cache,
                session=session,
            )
            grouped = self._packages.versions_for(names=[item.name for item in records], session=session)
            items = [
                PackageInfo(
                    package=_package(record),
                    versions=tuple(_version(item) for item in grouped.get(record.name, [])),
                )
                for record in records
            ]
            return Page(items=items, total=total, page=page, limit=limit)

        return self._db.run_in_session(_list)

    def list_packages(self, page: int = 1, limit: int = 20) -> Page[PackageInfo]:
        return self._info_page(page=page, limit=limit, query=None, is_upstream_cache=None)

    def list_packages_by_type(self, is_upstream_cache: bool, page: int = 1, limit: int = 20) -> Page[PackageInfo]:
        return self._info_page(page=page, limit=limit, query=None, is_upstream_cache=is_upstream_cache)

    def search_packages(self, query: str, page: int = 1, limit: int = 20) -> Page[PackageInfo]:
        """Case-insensitive substring search over first-party package names."""

        return self._info_page(page=page, limit=limit, query=query.strip(), is_upstream_cache=False)

    def _upsert_version(
        self,
        session: Session,
        *,
        name: str,
        version: str,
        manifest: dict[str, Any],
        archive_key: str,
        archive_sha256: str,
        owner_id: str,
        is_upstream_cache: bool,
        now: datetime,
    ) -> UpsertOutcome:
        existing_package = self._packages.get(name=name, session=session)
        if existing_package is not None and bool(existing_package.is_upstream_cache) != is_upstream_cache:
            kind = "an upstream mirror" if existing_package.is_upstream_cache else "a first-party package"
            raise ConflictError(f"Package {name} is {kind}")

        self._packages.upsert(
            name=name,
            owner_id=owner_id,
            now=now,
            is_upstream_cache=is_upstream_cache,
            session=session,
        )
        created = self._packages.insert_version(
            values={
                "package_name": name,
                "version": version,
                "manifest": manifest,
                "archive_key": archive_key,
                "archive_sha256": archive_sha256,
                "published_at": now,
                "is_retracted": False,
            },
            session=session,
        )
        if created:
            return UpsertOutcome.CREATED
        existing = self._packages.get_version(name=name, version=version, session=session)
        if existing is not None and existing.archive_sha256 != archive_sha256:
            raise ConflictError(f"Version {version} of {name} already exists with different content")
        return UpsertOutcome.UNCHANGED

    def upsert_package_version(
        self,
        *,
        name: str,
        version: str,
        manifest: dict[str, Any],
        archive_key: str,
        archive_sha256: str,
        owner_id: str = ANONYMOUS_USER_ID,
        is_upstream_cache: bool = False,
    ) -> UpsertOutcome:
        """Create the package if needed and add the version in one transaction.

        Re-inserting an existing (package, version) with the same digest is a
        no-op; a different digest raises ``ConflictError``.
        """

        now = self._clock()
        return self._db.run_in_session(
            lambda session: self._upsert_version(
                session,
                name=name,
                version=version,
                manifest=manifest,
                archive_key=archive_key,
                archive_sha256=archive_sha256,
                owner_id=owner_id,
                is_upstream_cache=is_upstream_cache,
                now=now,
            )
        )

    def publish_version(
        self,
        *,
        session_id: str,
        name: str,
        version: str,
        manifest: dict[str, Any],
        archive_key: str,
        archive_sha256: str,
        owner_id: str,
        actor: Optional[Actor] = None,
    ) -> UpsertOutcome:
        """Complete an upload session and record its version atomically."""

        now = self._clock()

        def _publish(session: Session) -> UpsertOutcome:
            if not self._uploads.complete(session_id=session_id, now=now, session=session):
                self._logger.warning("Refusing to publish %s %s from closed session %s", name, version, session_id)
                raise ConflictError("Upload session is no longer open")
            outcome = self._upsert_version(
                session,
                name=name,
                version=version,
                manifest=manifest,
                archive_key=archive_key,
                archive_sha256=archive_sha256,
                owner_id=owner_id,
                is_upstream_cache=False,
                now=now,
            )
            if outcome is UpsertOutcome.CREATED and actor is not None:
                self._add_activity(
                    session,
                    activity_type="package_published",
                    actor=actor,
                    target_type="package",
                    target_id=name,
                    metadata={"version": version, "sha256": archive_sha256},
                    now=now,
                )
            return outcome

        return self._db.run_in_session(_publish)

    def delete_package(self, name: str) -> ArchiveRemoval:
        """Delete a package and its versions; return the orphaned archive keys."""

        def _delete(session: Session) -> ArchiveRemoval:
            if self._packages.get(name=name, session=session) is None:
                raise NotFoundError(f"Package not found: {name}")
            keys = self._packages.archive_keys_for(names=[name], session=session)
            self._packages.delete(names=[name], session=session)
            return ArchiveRemoval(count=1, archive_keys=tuple(keys))

        return self._db.run_in_session(_delete)

    def delete_package_version(self, name: str, version: str) -> str:
        """Delete one version; return its archive key."""

        def _delete(session: Session) -> str:
            record = self._packages.get_version(name=name, version=version, session=session)
            if record is None:
                raise NotFoundError(f"Version not found: {name} {version}")
            key = record.archive_key
            self._packages.delete_version(name=name, version=version, session=session)
            self._packages.update_package(name=name, values={"updated_at": self._clock()}, session=session)
            return key

        return self._db.run_in_session(_delete)

    def _update_package(self, name: str, values: dict[str, Any]) -> Package:
        def _update(session: Session) -> Package:
            if not self._packages.update_package(name=name, values=values, session=session):
                raise NotFoundError(f"Package not found: {name}")
            record = self._packages.get(name=name, session=session)
            if record is None:
                raise NotFoundError(f"Package not found: {name}")
            session.refresh(record)
            return _package(record)

        return self._db.run_in_session(_update)

    def discontinue_package(self, name: str, replaced_by: Optional[str] = None) -> Package:
        return self._update_package(
            name,
            {"is_discontinued": True, "replaced_by": replaced_by, "updated_at": self._clock()},
        )

    def reactivate_package(self, name: str) -> Package:
        return self._update_package(
            name,
            {"is_discontinued": False, "replaced_by": None, "updated_at": self._clock()},
        )

    def _update_version(self, name: str, version: str, values: dict[str, Any]) -> PackageVersion:
        def _update(session: Session) -> PackageVersion:
            if not self._packages.update_version(name=name, version=version, values=values, session=session):
                raise NotFoundError(f"Version not found: {name} {version}")
            record = self._packages.get_version(name=name, version=version, session=session)
            if record is None:
                raise NotFoundError(f"Version not found: {name} {version}")
            session.refresh(record)
            return _version(record)

        return self._db.run_in_session(_update)

    def retract_version(self, name: str, version: str, message: Optional[str] = None) -> PackageVersion:
        return self._update_version(
            name,
            version,
            {"is_retracted": True, "retracted_at": self._clock(), "retraction_message": message},
        )

    def unretract_version(self, name: str, version: str) -> PackageVersion:
        return self._update_version(
            name,
            version,
            {"is_retracted": False, "retracted_at": None, "retraction_message": None},
        )

    def transfer_ownership(self, name: str, new_owner_id: str) -> Package:
        def _transfer(session: Session) -> Package:
            record = self._packages.get(name=name, session=session)
            if record is None:
                raise NotFoundError(f"Package not found: {name}")
            if record.is_upstream_cache:
                raise ConflictError(f"Package {name} is an upstream mirror")
            if self._users.get(user_id=new_owner_id, session=session) is None:
                raise NotFoundError(f"User not found: {new_owner_id}")
            record.owner_id = new_owner_id
            record.updated_at = self._clock()
            session.flush()
            return _package(record)

        return self._db.run_in_session(_transfer)

    def clear_cached_packages(self) -> ArchiveRemoval:
        """Drop every upstream-cache package; first-party rows are untouched."""

        def _clear(session: Session) -> ArchiveRemoval:
            names = self._packages.names(is_upstream_cache=True, session=session)
            keys = self._packages.archive_keys_for(names=names, session=session)
            count = self._packages.delete(names=names, session=session)
            return ArchiveRemoval(count=count, archive_keys=tuple(keys))

        return self._db.run_in_session(_clear)

    def list_archive_keys(self, *, include_cached: bool = False) -> list[str]:
        return self._db.run_in_session(
            lambda session: self._packages.archive_keys(include_cached=include_cached, session=session)
        )

    def get_admin_stats(self) -> AdminStats:
        now = self._clock()

        def _stats(session: Session) -> AdminStats:
            return AdminStats(
                total_packages=self._packages.count(session=session),
                local_packages=self._packages.count(is_upstream_cache=False, session=session),
                cached_packages=self._packages.count(is_upstream_cache=True, session=session),
                total_versions=self._packages.count_versions(session=session),
                total_users=self._users.count(session=session),
                active_tokens=self._tokens.count_active(now=now, session=session),
            )

        return self._db.run_in_session(_stats)

    # -- tokens ----------------------------------------------------------------

    def create_token(
        self,
        *,
        user_id: str,
        label: str,
        scopes: Iterable[str],
        expires_at: Optional[datetime] = None,
    ) -> tuple[str, AuthToken]:
        """Issue a token; the plaintext is returned once and never stored."""

        scope_set = validate_scopes(scopes)
        if not label.strip():
            raise InvalidError("Token label is required")
        plaintext = self._token_factory()
        record = AuthTokenRecord(
            token_hash=hash_token(plaintext),
            user_id=user_id,
            label=label.strip(),
            scopes=scope_set,
            created_at=self._clock(),
            expires_at=expires_at,
        )
        token = self._db.run_in_session(lambda session: _token(self._tokens.add(record=record, session=session)))
        self._logger.info("Issued token %r for user %s with scopes %s", token.label, user_id, sorted(scope_set))
        return plaintext, token

    def get_token_by_hash(self, token_hash: str) -> Optional[AuthToken]:
        def _get(session: Session) -> Optional[AuthToken]:
            record = self._tokens.get(token_hash=token_hash, session=session)
            return _token(record) if record else None

        return self._db.run_in_session(_get)

    def touch_token(self, token_hash: str) -> None:
        now = self._clock()
        self._db.run_in_session(lambda session: self._tokens.touch(token_hash=token_hash, now=now, session=session))

    def list_tokens(self, user_id: Optional[str] = None) -> list[AuthToken]:
        return self._db.run_in_session(
            lambda session: [_token(item) for item in self._tokens.list(user_id=user_id, session=session)]
        )

    def delete_token(self, token_hash: str) -> bool:
        return self._db.run_in_session(lambda session: self._tokens.delete(token_hash=token_hash, session=session))

    def delete_tokens_by_label(self, user_id: str, label: str) -> int:
        return self._db.run_in_session(
            lambda session: self._tokens.delete_by_label(user_id=user_id, label=label, session=session)
        )

    # -- upload sessions ----------------------------------------------------------

    def create_upload_session(self, *, session_id: str, user_id: str, ttl: timedelta) -> UploadSession:
        now = self._clock()
        record = UploadSessionRecord(
            id=session_id,
            user_id=user_id,
            state="created",
            created_at=now,
            expires_at=now + ttl,
            completed=False,
        )
        return self._db.run_in_session(
            lambda session: _upload_session(self._uploads.add(record=record, session=session))
        )

    def get_upload_session(self, session_id: str) -> Optional[UploadSession]:
        def _get(session: Session) -> Optional[UploadSession]:
            record = self._uploads.get(session_id=session_id, session=session)
            return _upload_session(record) if record else None

        return self._db.run_in_session(_get)

    def get_upload_archive(self, session_id: str) -> Optional[bytes]:
        return self._db.run_in_session(
            lambda session: self._uploads.get_archive(session_id=session_id, session=session)
        )

    def attach_upload_archive(
        self,
        session_id: str,
        *,
        archive: bytes,
        archive_sha256: str,
        package_name: str,
        version: str,
    ) -> None:
        now = self._clock()

        def _attach(session: Session) -> None:
            attached = self._uploads.attach_archive(
                session_id=session_id,
                archive=archive,
                archive_sha256=archive_sha256,
                package_name=package_name,
                version=version,
                now=now,
                session=session,
            )
            if not attached:
                raise ConflictError("Upload session is no longer open")

        self._db.run_in_session(_attach)

    def cleanup_expired_upload_sessions(self) -> int:
        now = self._clock()
        removed = self._db.run_in_session(lambda session: self._uploads.delete_expired(now=now, session=session))
        if removed:
            self._logger.debug("Removed %s expired upload sessions", removed)
        return removed

    def prune_completed_upload_sessions(self, older_than: timedelta) -> int:
        cutoff = self._clock() - older_than
        return self._db.run_in_session(
            lambda session: self._uploads.delete_completed_before(cutoff=cutoff, session=session)
        )

    # -- users, admins, web sessions ------------------------------------------------

    def create_user(self, *, email: str, password_hash: Optional[str], name: Optional[str] = None) -> User:
        email = email.strip().lower()
        if not email or "@" not in email:
            raise InvalidError("A valid email address is required")

        def _create(session: Session) -> User:
            if self._users.get_by_email(email=email, session=session) is not None:
                raise ConflictError(f"User already exists: {email}")
            record = UserRecord(
                id=self._id_factory(),
                email=email,
                password_hash=password_hash,
                name=name,
                is_active=True,
                created_at=self._clock(),
            )
            return _user(self._users.add(record=record, session=session))

        return self._db.run_in_session(_create)

    def get_user(self, user_id: str) -> Optional[User]:
        def _get(session: Session) -> Optional[User]:
            record = self._users.get(user_id=user_id, session=session)
            return _user(record) if record else None

        return self._db.run_in_session(_get)

    def get_user_by_email(self, email: str) -> Optional[User]:
        def _get(session: Session) -> Optional[User]:
            record = self._users.get_by_email(email=email, session=session)
            return _user(record) if record else None

        return self._db.run_in_session(_get)

    def list_users(self, page: int = 1, limit: int = 20) -> Page[User]:
        page, limit = normalize_page(page, limit)

        def _list(session: Session) -> Page[User]:
            records, total = self._users.list_page(page=page, limit=limit, session=session)
            return Page(items=[_user(item) for item in records], total=total, page=page, limit=limit)

        return self._db.run_in_session(_list)

    def set_user_active(self, user_id: str, is_active: bool) -> None:
        def _update(session: Session) -> None:
            if not self._users.update(user_id=user_id, values={"is_active": is_active}, session=session):
                raise NotFoundError(f"User not found: {user_id}")

        self._db.run_in_session(_update)

    def touch_user_login(self, user_id: str) -> None:
        now = self._clock()
        self._db.run_in_session(
            lambda session: self._users.update(user_id=user_id, values={"last_login_at": now}, session=session)
        )

    def create_admin_user(
        self,
        *,
        username: str,
        password_hash: str,
        name: Optional[str] = None,
        must_change_password: bool = False,
    ) -> AdminUser:
        username = username.strip()
        if not username:
            raise InvalidError("Admin username is required")

        def _create(session: Session) -> AdminUser:
            if self._admins.get_by_username(username=username, session=session) is not None:
                raise ConflictError(f"Admin user already exists: {username}")
            record = AdminUserRecord(
                id=self._id_factory(),
                username=username,
                password_hash=password_hash,
                name=name,
                is_active=True,
                must_change_password=must_change_password,
                created_at=self._clock(),
            )
            return _admin_user(self._admins.add(record=record, session=session))

        return self._db.run_in_session(_create)

    def get_admin_user(self, admin_id: str) -> Optional[AdminUser]:
        def _get(session: Session) -> Optional[AdminUser]:
            record = self._admins.get(admin_id=admin_id, session=session)
            return _admin_user(record) if record else None

        return self._db.run_in_session(_get)

    def get_admin_user_by_username(self, username: str) -> Optional[AdminUser]:
        def _get(session: Session) -> Optional[AdminUser]:
            record = self._admins.get_by_username(username=username, session=session)
            return _admin_user(record) if record else None

        return self._db.run_in_session(_get)

    def create_user_session(
        self,
        *,
        session_id: str,
        user_id: str,
        session_type: SessionType,
        ttl: timedelta,
    ) -> UserSession:
        now = self._clock()
        record = UserSessionRecord(
            session_id=session_id,
            user_id=user_id,
            session_type=session_type.value,
            created_at=now,
            expires_at=now + ttl,
        )
        return self._db.run_in_session(
            lambda session: _user_session(self._user_sessions.add(record=record, session=session))
        )

    def get_user_session(self, session_id: str) -> Optional[UserSession]:
        def _get(session: Session) -> Optional[UserSession]:
            record = self._user_sessions.get(session_id=session_id, session=session)
            return _user_session(record) if record else None

        return self._db.run_in_session(_get)

    def delete_user_session(self, session_id: str) -> bool:
        return self._db.run_in_session(
            lambda session: self._user_sessions.delete(session_id=session_id, session=session)
        )

    def cleanup_expired_user_sessions(self) -> int:
        now = self._clock()
        return self._db.run_in_session(lambda session: self._user_sessions.delete_expired(now=now, session=session))

    # -- webhooks -------------------------------------------------------------------

    def create_webhook(self, *, url: str, events: Iterable[str], secret: Optional[str] = None) -> Webhook:
        if not url.startswith(("http://", "https://")):
            raise InvalidError(f"Webhook URL must be http(s): {url!r}")
        record = WebhookRecord(
            id=self._id_factory(),
            url=url,
            secret=secret or None,
            events=validate_events(events),
            is_active=True,
            created_at=self._clock(),
            failure_count=0,
        )
        return self._db.run_in_session(lambda session: _webhook(self._webhooks.add(record=record, session=session)))

    def get_webhook(self, webhook_id: str) -> Optional[Webhook]:
        def _get(session: Session) -> Optional[Webhook]:
            record = self._webhooks.get(webhook_id=webhook_id, session=session)
            return _webhook(record) if record else None

        return self._db.run_in_session(_get)

    def list_webhooks(self, *, active_only: bool = False) -> list[Webhook]:
        return self._db.run_in_session(
            lambda session: [_webhook(item) for item in self._webhooks.list(active_only=active_only, session=session)]
        )

    def list_webhooks_for_event(self, event_type: str) -> list[Webhook]:
        return [item for item in self.list_webhooks(active_only=True) if item.should_trigger(event_type)]

    def update_webhook(
        self,
        webhook_id: str,
        *,
        url: Optional[str] = None,
        events: Optional[Iterable[str]] = None,
        secret: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Webhook:
        values: dict[str, Any] = {}
        if url is not None:
            if not url.startswith(("http://", "https://")):
                raise InvalidError(f"Webhook URL must be http(s): {url!r}")
            values["url"] = url
        if events is not None:
            values["events"] = validate_events(events)
        if secret is not None:
            values["secret"] = secret or None
        if is_active is not None:
            values["is_active"] = is_active
            if is_active:
                values["failure_count"] = 0

        def _update(session: Session) -> Webhook:
            if values and not self._webhooks.update(webhook_id=webhook_id, values=values, session=session):
                raise NotFoundError(f"Webhook not found: {webhook_id}")
            record = self._webhooks.get(webhook_id=webhook_id, session=session)
            if record is None:
                raise NotFoundError(f"Webhook not found: {webhook_id}")
            session.refresh(record)
            return _webhook(record)

        return self._db.run_in_session(_update)

    def delete_webhook(self, webhook_id: str) -> bool:
        return self._db.run_in_session(lambda session: self._webhooks.delete(webhook_id=webhook_id, session=session))

    def record_webhook_result(self, webhook_id: str, *, success: bool, max_failures: int) -> None:
        now = self._clock()
        self._db.run_in_session(
            lambda session: self._webhooks.record_result(
                webhook_id=webhook_id,
                success=success,
                now=now,
                max_failures=max_failures,
                session=session,
            )
        )

    def log_webhook_delivery(
        self,
        *,
        webhook_id: str,
        event_type: str,
        payload: dict[str, Any],
        success: bool,
        duration_ms: int,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        delivery_id: Optional[str] = None,
    ) -> WebhookDelivery:
        record = WebhookDeliveryRecord(
            id=delivery_id or self._id_factory(),
            webhook_id=webhook_id,
            event_type=event_type,
            payload=payload,
            status_code=status_code,
            success=success,
            error=error,
            duration_ms=duration_ms,
            delivered_at=self._clock(),
        )
        return self._db.run_in_session(
            lambda session: _delivery(self._webhooks.add_delivery(record=record, session=session))
        )

    def list_webhook_deliveries(self, webhook_id: str, limit: int = 50) -> list[WebhookDelivery]:
        return self._db.run_in_session(
            lambda session: [
                _delivery(item)
                for item in self._webhooks.list_deliveries(webhook_id=webhook_id, limit=limit, session=session)
            ]
        )

    # -- activity log -------------------------------------------------------------

    def _add_activity(
        self,
        session: Session,
        *,
        activity_type: str,
        actor: Actor,
        target_type: Optional[str],
        target_id: Optional[str],
        metadata: Optional[dict[str, Any]],
        now: datetime,
    ) -> ActivityLogRecord:
        record = ActivityLogRecord(
            id=self._id_factory(),
            timestamp=now,
            activity_type=activity_type,
            actor_type=actor.actor_type,
            actor_id=actor.actor_id,
            actor_email=actor.email,
            actor_username=actor.username,
            target_type=target_type,
            target_id=target_id,
            details=metadata,
            ip_address=actor.ip_address,
        )
        return self._activity.add(record=record, session=session)

    def log_activity(
        self,
        *,
        activity_type: str,
        actor: Actor,
        target_type: Optional[str] = None,
        target_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ActivityLogEntry:
        now = self._clock()
        return self._db.run_in_session(
            lambda session: _activity(
                self._add_activity(
                    session,
                    activity_type=activity_type,
                    actor=actor,
                    target_type=target_type,
                    target_id=target_id,
                    metadata=metadata,
                    now=now,
                )
            )
        )

    def list_activity(
        self,
        page: int = 1,
        limit: int = 20,
        *,
        activity_type: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Page[ActivityLogEntry]:
        page, limit = normalize_page(page, limit)

        def _list(session: Session) -> Page[ActivityLogEntry]:
            records, total = self._activity.list_page(
                page=page,
                limit=limit,
                activity_type=activity_type,
                actor_id=actor_id,
                session=session,
            )
            return Page(items=[_activity(item) for item in records], total=total, page=page, limit=limit)

        return self._db.run_in_session(_list)

    # -- site config ----------------------------------------------------------------

    def get_site_config(self, name: str) -> Optional[SiteConfig]:
        def _get(session: Session) -> Optional[SiteConfig]:
            record = self._site_config.get(name=name, session=session)
            return _site_config(record) if record else None

        return self._db.run_in_session(_get)

    def list_site_config(self) -> list[SiteConfig]:
        return self._db.run_in_session(
            lambda session: [_site_config(item) for item in self._site_config.list(session=session)]
        )

    def set_site_config(self, name: str, value: Any) -> SiteConfig:
        def _set(session: Session) -> SiteConfig:
            record = self._site_config.get(name=name, session=session)
            if record is None:
                raise NotFoundError(f"Unknown site setting: {name}")
            coerced = _coerce_config_value(ConfigValueType(record.value_type), value)
            self._site_config.set_value(name=name, value=coerced, session=session)
            session.refresh(record)
            return _site_config(record)

        return self._db.run_in_session(_set)


__all__ = ["MetadataStore"]
