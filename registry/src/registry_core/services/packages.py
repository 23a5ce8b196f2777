"""Package metadata, downloads and admin lifecycle operations."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from ..auth.scopes import ADMIN, READ_ALL, require
from ..auth.tokens import Principal
from ..domain.models import (
    ANONYMOUS_USER_ID,
    Actor,
    Package,
    PackageInfo,
    PackageVersion,
    Page,
    UpsertOutcome,
)
from ..errors import InvalidError, NotFoundError, RegistryError, UnauthorizedError
from ..storage.base import ARCHIVE_CONTENT_TYPE, BlobStore
from ..storage.keys import archive_key, compute_digest
from ..store import MetadataStore
from .archive import PACKAGE_NAME_PATTERN, VERSION_PATTERN
from .webhooks import WebhookDispatcher

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveDownload:
    content: bytes
    filename: str
    content_type: str = ARCHIVE_CONTENT_TYPE


def _actor(principal: Principal) -> Actor:
    return Actor(actor_type="admin" if principal.is_admin else "user", actor_id=principal.user_id)


class PackageService:
    def __init__(
        self,
        store: MetadataStore,
        blobs: BlobStore,
        cache_blobs: BlobStore,
        webhooks: WebhookDispatcher,
        *,
        base_url: str,
        require_read_auth: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._blobs = blobs
        self._cache_blobs = cache_blobs
        self._webhooks = webhooks
        self._base_url = base_url.rstrip("/")
        self._require_read_auth = require_read_auth
        self._logger = logger or LOGGER

    # -- reads ---------------------------------------------------------------------

    def _check_read(self, principal: Optional[Principal]) -> None:
        if not self._require_read_auth:
            return
        if principal is None:
            raise UnauthorizedError("Authentication required")
        require(principal.scopes, READ_ALL)

    def archive_url(self, name: str, version: str) -> str:
        return f"{self._base_url}/packages/{name}/versions/{version}.tar.gz"

    def _render_version(self, version: PackageVersion) -> dict[str, Any]:
        return version.to_wire(self.archive_url(version.package_name, version.version))

    def _info(self, name: str) -> PackageInfo:
        info = self._store.get_package_info(name)
        if info is None:
            raise NotFoundError(f"Package not found: {name}")
        return info

    def get_package_info(self, name: str, principal: Optional[Principal] = None) -> dict[str, Any]:
        """Pub protocol package listing with ``latest`` at the highest version."""

        self._check_read(principal)
        info = self._info(name)
        latest = info.latest
        payload: dict[str, Any] = {
            "name": info.package.name,
            "latest": self._render_version(latest) if latest else None,
            "versions": [self._render_version(item) for item in info.sorted_versions()],
        }
        if info.package.is_discontinued:
            payload["isDiscontinued"] = True
            if info.package.replaced_by:
                payload["replacedBy"] = info.package.replaced_by
        return payload

    def get_version_info(self, name: str, version: str, principal: Optional[Principal] = None) -> dict[str, Any]:
        self._check_read(principal)
        record = self._store.get_package_version(name, version)
        if record is None:
            raise NotFoundError(f"Version not found: {name} {version}")
        return self._render_version(record)

    def list_packages(self, page: int = 1, limit: int = 20, principal: Optional[Principal] = None) -> Page[PackageInfo]:
        self._check_read(principal)
        return self._store.list_packages_by_type(False, page=page, limit=limit)

    def search_packages(
        self,
        query: str,
        page: int = 1,
        limit: int = 20,
        principal: Optional[Principal] = None,
    ) -> Page[PackageInfo]:
        self._check_read(principal)
        return self._store.search_packages(query, page=page, limit=limit)

    def download_archive(self, name: str, version: str, principal: Optional[Principal] = None) -> ArchiveDownload:
        self._check_read(principal)
        package = self._store.get_package(name)
        if package is None:
            raise NotFoundError(f"Package not found: {name}")
        record = self._store.get_package_version(name, version)
        if record is None:
            raise NotFoundError(f"Version not found: {name} {version}")
        store = self._cache_blobs if package.is_upstream_cache else self._blobs
        return ArchiveDownload(
            content=store.get_archive(record.archive_key),
            filename=f"{name}-{version}.tar.gz",
        )

    def download_url(self, name: str, version: str, principal: Optional[Principal] = None) -> str:
        """Where clients should fetch the archive (presigned for S3)."""

        self._check_read(principal)
        package = self._store.get_package(name)
        record = self._store.get_package_version(name, version)
        if package is None or record is None:
            raise NotFoundError(f"Version not found: {name} {version}")
        store = self._cache_blobs if package.is_upstream_cache else self._blobs
        return store.get_download_url(record.archive_key)

    # -- upstream cache ----------------------------------------------------------------

    def cache_upstream_version(self, name: str, version: str, manifest: dict[str, Any], data: bytes) -> bool:
        """Store a version fetched from the upstream registry in the cache store."""

        if not PACKAGE_NAME_PATTERN.match(name) or not VERSION_PATTERN.match(version):
            raise InvalidError(f"Refusing to cache invalid package coordinates {name} {version}")
        digest = compute_digest(data)
        key = archive_key(name, version, digest)
        self._cache_blobs.put_archive(key, data)
        outcome = self._store.upsert_package_version(
            name=name,
            version=version,
            manifest=manifest,
            archive_key=key,
            archive_sha256=digest,
            owner_id=ANONYMOUS_USER_ID,
            is_upstream_cache=True,
        )
        return outcome is UpsertOutcome.CREATED

    # -- admin -------------------------------------------------------------------------

    def _delete_blobs(self, store: BlobStore, keys: Iterable[str]) -> int:
        removed = 0
        for key in keys:
            try:
                store.delete(key)
                removed += 1
            except RegistryError as exc:
                # Metadata is already gone; an orphaned blob is harmless.
                self._logger.warning("Failed to delete archive %s: %s", key, exc)
        return removed

    def _remove_package(self, principal: Principal, name: str) -> int:
        require(principal.scopes, ADMIN)
        package = self._store.get_package(name)
        if package is None:
            raise NotFoundError(f"Package not found: {name}")
        removal = self._store.delete_package(name)
        self._delete_blobs(self._cache_blobs if package.is_upstream_cache else self._blobs, removal.archive_keys)
        self._store.log_activity(
            activity_type="package_deleted",
            actor=_actor(principal),
            target_type="package",
            target_id=name,
            metadata={"versionCount": len(removal.archive_keys)},
        )
        return len(removal.archive_keys)

    async def delete_package(self, principal: Principal, name: str) -> int:
        version_count = await asyncio.to_thread(self._remove_package, principal, name)
        self._logger.info("Deleted package %s (%s versions)", name, version_count)
        self._webhooks.on_package_deleted(package=name, version_count=version_count)
        return version_count

    def _remove_version(self, principal: Principal, name: str, version: str) -> None:
        require(principal.scopes, ADMIN)
        package = self._store.get_package(name)
        if package is None:
            raise NotFoundError(f"Package not found: {name}")
        key = self._store.delete_package_version(name, version)
        self._delete_blobs(self._cache_blobs if package.is_upstream_cache else self._blobs, [key])
        self._store.log_activity(
            activity_type="version_deleted",
            actor=_actor(principal),
            target_type="package",
            target_id=name,
            metadata={"version": version},
        )

    async def delete_version(self, principal: Principal, name: str, version: str) -> None:
        await asyncio.to_thread(self._remove_version, principal, name, version)
        self._webhooks.on_version_deleted(package=name, version=version)

    def _set_discontinued(self, principal: Principal, name: str, replaced_by: Optional[str]) -> Package:
        require(principal.scopes, ADMIN)
        package = self._store.discontinue_package(name, replaced_by)
        self._store.log_activity(
            activity_type="package_discontinued",
            actor=_actor(principal),
            target_type="package",
            target_id=name,
            metadata={"replacedBy": replaced_by} if replaced_by else None,
        )
        return package

    async def discontinue(self, principal: Principal, name: str, replaced_by: Optional[str] = None) -> Package:
        package = await asyncio.to_thread(self._set_discontinued, principal, name, replaced_by)
        self._webhooks.on_package_discontinued(package=name, replaced_by=replaced_by)
        return package

    def _set_reactivated(self, principal: Principal, name: str) -> Package:
        require(principal.scopes, ADMIN)
        package = self._store.reactivate_package(name)
        self._store.log_activity(
            activity_type="package_reactivated",
            actor=_actor(principal),
            target_type="package",
            target_id=name,
        )
        return package

    async def reactivate(self, principal: Principal, name: str) -> Package:
        package = await asyncio.to_thread(self._set_reactivated, principal, name)
        self._webhooks.on_package_reactivated(package=name)
        return package

    def retract_version(
        self,
        principal: Principal,
        name: str,
        version: str,
        message: Optional[str] = None,
    ) -> PackageVersion:
        require(principal.scopes, ADMIN)
        record = self._store.retract_version(name, version, message)
        self._store.log_activity(
            activity_type="version_retracted",
            actor=_actor(principal),
            target_type="package",
            target_id=name,
            metadata={"version": version, "message": message},
        )
        return record

    def unretract_version(self, principal: Principal, name: str, version: str) -> PackageVersion:
        require(principal.scopes, ADMIN)
        record = self._store.unretract_version(name, version)
        self._store.log_activity(
            activity_type="version_unretracted",
            actor=_actor(principal),
            target_type="package",
            target_id=name,
            metadata={"version": version},
        )
        return record

    def transfer_ownership(self, principal: Principal, name: str, new_owner_id: str) -> Package:
        require(principal.scopes, ADMIN)
        package = self._store.transfer_ownership(name, new_owner_id)
        self._store.log_activity(
            activity_type="package_transferred",
            actor=_actor(principal),
            target_type="package",
            target_id=name,
            metadata={"newOwnerId": new_owner_id},
        )
        return package

    def _clear_cached(self, principal: Principal) -> tuple[int, int]:
        require(principal.scopes, ADMIN)
        removal = self._store.clear_cached_packages()
        archives = self._delete_blobs(self._cache_blobs, removal.archive_keys)
        archives += self._cache_blobs.clear()
        self._store.log_activity(
            activity_type="cache_cleared",
            actor=_actor(principal),
            target_type="cache",
            metadata={"packagesRemoved": removal.count, "archivesRemoved": archives},
        )
        return removal.count, archives

    async def clear_cache(self, principal: Principal) -> int:
        """Remove every upstream-cached package and its archives."""

        packages, archives = await asyncio.to_thread(self._clear_cached, principal)
        self._logger.info("Cleared upstream cache: %s packages, %s archives", packages, archives)
        self._webhooks.on_cache_cleared(packages_removed=packages, archives_removed=archives)
        return packages


__all__ = ["ArchiveDownload", "PackageService"]
