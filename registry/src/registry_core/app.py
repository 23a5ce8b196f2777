"""Wire the registry components together from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

import httpx

from .auth.passwords import hash_password as default_hash_password
from .auth.tokens import Authenticator
from .config.settings import RegistrySettings, get_settings
from .db.migrations import MigrationRunner
from .db.session import Database
from .services.accounts import AccountService
from .services.packages import PackageService
from .services.uploads import UploadSessionManager
from .services.webhooks import WebhookDispatcher
from .storage.base import BlobStore
from .storage.factory import create_blob_store, create_cache_blob_store
from .store import MetadataStore

LOGGER = logging.getLogger(__name__)


@dataclass
class RegistryEngine:
    settings: RegistrySettings
    database: Database
    store: MetadataStore
    blobs: BlobStore
    cache_blobs: BlobStore
    authenticator: Authenticator
    webhooks: WebhookDispatcher
    uploads: UploadSessionManager
    packages: PackageService
    accounts: AccountService

    def startup(self) -> list[str]:
        """Connect, migrate and prepare blob storage; return applied migrations."""

        self.database.connect()
        applied = MigrationRunner(self.database).run()
        if applied:
            LOGGER.info("Applied %s migration(s): %s", len(applied), ", ".join(applied))
        self.blobs.ensure_ready()
        self.cache_blobs.ensure_ready()
        return applied

    async def shutdown(self) -> None:
        await self.webhooks.drain()
        self.database.dispose()


def build_engine(
    settings: Optional[RegistrySettings] = None,
    *,
    hash_password: Optional[Callable[[str], str]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> RegistryEngine:
    settings = settings or get_settings()
    database = Database(
        settings.database_url,
        retry_attempts=settings.database_retry_attempts,
        retry_delay=settings.database_retry_delay_seconds,
    )
    store = MetadataStore(database)
    blobs = create_blob_store(settings)
    cache_blobs = create_cache_blob_store(settings)
    webhooks = WebhookDispatcher(
        store,
        client=http_client,
        timeout=settings.webhook_timeout_seconds,
        max_failures=settings.webhook_max_failures,
    )
    base_url = settings.normalized_base_url
    return RegistryEngine(
        settings=settings,
        database=database,
        store=store,
        blobs=blobs,
        cache_blobs=cache_blobs,
        authenticator=Authenticator(store),
        webhooks=webhooks,
        uploads=UploadSessionManager(
            store,
            blobs,
            webhooks,
            base_url=base_url,
            session_ttl=timedelta(seconds=settings.upload_session_ttl_seconds),
            completed_retention=timedelta(seconds=settings.completed_session_retention_seconds),
            max_upload_size=settings.max_upload_size_bytes,
        ),
        packages=PackageService(
            store,
            blobs,
            cache_blobs,
            webhooks,
            base_url=base_url,
            require_read_auth=settings.require_download_auth,
        ),
        accounts=AccountService(
            store,
            webhooks,
            hash_password or default_hash_password,
            user_session_ttl=timedelta(hours=settings.user_session_ttl_hours),
            admin_session_ttl=timedelta(hours=settings.admin_session_ttl_hours),
        ),
    )


__all__ = ["RegistryEngine", "build_engine"]
