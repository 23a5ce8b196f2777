"""Build blob stores from settings."""

from __future__ import annotations

from pathlib import Path

from ..config.settings import RegistrySettings
from ..errors import ConfigurationError
from .base import BlobStore
from .filesystem import FileBlobStore
from .s3 import S3BlobStore, create_s3_client


def _s3_store(settings: RegistrySettings, prefix: str) -> S3BlobStore:
    if not settings.s3_bucket:
        raise ConfigurationError("REGISTRY_S3_BUCKET is required for S3 storage")
    if bool(settings.s3_access_key) != bool(settings.s3_secret_key):
        raise ConfigurationError("REGISTRY_S3_ACCESS_KEY and REGISTRY_S3_SECRET_KEY must be set together")
    client = create_s3_client(
        endpoint_url=settings.s3_endpoint or None,
        region=settings.s3_region,
        access_key=settings.s3_access_key or None,
        secret_key=settings.s3_secret_key or None,
    )
    return S3BlobStore(
        client,
        settings.s3_bucket,
        signed_url_ttl=settings.signed_url_ttl_seconds,
        prefix=prefix,
    )


def create_blob_store(settings: RegistrySettings) -> BlobStore:
    """First-party archive store; a local path wins over S3 when both are set."""

    if settings.storage_path:
        return FileBlobStore(Path(settings.storage_path), settings.normalized_base_url)
    if settings.has_s3_config:
        return _s3_store(settings, prefix="")
    raise ConfigurationError(
        "No storage configured: set REGISTRY_STORAGE_PATH or the REGISTRY_S3_* variables"
    )


def create_cache_blob_store(settings: RegistrySettings) -> BlobStore:
    """Upstream-cache store, rooted apart from first-party archives."""

    if settings.use_local_storage or not settings.has_s3_config:
        cache_root = Path(settings.cache_path).expanduser().resolve()
        if settings.storage_path:
            storage_root = Path(settings.storage_path).expanduser().resolve()
            if cache_root == storage_root or storage_root in cache_root.parents or cache_root in storage_root.parents:
                raise ConfigurationError("Cache path must not overlap the storage path")
        return FileBlobStore(cache_root, settings.normalized_base_url)
    prefix = settings.s3_cache_prefix
    if not prefix or not prefix.endswith("/"):
        raise ConfigurationError("REGISTRY_S3_CACHE_PREFIX must be a non-empty prefix ending in '/'")
    return _s3_store(settings, prefix=prefix)


__all__ = ["create_blob_store", "create_cache_blob_store"]
