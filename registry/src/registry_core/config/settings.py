"""Registry configuration using pydantic-settings."""

from __future__ import annotations

from functools import lru_cache
from typing import ClassVar, Optional

from pydantic import Field, PositiveFloat, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MAX_UPLOAD_BYTES = 100 * 1024 * 1024


class RegistrySettings(BaseSettings):
    """Validated settings for the registry storage and metadata engine."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="REGISTRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    base_url: str = Field(
        default="http://localhost:4920",
        description="Public base URL used to build upload, finalize and archive URLs.",
    )
    database_url: str = Field(
        default="sqlite:///./data/registry.db",
        description="SQLAlchemy URL (sqlite or postgresql).",
    )
    database_retry_attempts: PositiveInt = Field(
        default=30,
        description="Connection attempts at startup before giving up.",
    )
    database_retry_delay_seconds: PositiveFloat = Field(
        default=1.0,
        description="Base delay between startup connection attempts (seconds).",
    )
    require_download_auth: bool = Field(
        default=False,
        description="Require a read-capable token to read metadata and archives.",
    )

    storage_path: Optional[str] = Field(
        default=None,
        description="Filesystem root for first-party archives.",
    )
    cache_path: str = Field(
        default="./data/cache",
        description="Filesystem root for upstream-cached archives.",
    )
    s3_endpoint: Optional[str] = Field(default=None, description="S3-compatible endpoint URL.")
    s3_region: str = Field(default="us-east-1", description="S3 region.")
    s3_access_key: Optional[str] = Field(default=None, description="S3 access key id.")
    s3_secret_key: Optional[str] = Field(default=None, description="S3 secret access key.")
    s3_bucket: Optional[str] = Field(default=None, description="Bucket holding archives.")
    s3_cache_prefix: str = Field(
        default="cache/",
        description="Key prefix isolating upstream-cached archives inside the bucket.",
    )
    signed_url_ttl_seconds: PositiveInt = Field(
        default=3600,
        description="Lifetime of presigned download URLs (seconds).",
    )

    upload_session_ttl_seconds: PositiveInt = Field(
        default=3600,
        description="Lifetime of an unfinalized upload session (seconds).",
    )
    completed_session_retention_seconds: PositiveInt = Field(
        default=86400,
        description="How long completed upload sessions are kept before pruning (seconds).",
    )
    max_upload_size_bytes: PositiveInt = Field(
        default=DEFAULT_MAX_UPLOAD_BYTES,
        description="Maximum accepted archive size.",
    )

    webhook_timeout_seconds: PositiveFloat = Field(
        default=10.0,
        description="Per-delivery timeout for webhook requests (seconds).",
    )
    webhook_max_failures: PositiveInt = Field(
        default=5,
        description="Consecutive failures after which a webhook is deactivated.",
    )

    user_session_ttl_hours: PositiveInt = Field(default=24, description="Web session TTL for users.")
    admin_session_ttl_hours: PositiveInt = Field(default=8, description="Web session TTL for admins.")

    @property
    def use_local_storage(self) -> bool:
        return bool(self.storage_path)

    @property
    def has_s3_config(self) -> bool:
        """A bucket is enough; the endpoint and keys fall back to AWS defaults."""

        return bool(self.s3_bucket)

    @property
    def normalized_base_url(self) -> str:
        return self.base_url.rstrip("/")


@lru_cache()
def get_settings() -> RegistrySettings:
    """Return memoized registry settings."""

    return RegistrySettings()


__all__ = ["RegistrySettings", "get_settings", "DEFAULT_MAX_UPLOAD_BYTES"]
