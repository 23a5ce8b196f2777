"""Copy and verify archives between two blob stores.

The set of keys comes from the metadata store, so only archives the
registry actually references are moved. A run is restartable: keys already
present in the target are skipped unless ``overwrite`` is requested, and a
failing key never aborts the run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from ..errors import NotFoundError, RegistryError
from .base import BlobStore

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class ArchiveKeySource(Protocol):
    def list_archive_keys(self, *, include_cached: bool = False) -> list[str]: ...


@dataclass
class MigrationResult:
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def total(self) -> int:
        return self.successful + self.failed + self.skipped

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict[str, object]:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "total": self.total,
            "errors": list(self.errors),
            "durationSeconds": round(self.duration, 3),
        }


@dataclass
class VerificationResult:
    total: int = 0
    matched: int = 0
    missing_in_source: list[str] = field(default_factory=list)
    missing_in_target: list[str] = field(default_factory=list)
    size_mismatches: list[str] = field(default_factory=list)
    content_mismatches: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.matched == self.total

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "matched": self.matched,
            "missingInSource": list(self.missing_in_source),
            "missingInTarget": list(self.missing_in_target),
            "sizeMismatches": list(self.size_mismatches),
            "contentMismatches": list(self.content_mismatches),
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class MigrationPreview:
    total: int
    in_source: int
    in_target: int
    to_migrate: int

    def to_dict(self) -> dict[str, int]:
        return {
            "totalKeys": self.total,
            "existsInSource": self.in_source,
            "existsInTarget": self.in_target,
            "toMigrate": self.to_migrate,
        }


class StorageMigration:
    def __init__(
        self,
        keys: ArchiveKeySource,
        source: BlobStore,
        target: BlobStore,
        *,
        monotonic: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._keys = keys
        self._source = source
        self._target = target
        self._monotonic = monotonic
        self._logger = logger or LOGGER

    def archive_keys(self, local_only: bool = True) -> list[str]:
        return sorted(set(self._keys.list_archive_keys(include_cached=not local_only)))

    def preview(self, local_only: bool = True) -> MigrationPreview:
        keys = self.archive_keys(local_only)
        in_source = 0
        in_target = 0
        to_migrate = 0
        for key in keys:
            source_has = self._source.exists(key)
            target_has = self._target.exists(key)
            in_source += int(source_has)
            in_target += int(target_has)
            if source_has and not target_has:
                to_migrate += 1
        return MigrationPreview(
            total=len(keys),
            in_source=in_source,
            in_target=in_target,
            to_migrate=to_migrate,
        )

    def migrate(
        self,
        local_only: bool = True,
        overwrite: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> MigrationResult:
        started = self._monotonic()
        result = MigrationResult()
        keys = self.archive_keys(local_only)
        total = len(keys)

        for index, key in enumerate(keys, start=1):
            if on_progress is not None:
                on_progress(index, total, key)
            try:
                if not overwrite and self._target.exists(key):
                    result.skipped += 1
                    continue
                try:
                    data = self._source.get_archive(key)
                except NotFoundError:
                    self._logger.warning("Archive %s missing in source; skipping", key)
                    result.skipped += 1
                    continue
                self._target.put_archive(key, data)
                result.successful += 1
            except RegistryError as exc:
                self._logger.error("Failed to migrate %s: %s", key, exc)
                result.failed += 1
                result.errors.append(f"{key}: {exc}")

        result.duration = self._monotonic() - started
        self._logger.info(
            "Storage migration finished: %s migrated, %s skipped, %s failed",
            result.successful,
            result.skipped,
            result.failed,
        )
        return result

    def verify(self, local_only: bool = True) -> VerificationResult:
        """Byte-compare every referenced archive between source and target."""

        keys = self.archive_keys(local_only)
        result = VerificationResult(total=len(keys))
        for key in keys:
            try:
                source_data = self._read(self._source, key)
                target_data = self._read(self._target, key)
            except RegistryError as exc:
                result.errors.append(f"{key}: {exc}")
                continue
            if source_data is None:
                result.missing_in_source.append(key)
            elif target_data is None:
                result.missing_in_target.append(key)
            elif len(source_data) != len(target_data):
                result.size_mismatches.append(
                    f"{key} (size mismatch: {len(source_data)} vs {len(target_data)})"
                )
            elif source_data != target_data:
                result.content_mismatches.append(key)
            else:
                result.matched += 1
        return result

    @staticmethod
    def _read(store: BlobStore, key: str) -> Optional[bytes]:
        try:
            return store.get_archive(key)
        except NotFoundError:
            return None


__all__ = [
    "MigrationPreview",
    "MigrationResult",
    "StorageMigration",
    "VerificationResult",
]
