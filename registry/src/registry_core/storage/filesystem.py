"""Local filesystem blob store."""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Iterator, Optional

from ..errors import BackendError, InvalidError, NotFoundError
from .base import ARCHIVE_CONTENT_TYPE, BlobStore, server_download_url
from .keys import KEY_PREFIX

LOGGER = logging.getLogger(__name__)


class FileBlobStore(BlobStore):
    def __init__(self, root: str | Path, base_url: str, *, logger: Optional[logging.Logger] = None) -> None:
        self.root = Path(root).expanduser().resolve()
        self._base_url = base_url.rstrip("/")
        self._logger = logger or LOGGER

    def _path_for(self, key: str) -> Path:
        if not key or key.startswith("/") or "\\" in key:
            raise InvalidError(f"Invalid blob key: {key!r}")
        try:
            path = (self.root / key).resolve()
        except (OSError, RuntimeError) as exc:
            raise BackendError(f"Cannot resolve archive path for {key}: {exc}") from exc
        if path == self.root or self.root not in path.parents:
            raise InvalidError(f"Blob key escapes storage root: {key!r}")
        return path

    def ensure_ready(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackendError(f"Cannot create storage directory {self.root}: {exc}") from exc
        self._logger.debug("Blob storage ready at %s", self.root)

    def put_archive(self, key: str, data: bytes, content_type: str = ARCHIVE_CONTENT_TYPE) -> None:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise BackendError(f"Failed to write archive {key}: {exc}") from exc

    def get_archive(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"Archive not found: {key}") from exc
        except OSError as exc:
            raise BackendError(f"Failed to read archive {key}: {exc}") from exc

    def exists(self, key: str) -> bool:
        path = self._path_for(key)
        try:
            return stat.S_ISREG(path.stat().st_mode)
        except (FileNotFoundError, NotADirectoryError):
            return False
        except OSError as exc:
            raise BackendError(f"Failed to check archive {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise BackendError(f"Failed to delete archive {key}: {exc}") from exc

    def get_download_url(self, key: str) -> str:
        return server_download_url(self._base_url, key)

    def list_keys(self) -> Iterator[str]:
        packages_root = self.root / KEY_PREFIX
        if not packages_root.is_dir():
            return
        for path in sorted(packages_root.rglob("*.tar.gz")):
            if path.is_file():
                yield path.relative_to(self.root).as_posix()


__all__ = ["FileBlobStore"]
