"""Backend-independent archive blob store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator

from .keys import parse_archive_key

ARCHIVE_CONTENT_TYPE = "application/gzip"


def server_download_url(base_url: str, key: str) -> str:
    """Archive download endpoint served by the registry itself."""

    name, version, _ = parse_archive_key(key)
    return f"{base_url.rstrip('/')}/packages/{name}/versions/{version}.tar.gz"


class BlobStore(ABC):
    """Stores opaque archive bytes under archive keys.

    Implementations raise ``NotFoundError`` for missing keys on reads,
    ``InvalidError`` for keys that escape the store's root and
    ``BackendError`` for everything the backend cannot answer.
    """

    @abstractmethod
    def ensure_ready(self) -> None:
        """Create the directory or bucket if needed."""

    @abstractmethod
    def put_archive(self, key: str, data: bytes, content_type: str = ARCHIVE_CONTENT_TYPE) -> None: ...

    @abstractmethod
    def get_archive(self, key: str) -> bytes: ...

    @abstractmethod
    def exists(self, key: str) -> bool: ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; a missing key is not an error."""

    @abstractmethod
    def get_download_url(self, key: str) -> str: ...

    @abstractmethod
    def list_keys(self) -> Iterator[str]:
        """Yield every archive key held under this store's root."""

    def clear(self) -> int:
        """Delete every archive under this store's root; return how many."""

        removed = 0
        for key in list(self.list_keys()):
            self.delete(key)
            removed += 1
        return removed


__all__ = ["BlobStore", "ARCHIVE_CONTENT_TYPE", "server_download_url"]
