"""Package archive inspection."""

from __future__ import annotations

import io
import json
import re
import tarfile
import zlib
from dataclasses import dataclass
from typing import Any

import yaml

from ..errors import InvalidError

MANIFEST_FILENAME = "pubspec.yaml"

PACKAGE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]*$")
VERSION_PATTERN = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+(-[a-zA-Z0-9.]+)?(\+[a-zA-Z0-9.]+)?$")


@dataclass(frozen=True)
class ArchiveManifest:
    name: str
    version: str
    manifest: dict[str, Any]


def _member_depth(name: str) -> int:
    return len([part for part in name.split("/") if part and part != "."])


def _find_manifest(archive: tarfile.TarFile) -> tarfile.TarInfo:
    candidates = [
        member
        for member in archive.getmembers()
        if member.isfile() and member.name.rstrip("/").split("/")[-1] == MANIFEST_FILENAME
    ]
    if not candidates:
        raise InvalidError(f"{MANIFEST_FILENAME} not found in archive")
    # The shallowest manifest is the package's own; deeper ones belong to examples or fixtures.
    return min(candidates, key=lambda member: (_member_depth(member.name), member.name))


def read_archive_manifest(data: bytes) -> ArchiveManifest:
    """Validate a gzip tarball and return its parsed ``pubspec.yaml``."""

    if not data:
        raise InvalidError("Archive is empty")
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
            member = _find_manifest(archive)
            handle = archive.extractfile(member)
            if handle is None:
                raise InvalidError(f"{MANIFEST_FILENAME} is not readable")
            raw = handle.read()
    except (tarfile.TarError, zlib.error, EOFError, OSError) as exc:
        raise InvalidError(f"Invalid package archive: {exc}") from exc

    try:
        manifest = yaml.safe_load(raw.decode("utf-8"))
    except (yaml.YAMLError, UnicodeDecodeError) as exc:
        raise InvalidError(f"Invalid {MANIFEST_FILENAME}: {exc}") from exc
    if not isinstance(manifest, dict):
        raise InvalidError(f"{MANIFEST_FILENAME} must be a mapping")

    name = manifest.get("name")
    version = manifest.get("version")
    if not isinstance(name, str) or not name.strip():
        raise InvalidError(f"{MANIFEST_FILENAME} must include a package name")
    if version is None or not str(version).strip():
        raise InvalidError(f"{MANIFEST_FILENAME} must include a version")
    name = name.strip()
    version = str(version).strip()
    if not PACKAGE_NAME_PATTERN.match(name):
        raise InvalidError(f"Invalid package name: {name}")
    if not VERSION_PATTERN.match(version):
        raise InvalidError(f"Invalid version: {version}")
    manifest["version"] = version
    # YAML may yield dates and other non-JSON scalars; stored manifests are JSON.
    manifest = json.loads(json.dumps(manifest, default=str))
    return ArchiveManifest(name=name, version=version, manifest=manifest)


__all__ = ["ArchiveManifest", "read_archive_manifest", "PACKAGE_NAME_PATTERN", "VERSION_PATTERN"]
