"""ORM models for packages and their published versions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import Base
from ..types import UTCDateTime, json_document


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PackageRecord(Base):
    """A package name, its owner and lifecycle flags."""

    __tablename__ = "packages"
    __table_args__ = (
        Index("ix_packages_owner_id", "owner_id"),
        Index("ix_packages_updated_at", "updated_at"),
        Index("ix_packages_is_upstream_cache", "is_upstream_cache"),
    )

    name: Mapped[str] = mapped_column(String(255), primary_key=True)
    owner_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=_utcnow)
    is_discontinued: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    replaced_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_upstream_cache: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    versions: Mapped[list["PackageVersionRecord"]] = relationship(
        "PackageVersionRecord",
        back_populates="package",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class PackageVersionRecord(Base):
    """An immutable published version of a package."""

    __tablename__ = "package_versions"
    __table_args__ = (
        UniqueConstraint("package_name", "version", name="uq_package_versions_name_version"),
        Index("ix_package_versions_package_name", "package_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    package_name: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("packages.name", ondelete="CASCADE"),
        nullable=False,
    )
    version: Mapped[str] = mapped_column(String(128), nullable=False)
    manifest: Mapped[dict[str, Any]] = mapped_column(json_document(), nullable=False)
    archive_key: Mapped[str] = mapped_column(Text, nullable=False)
    archive_sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    published_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=_utcnow)
    is_retracted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    retracted_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    retraction_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    package: Mapped[PackageRecord] = relationship("PackageRecord", back_populates="versions")
