"""ORM model for publish upload sessions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, Index, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from ..base import Base
from ..types import UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadSessionRecord(Base):
    """Stages an uploaded archive between the upload and finalize steps."""

    __tablename__ = "upload_sessions"
    __table_args__ = (
        Index("ix_upload_sessions_expires_at", "expires_at"),
        Index("ix_upload_sessions_completed", "completed"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    state: Mapped[str] = mapped_column(String(32), nullable=False, default="created")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=_utcnow)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    archive: Mapped[Optional[bytes]] = mapped_column(LargeBinary, nullable=True)
    archive_sha256: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    package_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    version: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
