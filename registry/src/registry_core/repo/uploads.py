"""Repository for publish upload sessions."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from registry_core.db.models import UploadSessionRecord


class UploadSessionRepository:
    def add(self, *, record: UploadSessionRecord, session: Session) -> UploadSessionRecord:
        session.add(record)
        session.flush()
        return record

    def get(self, *, session_id: str, session: Session) -> UploadSessionRecord | None:
        return session.get(UploadSessionRecord, session_id)

    def get_archive(self, *, session_id: str, session: Session) -> bytes | None:
        stmt = select(UploadSessionRecord.archive).where(UploadSessionRecord.id == session_id)
        return session.execute(stmt).scalar_one_or_none()

    def attach_archive(
        self,
        *,
        session_id: str,
        archive: bytes,
        archive_sha256: str,
        package_name: str,
        version: str,
        now: datetime,
        session: Session,
    ) -> bool:
        """Stage an archive on a live, unfinalized session."""

        stmt = (
            update(UploadSessionRecord)
            .where(
                UploadSessionRecord.id == session_id,
                UploadSessionRecord.completed.is_(False),
                UploadSessionRecord.expires_at > now,
            )
            .values(
                archive=archive,
                archive_sha256=archive_sha256,
                package_name=package_name,
                version=version,
                state="awaiting_finalize",
            )
        )
        return bool(session.execute(stmt).rowcount)

    def complete(self, *, session_id: str, now: datetime, session: Session) -> bool:
        """Mark a session finalized exactly once; False if it was already terminal."""

        stmt = (
            update(UploadSessionRecord)
            .where(
                UploadSessionRecord.id == session_id,
                UploadSessionRecord.completed.is_(False),
                UploadSessionRecord.expires_at > now,
            )
            .values(completed=True, completed_at=now, state="finalized", archive=None)
        )
        return bool(session.execute(stmt).rowcount)

    def delete_expired(self, *, now: datetime, session: Session) -> int:
        stmt = delete(UploadSessionRecord).where(
            UploadSessionRecord.completed.is_(False),
            UploadSessionRecord.expires_at <= now,
        )
        return int(session.execute(stmt).rowcount)

    def delete_completed_before(self, *, cutoff: datetime, session: Session) -> int:
        stmt = delete(UploadSessionRecord).where(
            UploadSessionRecord.completed.is_(True),
            UploadSessionRecord.completed_at < cutoff,
        )
        return int(session.execute(stmt).rowcount)
