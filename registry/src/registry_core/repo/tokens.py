"""Repository for hashed bearer tokens."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from registry_core.db.models import AuthTokenRecord


class TokenRepository:
    def add(self, *, record: AuthTokenRecord, session: Session) -> AuthTokenRecord:
        session.add(record)
        session.flush()
        return record

    def get(self, *, token_hash: str, session: Session) -> AuthTokenRecord | None:
        return session.get(AuthTokenRecord, token_hash)

    def touch(self, *, token_hash: str, now: datetime, session: Session) -> None:
        session.execute(
            update(AuthTokenRecord)
            .where(AuthTokenRecord.token_hash == token_hash)
            .values(last_used_at=now)
        )

    def list(self, *, session: Session, user_id: Optional[str] = None) -> list[AuthTokenRecord]:
        stmt = select(AuthTokenRecord).order_by(AuthTokenRecord.created_at.desc())
        if user_id is not None:
            stmt = stmt.where(AuthTokenRecord.user_id == user_id)
        return list(session.execute(stmt).scalars().all())

    def delete(self, *, token_hash: str, session: Session) -> bool:
        stmt = delete(AuthTokenRecord).where(AuthTokenRecord.token_hash == token_hash)
        return bool(session.execute(stmt).rowcount)

    def delete_by_label(self, *, user_id: str, label: str, session: Session) -> int:
        stmt = delete(AuthTokenRecord).where(
            AuthTokenRecord.user_id == user_id,
            AuthTokenRecord.label == label,
        )
        return int(session.execute(stmt).rowcount)

    def count_active(self, *, now: datetime, session: Session) -> int:
        stmt = select(func.count()).select_from(AuthTokenRecord).where(
            or_(AuthTokenRecord.expires_at.is_(None), AuthTokenRecord.expires_at > now)
        )
        return int(session.execute(stmt).scalar_one())
