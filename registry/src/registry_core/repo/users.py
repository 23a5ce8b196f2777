"""Repositories for users, admin users and web sessions."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from registry_core.db.models import AdminUserRecord, UserRecord, UserSessionRecord

from .common import paginate


class UserRepository:
    def add(self, *, record: UserRecord, session: Session) -> UserRecord:
        session.add(record)
        session.flush()
        return record

    def get(self, *, user_id: str, session: Session) -> UserRecord | None:
        return session.get(UserRecord, user_id)

    def get_by_email(self, *, email: str, session: Session) -> UserRecord | None:
        stmt = select(UserRecord).where(func.lower(UserRecord.email) == email.strip().lower())
        return session.execute(stmt).scalars().first()

    def list_page(self, *, page: int, limit: int, session: Session) -> tuple[list[UserRecord], int]:
        stmt = select(UserRecord).order_by(UserRecord.created_at.desc(), UserRecord.id)
        return paginate(stmt, page=page, limit=limit, session=session)

    def update(self, *, user_id: str, values: dict[str, object], session: Session) -> bool:
        stmt = update(UserRecord).where(UserRecord.id == user_id).values(**values)
        return bool(session.execute(stmt).rowcount)

    def count(self, *, session: Session) -> int:
        return int(session.execute(select(func.count()).select_from(UserRecord)).scalar_one())


class AdminUserRepository:
    def add(self, *, record: AdminUserRecord, session: Session) -> AdminUserRecord:
        session.add(record)
        session.flush()
        return record

    def get(self, *, admin_id: str, session: Session) -> AdminUserRecord | None:
        return session.get(AdminUserRecord, admin_id)

    def get_by_username(self, *, username: str, session: Session) -> AdminUserRecord | None:
        stmt = select(AdminUserRecord).where(AdminUserRecord.username == username)
        return session.execute(stmt).scalars().first()

    def update(self, *, admin_id: str, values: dict[str, object], session: Session) -> bool:
        stmt = update(AdminUserRecord).where(AdminUserRecord.id == admin_id).values(**values)
        return bool(session.execute(stmt).rowcount)


class UserSessionRepository:
    def add(self, *, record: UserSessionRecord, session: Session) -> UserSessionRecord:
        session.add(record)
        session.flush()
        return record

    def get(self, *, session_id: str, session: Session) -> UserSessionRecord | None:
        return session.get(UserSessionRecord, session_id)

    def delete(self, *, session_id: str, session: Session) -> bool:
        stmt = delete(UserSessionRecord).where(UserSessionRecord.session_id == session_id)
        return bool(session.execute(stmt).rowcount)

    def delete_expired(self, *, now: datetime, session: Session) -> int:
        stmt = delete(UserSessionRecord).where(UserSessionRecord.expires_at <= now)
        return int(session.execute(stmt).rowcount)
