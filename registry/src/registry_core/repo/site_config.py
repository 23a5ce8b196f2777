"""Repository for site configuration rows."""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from registry_core.db.models import SiteConfigRecord


class SiteConfigRepository:
    def get(self, *, name: str, session: Session) -> SiteConfigRecord | None:
        return session.get(SiteConfigRecord, name)

    def list(self, *, session: Session) -> list[SiteConfigRecord]:
        return list(session.execute(select(SiteConfigRecord).order_by(SiteConfigRecord.name)).scalars().all())

    def set_value(self, *, name: str, value: str, session: Session) -> bool:
        stmt = update(SiteConfigRecord).where(SiteConfigRecord.name == name).values(value=value)
        return bool(session.execute(stmt).rowcount)
