"""Repository for activity log entries."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from registry_core.db.models import ActivityLogRecord

from .common import paginate


class ActivityRepository:
    def add(self, *, record: ActivityLogRecord, session: Session) -> ActivityLogRecord:
        session.add(record)
        session.flush()
        return record

    def list_page(
        self,
        *,
        page: int,
        limit: int,
        session: Session,
        activity_type: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> tuple[list[ActivityLogRecord], int]:
        stmt = select(ActivityLogRecord)
        if activity_type:
            stmt = stmt.where(ActivityLogRecord.activity_type == activity_type)
        if actor_id:
            stmt = stmt.where(ActivityLogRecord.actor_id == actor_id)
        stmt = stmt.order_by(ActivityLogRecord.timestamp.desc(), ActivityLogRecord.id)
        return paginate(stmt, page=page, limit=limit, session=session)
