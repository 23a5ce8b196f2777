"""Repository for webhook subscriptions and delivery rows."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import case, delete, select, update
from sqlalchemy.orm import Session

from registry_core.db.models import WebhookDeliveryRecord, WebhookRecord


class WebhookRepository:
    def add(self, *, record: WebhookRecord, session: Session) -> WebhookRecord:
        session.add(record)
        session.flush()
        return record

    def get(self, *, webhook_id: str, session: Session) -> WebhookRecord | None:
        return session.get(WebhookRecord, webhook_id)

    def list(self, *, session: Session, active_only: bool = False) -> list[WebhookRecord]:
        stmt = select(WebhookRecord).order_by(WebhookRecord.created_at, WebhookRecord.id)
        if active_only:
            stmt = stmt.where(WebhookRecord.is_active.is_(True))
        return list(session.execute(stmt).scalars().all())

    def update(self, *, webhook_id: str, values: dict[str, Any], session: Session) -> bool:
        stmt = update(WebhookRecord).where(WebhookRecord.id == webhook_id).values(**values)
        return bool(session.execute(stmt).rowcount)

    def delete(self, *, webhook_id: str, session: Session) -> bool:
        # Explicit so deliveries go even where FK cascades are disabled.
        session.execute(delete(WebhookDeliveryRecord).where(WebhookDeliveryRecord.webhook_id == webhook_id))
        return bool(session.execute(delete(WebhookRecord).where(WebhookRecord.id == webhook_id)).rowcount)

    def record_result(
        self,
        *,
        webhook_id: str,
        success: bool,
        now: datetime,
        max_failures: int,
        session: Session,
    ) -> None:
        """Reset or bump the failure counter in SQL; deactivate at ``max_failures``."""

        if success:
            values: dict[str, Any] = {"failure_count": 0, "last_triggered_at": now}
        else:
            next_count = WebhookRecord.failure_count + 1
            values = {
                "failure_count": next_count,
                "last_triggered_at": now,
                "is_active": case((next_count >= max_failures, False), else_=WebhookRecord.is_active),
            }
        session.execute(update(WebhookRecord).where(WebhookRecord.id == webhook_id).values(**values))

    def add_delivery(self, *, record: WebhookDeliveryRecord, session: Session) -> WebhookDeliveryRecord:
        session.add(record)
        session.flush()
        return record

    def list_deliveries(self, *, webhook_id: str, limit: int, session: Session) -> list[WebhookDeliveryRecord]:
        stmt = (
            select(WebhookDeliveryRecord)
            .where(WebhookDeliveryRecord.webhook_id == webhook_id)
            .order_by(WebhookDeliveryRecord.delivered_at.desc())
            .limit(limit)
        )
        return list(session.execute(stmt).scalars().all())
