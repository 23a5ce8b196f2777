"""Append-only activity log."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

from registry_core.db.types import UTCDateTime, json_document

revision = "0004_activity_log"


def upgrade() -> None:
    op.create_table(
        "activity_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("timestamp", UTCDateTime(), nullable=False),
        sa.Column("activity_type", sa.String(length=64), nullable=False),
        sa.Column("actor_type", sa.String(length=16), nullable=False),
        sa.Column("actor_id", sa.String(length=36), nullable=True),
        sa.Column("actor_email", sa.String(length=255), nullable=True),
        sa.Column("actor_username", sa.String(length=255), nullable=True),
        sa.Column("target_type", sa.String(length=32), nullable=True),
        sa.Column("target_id", sa.String(length=255), nullable=True),
        sa.Column("metadata", json_document(), nullable=True),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_activity_log_timestamp", "activity_log", ["timestamp"])
    op.create_index("ix_activity_log_activity_type", "activity_log", ["activity_type"])
    op.create_index("ix_activity_log_actor_id", "activity_log", ["actor_id"])
