"""Retraction state on package versions."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

from registry_core.db.types import UTCDateTime

revision = "0006_version_retraction"


def upgrade() -> None:
    op.add_column(
        "package_versions",
        sa.Column("is_retracted", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.add_column("package_versions", sa.Column("retracted_at", UTCDateTime(), nullable=True))
    op.add_column("package_versions", sa.Column("retraction_message", sa.Text(), nullable=True))
