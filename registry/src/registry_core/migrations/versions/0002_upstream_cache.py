"""Flag packages mirrored from the upstream registry."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0002_upstream_cache"


def upgrade() -> None:
    op.add_column(
        "packages",
        sa.Column("is_upstream_cache", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_packages_is_upstream_cache", "packages", ["is_upstream_cache"])
