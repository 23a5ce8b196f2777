"""Core schema: users, packages, versions, tokens and upload sessions."""

from __future__ import annotations

from datetime import datetime, timezone

from alembic import op
import sqlalchemy as sa

from registry_core.db.types import StringSet, UTCDateTime, json_document

revision = "0001_core_schema"

ANONYMOUS_USER_ID = "00000000-0000-0000-0000-000000000000"


def upgrade() -> None:
    users = op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("last_login_at", UTCDateTime(), nullable=True),
    )

    op.create_table(
        "packages",
        sa.Column("name", sa.String(length=255), primary_key=True),
        sa.Column("owner_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("updated_at", UTCDateTime(), nullable=False),
        sa.Column("is_discontinued", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("replaced_by", sa.String(length=255), nullable=True),
    )
    op.create_index("ix_packages_owner_id", "packages", ["owner_id"])
    op.create_index("ix_packages_updated_at", "packages", ["updated_at"])

    op.create_table(
        "package_versions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "package_name",
            sa.String(length=255),
            sa.ForeignKey("packages.name", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version", sa.String(length=128), nullable=False),
        sa.Column("manifest", json_document(), nullable=False),
        sa.Column("archive_key", sa.Text(), nullable=False),
        sa.Column("archive_sha256", sa.String(length=64), nullable=False),
        sa.Column("published_at", UTCDateTime(), nullable=False),
        sa.UniqueConstraint("package_name", "version", name="uq_package_versions_name_version"),
    )
    op.create_index("ix_package_versions_package_name", "package_versions", ["package_name"])

    op.create_table(
        "auth_tokens",
        sa.Column("token_hash", sa.String(length=64), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("scopes", StringSet(), nullable=False),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("last_used_at", UTCDateTime(), nullable=True),
        sa.Column("expires_at", UTCDateTime(), nullable=True),
    )
    op.create_index("ix_auth_tokens_user_id", "auth_tokens", ["user_id"])

    op.create_table(
        "upload_sessions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("state", sa.String(length=32), nullable=False),
        sa.Column("created_at", UTCDateTime(), nullable=False),
        sa.Column("expires_at", UTCDateTime(), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", UTCDateTime(), nullable=True),
        sa.Column("archive", sa.LargeBinary(), nullable=True),
        sa.Column("archive_sha256", sa.String(length=64), nullable=True),
        sa.Column("package_name", sa.String(length=255), nullable=True),
        sa.Column("version", sa.String(length=128), nullable=True),
    )
    op.create_index("ix_upload_sessions_expires_at", "upload_sessions", ["expires_at"])
    op.create_index("ix_upload_sessions_completed", "upload_sessions", ["completed"])

    op.bulk_insert(
        users,
        [
            {
                "id": ANONYMOUS_USER_ID,
                "email": "anonymous@localhost",
                "password_hash": None,
                "name": "Anonymous",
                "is_active": True,
                "created_at": datetime.now(timezone.utc),
                "last_login_at": None,
            }
        ],
    )
