"""Runtime-editable site configuration with defaults."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0007_site_config"


def upgrade() -> None:
    site_config = op.create_table(
        "site_config",
        sa.Column("name", sa.String(length=128), primary_key=True),
        sa.Column("value_type", sa.String(length=16), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
    )
    op.bulk_insert(
        site_config,
        [
            {
                "name": "allow_registration",
                "value_type": "boolean",
                "value": "true",
                "description": "Allow new users to register accounts",
            },
            {
                "name": "require_email_verification",
                "value_type": "boolean",
                "value": "false",
                "description": "Require email verification before an account is active",
            },
            {
                "name": "allow_anonymous_publish",
                "value_type": "boolean",
                "value": "false",
                "description": "Allow publishing without an authenticated token",
            },
            {
                "name": "session_ttl_hours",
                "value_type": "number",
                "value": "24",
                "description": "Web session lifetime for users, in hours",
            },
        ],
    )
