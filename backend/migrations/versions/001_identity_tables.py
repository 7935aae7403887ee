"""Create identity tables: users, user_profiles, invalidated_tokens.

Revision ID: 001_identity_tables
Revises: 000_enable_extensions
Create Date: 2026-01-26

- users: one row per email address, created on the first magic-link request.
- user_profiles: display name, one row per user.
- invalidated_tokens: burned refresh tokens keyed by token hash. The primary
  key makes rotation an atomic insert-if-absent.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001_identity_tables"
down_revision: str | None = "000_enable_extensions"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # =========================================================================
    # users
    # =========================================================================
    op.create_table(
        "users",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("email", name="users_email_key"),
    )

    # =========================================================================
    # user_profiles
    # =========================================================================
    op.create_table(
        "user_profiles",
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
    )

    # =========================================================================
    # invalidated_tokens
    # =========================================================================
    op.create_table(
        "invalidated_tokens",
        sa.Column("token_hash", sa.String(64), primary_key=True),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("invalidated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_invalidated_tokens_expires_at", "invalidated_tokens", ["expires_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_invalidated_tokens_expires_at", table_name="invalidated_tokens")
    op.drop_table("invalidated_tokens")
    op.drop_table("user_profiles")
    op.drop_table("users")
