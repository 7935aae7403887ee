"""Create workspace tables: workspaces, memberships, invitations.

Revision ID: 002_workspace_tables
Revises: 001_identity_tables
Create Date: 2026-01-27

Deleting a workspace cascades to its memberships and invitations.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "002_workspace_tables"
down_revision: str | None = "001_identity_tables"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at_column() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # =========================================================================
    # workspaces
    # =========================================================================
    op.create_table(
        "workspaces",
        _id_column(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "owner_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        _created_at_column(),
    )
    op.create_index("ix_workspaces_owner_id", "workspaces", ["owner_id"])

    # =========================================================================
    # memberships
    # =========================================================================
    op.create_table(
        "memberships",
        _id_column(),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "workspace_id",
            UUID(as_uuid=True),
            sa.ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("role", sa.String(20), nullable=False),
        _created_at_column(),
        sa.UniqueConstraint("user_id", "workspace_id", name="uq_memberships_user_ws"),
        sa.CheckConstraint(
            "role IN ('member', 'admin', 'owner')", name="ck_memberships_role"
        ),
    )
    op.create_index("ix_memberships_workspace_id", "memberships", ["workspace_id"])

    # =========================================================================
    # invitations
    # =========================================================================
    op.create_table(
        "invitations",
        _id_column(),
        sa.Column(
            "workspace_id",
            UUID(as_uuid=True),
            sa.ForeignKey("workspaces.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "inviter_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("invitee_email", sa.String(255), nullable=False),
        sa.Column(
            "invitee_id",
            UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column(
            "is_valid", sa.Boolean(), nullable=False, server_default=sa.text("true")
        ),
        _created_at_column(),
        sa.CheckConstraint("role IN ('member', 'admin')", name="ck_invitations_role"),
    )
    op.create_index("ix_invitations_workspace_id", "invitations", ["workspace_id"])


def downgrade() -> None:
    op.drop_index("ix_invitations_workspace_id", table_name="invitations")
    op.drop_table("invitations")
    op.drop_index("ix_memberships_workspace_id", table_name="memberships")
    op.drop_table("memberships")
    op.drop_index("ix_workspaces_owner_id", table_name="workspaces")
    op.drop_table("workspaces")
