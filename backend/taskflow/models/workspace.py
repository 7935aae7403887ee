"""Workspace, membership, and invitation models."""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from taskflow.models.base import DEFAULT_UUID, Base, CreatedAtMixin

_ROLE_CHECK = "role IN ('member', 'admin', 'owner')"


class Workspace(Base, CreatedAtMixin):
    """A tenant.

    Attributes:
        id: UUID primary key.
        name: Display name.
        owner_id: FK to users.id. Immutable after creation.
    """

    __tablename__ = "workspaces"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=DEFAULT_UUID,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class Membership(Base, CreatedAtMixin):
    """Role of a user inside a workspace.

    Attributes:
        user_id: FK to users.id.
        workspace_id: FK to workspaces.id.
        role: "member", "admin", or "owner".
    """

    __tablename__ = "memberships"
    __table_args__ = (
        UniqueConstraint("user_id", "workspace_id", name="uq_memberships_user_ws"),
        CheckConstraint(_ROLE_CHECK, name="ck_memberships_role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=DEFAULT_UUID,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)


class Invitation(Base, CreatedAtMixin):
    """Invitation to join a workspace. Kept after redemption for audit.

    Attributes:
        id: UUID primary key.
        workspace_id: FK to workspaces.id.
        inviter_id: FK to users.id.
        invitee_email: Address the invitation was sent to.
        invitee_id: FK to users.id when the invitee is already known.
        role: Role granted on redemption ("member" or "admin").
        is_valid: Cleared when the invitation is consumed under the
            require-active redemption policy.
    """

    __tablename__ = "invitations"
    __table_args__ = (
        CheckConstraint("role IN ('member', 'admin')", name="ck_invitations_role"),
        Index("ix_invitations_workspace_id", "workspace_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=DEFAULT_UUID,
    )
    workspace_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )
    inviter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    invitee_email: Mapped[str] = mapped_column(String(255), nullable=False)
    invitee_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    is_valid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
