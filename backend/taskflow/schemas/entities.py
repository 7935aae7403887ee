"""Domain entities shared by stores, flows, and API responses.

Stores return these models rather than ORM rows so that flows never depend
on a particular persistence adapter. ``from_attributes`` lets the SQL
stores convert rows with ``model_validate``.
"""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

# =============================================================================
# Enums
# =============================================================================


class Role(str, Enum):
    """Role of a user inside a workspace.

    Values:
        MEMBER: Regular collaborator.
        ADMIN: May invite other users.
        OWNER: Creator of the workspace. Exactly one per workspace.
    """

    MEMBER = "member"
    ADMIN = "admin"
    OWNER = "owner"


INVITABLE_ROLES: frozenset[Role] = frozenset({Role.MEMBER, Role.ADMIN})
"""Roles an invitation may grant. Ownership is never transferred by invite."""


# =============================================================================
# Identity
# =============================================================================


class Identity(BaseModel):
    """A user known to the system, created on first magic-link request."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    email: str
    created_at: datetime


class UserProfile(BaseModel):
    """Editable profile attached to an identity. Created empty."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    user_id: uuid.UUID
    name: str = ""


class InvalidationRecord(BaseModel):
    """Proof that a refresh token was redeemed and must never be accepted again.

    Attributes:
        token_hash: SHA-256 hex digest of the raw token string.
        user_id: Owner of the burned token.
        invalidated_at: When the rotation happened.
        expires_at: When the token would have expired anyway. Records past
            this instant may be purged.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    token_hash: str
    user_id: uuid.UUID
    invalidated_at: datetime
    expires_at: datetime


# =============================================================================
# Workspaces
# =============================================================================


class Workspace(BaseModel):
    """A tenant. The owner is fixed at creation."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    name: str
    owner_id: uuid.UUID
    created_at: datetime


class Membership(BaseModel):
    """Grants a user a role inside a workspace. Unique per (user, workspace)."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    user_id: uuid.UUID
    workspace_id: uuid.UUID
    role: Role
    created_at: datetime


class Invitation(BaseModel):
    """Invitation to join a workspace.

    The row persists after redemption for audit. ``is_valid`` is only
    flipped when the require-active redemption policy is in force.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: uuid.UUID
    workspace_id: uuid.UUID
    inviter_id: uuid.UUID
    invitee_email: str
    invitee_id: uuid.UUID | None = None
    role: Role
    is_valid: bool = True
    created_at: datetime
