"""Abstract persistence interfaces consumed by the flows.

Flows depend only on these interfaces. Two implementations ship with the
package: SQLAlchemy-backed stores (sql.py) for production and in-memory
stores (memory.py) for tests and local development.

Error contract shared by all implementations:
- Uniqueness violations raise ConflictError.
- Unavailability or unexpected persistence failures raise StoreError.
- Lookups of missing rows return None (or False for deletes).
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime

from taskflow.schemas.entities import (
    Identity,
    InvalidationRecord,
    Invitation,
    Membership,
    Role,
    UserProfile,
    Workspace,
)


class IdentityStore(ABC):
    """User identities and their profiles."""

    @abstractmethod
    async def get_by_id(self, user_id: uuid.UUID) -> Identity | None:
        """Look up an identity by id."""

    @abstractmethod
    async def get_by_email(self, email: str) -> Identity | None:
        """Look up an identity by its normalized email."""

    @abstractmethod
    async def create(self, email: str) -> Identity:
        """Create an identity together with an empty profile.

        Raises:
            ConflictError: If the email is already registered.
        """

    @abstractmethod
    async def get_profile(self, user_id: uuid.UUID) -> UserProfile | None:
        """Fetch the profile of an identity."""

    @abstractmethod
    async def update_profile(self, user_id: uuid.UUID, name: str) -> UserProfile | None:
        """Set the display name. Returns None when the identity is unknown."""


class InvalidationStore(ABC):
    """Burned refresh tokens."""

    @abstractmethod
    async def invalidate(self, record: InvalidationRecord) -> bool:
        """Atomically insert the record unless its hash is already present.

        Returns:
            True if this call burned the token, False if it was already burned.

        Raises:
            StoreError: If the store cannot answer. Callers must fail closed.
        """

    @abstractmethod
    async def purge_expired(self, now: datetime) -> int:
        """Delete records whose token expired before ``now``. Returns the count."""


class WorkspaceStore(ABC):
    """Workspaces. Creation also writes the owner membership."""

    @abstractmethod
    async def create(self, name: str, owner_id: uuid.UUID) -> Workspace:
        """Create a workspace and its owner membership in one unit of work."""

    @abstractmethod
    async def get(self, workspace_id: uuid.UUID) -> Workspace | None:
        """Look up a workspace by id."""

    @abstractmethod
    async def list_by_owner(self, owner_id: uuid.UUID) -> list[Workspace]:
        """Workspaces owned by a user, oldest first."""

    @abstractmethod
    async def rename(self, workspace_id: uuid.UUID, name: str) -> Workspace | None:
        """Change the display name. Returns None when the workspace is unknown."""

    @abstractmethod
    async def delete(self, workspace_id: uuid.UUID) -> bool:
        """Delete a workspace with its memberships and invitations."""


class MembershipStore(ABC):
    """Workspace memberships, unique per (user, workspace)."""

    @abstractmethod
    async def add(
        self, user_id: uuid.UUID, workspace_id: uuid.UUID, role: Role
    ) -> Membership:
        """Create a membership.

        Raises:
            ConflictError: If the user is already a member.
        """

    @abstractmethod
    async def get(
        self, user_id: uuid.UUID, workspace_id: uuid.UUID
    ) -> Membership | None:
        """Look up a single membership."""

    @abstractmethod
    async def remove(self, user_id: uuid.UUID, workspace_id: uuid.UUID) -> bool:
        """Delete a membership. Returns False when none existed."""

    @abstractmethod
    async def list_by_workspace(self, workspace_id: uuid.UUID) -> list[Membership]:
        """All memberships of a workspace, oldest first."""

    @abstractmethod
    async def is_member(self, user_id: uuid.UUID, workspace_id: uuid.UUID) -> bool:
        """True iff a membership row exists for (user, workspace)."""


class InvitationStore(ABC):
    """Workspace invitations."""

    @abstractmethod
    async def create(
        self,
        *,
        workspace_id: uuid.UUID,
        inviter_id: uuid.UUID,
        invitee_email: str,
        role: Role,
        invitee_id: uuid.UUID | None = None,
    ) -> Invitation:
        """Persist a new invitation with ``is_valid = True``."""

    @abstractmethod
    async def get(self, invitation_id: uuid.UUID) -> Invitation | None:
        """Look up an invitation by id."""

    @abstractmethod
    async def delete(self, invitation_id: uuid.UUID) -> bool:
        """Delete an invitation. Returns False when none existed."""

    @abstractmethod
    async def list_by_workspace(self, workspace_id: uuid.UUID) -> list[Invitation]:
        """Invitations of a workspace, oldest first."""

    @abstractmethod
    async def mark_consumed(self, invitation_id: uuid.UUID) -> bool:
        """Atomically flip ``is_valid`` from True to False.

        Returns:
            True if this call consumed the invitation, False if it was
            already consumed or does not exist.
        """
