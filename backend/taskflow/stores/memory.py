"""In-memory stores for tests and local development.

Each store keeps its rows in a shared InMemoryState so that cross-store
effects (owner membership on workspace creation, cascade on delete) behave
like the SQL schema. Every method body runs without awaiting, so each
operation is atomic with respect to the event loop.

Set ``fail_with`` on any store to make every subsequent call raise that
exception, simulating an unavailable backend.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from taskflow.core.errors import ConflictError
from taskflow.schemas.entities import (
    Identity,
    InvalidationRecord,
    Invitation,
    Membership,
    Role,
    UserProfile,
    Workspace,
)
from taskflow.stores.base import (
    IdentityStore,
    InvalidationStore,
    InvitationStore,
    MembershipStore,
    WorkspaceStore,
)


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass
class InMemoryState:
    """Rows shared by the in-memory stores."""

    identities: dict[uuid.UUID, Identity] = field(default_factory=dict)
    profiles: dict[uuid.UUID, UserProfile] = field(default_factory=dict)
    invalidations: dict[str, InvalidationRecord] = field(default_factory=dict)
    workspaces: dict[uuid.UUID, Workspace] = field(default_factory=dict)
    memberships: dict[tuple[uuid.UUID, uuid.UUID], Membership] = field(
        default_factory=dict
    )
    invitations: dict[uuid.UUID, Invitation] = field(default_factory=dict)


class _InMemoryStore:
    def __init__(self, state: InMemoryState | None = None) -> None:
        self.state = state if state is not None else InMemoryState()
        self.fail_with: Exception | None = None

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with


class InMemoryIdentityStore(_InMemoryStore, IdentityStore):
    """Identities keyed by id with a unique email index."""

    async def get_by_id(self, user_id: uuid.UUID) -> Identity | None:
        self._check()
        return self.state.identities.get(user_id)

    async def get_by_email(self, email: str) -> Identity | None:
        self._check()
        for identity in self.state.identities.values():
            if identity.email == email:
                return identity
        return None

    async def create(self, email: str) -> Identity:
        self._check()
        if any(i.email == email for i in self.state.identities.values()):
            raise ConflictError(
                code="DUPLICATE_EMAIL",
                message="An account with this email already exists",
            )
        identity = Identity(id=uuid.uuid4(), email=email, created_at=_now())
        self.state.identities[identity.id] = identity
        self.state.profiles[identity.id] = UserProfile(user_id=identity.id)
        return identity

    async def get_profile(self, user_id: uuid.UUID) -> UserProfile | None:
        self._check()
        return self.state.profiles.get(user_id)

    async def update_profile(self, user_id: uuid.UUID, name: str) -> UserProfile | None:
        self._check()
        if user_id not in self.state.profiles:
            return None
        profile = UserProfile(user_id=user_id, name=name)
        self.state.profiles[user_id] = profile
        return profile


class InMemoryInvalidationStore(_InMemoryStore, InvalidationStore):
    """Burned refresh tokens keyed by hash."""

    async def invalidate(self, record: InvalidationRecord) -> bool:
        self._check()
        if record.token_hash in self.state.invalidations:
            return False
        self.state.invalidations[record.token_hash] = record
        return True

    async def purge_expired(self, now: datetime) -> int:
        self._check()
        expired = [h for h, r in self.state.invalidations.items() if r.expires_at < now]
        for token_hash in expired:
            del self.state.invalidations[token_hash]
        return len(expired)


class InMemoryWorkspaceStore(_InMemoryStore, WorkspaceStore):
    """Workspaces; creation writes the owner membership too."""

    async def create(self, name: str, owner_id: uuid.UUID) -> Workspace:
        self._check()
        now = _now()
        workspace = Workspace(
            id=uuid.uuid4(), name=name, owner_id=owner_id, created_at=now
        )
        self.state.workspaces[workspace.id] = workspace
        self.state.memberships[(owner_id, workspace.id)] = Membership(
            user_id=owner_id,
            workspace_id=workspace.id,
            role=Role.OWNER,
            created_at=now,
        )
        return workspace

    async def get(self, workspace_id: uuid.UUID) -> Workspace | None:
        self._check()
        return self.state.workspaces.get(workspace_id)

    async def list_by_owner(self, owner_id: uuid.UUID) -> list[Workspace]:
        self._check()
        owned = [w for w in self.state.workspaces.values() if w.owner_id == owner_id]
        return sorted(owned, key=lambda w: w.created_at)

    async def rename(self, workspace_id: uuid.UUID, name: str) -> Workspace | None:
        self._check()
        workspace = self.state.workspaces.get(workspace_id)
        if workspace is None:
            return None
        renamed = workspace.model_copy(update={"name": name})
        self.state.workspaces[workspace_id] = renamed
        return renamed

    async def delete(self, workspace_id: uuid.UUID) -> bool:
        self._check()
        if self.state.workspaces.pop(workspace_id, None) is None:
            return False
        for key in [k for k in self.state.memberships if k[1] == workspace_id]:
            del self.state.memberships[key]
        for inv_id in [
            i.id
            for i in self.state.invitations.values()
            if i.workspace_id == workspace_id
        ]:
            del self.state.invitations[inv_id]
        return True


class InMemoryMembershipStore(_InMemoryStore, MembershipStore):
    """Memberships keyed by (user_id, workspace_id)."""

    async def add(
        self, user_id: uuid.UUID, workspace_id: uuid.UUID, role: Role
    ) -> Membership:
        self._check()
        key = (user_id, workspace_id)
        if key in self.state.memberships:
            raise ConflictError(
                code="ALREADY_MEMBER",
                message="User is already a member of this workspace",
            )
        membership = Membership(
            user_id=user_id, workspace_id=workspace_id, role=role, created_at=_now()
        )
        self.state.memberships[key] = membership
        return membership

    async def get(
        self, user_id: uuid.UUID, workspace_id: uuid.UUID
    ) -> Membership | None:
        self._check()
        return self.state.memberships.get((user_id, workspace_id))

    async def remove(self, user_id: uuid.UUID, workspace_id: uuid.UUID) -> bool:
        self._check()
        return self.state.memberships.pop((user_id, workspace_id), None) is not None

    async def list_by_workspace(self, workspace_id: uuid.UUID) -> list[Membership]:
        self._check()
        members = [
            m for m in self.state.memberships.values() if m.workspace_id == workspace_id
        ]
        return sorted(members, key=lambda m: m.created_at)

    async def is_member(self, user_id: uuid.UUID, workspace_id: uuid.UUID) -> bool:
        self._check()
        return (user_id, workspace_id) in self.state.memberships


class InMemoryInvitationStore(_InMemoryStore, InvitationStore):
    """Invitations keyed by id."""

    async def create(
        self,
        *,
        workspace_id: uuid.UUID,
        inviter_id: uuid.UUID,
        invitee_email: str,
        role: Role,
        invitee_id: uuid.UUID | None = None,
    ) -> Invitation:
        self._check()
        invitation = Invitation(
            id=uuid.uuid4(),
            workspace_id=workspace_id,
            inviter_id=inviter_id,
            invitee_email=invitee_email,
            invitee_id=invitee_id,
            role=role,
            is_valid=True,
            created_at=_now(),
        )
        self.state.invitations[invitation.id] = invitation
        return invitation

    async def get(self, invitation_id: uuid.UUID) -> Invitation | None:
        self._check()
        return self.state.invitations.get(invitation_id)

    async def delete(self, invitation_id: uuid.UUID) -> bool:
        self._check()
        return self.state.invitations.pop(invitation_id, None) is not None

    async def list_by_workspace(self, workspace_id: uuid.UUID) -> list[Invitation]:
        self._check()
        found = [
            i for i in self.state.invitations.values() if i.workspace_id == workspace_id
        ]
        return sorted(found, key=lambda i: i.created_at)

    async def mark_consumed(self, invitation_id: uuid.UUID) -> bool:
        self._check()
        invitation = self.state.invitations.get(invitation_id)
        if invitation is None or not invitation.is_valid:
            return False
        self.state.invitations[invitation_id] = invitation.model_copy(
            update={"is_valid": False}
        )
        return True
