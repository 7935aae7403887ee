"""SQLAlchemy-backed stores.

Each store is bound to the request's AsyncSession; the session owner
(get_db or the caller) commits. Inserts that can hit a unique constraint
run inside a savepoint so an IntegrityError leaves the outer transaction
usable, and are surfaced as ConflictError. Any other database failure is
surfaced as StoreError without the driver message.
"""

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import delete, exists, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.errors import ConflictError, StoreError
from taskflow.models import (
    InvalidatedToken,
    Membership,
    User,
    UserProfile,
    Workspace,
)
from taskflow.models import Invitation as InvitationRow
from taskflow.schemas import entities
from taskflow.stores.base import (
    IdentityStore,
    InvalidationStore,
    InvitationStore,
    MembershipStore,
    WorkspaceStore,
)

logger = logging.getLogger(__name__)

_MEMBERSHIP_UNIQUE = "uq_memberships_user_ws"


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    """Re-raise unexpected database failures as StoreError."""
    try:
        yield
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Store operation %s failed: %s", operation, type(exc).__name__)
        raise StoreError(f"{operation} failed") from exc


class SqlIdentityStore(IdentityStore):
    """Identities in the users and user_profiles tables."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_by_id(self, user_id: uuid.UUID) -> entities.Identity | None:
        with _translate_errors("identity.get_by_id"):
            user = await self._db.get(User, user_id)
        return entities.Identity.model_validate(user) if user else None

    async def get_by_email(self, email: str) -> entities.Identity | None:
        with _translate_errors("identity.get_by_email"):
            result = await self._db.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()
        return entities.Identity.model_validate(user) if user else None

    async def create(self, email: str) -> entities.Identity:
        with _translate_errors("identity.create"):
            try:
                async with self._db.begin_nested():
                    user = User(email=email, profile=UserProfile(name=""))
                    self._db.add(user)
                    await self._db.flush()
            except IntegrityError as exc:
                raise ConflictError(
                    code="DUPLICATE_EMAIL",
                    message="An account with this email already exists",
                ) from exc
            await self._db.refresh(user)
        return entities.Identity.model_validate(user)

    async def get_profile(self, user_id: uuid.UUID) -> entities.UserProfile | None:
        with _translate_errors("identity.get_profile"):
            profile = await self._db.get(UserProfile, user_id)
        return entities.UserProfile.model_validate(profile) if profile else None

    async def update_profile(
        self, user_id: uuid.UUID, name: str
    ) -> entities.UserProfile | None:
        with _translate_errors("identity.update_profile"):
            profile = await self._db.get(UserProfile, user_id)
            if profile is None:
                return None
            profile.name = name
            await self._db.flush()
        return entities.UserProfile.model_validate(profile)


class SqlInvalidationStore(InvalidationStore):
    """Burned refresh tokens in the invalidated_tokens table."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def invalidate(self, record: entities.InvalidationRecord) -> bool:
        # INSERT ... ON CONFLICT DO NOTHING RETURNING: a row comes back only
        # for the single caller that burned the hash.
        stmt = (
            pg_insert(InvalidatedToken)
            .values(
                token_hash=record.token_hash,
                user_id=record.user_id,
                invalidated_at=record.invalidated_at,
                expires_at=record.expires_at,
            )
            .on_conflict_do_nothing(index_elements=[InvalidatedToken.token_hash])
            .returning(InvalidatedToken.token_hash)
        )
        with _translate_errors("invalidation.invalidate"):
            result = await self._db.execute(stmt)
            inserted = result.scalar_one_or_none()
        return inserted is not None

    async def purge_expired(self, now: datetime) -> int:
        stmt = delete(InvalidatedToken).where(InvalidatedToken.expires_at < now)
        with _translate_errors("invalidation.purge_expired"):
            result = await self._db.execute(stmt)
        return result.rowcount


class SqlWorkspaceStore(WorkspaceStore):
    """Workspaces; creation also inserts the owner membership."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def create(self, name: str, owner_id: uuid.UUID) -> entities.Workspace:
        with _translate_errors("workspace.create"):
            async with self._db.begin_nested():
                workspace = Workspace(name=name, owner_id=owner_id)
                self._db.add(workspace)
                await self._db.flush()
                self._db.add(
                    Membership(
                        user_id=owner_id,
                        workspace_id=workspace.id,
                        role=entities.Role.OWNER.value,
                    )
                )
                await self._db.flush()
            await self._db.refresh(workspace)
        return entities.Workspace.model_validate(workspace)

    async def get(self, workspace_id: uuid.UUID) -> entities.Workspace | None:
        with _translate_errors("workspace.get"):
            workspace = await self._db.get(Workspace, workspace_id)
        return entities.Workspace.model_validate(workspace) if workspace else None

    async def list_by_owner(self, owner_id: uuid.UUID) -> list[entities.Workspace]:
        stmt = (
            select(Workspace)
            .where(Workspace.owner_id == owner_id)
            .order_by(Workspace.created_at)
        )
        with _translate_errors("workspace.list_by_owner"):
            result = await self._db.execute(stmt)
            rows = result.scalars().all()
        return [entities.Workspace.model_validate(w) for w in rows]

    async def rename(
        self, workspace_id: uuid.UUID, name: str
    ) -> entities.Workspace | None:
        with _translate_errors("workspace.rename"):
            workspace = await self._db.get(Workspace, workspace_id)
            if workspace is None:
                return None
            workspace.name = name
            await self._db.flush()
        return entities.Workspace.model_validate(workspace)

    async def delete(self, workspace_id: uuid.UUID) -> bool:
        # memberships and invitations go with it via ON DELETE CASCADE
        stmt = delete(Workspace).where(Workspace.id == workspace_id)
        with _translate_errors("workspace.delete"):
            result = await self._db.execute(stmt)
        return result.rowcount > 0


class SqlMembershipStore(MembershipStore):
    """Memberships in the memberships table."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def add(
        self, user_id: uuid.UUID, workspace_id: uuid.UUID, role: entities.Role
    ) -> entities.Membership:
        with _translate_errors("membership.add"):
            try:
                async with self._db.begin_nested():
                    membership = Membership(
                        user_id=user_id, workspace_id=workspace_id, role=role.value
                    )
                    self._db.add(membership)
                    await self._db.flush()
            except IntegrityError as exc:
                # Foreign-key violations are not duplicates
                if _MEMBERSHIP_UNIQUE not in str(exc.orig):
                    raise
                raise ConflictError(
                    code="ALREADY_MEMBER",
                    message="User is already a member of this workspace",
                ) from exc
            await self._db.refresh(membership)
        return entities.Membership.model_validate(membership)

    async def get(
        self, user_id: uuid.UUID, workspace_id: uuid.UUID
    ) -> entities.Membership | None:
        stmt = select(Membership).where(
            Membership.user_id == user_id,
            Membership.workspace_id == workspace_id,
        )
        with _translate_errors("membership.get"):
            result = await self._db.execute(stmt)
            membership = result.scalar_one_or_none()
        return entities.Membership.model_validate(membership) if membership else None

    async def remove(self, user_id: uuid.UUID, workspace_id: uuid.UUID) -> bool:
        stmt = delete(Membership).where(
            Membership.user_id == user_id,
            Membership.workspace_id == workspace_id,
        )
        with _translate_errors("membership.remove"):
            result = await self._db.execute(stmt)
        return result.rowcount > 0

    async def list_by_workspace(
        self, workspace_id: uuid.UUID
    ) -> list[entities.Membership]:
        stmt = (
            select(Membership)
            .where(Membership.workspace_id == workspace_id)
            .order_by(Membership.created_at)
        )
        with _translate_errors("membership.list_by_workspace"):
            result = await self._db.execute(stmt)
            rows = result.scalars().all()
        return [entities.Membership.model_validate(m) for m in rows]

    async def is_member(self, user_id: uuid.UUID, workspace_id: uuid.UUID) -> bool:
        stmt = select(
            exists().where(
                Membership.user_id == user_id,
                Membership.workspace_id == workspace_id,
            )
        )
        with _translate_errors("membership.is_member"):
            result = await self._db.execute(stmt)
        return bool(result.scalar())


class SqlInvitationStore(InvitationStore):
    """Invitations in the invitations table."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def create(
        self,
        *,
        workspace_id: uuid.UUID,
        inviter_id: uuid.UUID,
        invitee_email: str,
        role: entities.Role,
        invitee_id: uuid.UUID | None = None,
    ) -> entities.Invitation:
        with _translate_errors("invitation.create"):
            invitation = InvitationRow(
                workspace_id=workspace_id,
                inviter_id=inviter_id,
                invitee_email=invitee_email,
                invitee_id=invitee_id,
                role=role.value,
                is_valid=True,
            )
            self._db.add(invitation)
            await self._db.flush()
            await self._db.refresh(invitation)
        return entities.Invitation.model_validate(invitation)

    async def get(self, invitation_id: uuid.UUID) -> entities.Invitation | None:
        with _translate_errors("invitation.get"):
            invitation = await self._db.get(InvitationRow, invitation_id)
        return entities.Invitation.model_validate(invitation) if invitation else None

    async def delete(self, invitation_id: uuid.UUID) -> bool:
        stmt = delete(InvitationRow).where(InvitationRow.id == invitation_id)
        with _translate_errors("invitation.delete"):
            result = await self._db.execute(stmt)
        return result.rowcount > 0

    async def list_by_workspace(
        self, workspace_id: uuid.UUID
    ) -> list[entities.Invitation]:
        stmt = (
            select(InvitationRow)
            .where(InvitationRow.workspace_id == workspace_id)
            .order_by(InvitationRow.created_at)
        )
        with _translate_errors("invitation.list_by_workspace"):
            result = await self._db.execute(stmt)
            rows = result.scalars().all()
        return [entities.Invitation.model_validate(i) for i in rows]

    async def mark_consumed(self, invitation_id: uuid.UUID) -> bool:
        stmt = (
            update(InvitationRow)
            .where(InvitationRow.id == invitation_id, InvitationRow.is_valid.is_(True))
            .values(is_valid=False)
            .returning(InvitationRow.id)
        )
        with _translate_errors("invitation.mark_consumed"):
            result = await self._db.execute(stmt)
            consumed = result.scalar_one_or_none()
        return consumed is not None
