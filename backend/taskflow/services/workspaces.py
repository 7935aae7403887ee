"""Workspace management and membership administration.

Ownership is fixed at creation. Renaming, deleting, listing members, and
removing members are owner-only and fail with ForbiddenError for anyone
else; the generic membership gate in front of these routes does not look
at roles.
"""

import logging
import uuid

from taskflow.core.errors import ForbiddenError, NotFoundError, ValidationError
from taskflow.core.validation import clean_name, parse_uuid
from taskflow.schemas.entities import Membership, Workspace
from taskflow.services.common import store_guard
from taskflow.stores.base import MembershipStore, WorkspaceStore

logger = logging.getLogger(__name__)

_STORE = "Workspace store"


class WorkspaceService:
    """Create, rename, delete workspaces and manage their members."""

    def __init__(
        self, workspaces: WorkspaceStore, memberships: MembershipStore
    ) -> None:
        self._workspaces = workspaces
        self._memberships = memberships

    async def create_workspace(self, name: str, owner_id: uuid.UUID) -> Workspace:
        """Create a workspace owned by ``owner_id`` with its owner membership."""
        cleaned = clean_name(name)
        with store_guard(logger, _STORE):
            workspace = await self._workspaces.create(cleaned, owner_id)
        logger.info("User %s created workspace %s", owner_id, workspace.id)
        return workspace

    async def get_workspace(self, workspace_id: str | uuid.UUID) -> Workspace:
        """Fetch a workspace.

        Raises:
            ValidationError: Malformed id.
            NotFoundError: Unknown workspace.
        """
        ws_id = parse_uuid(workspace_id, "workspace_id")
        with store_guard(logger, _STORE):
            workspace = await self._workspaces.get(ws_id)
        if workspace is None:
            raise NotFoundError("Workspace", str(ws_id))
        return workspace

    async def list_owned(self, owner_id: uuid.UUID) -> list[Workspace]:
        """Workspaces owned by a user."""
        with store_guard(logger, _STORE):
            return await self._workspaces.list_by_owner(owner_id)

    async def rename_workspace(
        self, workspace_id: str | uuid.UUID, name: str, requester_id: uuid.UUID
    ) -> Workspace:
        """Rename a workspace. Owner only."""
        workspace = await self._require_owner(workspace_id, requester_id)
        cleaned = clean_name(name)
        with store_guard(logger, _STORE):
            renamed = await self._workspaces.rename(workspace.id, cleaned)
        if renamed is None:
            raise NotFoundError("Workspace", str(workspace.id))
        return renamed

    async def delete_workspace(
        self, workspace_id: str | uuid.UUID, requester_id: uuid.UUID
    ) -> None:
        """Delete a workspace with its memberships and invitations. Owner only."""
        workspace = await self._require_owner(workspace_id, requester_id)
        with store_guard(logger, _STORE):
            deleted = await self._workspaces.delete(workspace.id)
        if not deleted:
            raise NotFoundError("Workspace", str(workspace.id))
        logger.info("User %s deleted workspace %s", requester_id, workspace.id)

    async def list_members(
        self, workspace_id: str | uuid.UUID, requester_id: uuid.UUID
    ) -> list[Membership]:
        """Memberships of a workspace. Owner only."""
        workspace = await self._require_owner(workspace_id, requester_id)
        with store_guard(logger, _STORE):
            return await self._memberships.list_by_workspace(workspace.id)

    async def remove_member(
        self,
        workspace_id: str | uuid.UUID,
        user_id: str | uuid.UUID,
        requester_id: uuid.UUID,
    ) -> None:
        """Remove a member. Owner only; the owner cannot remove themselves.

        Raises:
            ValidationError: Malformed ids, or an attempt to remove the owner.
            ForbiddenError: Requester is not the owner.
            NotFoundError: Unknown workspace or membership.
        """
        workspace = await self._require_owner(workspace_id, requester_id)
        member_id = parse_uuid(user_id, "user_id")
        if member_id == workspace.owner_id:
            raise ValidationError.for_field(
                "user_id", "the workspace owner cannot be removed"
            )
        with store_guard(logger, _STORE):
            removed = await self._memberships.remove(member_id, workspace.id)
        if not removed:
            raise NotFoundError("Membership", str(member_id))
        logger.info(
            "User %s removed %s from workspace %s",
            requester_id,
            member_id,
            workspace.id,
        )

    async def _require_owner(
        self, workspace_id: str | uuid.UUID, requester_id: uuid.UUID
    ) -> Workspace:
        workspace = await self.get_workspace(workspace_id)
        if workspace.owner_id != requester_id:
            logger.warning(
                "User %s attempted an owner-only action on workspace %s",
                requester_id,
                workspace.id,
            )
            raise ForbiddenError("Only the workspace owner can do this")
        return workspace
