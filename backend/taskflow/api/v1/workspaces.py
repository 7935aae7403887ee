"""Workspaces API router.

Every route below /{workspace_id} runs the membership gate first, so a
non-member gets 401 before any role check. Owner-only actions then fail
with 403 for other members.
"""

from fastapi import APIRouter, Response
from pydantic import BaseModel, ConfigDict, Field

from taskflow.api.deps import CurrentIdentity, WorkspaceContext, WorkspaceSvc
from taskflow.core.responses import DataResponse
from taskflow.schemas import Membership, Workspace

router = APIRouter()


class WorkspaceWrite(BaseModel):
    """Request body for creating or renaming a workspace."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(max_length=255)


@router.post("", status_code=201)
async def create_workspace(
    body: WorkspaceWrite,
    identity: CurrentIdentity,
    service: WorkspaceSvc,
) -> DataResponse[Workspace]:
    """Create a workspace owned by the caller."""
    workspace = await service.create_workspace(body.name, identity.user_id)
    return DataResponse(data=workspace)


@router.get("/mine")
async def list_my_workspaces(
    identity: CurrentIdentity,
    service: WorkspaceSvc,
) -> DataResponse[list[Workspace]]:
    """Workspaces owned by the caller."""
    return DataResponse(data=await service.list_owned(identity.user_id))


@router.get("/{workspace_id}")
async def get_workspace(
    context: WorkspaceContext,
    service: WorkspaceSvc,
) -> DataResponse[Workspace]:
    return DataResponse(data=await service.get_workspace(context.workspace_id))


@router.put("/{workspace_id}")
async def rename_workspace(
    body: WorkspaceWrite,
    context: WorkspaceContext,
    service: WorkspaceSvc,
) -> DataResponse[Workspace]:
    """Rename a workspace. Owner only."""
    workspace = await service.rename_workspace(
        context.workspace_id, body.name, context.user_id
    )
    return DataResponse(data=workspace)


@router.delete("/{workspace_id}", status_code=204)
async def delete_workspace(
    context: WorkspaceContext,
    service: WorkspaceSvc,
) -> Response:
    """Delete a workspace with its memberships and invitations. Owner only."""
    await service.delete_workspace(context.workspace_id, context.user_id)
    return Response(status_code=204)


@router.get("/{workspace_id}/members")
async def list_members(
    context: WorkspaceContext,
    service: WorkspaceSvc,
) -> DataResponse[list[Membership]]:
    """Members of a workspace. Owner only."""
    members = await service.list_members(context.workspace_id, context.user_id)
    return DataResponse(data=members)


@router.delete("/{workspace_id}/members/{user_id}", status_code=204)
async def remove_member(
    user_id: str,
    context: WorkspaceContext,
    service: WorkspaceSvc,
) -> Response:
    """Remove a member. Owner only; the owner's own membership stays."""
    await service.remove_member(context.workspace_id, user_id, context.user_id)
    return Response(status_code=204)
