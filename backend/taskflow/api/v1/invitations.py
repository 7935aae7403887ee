"""Invitation and membership redemption endpoints.

Endpoints:
- POST /invitation - invite someone into a workspace (owner or admin)
- GET /invitation?workspace_id= - invitations of a workspace (owner)
- GET /invitation/{invitation_id} - one invitation (inviter or owner)
- DELETE /invitation/{invitation_id} - withdraw an invitation (inviter)
- GET /membership/add?token= - redeem an emailed invitation token

Redemption needs no access token; the invitation token is the credential.
"""

from typing import Annotated, Literal

from fastapi import APIRouter, Query, Response
from pydantic import BaseModel, ConfigDict, Field

from taskflow.api.deps import CurrentIdentity, InvitationSvc
from taskflow.core.responses import DataResponse
from taskflow.schemas import Invitation, Membership

router = APIRouter()
membership_router = APIRouter()


class InvitationCreate(BaseModel):
    """Request body for POST /invitation.

    Ids stay strings here so malformed values surface as field-level
    VALIDATION_ERROR details from the service.
    """

    model_config = ConfigDict(extra="forbid")

    workspace_id: str
    invitee_email: str = Field(max_length=320)
    role: Literal["member", "admin"] = "member"
    invitee_id: str | None = None


@router.post("", status_code=201)
async def create_invitation(
    body: InvitationCreate,
    identity: CurrentIdentity,
    service: InvitationSvc,
) -> DataResponse[Invitation]:
    """Create an invitation and queue its email.

    500 if the email job could not be queued; the invitation is not kept.
    """
    invitation = await service.create_invitation(
        inviter_id=identity.user_id,
        workspace_id=body.workspace_id,
        invitee_email=body.invitee_email,
        role=body.role,
        invitee_id=body.invitee_id,
    )
    return DataResponse(data=invitation)


@router.get("")
async def list_invitations(
    workspace_id: Annotated[str, Query(min_length=1)],
    identity: CurrentIdentity,
    service: InvitationSvc,
) -> DataResponse[list[Invitation]]:
    invitations = await service.list_invitations(workspace_id, identity.user_id)
    return DataResponse(data=invitations)


@router.get("/{invitation_id}")
async def get_invitation(
    invitation_id: str,
    identity: CurrentIdentity,
    service: InvitationSvc,
) -> DataResponse[Invitation]:
    invitation = await service.get_invitation(invitation_id, identity.user_id)
    return DataResponse(data=invitation)


@router.delete("/{invitation_id}", status_code=204)
async def delete_invitation(
    invitation_id: str,
    identity: CurrentIdentity,
    service: InvitationSvc,
) -> Response:
    """Withdraw an invitation. Only its inviter may do this."""
    await service.delete_invitation(invitation_id, identity.user_id)
    return Response(status_code=204)


@membership_router.get("/add")
async def redeem_invitation(
    token: Annotated[str, Query(min_length=1, max_length=4096)],
    service: InvitationSvc,
) -> DataResponse[Membership]:
    """Join the workspace named in an invitation token."""
    membership = await service.redeem(token)
    return DataResponse(data=membership)
