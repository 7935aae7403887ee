"""Workspace invitation flow.

Creation persists an Invitation row, embeds its details in an invitation
token, and queues an email.invitation job. A queue failure fails the whole
creation and removes the row again.

Redemption trusts the token: workspace, role, and invitee come from its
claims, not from the stored row. Whether the stored row must still be
valid is a configurable RedemptionPolicy:

- STATELESS: the row is not consulted. A deleted invitation's token stays
  redeemable until it expires.
- REQUIRE_ACTIVE: the row must exist, match the token, and still be valid;
  redemption consumes it, so each invitation works once.
"""

import logging
import uuid
from enum import Enum

from taskflow.core.errors import (
    ChannelError,
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    StoreError,
    UnauthorizedError,
    ValidationError,
)
from taskflow.core.tokens import (
    InvalidTokenError,
    InvitationClaims,
    TokenPurpose,
    TokenService,
)
from taskflow.core.validation import normalize_email, parse_uuid
from taskflow.notifications.channel import NotificationChannel
from taskflow.notifications.messages import invitation_message
from taskflow.schemas.entities import (
    INVITABLE_ROLES,
    Invitation,
    Membership,
    Role,
    Workspace,
)
from taskflow.services.common import store_guard
from taskflow.stores.base import (
    IdentityStore,
    InvitationStore,
    MembershipStore,
    WorkspaceStore,
)

logger = logging.getLogger(__name__)

_STORE = "Invitation store"
_REJECTED = "Invalid or expired invitation"


class RedemptionPolicy(str, Enum):
    """How much redemption trusts the stored invitation row.

    Values:
        STATELESS: Token claims alone decide.
        REQUIRE_ACTIVE: Stored row must be valid; redemption consumes it.
    """

    STATELESS = "stateless"
    REQUIRE_ACTIVE = "require_active"


def _parse_role(value: str | Role) -> Role:
    try:
        role = Role(value)
    except ValueError as exc:
        raise ValidationError.for_field("role", "unknown role") from exc
    if role not in INVITABLE_ROLES:
        raise ValidationError.for_field(
            "role", "owner role cannot be granted by invitation"
        )
    return role


class InvitationService:
    """Creates, lists, deletes, and redeems workspace invitations.

    Args:
        workspaces: Workspace store.
        memberships: Membership store.
        invitations: Invitation store.
        identities: Identity store, used to resolve invitees by email.
        channel: Queue receiving the invitation email job.
        tokens: Token service.
        invitation_path: Redemption path embedded in the email job.
        redemption_policy: See RedemptionPolicy.
    """

    def __init__(
        self,
        *,
        workspaces: WorkspaceStore,
        memberships: MembershipStore,
        invitations: InvitationStore,
        identities: IdentityStore,
        channel: NotificationChannel,
        tokens: TokenService,
        invitation_path: str,
        redemption_policy: RedemptionPolicy = RedemptionPolicy.STATELESS,
    ) -> None:
        self._workspaces = workspaces
        self._memberships = memberships
        self._invitations = invitations
        self._identities = identities
        self._channel = channel
        self._tokens = tokens
        self._invitation_path = invitation_path
        self._policy = redemption_policy

    # =========================================================================
    # Creation
    # =========================================================================

    async def create_invitation(
        self,
        *,
        inviter_id: uuid.UUID,
        workspace_id: str | uuid.UUID,
        invitee_email: str,
        role: str | Role,
        invitee_id: str | uuid.UUID | None = None,
    ) -> Invitation:
        """Invite someone into a workspace and queue the invitation email.

        Args:
            inviter_id: Authenticated caller.
            workspace_id: Target workspace.
            invitee_email: Address the invitation is sent to.
            role: "member" or "admin".
            invitee_id: Invitee's identity, when already known.

        Returns:
            The persisted invitation.

        Raises:
            ValidationError: Malformed id, email, or role.
            NotFoundError: Unknown workspace.
            ForbiddenError: Inviter is neither owner nor admin.
            ConflictError: Known invitee is already a member.
            InternalError: Store unavailable or email job not queued.
        """
        ws_id = parse_uuid(workspace_id, "workspace_id")
        invitee_uuid = (
            parse_uuid(invitee_id, "invitee_id") if invitee_id is not None else None
        )
        email = normalize_email(invitee_email, "invitee_email")
        granted = _parse_role(role)

        with store_guard(logger, _STORE):
            workspace = await self._get_workspace(ws_id)
            await self._require_can_invite(workspace, inviter_id)
            if invitee_uuid is not None and await self._memberships.is_member(
                invitee_uuid, ws_id
            ):
                raise ConflictError(
                    code="ALREADY_MEMBER",
                    message="User is already a member of this workspace",
                )
            invitation = await self._invitations.create(
                workspace_id=ws_id,
                inviter_id=inviter_id,
                invitee_email=email,
                role=granted,
                invitee_id=invitee_uuid,
            )

        token = self._tokens.issue_invitation_token(
            invitation_id=invitation.id,
            workspace_id=ws_id,
            inviter_id=inviter_id,
            invitee_email=email,
            invitee_id=invitee_uuid,
            role=granted,
        )
        message = invitation_message(
            to_email=email,
            workspace_name=workspace.name,
            role=granted.value,
            token=token,
            invitation_url=self._invitation_path,
        )
        try:
            await self._channel.publish(message)
        except ChannelError as exc:
            logger.error("Failed to queue invitation %s: %s", invitation.id, exc)
            await self._discard(invitation.id)
            raise InternalError("Could not send the invitation") from exc

        logger.info(
            "User %s created invitation %s for workspace %s (%s)",
            inviter_id,
            invitation.id,
            ws_id,
            granted.value,
        )
        return invitation

    # =========================================================================
    # Redemption
    # =========================================================================

    async def redeem(self, token: str) -> Membership:
        """Turn an invitation token into a membership.

        Raises:
            UnauthorizedError: Token invalid, expired, not an invitation, or
                (REQUIRE_ACTIVE) the stored invitation is gone or used.
            NotFoundError: The workspace or the named invitee identity no
                longer exists.
            ConflictError: The invitee is already a member.
            InternalError: Store unavailable.
        """
        try:
            claims = self._tokens.verify(
                token, TokenPurpose.INVITATION, InvitationClaims
            )
        except InvalidTokenError as exc:
            logger.warning("Rejected invitation token: %s", exc.reason)
            raise UnauthorizedError(_REJECTED) from exc

        if claims.role not in INVITABLE_ROLES:
            logger.warning(
                "Invitation %s carries non-invitable role %s",
                claims.invitation_id,
                claims.role.value,
            )
            raise UnauthorizedError(_REJECTED)

        require_active = self._policy is RedemptionPolicy.REQUIRE_ACTIVE
        with store_guard(logger, _STORE):
            await self._get_workspace(claims.workspace_id)
            if require_active:
                await self._require_active(claims)
            user_id = await self._invitee_id(claims)
            membership = await self._memberships.add(
                user_id, claims.workspace_id, claims.role
            )
            # Consumed only once the membership exists
            if require_active:
                await self._consume(claims, user_id)

        logger.info(
            "Invitation %s redeemed: user %s joined workspace %s as %s",
            claims.invitation_id,
            user_id,
            claims.workspace_id,
            claims.role.value,
        )
        return membership

    # =========================================================================
    # Queries and deletion
    # =========================================================================

    async def get_invitation(
        self, invitation_id: str | uuid.UUID, requester_id: uuid.UUID
    ) -> Invitation:
        """Fetch an invitation. Visible to its inviter and the workspace owner."""
        inv_id = parse_uuid(invitation_id, "invitation_id")
        with store_guard(logger, _STORE):
            invitation = await self._invitations.get(inv_id)
            if invitation is None:
                raise NotFoundError("Invitation", str(inv_id))
            if invitation.inviter_id != requester_id:
                workspace = await self._get_workspace(invitation.workspace_id)
                if workspace.owner_id != requester_id:
                    raise ForbiddenError("Not allowed to view this invitation")
        return invitation

    async def list_invitations(
        self, workspace_id: str | uuid.UUID, requester_id: uuid.UUID
    ) -> list[Invitation]:
        """Invitations of a workspace. Owner only."""
        ws_id = parse_uuid(workspace_id, "workspace_id")
        with store_guard(logger, _STORE):
            workspace = await self._get_workspace(ws_id)
            if workspace.owner_id != requester_id:
                raise ForbiddenError("Only the workspace owner can list invitations")
            return await self._invitations.list_by_workspace(ws_id)

    async def delete_invitation(
        self, invitation_id: str | uuid.UUID, requester_id: uuid.UUID
    ) -> None:
        """Delete an invitation. Only its original inviter may do this.

        Under the STATELESS policy an already-emailed token stays
        redeemable until it expires.
        """
        inv_id = parse_uuid(invitation_id, "invitation_id")
        with store_guard(logger, _STORE):
            invitation = await self._invitations.get(inv_id)
            if invitation is None:
                raise NotFoundError("Invitation", str(inv_id))
            if invitation.inviter_id != requester_id:
                logger.warning(
                    "User %s attempted to delete invitation %s of user %s",
                    requester_id,
                    inv_id,
                    invitation.inviter_id,
                )
                raise ForbiddenError("Only the inviter can delete this invitation")
            await self._invitations.delete(inv_id)
        logger.info("User %s deleted invitation %s", requester_id, inv_id)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _get_workspace(self, workspace_id: uuid.UUID) -> Workspace:
        workspace = await self._workspaces.get(workspace_id)
        if workspace is None:
            raise NotFoundError("Workspace", str(workspace_id))
        return workspace

    async def _require_can_invite(
        self, workspace: Workspace, inviter_id: uuid.UUID
    ) -> None:
        if workspace.owner_id == inviter_id:
            return
        membership = await self._memberships.get(inviter_id, workspace.id)
        if membership is None or membership.role not in (Role.OWNER, Role.ADMIN):
            logger.warning(
                "User %s may not invite into workspace %s", inviter_id, workspace.id
            )
            raise ForbiddenError("Only owners and admins can invite members")

    async def _require_active(self, claims: InvitationClaims) -> None:
        invitation = await self._invitations.get(claims.invitation_id)
        if (
            invitation is None
            or invitation.workspace_id != claims.workspace_id
            or invitation.invitee_email != claims.invitee_email
        ):
            logger.warning(
                "Invitation %s missing or does not match its token",
                claims.invitation_id,
            )
            raise UnauthorizedError(_REJECTED)
        if not invitation.is_valid:
            logger.warning("Invitation %s already consumed", invitation.id)
            raise UnauthorizedError(_REJECTED)

    async def _consume(self, claims: InvitationClaims, user_id: uuid.UUID) -> None:
        if await self._invitations.mark_consumed(claims.invitation_id):
            return
        # Lost a race with another redemption; undo the membership just added
        logger.warning("Invitation %s already consumed", claims.invitation_id)
        await self._memberships.remove(user_id, claims.workspace_id)
        raise UnauthorizedError(_REJECTED)

    async def _invitee_id(self, claims: InvitationClaims) -> uuid.UUID:
        if claims.invitee_id is None:
            return await self._resolve_invitee(claims.invitee_email)
        if await self._identities.get_by_id(claims.invitee_id) is None:
            logger.warning(
                "Invitation %s names unknown invitee %s",
                claims.invitation_id,
                claims.invitee_id,
            )
            raise NotFoundError("Identity", str(claims.invitee_id))
        return claims.invitee_id

    async def _resolve_invitee(self, email: str) -> uuid.UUID:
        identity = await self._identities.get_by_email(email)
        if identity is None:
            try:
                identity = await self._identities.create(email)
            except ConflictError:
                # created concurrently by a magic-link request
                identity = await self._identities.get_by_email(email)
                if identity is None:
                    raise
            logger.info("Created identity %s for invitee", identity.id)
        return identity.id

    async def _discard(self, invitation_id: uuid.UUID) -> None:
        try:
            await self._invitations.delete(invitation_id)
        except StoreError as exc:
            logger.error(
                "Could not remove unsent invitation %s: %s", invitation_id, exc
            )
