"""Tests for the invitation flow: creation, redemption, and queries."""

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from taskflow.core.errors import (
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    StoreError,
    UnauthorizedError,
    ValidationError,
)
from taskflow.core.tokens import InvitationClaims, TokenPurpose, TokenService
from taskflow.notifications.memory_channel import InMemoryChannel
from taskflow.notifications.messages import InvitationPayload, MessageType
from taskflow.schemas import Role, Workspace
from taskflow.services.invitations import InvitationService, RedemptionPolicy
from taskflow.stores.memory import (
    InMemoryIdentityStore,
    InMemoryInvitationStore,
    InMemoryMembershipStore,
    InMemoryWorkspaceStore,
)
from tests.conftest import INVITATION_PATH, TEST_USER_ID, FakeClock

OWNER_ID = TEST_USER_ID
INVITEE_EMAIL = "bob@example.com"


@pytest.fixture
async def workspace(workspace_store: InMemoryWorkspaceStore) -> Workspace:
    return await workspace_store.create("Acme", OWNER_ID)


def _token_from(channel: InMemoryChannel, index: int = -1) -> str:
    payload = channel.published[index].decode_payload()
    assert isinstance(payload, InvitationPayload)
    return payload.token


# =============================================================================
# Creation
# =============================================================================


class TestCreateInvitation:
    async def test_owner_invites_and_email_is_queued(
        self,
        invitation_service: InvitationService,
        invitation_store: InMemoryInvitationStore,
        channel: InMemoryChannel,
        tokens: TokenService,
        workspace: Workspace,
    ) -> None:
        invitation = await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=str(workspace.id),
            invitee_email="Bob@Example.com",
            role="admin",
        )

        assert invitation.is_valid is True
        assert invitation.invitee_email == INVITEE_EMAIL
        assert invitation.role is Role.ADMIN
        assert await invitation_store.get(invitation.id) == invitation

        message = channel.published[0]
        assert message.type is MessageType.INVITATION
        payload = message.decode_payload()
        assert isinstance(payload, InvitationPayload)
        assert payload.to_email == INVITEE_EMAIL
        assert payload.workspace_name == "Acme"
        assert payload.role == "admin"
        assert payload.invitation_url == INVITATION_PATH

        claims = tokens.verify(
            payload.token, TokenPurpose.INVITATION, InvitationClaims
        )
        assert claims.invitation_id == invitation.id
        assert claims.workspace_id == workspace.id
        assert claims.inviter_id == OWNER_ID
        assert claims.invitee_email == INVITEE_EMAIL
        assert claims.role is Role.ADMIN

    async def test_admin_member_may_invite(
        self,
        invitation_service: InvitationService,
        membership_store: InMemoryMembershipStore,
        workspace: Workspace,
    ) -> None:
        admin_id = uuid.uuid4()
        await membership_store.add(admin_id, workspace.id, Role.ADMIN)

        invitation = await invitation_service.create_invitation(
            inviter_id=admin_id,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )

        assert invitation.inviter_id == admin_id

    async def test_plain_member_may_not_invite(
        self,
        invitation_service: InvitationService,
        membership_store: InMemoryMembershipStore,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        member_id = uuid.uuid4()
        await membership_store.add(member_id, workspace.id, Role.MEMBER)

        with pytest.raises(ForbiddenError):
            await invitation_service.create_invitation(
                inviter_id=member_id,
                workspace_id=workspace.id,
                invitee_email=INVITEE_EMAIL,
                role="member",
            )
        assert channel.published == []

    async def test_unknown_workspace_not_found(
        self, invitation_service: InvitationService
    ) -> None:
        with pytest.raises(NotFoundError):
            await invitation_service.create_invitation(
                inviter_id=OWNER_ID,
                workspace_id=uuid.uuid4(),
                invitee_email=INVITEE_EMAIL,
                role="member",
            )

    @pytest.mark.parametrize(
        ("field", "kwargs"),
        [
            ("workspace_id", {"workspace_id": "not-a-uuid"}),
            ("invitee_email", {"invitee_email": "nope"}),
            ("invitee_id", {"invitee_id": "nope"}),
            ("role", {"role": "owner"}),
            ("role", {"role": "superuser"}),
        ],
    )
    async def test_invalid_input_rejected_per_field(
        self,
        invitation_service: InvitationService,
        workspace: Workspace,
        field: str,
        kwargs: dict,
    ) -> None:
        arguments = {
            "inviter_id": OWNER_ID,
            "workspace_id": workspace.id,
            "invitee_email": INVITEE_EMAIL,
            "role": "member",
            **kwargs,
        }

        with pytest.raises(ValidationError) as exc_info:
            await invitation_service.create_invitation(**arguments)

        assert exc_info.value.details is not None
        assert exc_info.value.details[0]["field"] == field

    async def test_known_member_cannot_be_invited_again(
        self,
        invitation_service: InvitationService,
        membership_store: InMemoryMembershipStore,
        workspace: Workspace,
    ) -> None:
        member_id = uuid.uuid4()
        await membership_store.add(member_id, workspace.id, Role.MEMBER)

        with pytest.raises(ConflictError) as exc_info:
            await invitation_service.create_invitation(
                inviter_id=OWNER_ID,
                workspace_id=workspace.id,
                invitee_email=INVITEE_EMAIL,
                invitee_id=member_id,
                role="member",
            )
        assert exc_info.value.code == "ALREADY_MEMBER"

    async def test_publish_failure_removes_invitation(
        self,
        invitation_service: InvitationService,
        invitation_store: InMemoryInvitationStore,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        channel.fail_publish = True

        with pytest.raises(InternalError):
            await invitation_service.create_invitation(
                inviter_id=OWNER_ID,
                workspace_id=workspace.id,
                invitee_email=INVITEE_EMAIL,
                role="member",
            )

        assert await invitation_store.list_by_workspace(workspace.id) == []

    async def test_store_outage_is_internal_error(
        self,
        invitation_service: InvitationService,
        workspace_store: InMemoryWorkspaceStore,
        workspace: Workspace,
    ) -> None:
        workspace_store.fail_with = StoreError("down")

        with pytest.raises(InternalError):
            await invitation_service.create_invitation(
                inviter_id=OWNER_ID,
                workspace_id=workspace.id,
                invitee_email=INVITEE_EMAIL,
                role="member",
            )


# =============================================================================
# Redemption (stateless policy)
# =============================================================================


class TestRedeem:
    async def test_redeem_creates_identity_and_membership(
        self,
        invitation_service: InvitationService,
        identity_store: InMemoryIdentityStore,
        membership_store: InMemoryMembershipStore,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )

        membership = await invitation_service.redeem(_token_from(channel))

        invitee = await identity_store.get_by_email(INVITEE_EMAIL)
        assert invitee is not None
        assert membership.user_id == invitee.id
        assert membership.workspace_id == workspace.id
        assert membership.role is Role.MEMBER
        assert await membership_store.is_member(invitee.id, workspace.id)

    async def test_redeem_uses_existing_identity(
        self,
        invitation_service: InvitationService,
        identity_store: InMemoryIdentityStore,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        invitee = await identity_store.create(INVITEE_EMAIL)
        await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="admin",
        )

        membership = await invitation_service.redeem(_token_from(channel))

        assert membership.user_id == invitee.id
        assert membership.role is Role.ADMIN

    async def test_redeem_prefers_invitee_id_from_claims(
        self,
        invitation_service: InvitationService,
        identity_store: InMemoryIdentityStore,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        invitee = await identity_store.create("bob.work@example.com")
        await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            invitee_id=invitee.id,
            role="member",
        )

        membership = await invitation_service.redeem(_token_from(channel))

        assert membership.user_id == invitee.id
        assert await identity_store.get_by_email(INVITEE_EMAIL) is None

    async def test_redeem_unknown_invitee_id_not_found(
        self,
        invitation_service: InvitationService,
        membership_store: InMemoryMembershipStore,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            invitee_id=uuid.uuid4(),
            role="member",
        )

        with pytest.raises(NotFoundError):
            await invitation_service.redeem(_token_from(channel))

        members = await membership_store.list_by_workspace(workspace.id)
        assert [m.role for m in members] == [Role.OWNER]

    async def test_second_redemption_conflicts(
        self,
        invitation_service: InvitationService,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )
        token = _token_from(channel)
        await invitation_service.redeem(token)

        with pytest.raises(ConflictError):
            await invitation_service.redeem(token)

    async def test_deleted_invitation_still_redeemable(
        self,
        invitation_service: InvitationService,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        invitation = await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )
        await invitation_service.delete_invitation(invitation.id, OWNER_ID)

        membership = await invitation_service.redeem(_token_from(channel))

        assert membership.workspace_id == workspace.id

    async def test_expired_invitation_rejected(
        self,
        invitation_service: InvitationService,
        channel: InMemoryChannel,
        clock: FakeClock,
        workspace: Workspace,
    ) -> None:
        await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )
        clock.advance(timedelta(hours=24, seconds=1))

        with pytest.raises(UnauthorizedError):
            await invitation_service.redeem(_token_from(channel))

    async def test_access_token_is_not_an_invitation(
        self, invitation_service: InvitationService, access_token: str
    ) -> None:
        with pytest.raises(UnauthorizedError) as exc_info:
            await invitation_service.redeem(access_token)

        assert exc_info.value.message == "Invalid or expired invitation"

    async def test_owner_role_in_token_rejected(
        self,
        invitation_service: InvitationService,
        tokens: TokenService,
        workspace: Workspace,
    ) -> None:
        forged = tokens.issue_invitation_token(
            invitation_id=uuid.uuid4(),
            workspace_id=workspace.id,
            inviter_id=OWNER_ID,
            invitee_email=INVITEE_EMAIL,
            role=Role.OWNER,
        )

        with pytest.raises(UnauthorizedError):
            await invitation_service.redeem(forged)

    async def test_deleted_workspace_not_found(
        self,
        invitation_service: InvitationService,
        workspace_store: InMemoryWorkspaceStore,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )
        await workspace_store.delete(workspace.id)

        with pytest.raises(NotFoundError):
            await invitation_service.redeem(_token_from(channel))


class TestRedeemRequireActive:
    @pytest.fixture
    def redemption_policy(self) -> RedemptionPolicy:
        return RedemptionPolicy.REQUIRE_ACTIVE

    async def test_redeem_consumes_invitation(
        self,
        invitation_service: InvitationService,
        invitation_store: InMemoryInvitationStore,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        invitation = await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )

        await invitation_service.redeem(_token_from(channel))

        stored = await invitation_store.get(invitation.id)
        assert stored is not None
        assert stored.is_valid is False

    async def test_deleted_invitation_rejected(
        self,
        invitation_service: InvitationService,
        membership_store: InMemoryMembershipStore,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        invitation = await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )
        await invitation_service.delete_invitation(invitation.id, OWNER_ID)

        with pytest.raises(UnauthorizedError):
            await invitation_service.redeem(_token_from(channel))

        members = await membership_store.list_by_workspace(workspace.id)
        assert [m.role for m in members] == [Role.OWNER]

    async def test_consumed_invitation_rejected(
        self,
        invitation_service: InvitationService,
        membership_store: InMemoryMembershipStore,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )
        token = _token_from(channel)
        membership = await invitation_service.redeem(token)
        await membership_store.remove(membership.user_id, workspace.id)

        with pytest.raises(UnauthorizedError):
            await invitation_service.redeem(token)

    async def test_conflict_leaves_invitation_valid(
        self,
        invitation_service: InvitationService,
        invitation_store: InMemoryInvitationStore,
        identity_store: InMemoryIdentityStore,
        membership_store: InMemoryMembershipStore,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        invitation = await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )
        invitee = await identity_store.create(INVITEE_EMAIL)
        await membership_store.add(invitee.id, workspace.id, Role.MEMBER)

        with pytest.raises(ConflictError):
            await invitation_service.redeem(_token_from(channel))

        stored = await invitation_store.get(invitation.id)
        assert stored is not None
        assert stored.is_valid is True

    async def test_lost_consume_race_removes_membership(
        self,
        invitation_service: InvitationService,
        invitation_store: InMemoryInvitationStore,
        membership_store: InMemoryMembershipStore,
        channel: InMemoryChannel,
        workspace: Workspace,
    ) -> None:
        await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )

        with (
            patch.object(
                invitation_store, "mark_consumed", AsyncMock(return_value=False)
            ),
            pytest.raises(UnauthorizedError),
        ):
            await invitation_service.redeem(_token_from(channel))

        members = await membership_store.list_by_workspace(workspace.id)
        assert [m.role for m in members] == [Role.OWNER]


# =============================================================================
# Queries and deletion
# =============================================================================


class TestQueriesAndDeletion:
    async def test_only_inviter_may_delete(
        self,
        invitation_service: InvitationService,
        membership_store: InMemoryMembershipStore,
        workspace: Workspace,
    ) -> None:
        admin_id = uuid.uuid4()
        await membership_store.add(admin_id, workspace.id, Role.ADMIN)
        invitation = await invitation_service.create_invitation(
            inviter_id=admin_id,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )

        # Not even the owner may withdraw someone else's invitation
        with pytest.raises(ForbiddenError):
            await invitation_service.delete_invitation(invitation.id, OWNER_ID)

        await invitation_service.delete_invitation(invitation.id, admin_id)

    async def test_delete_unknown_invitation_not_found(
        self, invitation_service: InvitationService
    ) -> None:
        with pytest.raises(NotFoundError):
            await invitation_service.delete_invitation(uuid.uuid4(), OWNER_ID)

    async def test_get_visible_to_inviter_and_owner_only(
        self,
        invitation_service: InvitationService,
        membership_store: InMemoryMembershipStore,
        workspace: Workspace,
    ) -> None:
        admin_id = uuid.uuid4()
        await membership_store.add(admin_id, workspace.id, Role.ADMIN)
        invitation = await invitation_service.create_invitation(
            inviter_id=admin_id,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )

        assert await invitation_service.get_invitation(invitation.id, admin_id)
        assert await invitation_service.get_invitation(invitation.id, OWNER_ID)
        with pytest.raises(ForbiddenError):
            await invitation_service.get_invitation(invitation.id, uuid.uuid4())

    async def test_list_is_owner_only(
        self,
        invitation_service: InvitationService,
        workspace: Workspace,
    ) -> None:
        await invitation_service.create_invitation(
            inviter_id=OWNER_ID,
            workspace_id=workspace.id,
            invitee_email=INVITEE_EMAIL,
            role="member",
        )

        listed = await invitation_service.list_invitations(workspace.id, OWNER_ID)
        assert [i.invitee_email for i in listed] == [INVITEE_EMAIL]
        with pytest.raises(ForbiddenError):
            await invitation_service.list_invitations(workspace.id, uuid.uuid4())
