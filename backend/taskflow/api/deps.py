"""Shared dependencies for API endpoints.

Wires stores, the notification channel, and the token service into the
flow services, and runs the access gates in front of protected routes.

Gate dependencies:
- get_request_context: Authorization header -> RequestContext (401 on failure)
- require_workspace_member: RequestContext + {workspace_id} -> membership (401)

Both store the resulting context on ``request.state.context``; nothing else
writes to it. Tests swap any of these through ``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.config import settings
from taskflow.core.database import get_db
from taskflow.core.errors import UnauthorizedError
from taskflow.core.tokens import TokenConfig, TokenService
from taskflow.notifications.channel import NotificationChannel
from taskflow.notifications.factory import get_notification_channel
from taskflow.services.access_control import (
    AccessGate,
    AuthenticatedIdentity,
    RequestContext,
)
from taskflow.services.authentication import AuthenticationService
from taskflow.services.invitations import InvitationService, RedemptionPolicy
from taskflow.services.session_rotation import SessionRotationService
from taskflow.services.workspaces import WorkspaceService
from taskflow.stores.base import (
    IdentityStore,
    InvalidationStore,
    InvitationStore,
    MembershipStore,
    WorkspaceStore,
)
from taskflow.stores.sql import (
    SqlIdentityStore,
    SqlInvalidationStore,
    SqlInvitationStore,
    SqlMembershipStore,
    SqlWorkspaceStore,
)

_token_service: TokenService | None = None


# =============================================================================
# Infrastructure
# =============================================================================


def get_token_service() -> TokenService:
    """Get or create the token service singleton.

    Built lazily so importing the app never requires AUTH_SECRET.

    Raises:
        ValueError: If AUTH_SECRET is empty.
    """
    global _token_service

    if _token_service is None:
        _token_service = TokenService(TokenConfig.from_settings(settings))
    return _token_service


def reset_token_service() -> None:
    """Forget the token service singleton (tests only)."""
    global _token_service
    _token_service = None


def get_channel() -> NotificationChannel:
    """Notification channel shared by all requests."""
    return get_notification_channel()


DbSession = Annotated[AsyncSession, Depends(get_db)]
Tokens = Annotated[TokenService, Depends(get_token_service)]
Channel = Annotated[NotificationChannel, Depends(get_channel)]


# =============================================================================
# Stores
# =============================================================================


def get_identity_store(db: DbSession) -> IdentityStore:
    return SqlIdentityStore(db)


def get_invalidation_store(db: DbSession) -> InvalidationStore:
    return SqlInvalidationStore(db)


def get_workspace_store(db: DbSession) -> WorkspaceStore:
    return SqlWorkspaceStore(db)


def get_membership_store(db: DbSession) -> MembershipStore:
    return SqlMembershipStore(db)


def get_invitation_store(db: DbSession) -> InvitationStore:
    return SqlInvitationStore(db)


Identities = Annotated[IdentityStore, Depends(get_identity_store)]
Invalidations = Annotated[InvalidationStore, Depends(get_invalidation_store)]
Workspaces = Annotated[WorkspaceStore, Depends(get_workspace_store)]
Memberships = Annotated[MembershipStore, Depends(get_membership_store)]
Invitations = Annotated[InvitationStore, Depends(get_invitation_store)]


# =============================================================================
# Flow services
# =============================================================================


def get_authentication_service(
    identities: Identities, channel: Channel, tokens: Tokens
) -> AuthenticationService:
    return AuthenticationService(
        identities, channel, tokens, magic_link_path=settings.magic_link_path
    )


def get_session_rotation_service(
    invalidations: Invalidations, tokens: Tokens
) -> SessionRotationService:
    return SessionRotationService(invalidations, tokens)


def get_workspace_service(
    workspaces: Workspaces, memberships: Memberships
) -> WorkspaceService:
    return WorkspaceService(workspaces, memberships)


def get_invitation_service(
    workspaces: Workspaces,
    memberships: Memberships,
    invitations: Invitations,
    identities: Identities,
    channel: Channel,
    tokens: Tokens,
) -> InvitationService:
    return InvitationService(
        workspaces=workspaces,
        memberships=memberships,
        invitations=invitations,
        identities=identities,
        channel=channel,
        tokens=tokens,
        invitation_path=settings.invitation_path,
        redemption_policy=RedemptionPolicy(settings.invitation_redemption_policy),
    )


def get_access_gate(tokens: Tokens, memberships: Memberships) -> AccessGate:
    return AccessGate(tokens, memberships)


AuthService = Annotated[AuthenticationService, Depends(get_authentication_service)]
RotationService = Annotated[
    SessionRotationService, Depends(get_session_rotation_service)
]
WorkspaceSvc = Annotated[WorkspaceService, Depends(get_workspace_service)]
InvitationSvc = Annotated[InvitationService, Depends(get_invitation_service)]
Gate = Annotated[AccessGate, Depends(get_access_gate)]


# =============================================================================
# Access gates
# =============================================================================


def get_request_context(
    request: Request,
    gate: Gate,
    authorization: Annotated[str | None, Header()] = None,
) -> RequestContext:
    """Authenticate the bearer access token.

    Raises:
        UnauthorizedError: 401 for any authentication failure.
    """
    context = gate.authenticate(authorization)
    request.state.context = context
    return context


CurrentContext = Annotated[RequestContext, Depends(get_request_context)]


def get_current_identity(context: CurrentContext) -> AuthenticatedIdentity:
    """Identity of the authenticated caller."""
    if context.identity is None:
        raise UnauthorizedError()
    return context.identity


CurrentIdentity = Annotated[AuthenticatedIdentity, Depends(get_current_identity)]


async def require_workspace_member(
    request: Request,
    workspace_id: str,
    context: CurrentContext,
    gate: Gate,
) -> RequestContext:
    """Require membership in the ``{workspace_id}`` path parameter.

    Raises:
        ValidationError: 400 for a malformed workspace id.
        UnauthorizedError: 401 if the caller is not a member.
    """
    context = await gate.authorize_workspace(context, workspace_id)
    request.state.context = context
    return context


WorkspaceContext = Annotated[RequestContext, Depends(require_workspace_member)]
