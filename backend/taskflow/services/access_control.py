"""Request-time access control.

Two gates run in front of protected routes:

1. authenticate: Authorization header -> access token -> identity.
   Missing header, unparseable token, wrong purpose, or an expired token
   all reject with the same generic 401.
2. authorize_workspace: identity + workspace id -> membership check. A
   missing membership and a failing membership lookup both reject with
   401 "not a member"; only the logs tell them apart.

The gates populate a RequestContext and nothing else writes to it. Role
checks are not done here; owner/admin rules live in the flows.
"""

import logging
import uuid
from dataclasses import dataclass, replace

from taskflow.core.errors import StoreError, UnauthorizedError
from taskflow.core.tokens import (
    InvalidTokenError,
    TokenPurpose,
    TokenService,
    UserClaims,
)
from taskflow.core.validation import parse_uuid
from taskflow.stores.base import MembershipStore

logger = logging.getLogger(__name__)

_BEARER_PREFIX = "Bearer "
_NOT_A_MEMBER = "Not a member of this workspace"


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """Who the access token says the caller is."""

    user_id: uuid.UUID
    email: str


@dataclass(frozen=True)
class RequestContext:
    """Per-request authorization state, populated only by AccessGate.

    Attributes:
        identity: Set once the access token passed the first gate.
        workspace_id: Set once the membership gate passed.
    """

    identity: AuthenticatedIdentity | None = None
    workspace_id: uuid.UUID | None = None

    @property
    def user_id(self) -> uuid.UUID:
        """Authenticated user id.

        Raises:
            UnauthorizedError: If the identity gate has not run.
        """
        if self.identity is None:
            raise UnauthorizedError()
        return self.identity.user_id


def extract_bearer_token(authorization: str | None) -> str | None:
    """Token from an Authorization header, with any "Bearer " prefix removed."""
    if not authorization:
        return None
    token = authorization
    if token.startswith(_BEARER_PREFIX):
        token = token[len(_BEARER_PREFIX) :]
    token = token.strip()
    return token or None


class AccessGate:
    """Authenticates bearer tokens and checks workspace membership.

    Args:
        tokens: Token service.
        memberships: Membership store.
    """

    def __init__(self, tokens: TokenService, memberships: MembershipStore) -> None:
        self._tokens = tokens
        self._memberships = memberships

    def authenticate(self, authorization: str | None) -> RequestContext:
        """Run the identity gate.

        Args:
            authorization: Raw Authorization header value, if any.

        Returns:
            RequestContext carrying the caller's identity.

        Raises:
            UnauthorizedError: Always generic; the reason is logged.
        """
        token = extract_bearer_token(authorization)
        if token is None:
            logger.info("Rejected request: no token")
            raise UnauthorizedError()

        try:
            claims = self._tokens.verify(token, TokenPurpose.ACCESS, UserClaims)
        except InvalidTokenError as exc:
            logger.info("Rejected request: %s access token", exc.reason)
            raise UnauthorizedError() from exc

        return RequestContext(
            identity=AuthenticatedIdentity(user_id=claims.user_id, email=claims.email)
        )

    async def authorize_workspace(
        self, context: RequestContext, workspace_id: str | uuid.UUID
    ) -> RequestContext:
        """Run the membership gate for a workspace-scoped route.

        Args:
            context: Output of authenticate().
            workspace_id: Workspace id from the route.

        Returns:
            A copy of ``context`` with ``workspace_id`` bound.

        Raises:
            ValidationError: Malformed workspace id.
            UnauthorizedError: Not authenticated, not a member, or the
                membership lookup failed.
        """
        user_id = context.user_id
        ws_id = parse_uuid(workspace_id, "workspace_id")

        try:
            is_member = await self._memberships.is_member(user_id, ws_id)
        except StoreError as exc:
            logger.error(
                "Membership check failed for user %s on workspace %s: %s",
                user_id,
                ws_id,
                exc,
            )
            raise UnauthorizedError(_NOT_A_MEMBER) from exc

        if not is_member:
            logger.info("User %s is not a member of workspace %s", user_id, ws_id)
            raise UnauthorizedError(_NOT_A_MEMBER)

        return replace(context, workspace_id=ws_id)
