"""Magic-link authentication flow.

request_magic_link: email -> find or create identity -> login token ->
queued email.magic_link job. Nothing counts as sent unless the job was
queued, so a publish failure fails the whole request.

verify_login_token: login token -> fresh access + refresh pair.
"""

import logging
import uuid

from taskflow.core.errors import (
    ChannelError,
    InternalError,
    NotFoundError,
    UnauthorizedError,
)
from taskflow.core.tokens import (
    InvalidTokenError,
    TokenPair,
    TokenPurpose,
    TokenService,
    UserClaims,
)
from taskflow.core.validation import clean_name, normalize_email
from taskflow.notifications.channel import NotificationChannel
from taskflow.notifications.messages import magic_link_message
from taskflow.schemas.entities import Identity, UserProfile
from taskflow.services.common import store_guard
from taskflow.stores.base import IdentityStore

logger = logging.getLogger(__name__)


class AuthenticationService:
    """Passwordless sign-in and profile access.

    Args:
        identities: Identity store.
        channel: Queue receiving the magic-link email job.
        tokens: Token service.
        magic_link_path: Verification path embedded in the email job; the
            email sender appends the token to it.
    """

    def __init__(
        self,
        identities: IdentityStore,
        channel: NotificationChannel,
        tokens: TokenService,
        *,
        magic_link_path: str,
    ) -> None:
        self._identities = identities
        self._channel = channel
        self._tokens = tokens
        self._magic_link_path = magic_link_path

    async def request_magic_link(self, email: str) -> Identity:
        """Issue a login token for ``email`` and queue the sign-in email.

        Unseen addresses get a new identity with an empty profile.

        Args:
            email: Address typed by the user.

        Returns:
            The identity the link was issued for.

        Raises:
            ValidationError: If the address is malformed.
            ConflictError: If a concurrent request created the same identity.
            InternalError: If the store is unavailable or the job could not
                be queued.
        """
        address = normalize_email(email)
        identity = await self._find_or_create(address)

        token = self._tokens.issue_user_token(
            TokenPurpose.LOGIN, identity.id, identity.email
        )
        message = magic_link_message(identity.email, token, self._magic_link_path)
        try:
            await self._channel.publish(message)
        except ChannelError as exc:
            logger.error(
                "Failed to queue magic link for user %s: %s", identity.id, exc
            )
            raise InternalError("Could not send the sign-in link") from exc

        logger.info("Magic link queued for user %s", identity.id)
        return identity

    async def verify_login_token(self, token: str) -> TokenPair:
        """Exchange a login token for a new session.

        Raises:
            UnauthorizedError: Token invalid, expired, or not a login token.
        """
        try:
            claims = self._tokens.verify(token, TokenPurpose.LOGIN, UserClaims)
        except InvalidTokenError as exc:
            logger.warning("Rejected login token: %s", exc.reason)
            raise UnauthorizedError("Invalid or expired link") from exc

        logger.info("User %s signed in via magic link", claims.user_id)
        return self._tokens.issue_pair(claims.user_id, claims.email)

    # =========================================================================
    # Identity and profile
    # =========================================================================

    async def get_identity(self, user_id: uuid.UUID) -> Identity:
        """Fetch an identity.

        Raises:
            NotFoundError: If the identity no longer exists.
        """
        with store_guard(logger, "Identity store"):
            identity = await self._identities.get_by_id(user_id)
        if identity is None:
            raise NotFoundError("User", str(user_id))
        return identity

    async def get_profile(self, user_id: uuid.UUID) -> UserProfile:
        """Fetch a profile.

        Raises:
            NotFoundError: If the identity has no profile.
        """
        with store_guard(logger, "Identity store"):
            profile = await self._identities.get_profile(user_id)
        if profile is None:
            raise NotFoundError("Profile", str(user_id))
        return profile

    async def update_profile(self, user_id: uuid.UUID, name: str) -> UserProfile:
        """Set the display name.

        Raises:
            ValidationError: If the name is empty or too long.
            NotFoundError: If the identity has no profile.
        """
        cleaned = clean_name(name)
        with store_guard(logger, "Identity store"):
            profile = await self._identities.update_profile(user_id, cleaned)
        if profile is None:
            raise NotFoundError("Profile", str(user_id))
        return profile

    async def _find_or_create(self, email: str) -> Identity:
        with store_guard(logger, "Identity store"):
            identity = await self._identities.get_by_email(email)
            if identity is None:
                # The store's unique email constraint settles races here and
                # surfaces the loser as ConflictError.
                identity = await self._identities.create(email)
                logger.info("Created identity %s", identity.id)
        return identity
