"""Refresh-token rotation.

A refresh token is single use. Rotation burns it with one atomic
insert-if-absent into the invalidation store and only then issues the
replacement pair, so two concurrent rotations of the same token cannot both
succeed. A store failure rejects the rotation (fail closed).
"""

import logging

from taskflow.core.errors import StoreError, UnauthorizedError
from taskflow.core.tokens import (
    InvalidTokenError,
    TokenPair,
    TokenPurpose,
    TokenService,
    UserClaims,
    hash_token,
)
from taskflow.schemas.entities import InvalidationRecord
from taskflow.services.common import store_guard
from taskflow.stores.base import InvalidationStore

logger = logging.getLogger(__name__)

_REJECTED = "Invalid or expired session"


class SessionRotationService:
    """Exchanges a refresh token for a new access + refresh pair.

    Args:
        invalidations: Store of burned refresh tokens.
        tokens: Token service.
    """

    def __init__(self, invalidations: InvalidationStore, tokens: TokenService) -> None:
        self._invalidations = invalidations
        self._tokens = tokens

    async def rotate(self, refresh_token: str) -> TokenPair:
        """Burn ``refresh_token`` and issue its replacement.

        Raises:
            UnauthorizedError: Token invalid, expired, not a refresh token,
                already rotated, or the invalidation store could not confirm
                the burn.
        """
        try:
            claims = self._tokens.verify(
                refresh_token, TokenPurpose.REFRESH, UserClaims
            )
        except InvalidTokenError as exc:
            logger.warning("Rejected refresh token: %s", exc.reason)
            raise UnauthorizedError(_REJECTED) from exc

        try:
            burned = await self._invalidations.invalidate(
                self._record(refresh_token, claims)
            )
        except StoreError as exc:
            logger.error(
                "Invalidation store unavailable, rejecting rotation for user %s: %s",
                claims.user_id,
                exc,
            )
            raise UnauthorizedError(_REJECTED) from exc

        if not burned:
            logger.warning(
                "Refresh token replay for user %s (jti=%s)", claims.user_id, claims.jti
            )
            raise UnauthorizedError(_REJECTED)

        logger.info("Rotated session for user %s", claims.user_id)
        return self._tokens.issue_pair(claims.user_id, claims.email)

    async def revoke(self, refresh_token: str) -> bool:
        """Burn a refresh token on logout.

        Returns:
            True if the token was burned now, False if it was unusable or
            already burned.

        Raises:
            InternalError: Invalidation store unavailable.
        """
        try:
            claims = self._tokens.verify(
                refresh_token, TokenPurpose.REFRESH, UserClaims
            )
        except InvalidTokenError as exc:
            logger.info("Logout with unusable refresh token: %s", exc.reason)
            return False

        with store_guard(logger, "Invalidation store"):
            burned = await self._invalidations.invalidate(
                self._record(refresh_token, claims)
            )
        if burned:
            logger.info("Revoked session for user %s", claims.user_id)
        return burned

    async def purge_expired(self) -> int:
        """Delete invalidation records whose tokens have expired anyway."""
        removed = await self._invalidations.purge_expired(self._tokens.now())
        if removed:
            logger.info("Purged %d expired invalidation records", removed)
        return removed

    def _record(self, refresh_token: str, claims: UserClaims) -> InvalidationRecord:
        return InvalidationRecord(
            token_hash=hash_token(refresh_token),
            user_id=claims.user_id,
            invalidated_at=self._tokens.now(),
            expires_at=claims.exp,
        )
