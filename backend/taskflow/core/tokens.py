"""Purpose-scoped signed tokens.

Every token carries exactly one purpose (access, login, refresh, invitation)
and is signed with HMAC-SHA-256. Issuance and parsing are pure functions of
the input, the configured secret, and the clock; no I/O happens here.

parse() verifies the signature, issuer, and claim shape only. It does NOT
check purpose or the validity window; a well-signed expired token parses.
Callers gate on both, usually through verify():

    claims = tokens.verify(raw, TokenPurpose.REFRESH, UserClaims)

Every parse failure is reported as one InvalidTokenError category. The
``reason`` attribute is for server-side logs only and must never reach a
client.
"""

import hashlib
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, TypeVar

import jwt
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from taskflow.core.config import Settings
from taskflow.schemas.entities import Role

_ALGORITHM = "HS256"

# Claims set by issue(); extra claims may not override them
_REGISTERED_CLAIMS = frozenset(
    {"purpose", "sub", "iss", "iat", "nbf", "exp", "jti", "aud"}
)


# =============================================================================
# Purposes and configuration
# =============================================================================


class TokenPurpose(str, Enum):
    """The single allowed use of a token.

    Values:
        ACCESS: Bearer credential for API requests.
        LOGIN: Emailed magic-link token, exchanged for a session.
        REFRESH: Long-lived token, rotated for a new session pair.
        INVITATION: Emailed workspace invitation, redeemed into a membership.
    """

    ACCESS = "access"
    LOGIN = "login"
    REFRESH = "refresh"
    INVITATION = "invitation"


DEFAULT_TOKEN_DURATIONS: Mapping[TokenPurpose, timedelta] = {
    TokenPurpose.ACCESS: timedelta(minutes=15),
    TokenPurpose.LOGIN: timedelta(minutes=15),
    TokenPurpose.REFRESH: timedelta(days=7),
    TokenPurpose.INVITATION: timedelta(hours=24),
}


@dataclass(frozen=True)
class TokenConfig:
    """Signing configuration, built once at process start.

    Attributes:
        secret: HMAC signing secret.
        issuer: Value of the ``iss`` claim, checked on parse.
        durations: Lifetime per purpose. Purposes missing from the table
            fall back to DEFAULT_TOKEN_DURATIONS.
    """

    secret: str
    issuer: str
    durations: Mapping[TokenPurpose, timedelta] = field(
        default_factory=lambda: dict(DEFAULT_TOKEN_DURATIONS)
    )

    def __post_init__(self) -> None:
        if not self.secret:
            raise ValueError("Token signing secret must not be empty")
        for purpose, duration in self.durations.items():
            if duration <= timedelta(0):
                raise ValueError(f"Duration for {purpose.value} must be positive")

    def duration_for(self, purpose: TokenPurpose) -> timedelta:
        """Lifetime of tokens issued for ``purpose``."""
        return self.durations.get(purpose, DEFAULT_TOKEN_DURATIONS[purpose])

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenConfig":
        """Build the token configuration from application settings.

        Args:
            settings: Loaded application settings.

        Returns:
            TokenConfig with secret, issuer, and per-purpose durations.
        """
        return cls(
            secret=settings.auth_secret.get_secret_value(),
            issuer=settings.auth_issuer,
            durations={
                TokenPurpose.ACCESS: timedelta(
                    seconds=settings.access_token_ttl_seconds
                ),
                TokenPurpose.LOGIN: timedelta(seconds=settings.login_token_ttl_seconds),
                TokenPurpose.REFRESH: timedelta(
                    seconds=settings.refresh_token_ttl_seconds
                ),
                TokenPurpose.INVITATION: timedelta(
                    seconds=settings.invitation_token_ttl_seconds
                ),
            },
        )


# =============================================================================
# Claims
# =============================================================================


class BaseClaims(BaseModel):
    """Registered claims present on every token.

    Numeric JWT dates are parsed into timezone-aware UTC datetimes.
    """

    model_config = ConfigDict(frozen=True)

    purpose: TokenPurpose
    sub: str
    iss: str
    iat: datetime
    nbf: datetime
    exp: datetime
    jti: str
    aud: list[str]

    def is_valid(self, now: datetime | None = None) -> bool:
        """True iff ``nbf <= now <= exp``."""
        now = now or datetime.now(UTC)
        return self.nbf <= now <= self.exp

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once ``exp`` lies in the past."""
        now = now or datetime.now(UTC)
        return now > self.exp

    def time_until_expiry(self, now: datetime | None = None) -> timedelta:
        """Remaining lifetime; negative when already expired."""
        now = now or datetime.now(UTC)
        return self.exp - now


class UserClaims(BaseClaims):
    """Claims of access, login, and refresh tokens."""

    user_id: uuid.UUID
    email: str


class InvitationClaims(BaseClaims):
    """Claims of invitation tokens. The subject is the invitee email."""

    invitation_id: uuid.UUID
    workspace_id: uuid.UUID
    inviter_id: uuid.UUID
    invitee_email: str
    invitee_id: uuid.UUID | None = None
    role: Role


ClaimsT = TypeVar("ClaimsT", bound=BaseClaims)


class InvalidTokenError(Exception):
    """Token could not be parsed.

    Attributes:
        reason: "malformed", "invalid_signature", "invalid_issuer",
            "claims_mismatch", or from verify() "wrong_purpose", "expired",
            "not_yet_valid". Log it; never return it to a client.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid token ({reason})")


@dataclass(frozen=True)
class TokenPair:
    """A freshly issued session: short-lived access plus rotating refresh."""

    access_token: str
    refresh_token: str


# =============================================================================
# Service
# =============================================================================


def _utc_now() -> datetime:
    return datetime.now(UTC)


class TokenService:
    """Issues and parses purpose-scoped HMAC tokens.

    Safe to share across concurrent requests; holds only immutable state.

    Args:
        config: Secret, issuer, and durations.
        clock: Returns the current UTC time. Injected for tests.
    """

    def __init__(
        self,
        config: TokenConfig,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._config = config
        self._clock = clock

    def now(self) -> datetime:
        """Current time according to this service's clock."""
        return self._clock()

    def issue(
        self,
        purpose: TokenPurpose,
        subject: str,
        extra_claims: Mapping[str, Any] | None = None,
    ) -> str:
        """Sign a token for one purpose.

        Args:
            purpose: The single allowed use of the token.
            subject: Value of the ``sub`` claim.
            extra_claims: JSON-serializable purpose-specific claims.

        Returns:
            Encoded JWT string.

        Raises:
            ValueError: If extra_claims tries to override a registered claim.
        """
        extra = dict(extra_claims or {})
        overridden = _REGISTERED_CLAIMS.intersection(extra)
        if overridden:
            raise ValueError(
                f"Extra claims may not override registered claims: {sorted(overridden)}"
            )

        now = self._clock()
        payload = {
            **extra,
            "purpose": purpose.value,
            "sub": subject,
            "iss": self._config.issuer,
            "iat": now,
            "nbf": now,
            "exp": now + self._config.duration_for(purpose),
            "jti": str(uuid.uuid4()),
            "aud": [purpose.value],
        }
        return jwt.encode(payload, self._config.secret, algorithm=_ALGORITHM)

    def issue_user_token(
        self, purpose: TokenPurpose, user_id: uuid.UUID, email: str
    ) -> str:
        """Issue an access, login, or refresh token bound to an identity."""
        if purpose is TokenPurpose.INVITATION:
            raise ValueError("Invitation tokens require invitation claims")
        return self.issue(
            purpose,
            str(user_id),
            {"user_id": str(user_id), "email": email},
        )

    def issue_pair(self, user_id: uuid.UUID, email: str) -> TokenPair:
        """Issue a fresh access + refresh pair for an identity."""
        return TokenPair(
            access_token=self.issue_user_token(TokenPurpose.ACCESS, user_id, email),
            refresh_token=self.issue_user_token(TokenPurpose.REFRESH, user_id, email),
        )

    def issue_invitation_token(
        self,
        *,
        invitation_id: uuid.UUID,
        workspace_id: uuid.UUID,
        inviter_id: uuid.UUID,
        invitee_email: str,
        role: Role,
        invitee_id: uuid.UUID | None = None,
    ) -> str:
        """Issue an invitation token. Its subject is the invitee email."""
        extra: dict[str, Any] = {
            "invitation_id": str(invitation_id),
            "workspace_id": str(workspace_id),
            "inviter_id": str(inviter_id),
            "invitee_email": invitee_email,
            "role": role.value,
        }
        if invitee_id is not None:
            extra["invitee_id"] = str(invitee_id)
        return self.issue(TokenPurpose.INVITATION, invitee_email, extra)

    def parse(self, token: str, claims_type: type[ClaimsT]) -> ClaimsT:
        """Verify a token's signature and issuer, then validate its claim shape.

        Expiry, not-before, and purpose are NOT checked here.

        Args:
            token: Encoded JWT string.
            claims_type: Expected claims model (UserClaims, InvitationClaims).

        Returns:
            Parsed claims of the requested type.

        Raises:
            InvalidTokenError: Bad signature, malformed token, wrong issuer,
                or claims that do not fit ``claims_type``.
        """
        try:
            payload = jwt.decode(
                token,
                self._config.secret,
                algorithms=[_ALGORITHM],
                issuer=self._config.issuer,
                options={
                    "verify_exp": False,
                    "verify_nbf": False,
                    "verify_iat": False,
                    "verify_aud": False,
                    "require": ["exp", "iat", "nbf", "iss", "sub", "jti"],
                },
            )
        except jwt.InvalidSignatureError as exc:
            raise InvalidTokenError("invalid_signature") from exc
        except jwt.InvalidIssuerError as exc:
            raise InvalidTokenError("invalid_issuer") from exc
        except jwt.DecodeError as exc:
            raise InvalidTokenError("malformed") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidTokenError("claims_mismatch") from exc

        try:
            return claims_type.model_validate(payload)
        except PydanticValidationError as exc:
            raise InvalidTokenError("claims_mismatch") from exc

    def verify(
        self, token: str, purpose: TokenPurpose, claims_type: type[ClaimsT]
    ) -> ClaimsT:
        """Parse a token and require ``purpose`` and a current validity window.

        Raises:
            InvalidTokenError: Any parse failure, or reason "wrong_purpose",
                "expired", or "not_yet_valid".
        """
        claims = self.parse(token, claims_type)
        if claims.purpose is not purpose:
            raise InvalidTokenError("wrong_purpose")
        now = self._clock()
        if claims.is_expired(now):
            raise InvalidTokenError("expired")
        if not claims.is_valid(now):
            raise InvalidTokenError("not_yet_valid")
        return claims


def hash_token(token: str) -> str:
    """Stable SHA-256 hex digest of a raw token string."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
