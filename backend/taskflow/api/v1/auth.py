"""Magic link + session endpoints.

Endpoints:
- POST /auth/magic-link - queue a sign-in link email
- GET /auth/verify - exchange a login token for a session
- GET /auth/refresh-token - rotate the refresh cookie, issue a new access token
- POST /auth/logout - burn the refresh token and clear the cookie
- GET /auth - current identity
- GET /auth/profile, PUT /auth/profile - display name
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Query, Request, Response
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from taskflow.api.deps import AuthService, CurrentIdentity, RotationService
from taskflow.core.config import settings
from taskflow.core.errors import NotFoundError, UnauthorizedError
from taskflow.core.rate_limiting import limiter
from taskflow.core.responses import DataResponse
from taskflow.core.tokens import TokenPair

logger = logging.getLogger(__name__)

router = APIRouter()


# ===================================================================
# Request / response models
# ===================================================================


class MagicLinkRequest(BaseModel):
    """Request body for POST /auth/magic-link."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class AccessTokenResponse(BaseModel):
    """Short-lived bearer credential. The refresh token travels as a cookie."""

    access_token: str


class IdentityResponse(BaseModel):
    id: str
    email: str


class ProfileResponse(BaseModel):
    user_id: str
    name: str


class UpdateProfileRequest(BaseModel):
    """Request body for PUT /auth/profile."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(max_length=255)


# ===================================================================
# Cookie helpers
# ===================================================================


def set_refresh_cookie(response: Response, token: str) -> None:
    """Set the httpOnly refresh cookie, scoped to the auth routes."""
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=token,
        httponly=True,
        secure=settings.refresh_cookie_secure,
        samesite=settings.refresh_cookie_samesite,
        path=settings.refresh_cookie_path,
        max_age=settings.refresh_token_ttl_seconds,
    )


def clear_refresh_cookie(response: Response) -> None:
    """Delete the refresh cookie. Attributes must match set_refresh_cookie."""
    response.delete_cookie(
        key=settings.refresh_cookie_name,
        path=settings.refresh_cookie_path,
        httponly=True,
        secure=settings.refresh_cookie_secure,
        samesite=settings.refresh_cookie_samesite,
    )


def _session_response(
    response: Response, pair: TokenPair
) -> DataResponse[AccessTokenResponse]:
    set_refresh_cookie(response, pair.refresh_token)
    # Keep tokens out of Referer headers and caches
    response.headers["Referrer-Policy"] = "no-referrer"
    return DataResponse(data=AccessTokenResponse(access_token=pair.access_token))


# ===================================================================
# Sign-in
# ===================================================================


@router.post("/magic-link", status_code=204)
@limiter.limit(lambda: settings.rate_limit_magic_link)
async def request_magic_link(
    request: Request,  # noqa: ARG001
    body: MagicLinkRequest,
    service: AuthService,
) -> Response:
    """Queue a magic-link email, creating the identity on first use.

    Returns 204 once the email job is queued; 500 if it could not be.
    """
    await service.request_magic_link(body.email)
    return Response(status_code=204)


@router.get("/verify")
@limiter.limit(lambda: settings.rate_limit_verify)
async def verify_magic_link(
    request: Request,  # noqa: ARG001
    response: Response,
    token: Annotated[str, Query(min_length=1, max_length=4096)],
    service: AuthService,
) -> DataResponse[AccessTokenResponse]:
    """Exchange a login token for an access token and a refresh cookie."""
    pair = await service.verify_login_token(token)
    return _session_response(response, pair)


@router.get("/refresh-token")
async def refresh_session(
    request: Request,
    response: Response,
    service: RotationService,
) -> DataResponse[AccessTokenResponse]:
    """Rotate the refresh cookie. A refresh token works exactly once."""
    refresh_token = request.cookies.get(settings.refresh_cookie_name)
    if not refresh_token:
        raise UnauthorizedError("Invalid or expired session")
    pair = await service.rotate(refresh_token)
    return _session_response(response, pair)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    service: RotationService,
) -> DataResponse[dict]:
    """Burn the refresh token, if any, and clear its cookie.

    No access token required; clears the cookie regardless.
    """
    refresh_token = request.cookies.get(settings.refresh_cookie_name)
    if refresh_token:
        await service.revoke(refresh_token)
    clear_refresh_cookie(response)
    return DataResponse(data={"message": "Signed out"})


# ===================================================================
# Identity and profile
# ===================================================================


@router.get("")
async def get_current_identity(
    identity: CurrentIdentity,
    service: AuthService,
) -> DataResponse[IdentityResponse]:
    """Return the authenticated identity.

    401 if the identity was deleted after the token was issued.
    """
    try:
        current = await service.get_identity(identity.user_id)
    except NotFoundError as exc:
        raise UnauthorizedError() from exc
    return DataResponse(
        data=IdentityResponse(id=str(current.id), email=current.email)
    )


@router.get("/profile")
async def get_profile(
    identity: CurrentIdentity,
    service: AuthService,
) -> DataResponse[ProfileResponse]:
    profile = await service.get_profile(identity.user_id)
    return DataResponse(
        data=ProfileResponse(user_id=str(profile.user_id), name=profile.name)
    )


@router.put("/profile")
async def update_profile(
    body: UpdateProfileRequest,
    identity: CurrentIdentity,
    service: AuthService,
) -> DataResponse[ProfileResponse]:
    """Update the display name. Trimmed; must not be empty."""
    profile = await service.update_profile(identity.user_id, body.name)
    return DataResponse(
        data=ProfileResponse(user_id=str(profile.user_id), name=profile.name)
    )
