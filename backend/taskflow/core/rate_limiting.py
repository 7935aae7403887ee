"""Rate limiting configuration using slowapi.

Keys on the access token subject when the caller presents a valid bearer
token, so users behind a shared IP do not throttle each other.
Unauthenticated requests fall back to IP-based keying.

Usage in routers:
    from taskflow.core.rate_limiting import limiter

    @router.post("/magic-link")
    @limiter.limit(lambda: settings.rate_limit_magic_link)
    async def request_magic_link(request: Request, ...):
        ...
"""

import jwt
from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from taskflow.core.config import settings
from taskflow.core.tokens import TokenPurpose

_BEARER_PREFIX = "Bearer "


def _rate_limit_key_func(request: Request) -> str:
    """Get rate limit key from request.

    Key format:
    - Valid bearer access token: "user:{sub}"
    - No/invalid token: "unauth:{ip}"

    Args:
        request: The incoming request.

    Returns:
        Rate limit key string.
    """
    # Only the sub claim matters for keying. Full validation (purpose,
    # validity window) happens in the access gate.
    authorization = request.headers.get("authorization", "")
    if authorization.startswith(_BEARER_PREFIX):
        token = authorization[len(_BEARER_PREFIX) :].strip()
        try:
            payload = jwt.decode(
                token,
                settings.auth_secret.get_secret_value(),
                algorithms=["HS256"],
                audience=TokenPurpose.ACCESS.value,
                issuer=settings.auth_issuer,
            )
            sub = payload["sub"]
            # UUID subjects only
            if isinstance(sub, str) and len(sub) <= 36:
                return f"user:{sub}"
        except (jwt.InvalidTokenError, KeyError):
            pass

    return f"unauth:{get_remote_address(request)}"


limiter = Limiter(
    key_func=_rate_limit_key_func,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle rate limit exceeded errors.

    Returns 429 Too Many Requests with the standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # exc.detail looks like "5 per 1 hour"; fall back to 60 seconds
    try:
        retry_after = str(exc.detail.split()[-1])
        int(retry_after.rstrip("s"))
    except (ValueError, AttributeError, IndexError):
        retry_after = "60"

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={"Retry-After": retry_after},
    )
