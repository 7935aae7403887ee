"""API and collaborator error classes.

APIError subclasses map one-to-one onto HTTP status codes and are rendered
by the exception handlers in main.py. Collaborator errors (StoreError,
ChannelError, EmailDeliveryError) never reach clients directly; flows
translate them into the APIError taxonomy and log the cause server side.
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for malformed identifiers, bad email syntax, out-of-range values.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )

    @classmethod
    def for_field(cls, field: str, reason: str) -> "ValidationError":
        """Build a validation error carrying a single field/reason detail."""
        return cls(
            f"Invalid {field}",
            details=[{"field": field, "reason": reason}],
        )


class UnauthorizedError(APIError):
    """Authentication required (401).

    Use when credentials are missing, invalid, expired, issued for another
    purpose, or when the workspace membership gate rejects the caller.
    """

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class ForbiddenError(APIError):
    """Not allowed to perform the action (403).

    Use when auth is valid but the caller lacks the required role.
    """

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=403,
        )


class NotFoundError(APIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409).

    Accepts custom code for specific conflict types.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for signing failures, queue publish failures and store outages.
    Never put the underlying cause in the message.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )


# =============================================================================
# Collaborator errors
# =============================================================================


class StoreError(Exception):
    """Persistence collaborator failed (connection loss, unexpected SQL error)."""


class ChannelError(Exception):
    """Notification channel failed to publish, receive, or settle a message."""


class EmailDeliveryError(Exception):
    """Email transport rejected or could not deliver a message."""
