"""Input validation helpers shared by the flows.

Each helper raises ValidationError with a single {field, reason} detail so
the API can return a machine-readable 400.
"""

import uuid

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from taskflow.core.errors import ValidationError

_EMAIL_ADAPTER: TypeAdapter[str] = TypeAdapter(EmailStr)

_MAX_NAME_LENGTH = 255


def normalize_email(value: str, field: str = "email") -> str:
    """Validate email syntax and return the lower-cased address.

    Raises:
        ValidationError: If the address is not syntactically valid.
    """
    try:
        email = _EMAIL_ADAPTER.validate_python(value.strip())
    except PydanticValidationError as exc:
        raise ValidationError.for_field(field, "not a valid email address") from exc
    return email.lower()


def parse_uuid(value: str | uuid.UUID, field: str) -> uuid.UUID:
    """Parse an identifier supplied by a client.

    Raises:
        ValidationError: If the value is not a well-formed UUID.
    """
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(value)
    except (ValueError, AttributeError, TypeError) as exc:
        raise ValidationError.for_field(field, "not a valid UUID") from exc


def clean_name(value: str, field: str = "name") -> str:
    """Trim a display name and check it is 1-255 characters.

    Raises:
        ValidationError: If the trimmed name is empty or too long.
    """
    name = value.strip()
    if not name:
        raise ValidationError.for_field(field, "must not be empty")
    if len(name) > _MAX_NAME_LENGTH:
        raise ValidationError.for_field(
            field, f"must be at most {_MAX_NAME_LENGTH} characters"
        )
    return name
