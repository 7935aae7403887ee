"""Typed email jobs carried over the notification channel.

Wire format of every queue entry:

    {"type": "email.magic_link", "payload": {...}}

The envelope is decoded first; the payload is decoded separately by the
model registered for the type tag, so an unknown tag and a malformed
payload are distinguishable failures.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError


class MessageDecodeError(Exception):
    """Queue entry could not be decoded into a known message and payload."""


class MessageType(str, Enum):
    """Type tags of email jobs."""

    MAGIC_LINK = "email.magic_link"
    INVITATION = "email.invitation"
    PASSWORD_RESET = "email.password_reset"
    CUSTOM = "email.custom"


# =============================================================================
# Payloads
# =============================================================================


class MagicLinkPayload(BaseModel):
    """Sign-in link for a magic-link request."""

    model_config = ConfigDict(extra="forbid")

    to_email: str
    token: str
    verify_url: str


class InvitationPayload(BaseModel):
    """Workspace invitation link."""

    model_config = ConfigDict(extra="forbid")

    to_email: str
    workspace_name: str
    role: str
    token: str
    invitation_url: str


class PasswordResetPayload(BaseModel):
    """Password reset link."""

    model_config = ConfigDict(extra="forbid")

    to_email: str
    token: str
    reset_url: str


class EmailTemplate(BaseModel):
    """Structured content of an outbound email.

    Attributes:
        subject: Subject line.
        heading: Title shown at the top of the body.
        greeting: Opening line.
        main_message: Body paragraph.
        button_text: Call-to-action label.
        button_url: Call-to-action target.
        footer_note: Closing note.
        expiry_note: When the enclosed link stops working.
    """

    model_config = ConfigDict(extra="forbid")

    subject: str
    heading: str = ""
    greeting: str = ""
    main_message: str = ""
    button_text: str = ""
    button_url: str = ""
    footer_note: str = ""
    expiry_note: str = ""


class CustomEmailPayload(BaseModel):
    """Free-form email built by the caller."""

    model_config = ConfigDict(extra="forbid")

    to_email: str
    template: EmailTemplate


PAYLOAD_TYPES: dict[MessageType, type[BaseModel]] = {
    MessageType.MAGIC_LINK: MagicLinkPayload,
    MessageType.INVITATION: InvitationPayload,
    MessageType.PASSWORD_RESET: PasswordResetPayload,
    MessageType.CUSTOM: CustomEmailPayload,
}


# =============================================================================
# Envelope
# =============================================================================


class NotificationMessage(BaseModel):
    """Envelope: a type tag plus a type-specific JSON payload."""

    type: MessageType
    payload: dict[str, Any]

    def encode(self) -> bytes:
        """Serialize to the queue wire format."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def decode(cls, body: bytes | str) -> "NotificationMessage":
        """Parse a queue entry.

        Raises:
            MessageDecodeError: If the body is not JSON, lacks the envelope
                fields, or carries an unknown type tag.
        """
        try:
            return cls.model_validate_json(body)
        except PydanticValidationError as exc:
            raise MessageDecodeError(
                f"Invalid envelope: {exc.error_count()} error(s)"
            ) from exc

    def decode_payload(self) -> BaseModel:
        """Validate the payload against the model registered for the type.

        Raises:
            MessageDecodeError: If the payload does not fit its type.
        """
        payload_type = PAYLOAD_TYPES[self.type]
        try:
            return payload_type.model_validate(self.payload)
        except PydanticValidationError as exc:
            raise MessageDecodeError(
                f"Invalid {self.type.value} payload: {exc.error_count()} error(s)"
            ) from exc


def _message(message_type: MessageType, payload: BaseModel) -> NotificationMessage:
    return NotificationMessage(
        type=message_type, payload=payload.model_dump(mode="json")
    )


def magic_link_message(
    to_email: str, token: str, verify_url: str
) -> NotificationMessage:
    """Build an email.magic_link job."""
    return _message(
        MessageType.MAGIC_LINK,
        MagicLinkPayload(to_email=to_email, token=token, verify_url=verify_url),
    )


def invitation_message(
    *,
    to_email: str,
    workspace_name: str,
    role: str,
    token: str,
    invitation_url: str,
) -> NotificationMessage:
    """Build an email.invitation job."""
    return _message(
        MessageType.INVITATION,
        InvitationPayload(
            to_email=to_email,
            workspace_name=workspace_name,
            role=role,
            token=token,
            invitation_url=invitation_url,
        ),
    )


def password_reset_message(
    to_email: str, token: str, reset_url: str
) -> NotificationMessage:
    """Build an email.password_reset job."""
    return _message(
        MessageType.PASSWORD_RESET,
        PasswordResetPayload(to_email=to_email, token=token, reset_url=reset_url),
    )


def custom_email_message(to_email: str, template: EmailTemplate) -> NotificationMessage:
    """Build an email.custom job."""
    return _message(
        MessageType.CUSTOM,
        CustomEmailPayload(to_email=to_email, template=template),
    )
