"""Tests for the email job envelope and payload decoding."""

import json

import pytest

from taskflow.notifications.messages import (
    PAYLOAD_TYPES,
    CustomEmailPayload,
    EmailTemplate,
    InvitationPayload,
    MessageDecodeError,
    MessageType,
    NotificationMessage,
    custom_email_message,
    invitation_message,
    magic_link_message,
)


def test_every_type_has_a_payload_model() -> None:
    assert set(PAYLOAD_TYPES) == set(MessageType)


def test_wire_format_is_type_plus_payload() -> None:
    message = magic_link_message("a@example.com", "tok", "/verify?token=")

    wire = json.loads(message.encode())

    assert wire == {
        "type": "email.magic_link",
        "payload": {
            "to_email": "a@example.com",
            "token": "tok",
            "verify_url": "/verify?token=",
        },
    }


def test_decode_restores_typed_payload() -> None:
    message = invitation_message(
        to_email="b@example.com",
        workspace_name="Acme",
        role="admin",
        token="tok",
        invitation_url="/add?token=",
    )

    decoded = NotificationMessage.decode(message.encode())
    payload = decoded.decode_payload()

    assert decoded.type is MessageType.INVITATION
    assert isinstance(payload, InvitationPayload)
    assert payload.workspace_name == "Acme"
    assert payload.role == "admin"


def test_custom_template_survives_the_wire() -> None:
    template = EmailTemplate(
        subject="Hi", heading="Hello", button_text="Go", button_url="https://x"
    )
    body = custom_email_message("c@example.com", template).encode()

    payload = NotificationMessage.decode(body.decode()).decode_payload()

    assert isinstance(payload, CustomEmailPayload)
    assert payload.template == template


@pytest.mark.parametrize(
    "body",
    [
        b"",
        b"[]",
        b'{"type": "email.magic_link"}',
        b'{"type": "sms.text", "payload": {}}',
    ],
)
def test_bad_envelopes_raise_decode_error(body: bytes) -> None:
    with pytest.raises(MessageDecodeError):
        NotificationMessage.decode(body)


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"to_email": "a@example.com", "token": "t"},
        {"to_email": "a@example.com", "token": "t", "verify_url": "/", "x": 1},
    ],
)
def test_bad_payloads_raise_decode_error(payload: dict) -> None:
    message = NotificationMessage(type=MessageType.MAGIC_LINK, payload=payload)

    with pytest.raises(MessageDecodeError) as exc_info:
        message.decode_payload()

    assert "email.magic_link" in str(exc_info.value)
