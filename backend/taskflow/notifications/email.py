"""Outbound email: templates, transports, and the sending service.

Emails are sent as plain text through the Resend HTTP API. Each send
builds a structured EmailTemplate first so every message type renders the
same way. Unlike a fire-and-forget sender, transports raise
EmailDeliveryError so the notification consumer can decide between
retry and dead-lettering.
"""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from urllib.parse import quote

import httpx

from taskflow.core.config import Settings
from taskflow.core.errors import EmailDeliveryError
from taskflow.notifications.messages import EmailTemplate

logger = logging.getLogger(__name__)

_RESEND_API_URL = "https://api.resend.com/emails"
_RESEND_TIMEOUT = 10.0

_PASSWORD_RESET_TTL = timedelta(hours=1)


def describe_duration(duration: timedelta) -> str:
    """Human phrase for a link lifetime, e.g. "15 minutes" or "24 hours"."""
    seconds = int(duration.total_seconds())
    for unit_seconds, unit in ((86400, "day"), (3600, "hour"), (60, "minute")):
        if seconds >= unit_seconds and seconds % unit_seconds == 0:
            count = seconds // unit_seconds
            # below 48h, report hours
            if unit == "day" and count < 2:
                continue
            return f"{count} {unit}{'s' if count != 1 else ''}"
    return f"{seconds} seconds"


def render_text(template: EmailTemplate) -> str:
    """Render a template as a plain-text email body."""
    parts = [
        template.heading,
        template.greeting,
        template.main_message,
        f"{template.button_text}: {template.button_url}"
        if template.button_url
        else "",
        template.expiry_note,
        template.footer_note,
    ]
    return "\n\n".join(part for part in parts if part)


# =============================================================================
# Transports
# =============================================================================


class EmailTransport(ABC):
    """Delivers a rendered email to one recipient."""

    @abstractmethod
    async def send(self, to_email: str, template: EmailTemplate) -> None:
        """Send the email.

        Raises:
            EmailDeliveryError: If the provider rejected or never received it.
        """


class ResendTransport(EmailTransport):
    """Sends email through the Resend HTTP API.

    Args:
        api_key: Resend API key.
        sender: From address.
        client: Optional shared httpx client; one is created per send
            otherwise.
    """

    def __init__(
        self,
        *,
        api_key: str,
        sender: str,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._sender = sender
        self._client = client

    async def send(self, to_email: str, template: EmailTemplate) -> None:
        payload = {
            "from": self._sender,
            "to": to_email,
            "subject": template.subject,
            "text": render_text(template),
        }
        try:
            if self._client is not None:
                resp = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient() as client:
                    resp = await self._post(client, payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise EmailDeliveryError(
                f"Resend rejected email with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise EmailDeliveryError(
                f"Resend request failed: {type(exc).__name__}"
            ) from exc

    async def _post(
        self, client: httpx.AsyncClient, payload: dict[str, str]
    ) -> httpx.Response:
        return await client.post(
            _RESEND_API_URL,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json=payload,
            timeout=_RESEND_TIMEOUT,
        )


class MockEmailTransport(EmailTransport):
    """Records sends instead of delivering them.

    Attributes:
        sent: (to_email, template) pairs in send order.
        failures_remaining: Number of upcoming sends that raise
            EmailDeliveryError. Negative means fail forever.
    """

    def __init__(self) -> None:
        self.sent: list[tuple[str, EmailTemplate]] = []
        self.failures_remaining = 0

    async def send(self, to_email: str, template: EmailTemplate) -> None:
        if self.failures_remaining != 0:
            if self.failures_remaining > 0:
                self.failures_remaining -= 1
            raise EmailDeliveryError("Simulated delivery failure")
        self.sent.append((to_email, template))


# =============================================================================
# Service
# =============================================================================


class EmailService:
    """Builds the email for each message type and hands it to a transport.

    Links are ``base_url + path + quoted token``, where ``path`` comes from
    the queued payload.

    Args:
        transport: Delivery mechanism.
        base_url: Origin that serves the link targets.
        magic_link_ttl: Lifetime quoted in sign-in emails.
        invitation_ttl: Lifetime quoted in invitation emails.
    """

    def __init__(
        self,
        transport: EmailTransport,
        *,
        base_url: str,
        magic_link_ttl: timedelta = timedelta(minutes=15),
        invitation_ttl: timedelta = timedelta(hours=24),
    ) -> None:
        self._transport = transport
        self._base_url = base_url.rstrip("/")
        self._magic_link_ttl = describe_duration(magic_link_ttl)
        self._invitation_ttl = describe_duration(invitation_ttl)

    def build_link(self, path: str, token: str) -> str:
        """Full URL for a link target path and a raw token."""
        return f"{self._base_url}{path}{quote(token, safe='')}"

    async def send_magic_link(
        self, to_email: str, token: str, verify_url: str
    ) -> None:
        """Send the sign-in link."""
        template = EmailTemplate(
            subject="Your Magic Link to Sign In",
            heading="Sign in to TaskFlow",
            greeting="Hello,",
            main_message=(
                "Click the link below to sign in to your account. This link will "
                f"expire in {self._magic_link_ttl} for security reasons."
            ),
            button_text="Sign In Now",
            button_url=self.build_link(verify_url, token),
            footer_note="If you didn't request this email, you can safely ignore it.",
            expiry_note=f"This link will expire in {self._magic_link_ttl}.",
        )
        await self._send(to_email, template)

    async def send_invitation(
        self,
        to_email: str,
        workspace_name: str,
        role: str,
        token: str,
        invitation_url: str,
    ) -> None:
        """Send a workspace invitation."""
        template = EmailTemplate(
            subject=f"You've been invited to join {workspace_name}",
            heading=f"Join {workspace_name} on TaskFlow",
            greeting="Hello,",
            main_message=(
                f"You have been invited to join the {workspace_name} workspace as "
                f"a {role}. Click the link below to accept the invitation and get "
                "started."
            ),
            button_text="Accept Invitation",
            button_url=self.build_link(invitation_url, token),
            footer_note=(
                "If you don't want to accept this invitation, you can safely "
                "ignore this email."
            ),
            expiry_note=f"This invitation will expire in {self._invitation_ttl}.",
        )
        await self._send(to_email, template)

    async def send_password_reset(
        self, to_email: str, token: str, reset_url: str
    ) -> None:
        """Send a password reset link."""
        template = EmailTemplate(
            subject="Reset Your Password",
            heading="Password Reset Request",
            greeting="Hello,",
            main_message=(
                "We received a request to reset your password. Click the link "
                "below to create a new password."
            ),
            button_text="Reset Password",
            button_url=self.build_link(reset_url, token),
            footer_note=(
                "If you didn't request a password reset, you can safely ignore "
                "this email. Your password will remain unchanged."
            ),
            expiry_note=(
                f"This link will expire in {describe_duration(_PASSWORD_RESET_TTL)}."
            ),
        )
        await self._send(to_email, template)

    async def send_custom(self, to_email: str, template: EmailTemplate) -> None:
        """Send a caller-built template as is."""
        await self._send(to_email, template)

    async def _send(self, to_email: str, template: EmailTemplate) -> None:
        await self._transport.send(to_email, template)
        logger.info("Sent email %r", template.subject)


def build_transport(settings: Settings) -> EmailTransport:
    """Resend transport when an API key is configured, mock otherwise."""
    api_key = settings.resend_api_key.get_secret_value()
    if not api_key:
        logger.warning("RESEND_API_KEY not set; emails will be recorded, not sent")
        return MockEmailTransport()
    return ResendTransport(api_key=api_key, sender=settings.email_from)
