"""Background consumer draining the email job queue.

asyncio background task started from the FastAPI lifespan or from the
standalone worker entry point. Deliveries are processed strictly one at a
time, in delivery order.

Every delivery ends in exactly one HandlingOutcome, and the outcome is
always applied to the channel:

- sent                          -> ACK
- undecodable or unknown type   -> DEAD_LETTER (retrying cannot help)
- send failed, attempts left    -> NACK with requeue
- send failed, attempts used up -> DEAD_LETTER
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum

from taskflow.core.errors import ChannelError, EmailDeliveryError
from taskflow.notifications.channel import Delivery, NotificationChannel
from taskflow.notifications.email import EmailService
from taskflow.notifications.messages import (
    CustomEmailPayload,
    InvitationPayload,
    MagicLinkPayload,
    MessageDecodeError,
    NotificationMessage,
    PasswordResetPayload,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_DELIVERIES = 5
DEFAULT_RECEIVE_TIMEOUT_MS = 5000

# Pause after a broker failure before polling again
_ERROR_BACKOFF_SECONDS = 1.0


class OutcomeAction(str, Enum):
    """How a delivery is settled on the channel."""

    ACK = "ack"
    NACK = "nack"
    DEAD_LETTER = "dead_letter"


@dataclass(frozen=True)
class HandlingOutcome:
    """Result of handling one delivery.

    Attributes:
        action: Settlement to apply.
        requeue: For NACK, whether the delivery is retried.
        reason: Why the delivery was not acknowledged. Empty on ACK.
    """

    action: OutcomeAction
    requeue: bool = False
    reason: str = ""

    @classmethod
    def ack(cls) -> "HandlingOutcome":
        return cls(OutcomeAction.ACK)

    @classmethod
    def nack(cls, reason: str, *, requeue: bool) -> "HandlingOutcome":
        return cls(OutcomeAction.NACK, requeue=requeue, reason=reason)

    @classmethod
    def dead_letter(cls, reason: str) -> "HandlingOutcome":
        return cls(OutcomeAction.DEAD_LETTER, reason=reason)


class NotificationConsumer:
    """Drains the notification channel into the email service.

    Lifecycle:
    - start() creates an asyncio task that runs the consume loop.
    - stop() cancels the task and waits for it to finish.
    - run_once() receives and settles a single delivery (for testing).

    Args:
        channel: Queue to drain.
        email_service: Sender for each message type.
        max_deliveries: Attempts before a failing job is dead-lettered.
        receive_timeout_ms: How long one receive call blocks.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        email_service: EmailService,
        *,
        max_deliveries: int = DEFAULT_MAX_DELIVERIES,
        receive_timeout_ms: int = DEFAULT_RECEIVE_TIMEOUT_MS,
    ) -> None:
        if max_deliveries < 1:
            raise ValueError("max_deliveries must be at least 1")
        self._channel = channel
        self._email = email_service
        self._max_deliveries = max_deliveries
        self._receive_timeout_ms = receive_timeout_ms
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._processed_count = 0

    @property
    def is_running(self) -> bool:
        """Whether the background task is currently active."""
        return self._running and self._task is not None and not self._task.done()

    @property
    def processed_count(self) -> int:
        """Deliveries settled since construction."""
        return self._processed_count

    async def start(self) -> None:
        """Start the background consume loop.

        Creates an asyncio task. No-op if already running.
        Must be called from an async context (running event loop).
        """
        if self.is_running:
            logger.warning("Notification consumer already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Notification consumer started (max_deliveries=%d)", self._max_deliveries
        )

    async def stop(self) -> None:
        """Stop the background consume loop.

        Cancels the task and waits for it to finish. A delivery that was
        received but not settled stays pending and is redelivered.
        """
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        logger.info("Notification consumer stopped")

    async def run_once(self) -> HandlingOutcome | None:
        """Receive, handle, and settle at most one delivery.

        Returns:
            The applied outcome, or None if nothing arrived in time.

        Raises:
            ChannelError: If receiving or settling failed.
        """
        delivery = await self._channel.receive(self._receive_timeout_ms)
        if delivery is None:
            return None
        outcome = await self.handle(delivery)
        await self._settle(delivery, outcome)
        self._processed_count += 1
        return outcome

    async def handle(self, delivery: Delivery) -> HandlingOutcome:
        """Decode and send one delivery, returning how to settle it.

        Never raises; decode and send failures of any kind become outcomes.
        """
        try:
            message = NotificationMessage.decode(delivery.body)
            payload = message.decode_payload()
        except MessageDecodeError as exc:
            logger.error("Poison message %s: %s", delivery.delivery_id, exc)
            return HandlingOutcome.dead_letter(f"decode error: {exc}")

        try:
            await self._dispatch(payload)
        except EmailDeliveryError as exc:
            return self._send_failed(delivery, message, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "Unexpected error sending %s %s",
                message.type.value,
                delivery.delivery_id,
            )
            return self._send_failed(delivery, message, f"{type(exc).__name__}: {exc}")

        logger.info("Delivered %s %s", message.type.value, delivery.delivery_id)
        return HandlingOutcome.ack()

    def _send_failed(
        self, delivery: Delivery, message: NotificationMessage, error: str
    ) -> HandlingOutcome:
        if delivery.attempt >= self._max_deliveries:
            logger.error(
                "Giving up on %s %s after %d attempts: %s",
                message.type.value,
                delivery.delivery_id,
                delivery.attempt,
                error,
            )
            return HandlingOutcome.dead_letter(
                f"send failed after {delivery.attempt} attempts: {error}"
            )
        logger.warning(
            "Send failed for %s %s (attempt %d/%d): %s",
            message.type.value,
            delivery.delivery_id,
            delivery.attempt,
            self._max_deliveries,
            error,
        )
        return HandlingOutcome.nack(f"send failed: {error}", requeue=True)

    async def _dispatch(self, payload: object) -> None:
        if isinstance(payload, MagicLinkPayload):
            await self._email.send_magic_link(
                payload.to_email, payload.token, payload.verify_url
            )
        elif isinstance(payload, InvitationPayload):
            await self._email.send_invitation(
                payload.to_email,
                payload.workspace_name,
                payload.role,
                payload.token,
                payload.invitation_url,
            )
        elif isinstance(payload, PasswordResetPayload):
            await self._email.send_password_reset(
                payload.to_email, payload.token, payload.reset_url
            )
        elif isinstance(payload, CustomEmailPayload):
            await self._email.send_custom(payload.to_email, payload.template)
        else:
            raise TypeError(f"No sender for payload {type(payload).__name__}")

    async def _settle(self, delivery: Delivery, outcome: HandlingOutcome) -> None:
        if outcome.action is OutcomeAction.ACK:
            await self._channel.ack(delivery)
        elif outcome.action is OutcomeAction.NACK:
            await self._channel.nack(delivery, requeue=outcome.requeue)
        else:
            await self._channel.dead_letter(delivery, outcome.reason)

    async def _run_loop(self) -> None:
        """Background loop: receive -> handle -> settle -> repeat."""
        try:
            while self._running:
                try:
                    await self.run_once()
                except ChannelError:
                    logger.exception("Notification channel error")
                    await asyncio.sleep(_ERROR_BACKOFF_SECONDS)
                except Exception:  # noqa: BLE001
                    logger.exception("Unexpected error in notification consumer")
                    await asyncio.sleep(_ERROR_BACKOFF_SECONDS)
        except asyncio.CancelledError:
            logger.debug("Notification consumer loop cancelled")
            raise
