"""Notification channel interface.

A durable queue with manual acknowledgment and at-least-once delivery.
Every received Delivery must be settled exactly once with ack, nack, or
dead_letter; an unsettled delivery is redelivered after a consumer crash.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from taskflow.notifications.messages import NotificationMessage


@dataclass(frozen=True)
class Delivery:
    """A message handed to a consumer and awaiting settlement.

    Attributes:
        delivery_id: Broker-specific handle used to settle the delivery.
        body: Raw encoded message. Decoding is the consumer's job so that
            poison messages can be dead-lettered.
        attempt: 1 on first delivery, incremented on every requeue.
    """

    delivery_id: str
    body: bytes
    attempt: int = 1


class NotificationChannel(ABC):
    """Producer and consumer side of the email job queue.

    All methods raise ChannelError when the broker fails.
    """

    @abstractmethod
    async def publish(self, message: NotificationMessage) -> None:
        """Durably enqueue a message."""

    @abstractmethod
    async def receive(self, timeout_ms: int) -> Delivery | None:
        """Block up to ``timeout_ms`` for the next delivery.

        Returns:
            The next Delivery, or None when nothing arrived in time.
        """

    @abstractmethod
    async def ack(self, delivery: Delivery) -> None:
        """Remove a successfully processed delivery from the queue."""

    @abstractmethod
    async def nack(self, delivery: Delivery, *, requeue: bool) -> None:
        """Reject a delivery; with ``requeue`` it is delivered again later."""

    @abstractmethod
    async def dead_letter(self, delivery: Delivery, reason: str) -> None:
        """Move a delivery to the dead-letter queue with a reason."""

    @abstractmethod
    async def close(self) -> None:
        """Release the broker connection."""
