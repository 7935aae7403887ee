"""In-memory notification channel for tests and local development.

Same settlement semantics as the Redis channel, without durability.
"""

import asyncio
import itertools

from taskflow.core.errors import ChannelError
from taskflow.notifications.channel import Delivery, NotificationChannel
from taskflow.notifications.messages import NotificationMessage


class InMemoryChannel(NotificationChannel):
    """Queue held in process memory.

    Attributes:
        published: Every message accepted by publish, in order.
        acked: Deliveries acknowledged.
        nacked: (delivery, requeue) pairs.
        dead_letters: (delivery, reason) pairs.
        fail_publish: When set, publish raises ChannelError.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Delivery] = asyncio.Queue()
        self._ids = itertools.count(1)
        self._pending: dict[str, Delivery] = {}
        self._closed = False
        self.published: list[NotificationMessage] = []
        self.acked: list[Delivery] = []
        self.nacked: list[tuple[Delivery, bool]] = []
        self.dead_letters: list[tuple[Delivery, str]] = []
        self.fail_publish = False

    async def publish(self, message: NotificationMessage) -> None:
        self._check_open()
        if self.fail_publish:
            raise ChannelError("Publish rejected")
        self.published.append(message)
        self.put_raw(message.encode())

    def put_raw(self, body: bytes, attempt: int = 1) -> Delivery:
        """Enqueue an arbitrary body, bypassing envelope encoding."""
        delivery = Delivery(
            delivery_id=str(next(self._ids)), body=body, attempt=attempt
        )
        self._queue.put_nowait(delivery)
        return delivery

    async def receive(self, timeout_ms: int) -> Delivery | None:
        self._check_open()
        try:
            delivery = await asyncio.wait_for(self._queue.get(), timeout_ms / 1000)
        except TimeoutError:
            return None
        self._pending[delivery.delivery_id] = delivery
        return delivery

    async def ack(self, delivery: Delivery) -> None:
        self._settle(delivery)
        self.acked.append(delivery)

    async def nack(self, delivery: Delivery, *, requeue: bool) -> None:
        self._settle(delivery)
        self.nacked.append((delivery, requeue))
        if requeue:
            self.put_raw(delivery.body, attempt=delivery.attempt + 1)

    async def dead_letter(self, delivery: Delivery, reason: str) -> None:
        self._settle(delivery)
        self.dead_letters.append((delivery, reason))

    async def close(self) -> None:
        self._closed = True

    @property
    def pending_count(self) -> int:
        """Deliveries received but not yet settled."""
        return len(self._pending)

    @property
    def queued_count(self) -> int:
        """Deliveries waiting to be received."""
        return self._queue.qsize()

    def _check_open(self) -> None:
        if self._closed:
            raise ChannelError("Channel is closed")

    def _settle(self, delivery: Delivery) -> None:
        self._check_open()
        if self._pending.pop(delivery.delivery_id, None) is None:
            raise ChannelError(f"Delivery {delivery.delivery_id} is not pending")
