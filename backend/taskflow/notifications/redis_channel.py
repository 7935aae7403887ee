"""Notification channel backed by a Redis Stream and consumer group.

Layout:
- One stream (``email_queue`` by default) holds pending jobs. Each entry
  has the fields ``body`` (encoded NotificationMessage) and ``attempt``.
- One consumer group reads it. Entries stay in the group's pending list
  until acknowledged, which gives manual-ack, at-least-once semantics.
- Entries left pending by a crashed consumer for longer than
  ``claim_idle_ms`` are reclaimed with XAUTOCLAIM before new ones are read.
- Requeue appends a copy with ``attempt + 1`` and acknowledges the
  original in one MULTI/EXEC, so the job is never lost between the two.
- Dead-lettered entries are appended to a separate stream with the
  rejection reason.
"""

import logging
from typing import Any

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import RedisError, ResponseError

from taskflow.core.errors import ChannelError
from taskflow.notifications.channel import Delivery, NotificationChannel
from taskflow.notifications.messages import NotificationMessage

logger = logging.getLogger(__name__)

_BODY_FIELD = b"body"
_ATTEMPT_FIELD = b"attempt"

# Pending entries idle this long are assumed orphaned by a dead consumer
_DEFAULT_CLAIM_IDLE_MS = 60_000


def _as_str(value: bytes | str) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisStreamChannel(NotificationChannel):
    """Durable email job queue on Redis Streams.

    Args:
        client: Async Redis client. Responses must not be decoded
            (``decode_responses=False``).
        stream: Stream holding pending jobs.
        group: Consumer group name.
        consumer: This worker's name inside the group.
        dead_letter_stream: Stream receiving rejected jobs.
        claim_idle_ms: Minimum idle time before another consumer's pending
            entry is reclaimed. 0 disables reclaiming.
    """

    def __init__(
        self,
        client: Redis,
        *,
        stream: str,
        group: str,
        consumer: str,
        dead_letter_stream: str,
        claim_idle_ms: int = _DEFAULT_CLAIM_IDLE_MS,
    ) -> None:
        self._redis = client
        self._stream = stream
        self._group = group
        self._consumer = consumer
        self._dead_letter_stream = dead_letter_stream
        self._claim_idle_ms = claim_idle_ms
        self._group_ready = False
        self._closed = False

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "RedisStreamChannel":
        """Create a channel with its own connection pool."""
        return cls(redis.from_url(url, decode_responses=False), **kwargs)

    # =========================================================================
    # Producer
    # =========================================================================

    async def publish(self, message: NotificationMessage) -> None:
        self._check_open()
        try:
            entry_id = await self._redis.xadd(
                self._stream,
                {_BODY_FIELD: message.encode(), _ATTEMPT_FIELD: b"1"},
            )
        except RedisError as exc:
            raise ChannelError(f"Failed to publish to {self._stream}") from exc
        logger.debug("Published %s as %s", message.type.value, _as_str(entry_id))

    # =========================================================================
    # Consumer
    # =========================================================================

    async def receive(self, timeout_ms: int) -> Delivery | None:
        self._check_open()
        await self._ensure_group()
        try:
            reclaimed = await self._reclaim_one()
            if reclaimed is not None:
                return reclaimed
            response = await self._redis.xreadgroup(
                self._group,
                self._consumer,
                {self._stream: ">"},
                count=1,
                block=timeout_ms or None,
            )
        except RedisError as exc:
            raise ChannelError(f"Failed to read from {self._stream}") from exc

        if not response:
            return None
        _stream_name, entries = response[0]
        if not entries:
            return None
        entry_id, fields = entries[0]
        return self._to_delivery(entry_id, fields)

    async def ack(self, delivery: Delivery) -> None:
        self._check_open()
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.xack(self._stream, self._group, delivery.delivery_id)
            pipe.xdel(self._stream, delivery.delivery_id)
            await pipe.execute()
        except RedisError as exc:
            raise ChannelError(f"Failed to ack {delivery.delivery_id}") from exc

    async def nack(self, delivery: Delivery, *, requeue: bool) -> None:
        self._check_open()
        try:
            pipe = self._redis.pipeline(transaction=True)
            if requeue:
                pipe.xadd(
                    self._stream,
                    {
                        _BODY_FIELD: delivery.body,
                        _ATTEMPT_FIELD: str(delivery.attempt + 1).encode(),
                    },
                )
            pipe.xack(self._stream, self._group, delivery.delivery_id)
            pipe.xdel(self._stream, delivery.delivery_id)
            await pipe.execute()
        except RedisError as exc:
            raise ChannelError(f"Failed to nack {delivery.delivery_id}") from exc
        if not requeue:
            logger.warning("Dropped delivery %s without requeue", delivery.delivery_id)

    async def dead_letter(self, delivery: Delivery, reason: str) -> None:
        self._check_open()
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.xadd(
                self._dead_letter_stream,
                {
                    _BODY_FIELD: delivery.body,
                    _ATTEMPT_FIELD: str(delivery.attempt).encode(),
                    b"reason": reason.encode(),
                    b"source_id": delivery.delivery_id.encode(),
                },
            )
            pipe.xack(self._stream, self._group, delivery.delivery_id)
            pipe.xdel(self._stream, delivery.delivery_id)
            await pipe.execute()
        except RedisError as exc:
            raise ChannelError(
                f"Failed to dead-letter {delivery.delivery_id}"
            ) from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._redis.aclose()

    # =========================================================================
    # Internals
    # =========================================================================

    def _check_open(self) -> None:
        if self._closed:
            raise ChannelError("Channel is closed")

    async def _ensure_group(self) -> None:
        """Create the consumer group (and stream) once; tolerate BUSYGROUP."""
        if self._group_ready:
            return
        try:
            await self._redis.xgroup_create(
                self._stream, self._group, id="0", mkstream=True
            )
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise ChannelError(f"Failed to create group {self._group}") from exc
        except RedisError as exc:
            raise ChannelError(f"Failed to create group {self._group}") from exc
        self._group_ready = True

    async def _reclaim_one(self) -> Delivery | None:
        if not self._claim_idle_ms:
            return None
        result = await self._redis.xautoclaim(
            self._stream,
            self._group,
            self._consumer,
            min_idle_time=self._claim_idle_ms,
            start_id="0-0",
            count=1,
        )
        entries = result[1] if len(result) > 1 else []
        for entry_id, fields in entries:
            if fields:
                logger.info("Reclaimed orphaned delivery %s", _as_str(entry_id))
                return self._to_delivery(entry_id, fields)
        return None

    @staticmethod
    def _to_delivery(entry_id: bytes | str, fields: dict) -> Delivery:
        body = fields.get(_BODY_FIELD, b"")
        attempt_raw = fields.get(_ATTEMPT_FIELD, b"1")
        try:
            attempt = int(_as_str(attempt_raw))
        except ValueError:
            attempt = 1
        return Delivery(delivery_id=_as_str(entry_id), body=body, attempt=attempt)
