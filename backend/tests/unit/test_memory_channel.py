"""Tests for the in-memory notification channel."""

import pytest

from taskflow.core.errors import ChannelError
from taskflow.notifications.memory_channel import InMemoryChannel
from taskflow.notifications.messages import magic_link_message

MESSAGE = magic_link_message("a@example.com", "tok", "/verify?token=")


async def test_receive_times_out_with_none(channel: InMemoryChannel) -> None:
    assert await channel.receive(10) is None


async def test_published_message_is_received_pending(
    channel: InMemoryChannel,
) -> None:
    await channel.publish(MESSAGE)

    delivery = await channel.receive(10)

    assert delivery is not None
    assert delivery.body == MESSAGE.encode()
    assert delivery.attempt == 1
    assert channel.pending_count == 1
    assert channel.queued_count == 0


async def test_nack_with_requeue_redelivers_with_next_attempt(
    channel: InMemoryChannel,
) -> None:
    await channel.publish(MESSAGE)
    first = await channel.receive(10)
    assert first is not None

    await channel.nack(first, requeue=True)
    second = await channel.receive(10)

    assert second is not None
    assert second.attempt == 2
    assert second.delivery_id != first.delivery_id


async def test_nack_without_requeue_drops(channel: InMemoryChannel) -> None:
    await channel.publish(MESSAGE)
    delivery = await channel.receive(10)
    assert delivery is not None

    await channel.nack(delivery, requeue=False)

    assert channel.queued_count == 0
    assert channel.nacked == [(delivery, False)]


async def test_delivery_settles_only_once(channel: InMemoryChannel) -> None:
    await channel.publish(MESSAGE)
    delivery = await channel.receive(10)
    assert delivery is not None
    await channel.ack(delivery)

    with pytest.raises(ChannelError):
        await channel.dead_letter(delivery, "late")


async def test_closed_channel_rejects_operations(channel: InMemoryChannel) -> None:
    await channel.close()

    with pytest.raises(ChannelError):
        await channel.publish(MESSAGE)
    with pytest.raises(ChannelError):
        await channel.receive(10)


async def test_fail_publish_records_nothing(channel: InMemoryChannel) -> None:
    channel.fail_publish = True

    with pytest.raises(ChannelError):
        await channel.publish(MESSAGE)

    assert channel.published == []
    assert channel.queued_count == 0
