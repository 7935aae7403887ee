"""Notification channel and email service factories.

Singletons so the API process and the consumer share one broker
connection pool.
"""

from datetime import timedelta

from taskflow.core.config import Settings, settings
from taskflow.notifications.channel import NotificationChannel
from taskflow.notifications.email import EmailService, build_transport
from taskflow.notifications.memory_channel import InMemoryChannel
from taskflow.notifications.redis_channel import RedisStreamChannel

_channel: NotificationChannel | None = None


def get_notification_channel(config: Settings | None = None) -> NotificationChannel:
    """Get or create the notification channel singleton.

    Args:
        config: Settings to build from on first call. Defaults to the
            process settings.

    Returns:
        NotificationChannel for the configured backend.

    Raises:
        ValueError: If the configured backend is unknown.
    """
    global _channel

    if _channel is None:
        config = config or settings
        if config.notification_backend == "redis":
            _channel = RedisStreamChannel.from_url(
                config.redis_url,
                stream=config.notification_stream,
                group=config.notification_group,
                consumer=config.notification_consumer_name,
                dead_letter_stream=config.notification_dead_letter_stream,
            )
        elif config.notification_backend == "memory":
            _channel = InMemoryChannel()
        else:
            raise ValueError(
                f"Unknown notification backend: {config.notification_backend}"
            )

    return _channel


def reset_notification_channel() -> None:
    """Forget the channel singleton.

    Used in tests to ensure isolation between test cases.
    """
    global _channel
    _channel = None


def build_email_service(config: Settings | None = None) -> EmailService:
    """Email service wired to the configured transport and link origin."""
    config = config or settings
    return EmailService(
        build_transport(config),
        base_url=config.backend_url,
        magic_link_ttl=timedelta(seconds=config.login_token_ttl_seconds),
        invitation_ttl=timedelta(seconds=config.invitation_token_ttl_seconds),
    )


async def close_notification_channel() -> None:
    """Close the channel singleton, if one was created, and forget it."""
    global _channel

    if _channel is not None:
        await _channel.close()
        _channel = None
