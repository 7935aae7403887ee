"""Tests for channel and token service singletons."""

import pytest
from pydantic import SecretStr

from taskflow.api.deps import get_token_service, reset_token_service
from taskflow.core.config import Settings, settings
from taskflow.notifications.factory import (
    close_notification_channel,
    get_notification_channel,
    reset_notification_channel,
)
from taskflow.notifications.memory_channel import InMemoryChannel
from taskflow.notifications.redis_channel import RedisStreamChannel


@pytest.fixture(autouse=True)
def _fresh_singletons():
    reset_notification_channel()
    reset_token_service()
    yield
    reset_notification_channel()
    reset_token_service()


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestNotificationChannelFactory:
    def test_memory_backend(self):
        channel = get_notification_channel(_settings(notification_backend="memory"))

        assert isinstance(channel, InMemoryChannel)

    def test_redis_backend_connects_lazily(self):
        channel = get_notification_channel(_settings(notification_backend="redis"))

        assert isinstance(channel, RedisStreamChannel)

    def test_singleton_ignores_later_config(self):
        first = get_notification_channel(_settings(notification_backend="memory"))
        second = get_notification_channel(_settings(notification_backend="redis"))

        assert second is first

    async def test_close_forgets_channel(self):
        config = _settings(notification_backend="memory")
        first = get_notification_channel(config)

        await close_notification_channel()

        assert get_notification_channel(config) is not first

    async def test_close_without_channel_is_noop(self):
        await close_notification_channel()


@pytest.mark.usefixtures("auth_settings")
def test_token_service_is_built_once():
    first = get_token_service()

    assert get_token_service() is first
    reset_token_service()
    assert get_token_service() is not first


def test_token_service_requires_secret(monkeypatch):
    monkeypatch.setattr(settings, "auth_secret", SecretStr(""))

    with pytest.raises(ValueError, match="secret"):
        get_token_service()
