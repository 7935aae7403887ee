"""Standalone notification consumer process.

Usage:
    python -m taskflow.worker

Drains the configured notification channel into the email service until
SIGINT/SIGTERM, then stops the consumer and closes the broker connection.
Deliveries left unsettled by a shutdown stay pending and are reclaimed by
the next worker.
"""

import asyncio
import logging
import signal

import structlog

from taskflow.core.config import settings
from taskflow.notifications.factory import (
    build_email_service,
    close_notification_channel,
    get_notification_channel,
)
from taskflow.services.notification_consumer import NotificationConsumer

logger = structlog.get_logger()


async def run_worker(stop_event: asyncio.Event | None = None) -> None:
    """Run the consumer until ``stop_event`` is set or a signal arrives.

    Args:
        stop_event: Shutdown trigger. Created and bound to SIGINT/SIGTERM
            when omitted.
    """
    if stop_event is None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

    consumer = NotificationConsumer(
        get_notification_channel(),
        build_email_service(),
        max_deliveries=settings.notification_max_deliveries,
        receive_timeout_ms=settings.notification_block_ms,
    )
    await consumer.start()
    logger.info(
        "Notification worker started",
        backend=settings.notification_backend,
        stream=settings.notification_stream,
    )

    try:
        await stop_event.wait()
    finally:
        await consumer.stop()
        await close_notification_channel()
        logger.info("Notification worker stopped", processed=consumer.processed_count)


def main() -> None:
    """CLI entry point."""
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
