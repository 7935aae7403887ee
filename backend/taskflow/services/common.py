"""Helpers shared by the flow services."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from taskflow.core.errors import InternalError, StoreError


@contextmanager
def store_guard(logger: logging.Logger, store: str) -> Iterator[None]:
    """Turn StoreError into a generic InternalError, logging the cause."""
    try:
        yield
    except StoreError as exc:
        logger.error("%s unavailable: %s", store, exc)
        raise InternalError() from exc
