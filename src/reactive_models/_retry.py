"""Bounded retry wrapper for refresh operations."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from reactive_models._constants import DEFAULT_MAX_RETRY_CALL

_logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_RETRY_CALL,
) -> T:
    """Await *operation* until it succeeds or *max_attempts* calls have failed.

    Parameters
    ----------
    operation
        Zero-argument coroutine function.  Called afresh on every attempt.
    max_attempts
        Total number of calls, first one included.  ``1`` disables retries;
        values ``<= 0`` are treated as ``1``.

    Returns
    -------
    T
        The first successful result.

    Raises
    ------
    Exception
        Whatever the final attempt raised, unchanged.  Earlier failures are
        discarded.
    """
    attempts = max(1, max_attempts)
    last_exc: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            last_exc = exc
            if attempt < attempts:
                _logger.debug(
                    "Operation failed (attempt %d/%d), retrying: %r",
                    attempt,
                    attempts,
                    exc,
                )

    # All attempts exhausted, re-raise the last failure
    assert last_exc is not None  # noqa: S101
    raise last_exc
