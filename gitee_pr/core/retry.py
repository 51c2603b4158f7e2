"""Retry with exponential backoff for transient upstream failures."""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

import requests

T = TypeVar("T")

_retry_log = logging.getLogger("gitee_pr.retry")

TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    requests.ConnectionError,
    requests.Timeout,
)


def retry_with_backoff(
    func: Callable[[], T],
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 8.0,
    backoff_factor: float = 2.0,
    retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_EXCEPTIONS,
    operation: str = "upstream call",
    max_elapsed: float | None = None,
) -> T:
    """
    Call ``func`` until it succeeds or ``max_attempts`` is exhausted.

    Only ``retryable_exceptions`` are retried; anything else propagates on the
    first occurrence. The last retryable exception is re-raised once attempts
    run out, or when ``max_elapsed`` seconds would pass before the next attempt
    could start.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    started = time.monotonic()
    delay = initial_delay
    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except retryable_exceptions as e:
            wait = min(delay, max_delay)
            if attempt == max_attempts:
                raise
            if max_elapsed is not None and time.monotonic() - started + wait >= max_elapsed:
                _retry_log.warning(
                    "retry_budget_exhausted operation=%s attempt=%d/%d max_elapsed=%.2fs",
                    operation,
                    attempt,
                    max_attempts,
                    max_elapsed,
                )
                raise
            _retry_log.warning(
                "retry operation=%s attempt=%d/%d delay=%.2fs error=%s",
                operation,
                attempt,
                max_attempts,
                wait,
                e,
            )
            time.sleep(wait)
            delay *= backoff_factor

    raise RuntimeError("unreachable: retry loop exited without result")
