"""Retry loop shared by the explorer and LLM clients.

Only transient failures are retried (HTTP 429, 5xx, timeouts); everything
else is terminal on the first attempt.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")

MAX_ATTEMPTS: int = 3
BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
JITTER_PCT: float = 0.20


def is_retryable_status(status_code: int | None) -> bool:
    return isinstance(status_code, int) and (status_code == 429 or 500 <= status_code < 600)


def backoff_delay(attempt_no: int) -> float:
    if attempt_no - 1 < len(BACKOFF_SCHEDULE_SEC):
        base = BACKOFF_SCHEDULE_SEC[attempt_no - 1]
    else:
        base = BACKOFF_SCHEDULE_SEC[-1]
    jitter = base * JITTER_PCT
    return max(0.0, base + random.uniform(-jitter, jitter))


def call_with_retry(
    fn: Callable[[], T],
    *,
    is_retryable: Callable[[BaseException], bool],
    logger: logging.Logger,
    event: str,
    max_attempts: int = MAX_ATTEMPTS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``fn`` until it succeeds, a terminal error occurs or attempts run out.

    The last exception is re-raised unchanged; callers translate it into the
    error taxonomy.
    """

    attempt = 1
    while True:
        t0 = time.perf_counter()
        try:
            return fn()
        except Exception as e:  # noqa: BLE001
            dt_ms = (time.perf_counter() - t0) * 1000.0
            if attempt >= max_attempts or not is_retryable(e):
                logger.error(
                    "%s:failed_terminal attempt=%d latency_ms=%.2f error=%s",
                    event,
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                )
                raise
            logger.warning(
                "%s:retry attempt=%d latency_ms=%.2f error=%s",
                event,
                attempt,
                dt_ms,
                e.__class__.__name__,
            )
            sleep(backoff_delay(attempt))
            attempt += 1


__all__ = ["backoff_delay", "call_with_retry", "is_retryable_status"]
