"""
retry_on_conflict -- bounded caller-side retry for optimistic conflicts.

Kernel services never retry: a lost compare-and-set surfaces as
ConcurrentModificationError (``retryable = True``).  This helper re-runs a
whole unit of work, which must open its own transaction on every call so
each attempt re-reads current stock.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TypeVar

from stock_kernel.exceptions import StockKernelError
from stock_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")


def retry_on_conflict(
    fn: Callable[[], T],
    max_attempts: int = 3,
    backoff: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn`` until it succeeds or a non-retryable error is raised.

    ``max_attempts`` counts the first call.  The pause before attempt ``n``
    is ``backoff * (n - 1)``.  The last retryable error is re-raised once
    attempts are exhausted.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 1
    while True:
        try:
            return fn()
        except StockKernelError as exc:
            if not exc.retryable or attempt >= max_attempts:
                if exc.retryable:
                    logger.warning(
                        "conflict_retries_exhausted",
                        extra={"attempts": attempt, "error_code": exc.code},
                    )
                raise
            logger.info(
                "conflict_retry",
                extra={"attempt": attempt, "error_code": exc.code, "detail": str(exc)},
            )
            attempt += 1
            sleep(backoff * (attempt - 1))
