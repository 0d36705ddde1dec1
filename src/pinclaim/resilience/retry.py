"""
Retry Strategies using Tenacity.

Retry policy for ledger submissions. Only errors the gateway marked as
retryable are retried; rejections surface immediately.
"""

from __future__ import annotations

from typing import Any, Callable

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pinclaim.core.exceptions import LedgerError
from pinclaim.core.logging import get_logger

logger = get_logger("resilience.retry")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_MIN_WAIT = 0.5
DEFAULT_MAX_WAIT = 8.0


def is_transient_error(exception: BaseException) -> bool:
    """Check if exception is a transient ledger/infrastructure error."""
    return isinstance(exception, LedgerError) and exception.retryable


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        f"Retrying ledger action (attempt {retry_state.attempt_number} failed: {exc})"
    )


def ledger_retrying(
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    min_wait: float = DEFAULT_MIN_WAIT,
    max_wait: float = DEFAULT_MAX_WAIT,
) -> AsyncRetrying:
    """
    Build the standard ledger retry controller.

    Exponential backoff between `min_wait` and `max_wait`, at most
    `max_attempts` tries, and the last error re-raised unchanged.
    """
    return AsyncRetrying(
        retry=retry_if_exception(is_transient_error),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        stop=stop_after_attempt(max_attempts),
        reraise=True,
        before_sleep=_log_before_sleep,
    )


async def execute_with_retry(
    func: Callable[..., Any],
    *args,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    min_wait: float = DEFAULT_MIN_WAIT,
    max_wait: float = DEFAULT_MAX_WAIT,
    **kwargs,
) -> Any:
    """Execute an async function with the ledger retry policy."""
    async for attempt in ledger_retrying(max_attempts, min_wait, max_wait):
        with attempt:
            return await func(*args, **kwargs)
