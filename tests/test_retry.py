"""Tests for the ledger retry policy."""

import pytest

from pinclaim.core.exceptions import (
    AlreadyReleasedError,
    DeliveryError,
    LedgerRejectedError,
    LedgerSubmissionError,
)
from pinclaim.resilience.retry import execute_with_retry, is_transient_error, ledger_retrying


class Flaky:
    """Fails with `errors` in order, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def test_is_transient_error():
    assert is_transient_error(LedgerSubmissionError("timeout")) is True
    assert is_transient_error(LedgerRejectedError("no funds")) is False
    assert is_transient_error(AlreadyReleasedError("gone")) is False
    assert is_transient_error(DeliveryError("down", retryable=True)) is False
    assert is_transient_error(RuntimeError("timeout")) is False


@pytest.mark.asyncio
async def test_retries_submission_errors():
    func = Flaky(LedgerSubmissionError("timeout"), LedgerSubmissionError("503"))

    result = await execute_with_retry(func, max_attempts=3, min_wait=0, max_wait=0)

    assert result == "ok"
    assert func.calls == 3


@pytest.mark.asyncio
async def test_rejection_is_not_retried():
    func = Flaky(LedgerRejectedError("insufficient funds"))

    with pytest.raises(LedgerRejectedError):
        await execute_with_retry(func, max_attempts=3, min_wait=0, max_wait=0)
    assert func.calls == 1


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts():
    func = Flaky(*(LedgerSubmissionError(f"fail {i}") for i in range(5)))

    with pytest.raises(LedgerSubmissionError, match="fail 2"):
        await execute_with_retry(func, max_attempts=3, min_wait=0, max_wait=0)
    assert func.calls == 3


@pytest.mark.asyncio
async def test_ledger_retrying_attempt_numbers():
    seen = []
    func = Flaky(LedgerSubmissionError("timeout"))

    async for attempt in ledger_retrying(max_attempts=2, min_wait=0, max_wait=0):
        with attempt:
            seen.append(attempt.retry_state.attempt_number)
            await func()

    assert seen == [1, 2]
