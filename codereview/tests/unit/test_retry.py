import asyncio

import pytest

from codereview.services.llm.exceptions import LLMAPIError, ResultValidationError
from codereview.services.llm.retry import RetryConfig, retry_async, with_retry

NO_DELAY = dict(base_delay=0, max_delay=0, jitter=False)


class Flaky:
    """Fails a fixed number of times, then returns a value."""

    def __init__(self, failures, error=LLMAPIError("boom")):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return value


@pytest.mark.asyncio
async def test_retries_until_success():
    flaky = Flaky(failures=2)

    result = await retry_async(flaky, "ok", config=RetryConfig(max_attempts=3, **NO_DELAY))

    assert result == "ok"
    assert flaky.calls == 3


@pytest.mark.asyncio
async def test_raises_last_error_after_all_attempts():
    flaky = Flaky(failures=5)

    with pytest.raises(LLMAPIError):
        await retry_async(flaky, "ok", config=RetryConfig(max_attempts=2, **NO_DELAY))

    assert flaky.calls == 2


@pytest.mark.asyncio
async def test_non_retryable_raised_immediately():
    flaky = Flaky(failures=5, error=ResultValidationError("bad"))
    config = RetryConfig(max_attempts=4, non_retryable_exceptions=(ResultValidationError,), **NO_DELAY)

    with pytest.raises(ResultValidationError):
        await retry_async(flaky, "ok", config=config)

    assert flaky.calls == 1


@pytest.mark.asyncio
async def test_attempt_timeout_counts_as_failure():
    calls = []

    @with_retry(RetryConfig(max_attempts=2, attempt_timeout=0.01, **NO_DELAY))
    async def slow():
        calls.append(1)
        await asyncio.sleep(1)

    with pytest.raises(asyncio.TimeoutError):
        await slow()

    assert len(calls) == 2


def test_delay_is_capped():
    config = RetryConfig(base_delay=1.0, max_delay=3.0, exponential_base=2.0, jitter=False)

    assert config.get_delay(0) == 1.0
    assert config.get_delay(1) == 2.0
    assert config.get_delay(5) == 3.0


def test_jitter_never_exceeds_cap():
    config = RetryConfig(base_delay=2.0, max_delay=2.5, jitter=True)

    assert all(0 < config.get_delay(3) <= 2.5 for _ in range(50))
