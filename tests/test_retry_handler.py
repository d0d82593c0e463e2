"""
Tests for the retry handler and rate limiter.
"""

import pytest

from generation_engine.core.models.errors import AuthenticationError, ServerError
from generation_engine.integrations.llm.rate_limiter import RateLimiter
from generation_engine.integrations.llm.retry_handler import RetryHandler


class FlakyCall:
    """Fails a fixed number of times, then succeeds."""

    def __init__(self, failures, error):
        self.failures = failures
        self.error = error
        self.attempts = 0

    async def __call__(self, value):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error
        return value


@pytest.mark.asyncio
async def test_retries_retryable_errors():
    """Retryable failures are retried until success."""
    handler = RetryHandler(max_retries=3, base_delay=0, jitter=False)
    call = FlakyCall(2, RuntimeError("503 service unavailable"))

    result = await handler.execute_with_retry(call, "done", provider="openai")

    assert result == "done"
    assert call.attempts == 3


@pytest.mark.asyncio
async def test_fatal_errors_are_not_retried():
    """Fatal failures raise immediately as classified errors."""
    handler = RetryHandler(max_retries=3, base_delay=0, jitter=False)
    call = FlakyCall(5, RuntimeError("401 unauthorized"))

    with pytest.raises(AuthenticationError) as exc_info:
        await handler.execute_with_retry(call, "done", provider="openai", model="gpt-5")

    assert call.attempts == 1
    assert exc_info.value.provider == "openai"


@pytest.mark.asyncio
async def test_retries_exhausted():
    """The last classified error surfaces after the final retry."""
    handler = RetryHandler(max_retries=2, base_delay=0, jitter=False)
    call = FlakyCall(10, RuntimeError("500 internal server error"))

    with pytest.raises(ServerError):
        await handler.execute_with_retry(call, "done", provider="google")

    assert call.attempts == 3


def test_from_options_uses_milliseconds():
    """retry_delay options are milliseconds."""
    handler = RetryHandler.from_options({"max_retries": 1, "retry_delay": 250})

    assert handler.max_retries == 1
    assert handler.base_delay == 0.25

    default = RetryHandler.from_options({})
    assert default.max_retries == 3
    assert default.base_delay == 1.0


def test_delay_backoff_is_capped():
    """Delays grow exponentially up to the cap."""
    handler = RetryHandler(base_delay=1.0, max_delay=5.0, backoff_multiplier=2.0, jitter=False)

    assert handler._calculate_delay(0) == 1.0
    assert handler._calculate_delay(1) == 2.0
    assert handler._calculate_delay(5) == 5.0


@pytest.mark.asyncio
async def test_rate_limiter_burst():
    """A fresh limiter allows its burst without waiting."""
    limiter = RateLimiter(requests_per_minute=600, burst_size=3)

    for _ in range(3):
        await limiter.acquire()

    stats = limiter.get_stats()
    assert stats["total_requests"] == 3
    assert stats["delayed_requests"] == 0
