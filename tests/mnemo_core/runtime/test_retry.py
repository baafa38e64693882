"""Unit tests for RetryPolicy and retry helpers."""

from types import SimpleNamespace

import pytest

from mnemo_core.runtime.errors import RetryableError, ServiceError
from mnemo_core.runtime.retry import (
    DEFAULT_RETRY_POLICY,
    RetryPolicy,
    call_with_retry,
    with_retry,
)


class TestRetryPolicy:
    """Tests for RetryPolicy configuration."""

    def test_default_values(self):
        """Should have sensible defaults."""
        policy = RetryPolicy()

        assert policy.max_attempts == 3
        assert policy.base_delay == 0.5
        assert policy.max_delay == 30.0
        assert policy.exponential_base == 2.0
        assert policy.jitter is True

    def test_is_frozen(self):
        """Should be immutable."""
        policy = RetryPolicy()
        with pytest.raises(Exception):
            policy.max_attempts = 10

    def test_from_settings(self):
        """Should read the persistence retry keys."""
        settings = SimpleNamespace(PERSISTENCE_RETRY_ATTEMPTS=7, PERSISTENCE_RETRY_BASE_DELAY=0.1)

        policy = RetryPolicy.from_settings(settings)

        assert policy.max_attempts == 7
        assert policy.base_delay == 0.1


class TestCalculateDelay:
    """Tests for delay calculation."""

    def test_exponential_backoff(self):
        """Delay should increase exponentially."""
        policy = RetryPolicy(base_delay=1.0, exponential_base=2.0, jitter=False)

        assert policy.calculate_delay(0) == 1.0
        assert policy.calculate_delay(1) == 2.0
        assert policy.calculate_delay(2) == 4.0

    def test_max_delay_caps_backoff(self):
        """Delay should not exceed max_delay."""
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=False)

        assert policy.calculate_delay(10) == 5.0

    def test_jitter_stays_within_quarter(self):
        """Jitter adds at most 25% on top of the base delay."""
        policy = RetryPolicy(base_delay=1.0, jitter=True)

        for _ in range(20):
            assert 1.0 <= policy.calculate_delay(0) <= 1.25


class TestCallWithRetry:
    """Tests for call_with_retry."""

    @pytest.mark.asyncio
    async def test_passes_arguments_through(self):
        """Positional and keyword arguments reach the wrapped function."""

        async def add(a, b=0):
            return a + b

        assert await call_with_retry(add, 2, b=3) == 5

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        """Should retry RetryableError and return the eventual result."""
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise RetryableError(code="RETRY", message_safe="Try again")
            return "ok"

        result = await call_with_retry(flaky, policy=RetryPolicy(base_delay=0.001, jitter=False))

        assert result == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_other_exceptions_propagate_immediately(self):
        """Non-retryable errors are not retried."""
        calls = []

        async def broken():
            calls.append(1)
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await call_with_retry(broken, policy=RetryPolicy(base_delay=0.001))

        assert len(calls) == 1


class TestWithRetryDecorator:
    """Tests for the async retry decorator."""

    @pytest.mark.asyncio
    async def test_raises_after_max_retries(self):
        """Should raise after exhausting retries."""

        @with_retry(RetryPolicy(max_attempts=2, base_delay=0.001))
        async def always_fails():
            raise RetryableError(code="ALWAYS_FAIL", message_safe="Never works")

        with pytest.raises(RetryableError) as exc_info:
            await always_fails()

        assert exc_info.value.code == "ALWAYS_FAIL"

    @pytest.mark.asyncio
    async def test_does_not_retry_non_retryable_error(self):
        """Should not retry a plain ServiceError."""
        call_count = 0

        @with_retry(RetryPolicy(max_attempts=3, base_delay=0.001))
        async def terminal_func():
            nonlocal call_count
            call_count += 1
            raise ServiceError(code="TERMINAL", message_safe="Stop")

        with pytest.raises(ServiceError):
            await terminal_func()

        assert call_count == 1

    @pytest.mark.asyncio
    async def test_calls_on_retry_callback(self):
        """Should call on_retry before each retry."""
        retry_calls = []
        call_count = 0

        def on_retry(attempt, exc, delay):
            retry_calls.append((attempt, exc.code))

        @with_retry(RetryPolicy(max_attempts=3, base_delay=0.001), on_retry=on_retry)
        async def callback_func():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise RetryableError(code=f"RETRY_{call_count}", message_safe="Retry")
            return "done"

        await callback_func()

        assert retry_calls == [(0, "RETRY_1"), (1, "RETRY_2")]

    def test_preserves_function_name(self):
        """functools.wraps keeps the wrapped name."""

        @with_retry()
        async def append_message():
            return None

        assert append_message.__name__ == "append_message"


def test_default_policy_exists():
    assert isinstance(DEFAULT_RETRY_POLICY, RetryPolicy)
