"""Tests for rate-limit retry handling."""

import random

import pytest

from seforim_acronymizer.config import RateLimitConfig
from seforim_acronymizer.errors import RateLimitError, SchemaError
from seforim_acronymizer.retry import RetryGuard, is_rate_limit, retry_after_ms


class FlakyOperation:
    """Async callable that raises the queued errors, then returns a value."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestClassification:
    """Test rate-limit detection and retry hint parsing."""

    @pytest.mark.parametrize(
        "message",
        [
            "Rate limit reached for gpt-4.1",
            "Error code: 429 - Too Many Requests",
            "RATE_LIMIT_EXCEEDED",
            "you hit the RATE LIMIT",
        ],
    )
    def test_message_markers(self, message):
        """Free-text messages with a rate-limit marker are detected."""
        assert is_rate_limit(RuntimeError(message)) is True

    def test_typed_error(self):
        """RateLimitError is detected regardless of message."""
        assert is_rate_limit(RateLimitError("slow down")) is True

    def test_other_errors(self):
        """Unrelated errors are not rate limits."""
        assert is_rate_limit(ValueError("bad json")) is False
        assert is_rate_limit(SchemaError("missing items")) is False

    def test_retry_after_from_message(self):
        """Should parse 'try again in Xs' case-insensitively."""
        error = RuntimeError("Rate limit reached. Please Try Again In 2.5s.")
        assert retry_after_ms(error) == 2500

    def test_retry_after_prefers_typed_hint(self):
        """A typed retry_after beats the message text."""
        error = RateLimitError("429: try again in 9s", retry_after=1.5)
        assert retry_after_ms(error) == 1500

    def test_retry_after_missing(self):
        """Should return None with no hint."""
        assert retry_after_ms(RuntimeError("429 Too Many Requests")) is None


class TestRetryGuard:
    """Test RetryGuard.run_with_retries."""

    @pytest.fixture
    def sleeps(self):
        return []

    @pytest.fixture
    def guard(self, sleeps):
        async def fake_sleep(seconds):
            sleeps.append(seconds)

        return RetryGuard(
            max_retries=8,
            base_delay_ms=1200,
            sleep=fake_sleep,
            rng=random.Random(42),
        )

    @pytest.mark.asyncio
    async def test_success_first_try(self, guard, sleeps):
        """Returns immediately when the operation succeeds."""
        op = FlakyOperation([], result=42)

        assert await guard.run_with_retries(op) == 42
        assert op.calls == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_non_rate_limit_error_propagates_once(self, guard, sleeps):
        """Other errors are raised unchanged after a single invocation."""
        error = SchemaError("items must be a list")
        op = FlakyOperation([error])

        with pytest.raises(SchemaError) as exc_info:
            await guard.run_with_retries(op)

        assert exc_info.value is error
        assert op.calls == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_honors_server_hint(self, guard, sleeps):
        """'try again in 2.5s' waits at least 2.5s plus jitter below base delay."""
        op = FlakyOperation(
            [RuntimeError("Rate limit reached ... try again in 2.5s ...")],
            result="done",
        )

        assert await guard.run_with_retries(op) == "done"
        assert op.calls == 2
        assert len(sleeps) == 1
        assert 2.5 <= sleeps[0] < 2.5 + 1.2

    @pytest.mark.asyncio
    async def test_exponential_backoff(self, guard, sleeps):
        """Without a hint, waits base * 2^attempt plus jitter."""
        op = FlakyOperation([RateLimitError("429")] * 3)

        await guard.run_with_retries(op)

        assert len(sleeps) == 3
        for attempt, slept in enumerate(sleeps):
            base = 1.2 * (2**attempt)
            assert base <= slept < base + 1.2

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self, sleeps):
        """Always rate-limited: retried max_retries times, then the last error."""

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        guard = RetryGuard(max_retries=3, base_delay_ms=100, sleep=fake_sleep)
        errors = [RateLimitError(f"429 #{i}") for i in range(10)]
        op = FlakyOperation(errors)

        with pytest.raises(RateLimitError) as exc_info:
            await guard.run_with_retries(op)

        assert op.calls == 4
        assert len(sleeps) == 3
        assert str(exc_info.value) == "429 #3"

    @pytest.mark.asyncio
    async def test_zero_retries(self, sleeps):
        """max_retries=0 means a single attempt."""
        guard = RetryGuard(max_retries=0, base_delay_ms=100)
        op = FlakyOperation([RateLimitError("429")])

        with pytest.raises(RateLimitError):
            await guard.run_with_retries(op)
        assert op.calls == 1

    def test_from_config(self):
        """Should take retry settings from RateLimitConfig."""
        guard = RetryGuard.from_config(RateLimitConfig(base_delay_ms=500, max_retries=2))
        assert guard.base_delay_ms == 500
        assert guard.max_retries == 2
