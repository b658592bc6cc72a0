"""
Integration tests for core/resilience.py

Tests the circuit breaker and retry with backoff used by the HTTP clients.
"""
import asyncio
import pytest

from core.exceptions import IntegrationConnectionError, RateLimitedError
from core.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    RetryConfig,
    compute_delay,
    retry_with_backoff,
)


class TestCircuitBreaker:
    """Tests for CircuitBreaker class."""

    @pytest.mark.asyncio
    async def test_initial_state_closed(self):
        """Circuit breaker starts in closed state."""
        cb = CircuitBreaker()
        assert cb.state == CircuitState.CLOSED
        assert await cb.can_execute()

    @pytest.mark.asyncio
    async def test_success_resets_failures(self):
        cb = CircuitBreaker()
        await cb.record_failure()
        await cb.record_failure()
        assert cb.failure_count == 2

        await cb.record_success()
        assert cb.failure_count == 0
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_after_threshold_failures(self):
        cb = CircuitBreaker(name="woo:store-1", config=CircuitBreakerConfig(failure_threshold=3))
        for _ in range(3):
            await cb.record_failure()

        assert cb.is_open
        assert not await cb.can_execute()

    @pytest.mark.asyncio
    async def test_half_open_trial_call(self):
        """One trial call after the recovery timeout; a failure re-opens."""
        cb = CircuitBreaker(config=CircuitBreakerConfig(failure_threshold=1, recovery_timeout=0.05))
        await cb.record_failure()
        await asyncio.sleep(0.1)

        assert await cb.can_execute()
        assert cb.state == CircuitState.HALF_OPEN
        # Second caller is rejected while the trial call is in flight
        assert not await cb.can_execute()

        await cb.record_failure()
        assert cb.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self):
        cb = CircuitBreaker(config=CircuitBreakerConfig(failure_threshold=1, recovery_timeout=0.0))
        await cb.record_failure()
        assert await cb.can_execute()
        await cb.record_success()
        assert cb.state == CircuitState.CLOSED


class TestComputeDelay:
    """Tests for compute_delay."""

    def test_exponential(self):
        config = RetryConfig(base_delay=0.5, exponential_base=2.0, max_delay=30.0)
        assert [compute_delay(config, n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]

    def test_capped(self):
        config = RetryConfig(base_delay=10.0, max_delay=15.0)
        assert compute_delay(config, 5) == 15.0

    def test_retry_after_wins(self):
        """A server-provided Retry-After replaces the backoff, still capped."""
        config = RetryConfig(base_delay=0.5, max_delay=30.0)
        assert compute_delay(config, 1, retry_after=4) == 4.0
        assert compute_delay(config, 1, retry_after=120) == 30.0


class TestRetryWithBackoff:
    """Tests for retry_with_backoff function."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise IntegrationConnectionError("Connection reset")
            return "ok"

        config = RetryConfig(max_attempts=3, base_delay=0.001)
        result = await retry_with_backoff(
            flaky, config=config, retryable_exceptions=(IntegrationConnectionError,)
        )
        assert result == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_raises_last_error(self):
        async def always_fails():
            raise IntegrationConnectionError("Timed out")

        with pytest.raises(IntegrationConnectionError):
            await retry_with_backoff(
                always_fails,
                config=RetryConfig(max_attempts=2, base_delay=0.001),
                retryable_exceptions=(IntegrationConnectionError,),
            )

    @pytest.mark.asyncio
    async def test_non_retryable_propagates_immediately(self):
        calls = []

        async def bad_request():
            calls.append(1)
            raise ValueError("bad payload")

        with pytest.raises(ValueError):
            await retry_with_backoff(
                bad_request,
                config=RetryConfig(max_attempts=5, base_delay=0.001),
                retryable_exceptions=(IntegrationConnectionError,),
            )
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_honours_retry_after(self, monkeypatch):
        """The sleep uses the exception's retry_after."""
        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)

        monkeypatch.setattr("core.resilience.asyncio.sleep", fake_sleep)
        calls = []

        async def rate_limited():
            calls.append(1)
            if len(calls) == 1:
                raise RateLimitedError("Too many requests", retry_after=2.0)
            return {"ok": True}

        result = await retry_with_backoff(
            rate_limited, config=RetryConfig(max_attempts=3), retryable_exceptions=(RateLimitedError,)
        )
        assert result == {"ok": True}
        assert sleeps == [2.0]
