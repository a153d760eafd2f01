"""
Snapgram Backend — Resilience Unit Tests
==========================================

What we test:
    ✅ Circuit breaker: CLOSED → OPEN → HALF_OPEN → CLOSED / OPEN
    ✅ Read retry policy retries TransportError only
"""

from unittest.mock import AsyncMock, patch

import pytest

from snapgram.exceptions import CircuitBreakerOpenError, NotFoundError, TransportError
from snapgram.services.resilience import CircuitBreaker, read_retry_policy


class TestCircuitBreaker:
    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=30)
        for _ in range(2):
            breaker.record_failure()
        assert breaker.state == CircuitBreaker.CLOSED

        breaker.record_failure()
        assert breaker.state == CircuitBreaker.OPEN
        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            breaker.can_execute()
        assert exc_info.value.retry_after >= 1

    def test_success_resets_count(self):
        breaker = CircuitBreaker(failure_threshold=2)
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state == CircuitBreaker.CLOSED

    def test_half_open_after_timeout_then_closes(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30)
        with patch("snapgram.services.resilience.time.time", return_value=1000.0):
            breaker.record_failure()
        with patch("snapgram.services.resilience.time.time", return_value=1031.0):
            assert breaker.can_execute() is True
        assert breaker.state == CircuitBreaker.HALF_OPEN

        breaker.record_success()
        assert breaker.state == CircuitBreaker.CLOSED

    def test_failed_trial_reopens(self):
        breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=30)
        breaker.state = CircuitBreaker.HALF_OPEN
        breaker.record_failure()
        assert breaker.state == CircuitBreaker.OPEN


class TestReadRetryPolicy:
    async def _run(self, fn, attempts=3):
        async for attempt in read_retry_policy(attempts, 0, 0):
            with attempt:
                return await fn()

    @pytest.mark.asyncio
    async def test_transport_error_retried(self):
        fn = AsyncMock(side_effect=[TransportError(), TransportError(), "ok"])
        assert await self._run(fn) == "ok"
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_with_last_error(self):
        fn = AsyncMock(side_effect=TransportError(message="still down"))
        with pytest.raises(TransportError, match="still down"):
            await self._run(fn, attempts=2)
        assert fn.await_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [NotFoundError(resource="post"), CircuitBreakerOpenError()])
    async def test_other_errors_not_retried(self, error):
        fn = AsyncMock(side_effect=error)
        with pytest.raises(type(error)):
            await self._run(fn)
        assert fn.await_count == 1
