"""
Snapgram Backend — Gateway Resilience Primitives
==================================================

What:  Circuit breaker and tenacity retry policy used by the Backend Gateway.
How:   Every gateway call asks the breaker for permission first and reports
       its outcome afterwards. Idempotent reads are additionally wrapped in
       an `AsyncRetrying` loop; writes never are.

State Machine:
    CLOSED (normal operation)
        → On failure: increment failure_count
        → When failure_count >= threshold: transition to OPEN
    OPEN (rejecting all calls)
        → Calls raise CircuitBreakerOpenError immediately
        → After recovery_timeout seconds: transition to HALF_OPEN
    HALF_OPEN (testing recovery)
        → One call goes through
        → On success: CLOSED; on failure: back to OPEN

Not thread-safe: it is shared by coroutines of a single event loop.
"""

import logging
import time
from typing import Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from snapgram.exceptions import CircuitBreakerOpenError, TransportError

logger = logging.getLogger(__name__)


class CircuitBreaker:
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 30):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Check whether a call may proceed.

        Raises:
            CircuitBreakerOpenError if the circuit is OPEN and the recovery
            timeout has not elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info("Circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
                self.state = self.HALF_OPEN
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise CircuitBreakerOpenError(recovery_time=max(remaining, 1))

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (backend recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (trial call failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN

    def reset(self) -> None:
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, TransportError) and not isinstance(exc, CircuitBreakerOpenError)


def read_retry_policy(max_attempts: int, min_wait: float, max_wait: float) -> AsyncRetrying:
    """
    Retry loop for idempotent gateway reads.

    Only TransportError is retried (never NotFound or validation errors,
    and never an open circuit). The last error is re-raised unchanged.
    """
    return AsyncRetrying(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential_jitter(initial=min_wait, max=max_wait, jitter=min_wait),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
