"""
SigKit Circuit Breaker & Retry Policy
Keeps player script fetches from hammering a failing endpoint
"""
import asyncio
import logging
import random
import time
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from config import SigKitConfig
from errors import CircuitOpenError, ExtractionError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitState(Enum):
    """Circuit breaker states"""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"      # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreaker:
    """
    Circuit breaker for one remote endpoint.
    Opens after repeated failures, probes again after a cool-down.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = SigKitConfig.CIRCUIT_BREAKER_THRESHOLD,
        recovery_timeout: float = SigKitConfig.CIRCUIT_BREAKER_TIMEOUT,
        recovery_threshold: int = SigKitConfig.CIRCUIT_BREAKER_RECOVERY_THRESHOLD
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.recovery_threshold = recovery_threshold

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None

    def record_success(self):
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.recovery_threshold:
                self._transition(CircuitState.CLOSED)
        elif self.state == CircuitState.CLOSED:
            self.failure_count = 0

    def record_failure(self):
        self.failure_count += 1
        self.last_failure_time = time.monotonic()

        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def can_attempt(self) -> bool:
        """Check if a request should be attempted"""
        if self.state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._transition(CircuitState.HALF_OPEN)
                return True
            return False

        return True

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return True
        return (time.monotonic() - self.last_failure_time) >= self.recovery_timeout

    def _transition(self, state: CircuitState):
        self.state = state
        self.success_count = 0
        if state == CircuitState.CLOSED:
            self.failure_count = 0
            logger.info("[Circuit Breaker: %s] CLOSED - normal operation resumed", self.name)
        elif state == CircuitState.OPEN:
            logger.warning("[Circuit Breaker: %s] OPENED - rejecting requests", self.name)
        else:
            logger.info("[Circuit Breaker: %s] HALF-OPEN - testing recovery", self.name)


class RetryPolicy:
    """
    Retry with exponential backoff and jitter.
    Only transient failures are retried.
    """

    # Substrings of transient network errors
    RETRYABLE_ERRORS = {
        "timeout",
        "timed out",
        "connection reset",
        "connection refused",
        "network unreachable",
        "could not resolve host"
    }

    # Non-retryable status codes (permanent errors)
    TERMINAL_STATUS_CODES = {400, 401, 403, 404, 410}

    @staticmethod
    def is_retryable_error(exception: Exception, status_code: Optional[int] = None) -> bool:
        """Classify errors into retryable vs terminal"""
        if isinstance(exception, (ExtractionError, CircuitOpenError)):
            return False

        if status_code:
            if status_code in RetryPolicy.TERMINAL_STATUS_CODES:
                return False
            if status_code == 429 or 500 <= status_code < 600:
                return True

        if isinstance(exception, (asyncio.TimeoutError, ConnectionError)):
            return True

        error_msg = str(exception).lower()
        return any(retryable in error_msg for retryable in RetryPolicy.RETRYABLE_ERRORS)

    @staticmethod
    def calculate_backoff(attempt: int, base: float = SigKitConfig.RETRY_BACKOFF_BASE) -> float:
        exponential_delay = base ** attempt
        jitter = random.uniform(0, SigKitConfig.RETRY_JITTER_MAX)
        return exponential_delay + jitter

    @staticmethod
    async def with_retry(
        func: Callable[[], Awaitable[T]],
        circuit_breaker: Optional[CircuitBreaker] = None,
        max_retries: int = SigKitConfig.MAX_RETRIES,
        operation_name: str = "operation",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ) -> T:
        """
        Execute func with retry logic and circuit breaker.

        Args:
            func: Async callable to execute
            circuit_breaker: Optional circuit breaker instance
            max_retries: Maximum retry attempts after the first
            operation_name: Name for logging
            sleep: Awaitable delay, replaceable in tests
        """
        attempt = 0
        while True:
            if circuit_breaker and not circuit_breaker.can_attempt():
                raise CircuitOpenError(f"Circuit breaker OPEN for {operation_name}")

            try:
                result = await func()
            except Exception as e:
                if circuit_breaker:
                    circuit_breaker.record_failure()

                status_code = getattr(e, 'status_code', None)
                if not RetryPolicy.is_retryable_error(e, status_code):
                    logger.warning("[Retry] %s - Terminal error, not retrying: %s", operation_name, e)
                    raise

                if attempt >= max_retries:
                    logger.warning("[Retry] %s - Max retries exhausted", operation_name)
                    raise

                backoff = RetryPolicy.calculate_backoff(attempt)
                attempt += 1
                logger.info(
                    "[Retry] %s - Attempt %d/%d failed. Retrying in %.2fs... Error: %s",
                    operation_name, attempt, max_retries, backoff, e
                )
                await sleep(backoff)
                continue

            if circuit_breaker:
                circuit_breaker.record_success()
            return result
