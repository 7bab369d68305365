# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Circuit Breaker - Stop hammering the external booking provider after repeated failures
"""
import logging
import time
from enum import Enum
from threading import Lock
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitState(Enum):
    """Possible states of the circuit breaker"""
    CLOSED = "closed"      # Normal operation, requests allowed
    OPEN = "open"          # Failure threshold exceeded, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreakerOpenError(Exception):
    """Exception raised when circuit breaker is open"""
    pass


class CircuitBreaker:
    """
    Circuit Breaker pattern guarding provider calls

    - CLOSED: all requests pass through
    - OPEN: too many consecutive failures, requests fail fast
    - HALF_OPEN: recovery timeout elapsed, a trial request is let through
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        expected_exception: type = Exception,
        name: Optional[str] = None,
        half_open_successes: int = 1,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.name = name or "CircuitBreaker"
        self.half_open_successes = half_open_successes
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._lock = Lock()

        # Statistics
        self._total_calls = 0
        self._total_failures = 0
        self._total_successes = 0
        self._circuit_opened_count = 0

    @property
    def state(self) -> str:
        with self._lock:
            self._update_state()
            return self._state.value

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN.value

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Call the protected function through the circuit breaker

        Raises:
            CircuitBreakerOpenError: If circuit is open
            Exception: If function fails
        """
        with self._lock:
            self._update_state()
            self._total_calls += 1

            if self._state == CircuitState.OPEN:
                error_msg = f"{self.name}: Circuit breaker is OPEN"
                logger.warning(error_msg)
                raise CircuitBreakerOpenError(error_msg)

        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            with self._lock:
                self._on_failure()
            raise

        with self._lock:
            self._on_success()
        return result

    def _update_state(self):
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.recovery_timeout:
                logger.info(f"{self.name}: Transitioning from OPEN to HALF_OPEN")
                self._state = CircuitState.HALF_OPEN
                self._failure_count = 0
                self._success_count = 0

    def _open(self):
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._circuit_opened_count += 1

    def _on_success(self):
        self._total_successes += 1
        self._success_count += 1

        if self._state == CircuitState.HALF_OPEN:
            if self._success_count >= self.half_open_successes:
                logger.info(f"{self.name}: Transitioning from HALF_OPEN to CLOSED")
                self._state = CircuitState.CLOSED
                self._failure_count = 0
                self._success_count = 0
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def _on_failure(self):
        self._total_failures += 1
        self._failure_count += 1

        if self._state == CircuitState.HALF_OPEN:
            logger.warning(f"{self.name}: Failure in HALF_OPEN state, reopening circuit")
            self._open()
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            logger.error(
                f"{self.name}: Failure threshold ({self.failure_threshold}) exceeded, "
                f"opening circuit"
            )
            self._open()

    def reset(self):
        """Manually reset the circuit breaker to closed state"""
        with self._lock:
            logger.info(f"{self.name}: Manually resetting circuit breaker")
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._opened_at = None

    def get_statistics(self) -> dict:
        with self._lock:
            self._update_state()

            success_rate = 0
            if self._total_calls > 0:
                success_rate = (self._total_successes / self._total_calls) * 100

            return {
                'name': self.name,
                'state': self._state.value,
                'total_calls': self._total_calls,
                'total_successes': self._total_successes,
                'total_failures': self._total_failures,
                'success_rate': round(success_rate, 2),
                'current_failure_count': self._failure_count,
                'circuit_opened_count': self._circuit_opened_count,
            }
