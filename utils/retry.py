# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Retry Utilities - Implement retry logic with exponential backoff
"""
import time
import logging

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base_delay: float, max_delay: float,
                  exponential_base: float = 2.0) -> float:
    """Delay before retry number `attempt` (0-based)"""
    return min(base_delay * (exponential_base ** attempt), max_delay)


class RetryContext:
    """
    Context manager for retry logic, useful for retrying blocks of code

    Example:
        with RetryContext(max_retries=3) as retry:
            while retry.should_retry():
                try:
                    # Your code here
                    break
                except Exception as e:
                    retry.record_failure(e)
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        name: str = "operation",
        sleep=time.sleep
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.name = name
        self.attempt = 0
        self.last_exception = None
        self._sleep = sleep

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def should_retry(self) -> bool:
        """Check if we should continue retrying"""
        return self.attempt <= self.max_retries

    def record_failure(self, exception: Exception):
        """Record a failure and sleep if we should retry; re-raise once exhausted"""
        self.last_exception = exception

        if self.attempt >= self.max_retries:
            if self.max_retries:
                logger.error(f"Max retries ({self.max_retries}) exceeded for {self.name}. "
                             f"Final error: {exception}")
            raise exception

        delay = backoff_delay(self.attempt, self.base_delay, self.max_delay, self.exponential_base)

        logger.warning(
            f"Retry attempt {self.attempt + 1}/{self.max_retries + 1} for {self.name} "
            f"failed: {exception}. Retrying in {delay:.1f} seconds..."
        )

        if delay > 0:
            self._sleep(delay)
        self.attempt += 1

    def reset(self):
        """Reset the retry context for reuse"""
        self.attempt = 0
        self.last_exception = None
