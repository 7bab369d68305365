"""
Circuit breaker and retry tests
"""
import pytest

from errors import ProviderError
from utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState
from utils.retry import RetryContext, backoff_delay


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def failing():
    raise ProviderError(503, 'unavailable')


class TestCircuitBreaker:

    @pytest.mark.utils
    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, expected_exception=ProviderError)
        for _ in range(2):
            with pytest.raises(ProviderError):
                breaker.call(failing)
        assert breaker.is_open
        with pytest.raises(CircuitBreakerOpenError):
            breaker.call(lambda: 'never called')

    @pytest.mark.utils
    def test_half_open_then_closed(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30,
                                 expected_exception=ProviderError, clock=clock)
        with pytest.raises(ProviderError):
            breaker.call(failing)
        assert breaker.state == CircuitState.OPEN.value

        clock.now = 31
        assert breaker.state == CircuitState.HALF_OPEN.value
        assert breaker.call(lambda: 'ok') == 'ok'
        assert breaker.state == CircuitState.CLOSED.value

    @pytest.mark.utils
    def test_failure_in_half_open_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=30,
                                 expected_exception=ProviderError, clock=clock)
        with pytest.raises(ProviderError):
            breaker.call(failing)
        clock.now = 31
        with pytest.raises(ProviderError):
            breaker.call(failing)
        assert breaker.is_open

    @pytest.mark.utils
    def test_unexpected_exceptions_do_not_count(self):
        breaker = CircuitBreaker(failure_threshold=1, expected_exception=ProviderError)
        with pytest.raises(KeyError):
            breaker.call(lambda: {}['missing'])
        assert not breaker.is_open

    @pytest.mark.utils
    def test_statistics_and_reset(self):
        breaker = CircuitBreaker(failure_threshold=1, expected_exception=ProviderError, name='cal')
        with pytest.raises(ProviderError):
            breaker.call(failing)
        stats = breaker.get_statistics()
        assert stats['name'] == 'cal'
        assert stats['total_failures'] == 1
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED.value


class TestRetry:

    @pytest.mark.utils
    def test_backoff_is_capped(self):
        assert backoff_delay(0, 1.0, 10) == 1.0
        assert backoff_delay(2, 1.0, 10) == 4.0
        assert backoff_delay(10, 1.0, 10) == 10

    @pytest.mark.utils
    def test_retries_then_succeeds(self):
        sleeps = []
        attempts = []
        retry = RetryContext(max_retries=2, base_delay=0.5, sleep=sleeps.append)
        while retry.should_retry():
            try:
                attempts.append(1)
                if len(attempts) < 3:
                    raise ProviderError(503)
                break
            except ProviderError as e:
                retry.record_failure(e)
        assert len(attempts) == 3
        assert sleeps == [0.5, 1.0]

    @pytest.mark.utils
    def test_exhausted_retries_reraise(self):
        retry = RetryContext(max_retries=1, base_delay=0, sleep=lambda s: None)
        with pytest.raises(ProviderError):
            while retry.should_retry():
                try:
                    raise ProviderError(500)
                except ProviderError as e:
                    retry.record_failure(e)
