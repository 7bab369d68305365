from utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState
from utils.logger import StructuredLogger, JsonFormatter, setup_logging
from utils.retry import RetryContext, backoff_delay

__all__ = [
    'CircuitBreaker',
    'CircuitBreakerOpenError',
    'CircuitState',
    'StructuredLogger',
    'JsonFormatter',
    'setup_logging',
    'RetryContext',
    'backoff_delay',
]
