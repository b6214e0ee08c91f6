"""Retry support for transient failures."""

import time
import random
from typing import Callable, Any, Optional, List, Type
from functools import wraps

from .exceptions import WorkflowEngineError, TransientError, StorageError
from .logging import ErrorRecoveryLogger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[List[Type[Exception]]] = None
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions or [TransientError, StorageError]

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if an exception should be retried."""
        if attempt >= self.max_attempts:
            return False

        if not isinstance(exception, tuple(self.retryable_exceptions)):
            return False

        # Engine errors carry their own verdict
        if isinstance(exception, WorkflowEngineError):
            return exception.recoverable

        return True

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for the given attempt."""
        delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        delay = min(delay, self.max_delay)

        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)

        return delay


def with_retry(config: Optional[RetryConfig] = None):
    """Decorator to add retry logic to functions."""
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            return execute_with_retry(func, config, *args, **kwargs)
        return wrapper

    return decorator


def execute_with_retry(func: Callable, config: RetryConfig, *args, **kwargs) -> Any:
    """Call ``func`` under ``config``, sleeping between failed attempts.

    Args:
        func: Callable to invoke
        config: Retry policy
        *args: Positional arguments for ``func``
        **kwargs: Keyword arguments for ``func``

    Returns:
        The first successful return value of ``func``

    Raises:
        Exception: The last exception raised by ``func`` once the policy
            gives up, or the first non-retryable one
    """
    recovery_logger = ErrorRecoveryLogger(getattr(func, "__name__", "operation"))
    attempt = 1

    while True:
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            if not config.should_retry(e, attempt):
                if attempt > 1:
                    recovery_logger.gave_up(e, attempt)
                raise
            delay = config.get_delay(attempt)
            recovery_logger.attempt_failed(e, attempt, config.max_attempts, delay)
            time.sleep(delay)
            attempt += 1
            continue

        if attempt > 1:
            recovery_logger.recovered(attempt)
        return result
