"""
Resilience utilities for Advisor CRM.

Provides:
- Retry with capped exponential backoff (store write conflicts, local LLM calls)
- Graceful degradation for optional services (the semantic extractor probe)
"""
import functools
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 1
    base_delay: float = 0.1  # seconds
    max_delay: float = 2.0  # seconds
    exponential_base: float = 2.0
    retryable_exceptions: tuple = (Exception,)

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number attempt + 1."""
        return min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)


class ServiceUnavailableError(Exception):
    """Raised when an optional external service is unavailable."""

    def __init__(self, service: str, message: str):
        self.service = service
        self.message = message
        super().__init__(f"{service}: {message}")


def retry_sync(
    config: Optional[RetryConfig] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
):
    """
    Retry a function on the configured exceptions.

    Only exceptions in config.retryable_exceptions are retried; anything else
    propagates on the first attempt. When retries run out the last exception
    is re-raised unchanged so callers can wrap it.

    Args:
        config: Retry configuration (default: one retry)
        on_retry: Optional callback before each retry (retry_num, exception)
    """
    cfg = config or RetryConfig()

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except cfg.retryable_exceptions as e:
                    if attempt >= cfg.max_retries:
                        logger.error(f"{func.__name__} failed after {attempt + 1} attempts: {e}")
                        raise
                    delay = cfg.delay_for(attempt)
                    attempt += 1
                    logger.warning(
                        f"{func.__name__} attempt {attempt} failed ({e}); "
                        f"retrying in {delay:.2f}s"
                    )
                    if on_retry:
                        on_retry(attempt, e)
                    time.sleep(delay)

        return wrapper
    return decorator


def graceful_degradation(
    service_name: str,
    fallback_value: Any = None,
    exceptions: tuple = (Exception,),
    log_level: int = logging.WARNING,
):
    """
    Return fallback_value instead of raising when an optional service fails.

    Args:
        service_name: Name of the service (for logging)
        fallback_value: Value to return on failure
        exceptions: Exceptions treated as "service unavailable"
        log_level: Log level for failures
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except exceptions as e:
                logger.log(log_level, f"{service_name} unavailable, using fallback: {e}")
                return fallback_value

        return wrapper
    return decorator
