"""
Retry logic with exponential backoff for external service calls.
"""
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)
import logging
from typing import Callable
import httpx

logger = logging.getLogger(__name__)


# Retry decorator for outbound notification calls
retry_external_api = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=4),
    retry=retry_if_exception_type((httpx.TransportError,)),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


def with_retry(
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 4,
    exception_types: tuple = (Exception,)
) -> Callable:
    """
    Custom retry decorator factory.

    Works for both sync and async callables; the last exception is re-raised
    once attempts are exhausted.

    Usage:
        @with_retry(max_attempts=3, exception_types=(ProviderUnavailable,))
        async def create_thread(...):
            ...
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=0.5, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exception_types),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
