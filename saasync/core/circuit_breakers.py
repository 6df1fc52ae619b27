"""
Circuit Breakers and Retry Logic
Prevents transient provider failures (5xx, 429, timeouts) from failing a whole sync
"""
import inspect
import logging
from functools import wraps
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception,
    before_sleep_log,
)
from tenacity.wait import wait_base

from saasync.services.connectors.errors import get_retry_after_seconds, is_retryable_error

logger = logging.getLogger(__name__)

# Longest provider-requested pause a single retry will sit through
MAX_RETRY_AFTER_SECONDS = 60.0


class wait_retry_after(wait_base):
    """
    Backoff that respects the provider's Retry-After.

    Waits max(retry_after, backoff) when the last error carries a retry-after
    (RateLimitError), capped at max_retry_after; otherwise plain backoff.
    """

    def __init__(self, backoff: wait_base, max_retry_after: float = MAX_RETRY_AFTER_SECONDS):
        self.backoff = backoff
        self.max_retry_after = max_retry_after

    def __call__(self, retry_state) -> float:
        backoff = self.backoff(retry_state)
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return backoff

        retry_after = get_retry_after_seconds(outcome.exception())
        if not retry_after:
            return backoff
        return max(backoff, min(retry_after, self.max_retry_after))


# ============================================================================
# PROVIDER API CIRCUIT BREAKER
# ============================================================================

def with_connector_retry(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    max_retry_after: float = MAX_RETRY_AFTER_SECONDS,
):
    """
    Decorator for provider API calls with exponential backoff retry.

    Retries on:
    - ApiError with status 5xx / 429 / 408
    - RateLimitError (waiting at least its retry_after_seconds)
    - Any ConnectorError raised with retryable=True

    Strategy:
    - Max 3 attempts by default
    - Exponential backoff between min_wait and max_wait
    - Logs before each retry, re-raises the last error
    """
    def decorator(func):
        retrying = retry(
            retry=retry_if_exception(is_retryable_error),
            stop=stop_after_attempt(max_attempts),
            wait=wait_retry_after(
                wait_exponential(multiplier=1, min=min_wait, max=max_wait),
                max_retry_after=max_retry_after,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        @retrying
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            return await func(*args, **kwargs)

        @retrying
        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            return func(*args, **kwargs)

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator
