"""
Caller-side retry using Tenacity.

The core never retries on its own: a TemporarilyUnavailable result is handed
back to the caller. Callers that want backoff wrap the operation here.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from custodyledger.core.errors import TemporarilyUnavailable
from custodyledger.core.logging import get_logger
from custodyledger.core.types import Result

logger = get_logger("resilience.retry")


def is_temporarily_unavailable(result: Any) -> bool:
    """True if ``result`` is a Result carrying TemporarilyUnavailable."""
    return isinstance(result, Result) and isinstance(result.error, TemporarilyUnavailable)


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        f"Operation temporarily unavailable, retrying (attempt {retry_state.attempt_number})"
    )


def _last_result(retry_state: RetryCallState) -> Any:
    return retry_state.outcome.result()


async def retry_if_unavailable(
    operation: Callable[..., Awaitable[Result[Any]]],
    *args: Any,
    attempts: int = 3,
    multiplier: float = 0.5,
    max_wait: float = 8.0,
    **kwargs: Any,
) -> Result[Any]:
    """
    Call ``operation`` until it stops returning TemporarilyUnavailable.

    Args:
        operation: Async callable returning a Result
        attempts: Maximum number of calls
        multiplier: Exponential backoff multiplier in seconds
        max_wait: Upper bound for a single wait in seconds

    Returns:
        The first result that is not TemporarilyUnavailable, or the last one
        once attempts are exhausted
    """
    retrying = AsyncRetrying(
        retry=retry_if_result(is_temporarily_unavailable),
        wait=wait_exponential(multiplier=multiplier, max=max_wait),
        stop=stop_after_attempt(attempts),
        before_sleep=_log_retry,
        retry_error_callback=_last_result,
    )
    return await retrying(operation, *args, **kwargs)
