"""
Timeout utilities for async operations.

Provides a timeout-plus-retry wrapper with exponential backoff for the
oracle's network calls.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Tuple, Type

from ..exceptions import OracleTimeoutError

logger = logging.getLogger(__name__)


async def with_timeout_and_retry(
    func: Callable[[], Awaitable[Any]],
    timeout: float,
    retries: int = 3,
    base_delay: float = 0.5,
    retry_on: Tuple[Type[BaseException], ...] = (asyncio.TimeoutError,),
) -> Any:
    """
    Execute an async callable with a per-attempt timeout and retry logic.

    Each attempt gets a fresh coroutine from ``func`` and its own timeout; a
    timed-out attempt is cancelled. Delays between attempts grow
    exponentially: base_delay, 2 * base_delay, 4 * base_delay, ...

    Args:
        func: Zero-argument callable returning a new coroutine per call
        timeout: Timeout in seconds for one attempt
        retries: Number of retry attempts after the first (default: 3)
        base_delay: Delay before the first retry in seconds (default: 0.5)
        retry_on: Exception types that trigger a retry

    Returns:
        Result from the first successful attempt

    Raises:
        OracleTimeoutError: If every attempt timed out
        Exception: The last error from ``retry_on`` if attempts failed otherwise

    Example:
        result = await with_timeout_and_retry(
            lambda: client.post(payload),
            timeout=5.0,
            retries=3,
        )
    """
    last_error = None

    for attempt in range(retries + 1):
        try:
            return await asyncio.wait_for(func(), timeout=timeout)
        except retry_on as e:
            last_error = e
            if attempt < retries:
                delay = base_delay * (2 ** attempt)
                logger.warning(
                    "retry_scheduled",
                    extra={
                        "attempt": attempt + 1,
                        "retries": retries,
                        "timeout_seconds": timeout,
                        "retry_delay": delay,
                        "error": str(e) or type(e).__name__,
                    },
                )
                await asyncio.sleep(delay)
            else:
                logger.error(
                    "retries_exhausted",
                    extra={
                        "attempts": attempt + 1,
                        "timeout_seconds": timeout,
                        "error": str(e) or type(e).__name__,
                    },
                )

    if isinstance(last_error, asyncio.TimeoutError):
        raise OracleTimeoutError(
            f"All {retries + 1} attempts exhausted (timeout: {timeout}s)"
        )

    raise last_error
