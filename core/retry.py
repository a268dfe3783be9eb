# core/retry.py

import asyncio
import inspect
import logging
import time
import random
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Optional

from core import cancellation as cancel
from core.cancellation import CancellationToken
from core.classifier import ErrorClass, classify
from core.exceptions import CancellationError

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """
    Configuration for retry behaviour.

    Attributes:
        attempts: Maximum number of attempts, including the first one.
        base_delay: Delay before the first retry (seconds). Retry i sleeps
                    base_delay * 2**i, i.e. 2s, 4s, 8s with the defaults.
        max_backoff: Maximum delay between attempts (seconds).
        jitter: If True, picks a uniform delay in [0, exponential cap].
                Off by default so delays are predictable.
        honor_retry_after: If True, a RateLimitError's retry_after hint
                           raises the delay to at least that many seconds.
        classifier: Callable mapping an exception to an ErrorClass.
        on_retry: Optional hook called before each retry sleep. Receives attempt
                  (1-indexed), delay (seconds), the exception and its class.
    """
    attempts: int = 3
    base_delay: float = 2.0
    max_backoff: float = 60.0
    jitter: bool = False
    honor_retry_after: bool = False
    classifier: Callable[[BaseException], ErrorClass] = classify
    on_retry: Optional[Callable[[int, float, BaseException, ErrorClass], None]] = None

    def delay_for(self, attempt_index: int, exc: Optional[BaseException] = None) -> float:
        """Backoff delay after the failure of attempt `attempt_index` (0-based)."""
        delay = min(self.max_backoff, self.base_delay * (2 ** attempt_index))
        if self.jitter:
            delay = random.uniform(0, delay)
        retry_after = getattr(exc, "retry_after", None)
        if self.honor_retry_after and retry_after is not None:
            delay = min(self.max_backoff, max(delay, float(retry_after)))
        return delay


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    config: Optional[RetryConfig] = None,
    cancellation: Optional[CancellationToken] = None,
    request_id: Optional[str] = None,
) -> Any:
    """
    Execute an async function with retries.

    Attempts are strictly sequential: the next one starts only after the
    previous one has failed and the backoff sleep has elapsed.

    Important: This function should only be used on idempotent operations.
    For streams, retry the stream-opening call and iterate the returned
    iterator outside the retry loop.

    Args:
        func: Async callable that takes no arguments and returns an awaitable.
        config: RetryConfig instance; if None, a default config is used.
        cancellation: Optional handle; checked before each attempt, raced
                      against each attempt and each backoff sleep.
        request_id: Optional identifier for logging correlation.

    Returns:
        Result of the function call.

    Raises:
        CancellationError as soon as the handle is triggered.
        The last exception if attempts are exhausted or the error is not retryable.
    """
    config = config or RetryConfig()
    start_time = time.monotonic()
    attempt = 0

    while True:
        try:
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            return await cancel.race(func(), cancellation)
        except CancellationError:
            logger.info(
                "Request cancelled",
                extra={"event": "retry_cancelled", "attempt": attempt + 1, "request_id": request_id},
            )
            raise
        except asyncio.CancelledError:
            # Task cancellation is never retried
            raise
        except Exception as e:
            exc = e

        decision = config.classifier(exc)
        elapsed = time.monotonic() - start_time

        if not decision.retryable or attempt >= config.attempts - 1:
            log = logger.error if decision.retryable else logger.warning
            log(
                "Retry exhausted" if decision.retryable else "Non-retryable error",
                extra={
                    "event": "retry_failed",
                    "attempt": attempt + 1,
                    "max_attempts": config.attempts,
                    "error_class": decision.value,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                    "request_id": request_id,
                    "elapsed_seconds": round(elapsed, 3),
                },
            )
            raise exc

        delay = config.delay_for(attempt, exc)

        # Optional hook for metrics (e.g., count rate-limit events)
        if config.on_retry:
            try:
                config.on_retry(attempt + 1, delay, exc, decision)
            except Exception:
                logger.debug("on_retry hook failed", exc_info=True)

        logger.warning(
            "Retrying after failure",
            extra={
                "event": "retry_attempt",
                "attempt": attempt + 1,
                "delay": round(delay, 3),
                "error_class": decision.value,
                "error_type": type(exc).__name__,
                "request_id": request_id,
                "elapsed_seconds": round(elapsed, 3),
            },
        )

        await cancel.sleep(delay, cancellation)
        attempt += 1


def async_retry(config: Optional[RetryConfig] = None):
    """
    Decorator that wraps an async function with retry logic.

    Example:
        @async_retry(RetryConfig(attempts=4, base_delay=1))
        async def fetch_data():
            ...
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        # Prevent accidentally decorating async generator functions (streams)
        if inspect.isasyncgenfunction(func):
            raise TypeError(
                "async_retry cannot be applied to async generator (streaming) functions. "
                "Retry only the stream-opening call, then iterate the returned "
                "async-iterator without retrying the generator itself."
            )

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await retry_async(lambda: func(*args, **kwargs), config=config)
        return wrapper
    return decorator
