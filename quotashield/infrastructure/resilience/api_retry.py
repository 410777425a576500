"""Service for executing remote calls with automatic retries.

Implements exponential backoff with jitter for rate limit/quota failures.
Anything the classifier does not recognise as retryable is raised on the
spot, without consuming a retry.
"""

import asyncio
import functools
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Optional

from quotashield.domain.events.api_events import (
    ApiCallFailed, ApiCallSucceeded, DomainEvent, EventHandler, RetryScheduled,
)
from quotashield.infrastructure.resilience.classification import is_rate_limit_error

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 6  # 1 initial attempt + 5 retries
DEFAULT_BASE_DELAY_S = 1.0
DEFAULT_JITTER_RATIO = 0.1


@dataclass
class RetryAttempt:
    """A scheduled retry: the failed attempt number and the wait before the next one."""
    attempt_number: int
    delay_s: float


class BackoffRetryExecutor:
    """Retries an async operation with ``base * 2^n`` backoff plus jitter."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_s: float = DEFAULT_BASE_DELAY_S,
        jitter_ratio: float = DEFAULT_JITTER_RATIO,
        is_retryable: Callable[[BaseException], bool] = is_rate_limit_error,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        on_retry: Optional[Callable[[RetryAttempt, BaseException], None]] = None,
        event_handler: Optional[EventHandler] = None,
    ):
        """Initializes the BackoffRetryExecutor.

        Args:
            max_attempts: Total number of attempts, including the first one.
            base_delay_s: Delay in seconds after the first failed attempt.
            jitter_ratio: Upper bound of the random addition, as a fraction
                of the computed delay.
            is_retryable: Classifier deciding whether a failure is retried.
            sleep: Awaitable sleep function (injected in tests).
            rng: Returns a float in [0, 1) used for jitter.
            on_retry: Optional hook called before each backoff wait.
            event_handler: Optional sink for domain events.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay_s < 0 or jitter_ratio < 0:
            raise ValueError("base_delay_s and jitter_ratio must be non-negative")
        self.max_attempts = max_attempts
        self.base_delay_s = base_delay_s
        self.jitter_ratio = jitter_ratio
        self.is_retryable = is_retryable
        self._sleep = sleep
        self._rng = rng
        self.on_retry = on_retry
        self.event_handler = event_handler

        logger.info(
            f"BackoffRetryExecutor initialized: max_attempts={max_attempts}, "
            f"base_delay={base_delay_s}s, jitter={jitter_ratio:.0%}"
        )

    def compute_delay(self, attempt: int) -> float:
        """Returns the wait after failed attempt ``attempt`` (1-based).

        ``base * 2^(attempt - 1)`` plus a random jitter of up to
        ``jitter_ratio`` of that value.
        """
        delay = self.base_delay_s * (2 ** (attempt - 1))
        return delay + delay * self.jitter_ratio * self._rng()

    def _dispatch(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        if self.event_handler is not None:
            self.event_handler(event)

    async def execute_with_retry(
        self,
        func: Callable[..., Coroutine[Any, Any, Any]],
        *args: Any,
        endpoint_name: Optional[str] = None,
        **kwargs: Any,
    ) -> Any:
        """Executes an async function, retrying retryable failures.

        Args:
            func: The async function (remote call) to execute.
            *args: Positional arguments for the function.
            endpoint_name: Label used in logs and events (defaults to the
                function name).
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the first successful attempt.

        Raises:
            Exception: The last error once ``max_attempts`` attempts failed
                with retryable errors, or the first non-retryable error.
        """
        endpoint = endpoint_name or getattr(func, "__name__", "operation")

        for attempt in range(1, self.max_attempts + 1):
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                if not self.is_retryable(e):
                    logger.debug(f"Non-retryable error calling {endpoint} on attempt {attempt}: {type(e).__name__}: {e}")
                    self._dispatch(ApiCallFailed(endpoint=endpoint, error_type=type(e).__name__, error_message=str(e), attempts=attempt))
                    raise

                if attempt >= self.max_attempts:
                    logger.error(f"Max attempts ({self.max_attempts}) reached for {endpoint}. Last error: {e}")
                    self._dispatch(ApiCallFailed(endpoint=endpoint, error_type=type(e).__name__, error_message=str(e), attempts=attempt))
                    raise

                delay = self.compute_delay(attempt)
                logger.warning(
                    f"Retryable error calling {endpoint} on attempt {attempt}/{self.max_attempts}: "
                    f"{type(e).__name__}. Waiting {delay:.2f}s..."
                )
                self._dispatch(RetryScheduled(endpoint=endpoint, attempt_number=attempt, delay_seconds=delay))
                if self.on_retry is not None:
                    self.on_retry(RetryAttempt(attempt_number=attempt, delay_s=delay), e)
                await self._sleep(delay)
                continue

            latency_ms = (time.perf_counter() - start_time) * 1000
            self._dispatch(ApiCallSucceeded(endpoint=endpoint, attempts=attempt, latency_ms=latency_ms))
            return result

        # Unreachable: the loop either returns or raises
        raise RuntimeError(f"Retry loop for {endpoint} exited without a result")


def with_retry(
    op: Callable[..., Coroutine[Any, Any, Any]],
    executor: Optional[BackoffRetryExecutor] = None,
    **options: Any,
) -> Callable[..., Coroutine[Any, Any, Any]]:
    """Wraps ``op`` so every call goes through a BackoffRetryExecutor.

    Either pass a configured ``executor`` or the executor's constructor
    ``options`` (max_attempts, base_delay_s, ...).
    """
    if executor is not None and options:
        raise ValueError("Pass either an executor or executor options, not both")
    retry_executor = executor or BackoffRetryExecutor(**options)

    @functools.wraps(op)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        return await retry_executor.execute_with_retry(op, *args, **kwargs)

    wrapper.retry_executor = retry_executor  # type: ignore[attr-defined]
    return wrapper
