"""Rate-limit-aware execution of remote queries.

Every remote call of the application goes through ``execute_query``:
rate limit failures are retried with backoff, a persistent rate limit is
turned into one ``QueryError`` carrying a retry-after hint and published on
the shared QuotaSignal, and an expired session gets exactly one
refresh-and-retry.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional

from quotashield.domain.errors import AuthExpiredError, QueryError
from quotashield.domain.events.api_events import EventHandler, QuotaExceeded
from quotashield.domain.interfaces.session import SessionProvider
from quotashield.infrastructure.resilience.api_retry import BackoffRetryExecutor
from quotashield.infrastructure.resilience.classification import (
    extract_retry_after, is_auth_error, is_rate_limit_error,
)
from quotashield.infrastructure.resilience.quota_signal import QuotaSignal

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_S = 60

_UNSET: Any = object()

Operation = Callable[[], Coroutine[Any, Any, Any]]


class RateLimitAwareQueryExecutor:
    """Runs remote calls with backoff, quota signalling and auth refresh."""

    def __init__(
        self,
        retry_executor: BackoffRetryExecutor,
        quota_signal: QuotaSignal,
        session_provider: Optional[SessionProvider] = None,
        timeout_s: Optional[float] = None,
        default_retry_after_s: int = DEFAULT_RETRY_AFTER_S,
        event_handler: Optional[EventHandler] = None,
    ):
        """Initializes the executor.

        Args:
            retry_executor: Backoff executor applied to every attempt.
            quota_signal: Shared cooldown state published on persistent
                rate limits.
            session_provider: Optional provider whose current session is
                checked before the first attempt. It is asked for one
                refresh when that session is unusable or a call fails with
                an expired credential.
            timeout_s: Per-attempt timeout, None for no timeout. Can be
                overridden for a single call.
            default_retry_after_s: Cooldown announced when the failure
                carries no retry-after hint.
            event_handler: Optional sink for domain events.
        """
        self.retry_executor = retry_executor
        self.quota_signal = quota_signal
        self.session_provider = session_provider
        self.timeout_s = timeout_s
        self.default_retry_after_s = default_retry_after_s
        self.event_handler = event_handler

    async def execute_query(
        self,
        operation: Operation,
        context_label: str,
        on_error: Optional[Callable[[str], None]] = None,
        timeout_s: Optional[float] = _UNSET,
    ) -> Any:
        """Runs ``operation`` with retry, classification and quota signalling.

        Args:
            operation: Zero-argument coroutine function performing the call.
            context_label: What the call does, e.g. "fetching gifts"; used in
                messages and logs.
            on_error: Called with the human-readable message before raising.
            timeout_s: Per-attempt timeout for this call only.

        Returns:
            The operation's result.

        Raises:
            QueryError: For any failure, with ``is_rate_limit`` set when the
                call exhausted its retries on quota errors.
        """
        timeout = self.timeout_s if timeout_s is _UNSET else timeout_s

        async def attempt() -> Any:
            if timeout is None:
                return await operation()
            return await asyncio.wait_for(operation(), timeout)

        try:
            refreshed = False
            if self.session_provider is not None:
                refreshed = await self._ensure_session(context_label)
            try:
                return await self.retry_executor.execute_with_retry(attempt, endpoint_name=context_label)
            except Exception as e:
                if refreshed or not (is_auth_error(e) and self.session_provider is not None):
                    raise
                logger.info(f"Credential rejected while {context_label}; refreshing session once.")
                await self._refresh_session()
                return await self.retry_executor.execute_with_retry(attempt, endpoint_name=context_label)
        except Exception as e:
            error = self._translate(e, context_label, timeout)
            if on_error is not None:
                on_error(error.message)
            raise error from e

    async def _ensure_session(self, context_label: str) -> bool:
        """Checks the session before the first attempt. Returns True if it had to be refreshed."""
        session = await self.session_provider.current_session()
        if session.is_usable():
            return False
        logger.info(f"No valid session before {context_label}; refreshing session once.")
        await self._refresh_session()
        return True

    async def _refresh_session(self) -> None:
        session = await self.session_provider.refresh()
        if not session.is_usable():
            raise AuthExpiredError("Authentication expired - please log in again")

    def _translate(self, error: BaseException, context_label: str, timeout: Optional[float]) -> QueryError:
        if isinstance(error, QueryError):
            return error

        if is_rate_limit_error(error):
            hint = extract_retry_after(error)
            retry_after = hint if hint is not None else self.default_retry_after_s
            message = (
                f"API quota exceeded while {context_label}. "
                f"Please wait {retry_after} seconds before trying again."
            )
            logger.error(message)
            self.quota_signal.set_quota_exceeded(True, retry_after)
            event = QuotaExceeded(context_label=context_label, retry_after_seconds=retry_after)
            logger.debug(f"EVENT: {event}")
            if self.event_handler is not None:
                self.event_handler(event)
            return QueryError(message, error, is_rate_limit=True, retry_after=retry_after)

        if is_auth_error(error):
            message = f"Authentication expired while {context_label} - please log in again."
            logger.error(message)
            return QueryError(message, error, is_auth_error=True)

        if isinstance(error, asyncio.TimeoutError):
            message = f"Timed out after {timeout}s while {context_label}."
        else:
            message = f"Error {context_label}: {error}"
        logger.error(message)
        return QueryError(message, error)
