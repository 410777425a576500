"""Exception types shared by the cache, resilience and queue contexts."""

from typing import Optional


class QuotaShieldError(Exception):
    """Base class for all errors raised by quotashield."""


class StoreError(QuotaShieldError):
    """Raised when the backing medium of the cache rejects a read or write."""

    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message)


class AuthExpiredError(QuotaShieldError):
    """Raised when the session has no valid access token."""


class QueryError(QuotaShieldError):
    """A remote call failure translated for the consuming application.

    Callers branch on ``is_rate_limit`` to show the cooldown notice instead
    of a generic error.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[BaseException] = None,
        is_rate_limit: bool = False,
        retry_after: Optional[int] = None,
        is_auth_error: bool = False,
    ):
        self.message = message
        self.original_error = original_error
        self.is_rate_limit = is_rate_limit
        self.retry_after = retry_after
        self.is_auth_error = is_auth_error
        super().__init__(message)


# --- Queue errors ---

class QueueError(QuotaShieldError):
    """Base class for errors surfaced to the submitter of a queued task."""

    def __init__(self, message: str, task_id: Optional[str] = None):
        self.task_id = task_id
        super().__init__(message)


class QueueClearedError(QueueError):
    """The task was still pending when the queue was cleared."""


class QueueOverflowError(QueueError):
    """The queue refused the task because its pending limit was reached."""


class TaskCancelledError(QueueError):
    """The pending task was removed from the queue before it ran."""
