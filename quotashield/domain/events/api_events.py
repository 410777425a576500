"""Domain Events related to remote calls, quota and queued work.

Executors hand these to an optional ``event_handler`` and log them at
debug level. They carry no behaviour.
"""

from dataclasses import dataclass, field
import time
from typing import Any, Callable, Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


EventHandler = Callable[[DomainEvent], None]

# --- Remote call events ---

@dataclass
class ApiCallSucceeded(DomainEvent):
    """Event triggered when a remote call succeeds."""
    endpoint: str
    attempts: int
    latency_ms: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when a remote call fails definitively (after retries)."""
    endpoint: str
    error_type: str
    error_message: str
    attempts: int
    timestamp: float = field(default_factory=time.time)

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a rate-limited call."""
    endpoint: str
    attempt_number: int
    delay_seconds: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class QuotaExceeded(DomainEvent):
    """Event triggered when a call exhausted its retries on a quota error."""
    context_label: str
    retry_after_seconds: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

# --- Queue events ---

@dataclass
class TaskRetryScheduled(DomainEvent):
    """Event triggered when a failed queue task is scheduled to run again."""
    queue_name: str
    task_id: str
    retry_number: int
    delay_seconds: float
    error: Optional[Any] = None
    timestamp: float = field(default_factory=time.time)
