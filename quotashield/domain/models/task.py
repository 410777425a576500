"""Domain models for the bounded concurrency task queue.

A task moves PENDING -> RUNNING -> COMPLETED, or on failure
RUNNING -> RETRYING -> PENDING until its retry budget is spent and it
ends FAILED. Pending tasks dropped by ``clear()``/``remove()`` end CANCELLED.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from quotashield.domain.models.common import TaskId, TaskType


class TaskState(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class QueueTask:
    """A unit of work submitted to a ConcurrentTaskQueue.

    Attributes:
        id: Unique id, used to query the outcome after the task finished.
        type: Tag for per-type statistics.
        execute: Zero-argument callable returning a fresh awaitable per attempt.
        priority: Higher values run sooner.
        retries: Number of retries already consumed.
        max_retries: Retry budget; None means "use the queue default".
        timeout_s: Optional per-attempt timeout.
        on_success: Called with the result when the task completes.
        on_error: Called with the final error when the task fails.
    """
    id: TaskId
    type: TaskType
    execute: Callable[[], Awaitable[Any]]
    priority: int = 0
    retries: int = 0
    max_retries: Optional[int] = None
    timeout_s: Optional[float] = None
    on_success: Optional[Callable[[Any], None]] = None
    on_error: Optional[Callable[[BaseException], None]] = None
    state: TaskState = TaskState.PENDING


@dataclass
class TypeStats:
    total: int = 0
    completed: int = 0
    failed: int = 0


@dataclass
class QueueStats:
    """Read-only aggregate derived from the queue's live task set."""
    total_tasks: int
    completed_tasks: int
    failed_tasks: int
    pending_tasks: int
    running_tasks: int
    retrying_tasks: int
    average_execution_ms: float
    tasks_by_type: Dict[str, TypeStats] = field(default_factory=dict)
