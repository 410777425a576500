"""Bounded concurrency task queue.

Runs at most ``max_concurrency`` tasks at a time on the current event
loop. Pending tasks are ordered by priority (higher first) and, within a
priority, by arrival (FIFO). A failed task is re-added after a flat
``retry_delay_s`` until its retry budget is spent; a retried task queues
behind tasks of the same priority that arrived before the retry.

Each queue is independent, so a low-concurrency lookup workload and a
higher-concurrency fetch workload can run side by side.
"""

import asyncio
import functools
import logging
import uuid
from dataclasses import dataclass, field
from heapq import heappop, heappush
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from quotashield.domain.errors import QueueClearedError, QueueOverflowError, TaskCancelledError
from quotashield.domain.events.api_events import EventHandler, TaskRetryScheduled
from quotashield.domain.models.common import QueuePolicy, TaskId, TaskType
from quotashield.domain.models.task import QueueStats, QueueTask, TaskState, TypeStats

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 3
DEFAULT_RETRY_DELAY_S = 1.0
DEFAULT_MAX_RETRIES = 3

# Named workloads and their defaults (overridable through settings)
DEFAULT_QUEUE_POLICIES: Dict[str, QueuePolicy] = {
    "lookup": QueuePolicy(max_concurrency=2, retry_delay_s=2.0, max_retries=3, max_pending=None),
    "fetch": QueuePolicy(max_concurrency=3, retry_delay_s=1.0, max_retries=2, max_pending=None),
}


@dataclass(order=True)
class _PriorityItem:
    """Wrapper for heap queue ordering."""

    sort_priority: int  # Negated task priority, heapq pops the smallest
    sequence: int  # Tie-breaker for FIFO within same priority
    task: QueueTask = field(compare=False)


class ConcurrentTaskQueue:
    """Priority queue of async tasks executed under a concurrency bound.

    Usage:
        queue = ConcurrentTaskQueue("fetch", max_concurrency=3)
        future = queue.submit(lambda: client.get_attachment(a_id), task_type="attachment")
        data = await future
        print(queue.stats())

    Settled outcomes stay queryable through state_of, get_result, get_error
    and wait_for_task until the task id is reused or passed to ``forget``.
    Long-lived queues should forget ids they no longer need.
    """

    def __init__(
        self,
        name: str = "default",
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        retry_delay_s: float = DEFAULT_RETRY_DELAY_S,
        max_retries: int = DEFAULT_MAX_RETRIES,
        max_pending: Optional[int] = None,
        enable_stats: bool = True,
        on_task_complete: Optional[Callable[[str, Any], None]] = None,
        on_task_error: Optional[Callable[[str, BaseException], None]] = None,
        on_queue_empty: Optional[Callable[[], None]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        event_handler: Optional[EventHandler] = None,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if max_retries < 0 or retry_delay_s < 0:
            raise ValueError("max_retries and retry_delay_s must be non-negative")
        self.name = name
        self.max_concurrency = max_concurrency
        self.retry_delay_s = retry_delay_s
        self.max_retries = max_retries
        self.max_pending = max_pending
        self.enable_stats = enable_stats
        self.on_task_complete = on_task_complete
        self.on_task_error = on_task_error
        self.on_queue_empty = on_queue_empty
        self.event_handler = event_handler
        self._sleep = sleep

        self._heap: List[_PriorityItem] = []
        self._sequence = 0
        self._tasks: Dict[str, QueueTask] = {}  # Live (non-terminal) tasks
        self._futures: Dict[str, "asyncio.Future[Any]"] = {}
        self._running: Set[str] = set()
        self._runners: Set["asyncio.Task[None]"] = set()
        self._retry_handles: Dict[str, "asyncio.Task[None]"] = {}
        self._outcomes: Dict[str, Tuple[TaskState, Any]] = {}
        self._idle_waiters: List["asyncio.Future[None]"] = []

        self._total_tasks = 0
        self._completed_tasks = 0
        self._failed_tasks = 0
        self._execution_ms_total = 0.0
        self._tasks_by_type: Dict[str, TypeStats] = {}

        logger.info(
            f"ConcurrentTaskQueue '{name}' initialized: max_concurrency={max_concurrency}, "
            f"retry_delay={retry_delay_s}s, max_retries={max_retries}"
        )

    # --- Submission ---

    def add(self, task: QueueTask) -> "asyncio.Future[Any]":
        """Adds a task and schedules it; returns a future for its outcome.

        Must be called from within a running event loop.

        Raises:
            ValueError: If a live task with the same id exists.
            QueueOverflowError: If ``max_pending`` tasks are already waiting.
        """
        if task.id in self._tasks:
            raise ValueError(f"Task {task.id} is already queued in '{self.name}'")
        if self.max_pending is not None and self._count_state(TaskState.PENDING) >= self.max_pending:
            raise QueueOverflowError(
                f"Queue '{self.name}' is full ({self.max_pending} pending tasks)", task_id=task.id
            )

        future = asyncio.get_running_loop().create_future()
        if task.max_retries is None:
            task.max_retries = self.max_retries
        self._tasks[task.id] = task
        self._futures[task.id] = future
        self._outcomes.pop(task.id, None)

        if self.enable_stats:
            self._total_tasks += 1
            self._tasks_by_type.setdefault(task.type, TypeStats()).total += 1

        self._push(task)
        logger.debug(f"[{self.name}] Added task {task.id} ({task.type}). Queue size: {self._count_state(TaskState.PENDING)}")
        self._pump()
        return future

    def submit(
        self,
        execute: Callable[[], Awaitable[Any]],
        *,
        task_type: str = "default",
        priority: int = 0,
        task_id: Optional[str] = None,
        max_retries: Optional[int] = None,
        timeout_s: Optional[float] = None,
    ) -> "asyncio.Future[Any]":
        """Builds a QueueTask around ``execute`` and adds it."""
        task = QueueTask(
            id=TaskId(task_id or f"{task_type}_{uuid.uuid4().hex[:9]}"),
            type=TaskType(task_type),
            execute=execute,
            priority=priority,
            max_retries=max_retries,
            timeout_s=timeout_s,
        )
        return self.add(task)

    def remove(self, task_id: str) -> bool:
        """Drops a task that has not started yet. Returns True if one was dropped."""
        task = self._tasks.get(task_id)
        if task is None or task.state not in (TaskState.PENDING, TaskState.RETRYING):
            return False
        self._cancel(task, TaskCancelledError(f"Task {task_id} was removed from queue '{self.name}'", task_id=task_id))
        logger.info(f"[{self.name}] Removed task {task_id} from queue")
        self._check_idle()
        return True

    def clear(self) -> int:
        """Rejects every task that is waiting to run; running tasks are left alone.

        Returns:
            Number of rejected tasks.
        """
        waiting = [t for t in self._tasks.values() if t.state in (TaskState.PENDING, TaskState.RETRYING)]
        for task in waiting:
            self._cancel(task, QueueClearedError(f"Queue '{self.name}' was cleared", task_id=task.id))
        self._heap = []
        logger.info(f"[{self.name}] Cleared {len(waiting)} pending tasks from queue")
        self._check_idle()
        return len(waiting)

    def forget(self, task_id: str) -> bool:
        """Drops the stored outcome of a settled task. Returns False for live or unknown ids."""
        if task_id in self._tasks:
            return False
        return self._outcomes.pop(task_id, None) is not None

    # --- Queries ---

    def stats(self) -> QueueStats:
        average = self._execution_ms_total / self._completed_tasks if self._completed_tasks else 0.0
        return QueueStats(
            total_tasks=self._total_tasks,
            completed_tasks=self._completed_tasks,
            failed_tasks=self._failed_tasks,
            pending_tasks=self._count_state(TaskState.PENDING),
            running_tasks=len(self._running),
            retrying_tasks=self._count_state(TaskState.RETRYING),
            average_execution_ms=average,
            tasks_by_type={
                name: TypeStats(s.total, s.completed, s.failed) for name, s in self._tasks_by_type.items()
            },
        )

    def state_of(self, task_id: str) -> Optional[TaskState]:
        task = self._tasks.get(task_id)
        if task is not None:
            return task.state
        outcome = self._outcomes.get(task_id)
        return outcome[0] if outcome else None

    def is_completed(self, task_id: str) -> bool:
        return self.state_of(task_id) is TaskState.COMPLETED

    def is_failed(self, task_id: str) -> bool:
        return self.state_of(task_id) is TaskState.FAILED

    def get_result(self, task_id: str) -> Any:
        outcome = self._outcomes.get(task_id)
        if outcome and outcome[0] is TaskState.COMPLETED:
            return outcome[1]
        return None

    def get_error(self, task_id: str) -> Optional[BaseException]:
        outcome = self._outcomes.get(task_id)
        if outcome and outcome[0] in (TaskState.FAILED, TaskState.CANCELLED):
            return outcome[1]
        return None

    async def wait_for_task(self, task_id: str, timeout_s: Optional[float] = None) -> Any:
        """Waits for a task's outcome, returning its result or raising its error.

        Raises:
            KeyError: If the queue never saw ``task_id``.
            asyncio.TimeoutError: If ``timeout_s`` elapses first.
        """
        outcome = self._outcomes.get(task_id)
        if outcome is not None:
            state, value = outcome
            if state is TaskState.COMPLETED:
                return value
            raise value
        future = self._futures.get(task_id)
        if future is None:
            raise KeyError(f"Unknown task id: {task_id}")
        return await asyncio.wait_for(asyncio.shield(future), timeout_s)

    async def wait_for_all(self, timeout_s: Optional[float] = None) -> None:
        """Waits until no task is pending, running or waiting for a retry."""
        if not self._tasks:
            return
        waiter = asyncio.get_running_loop().create_future()
        self._idle_waiters.append(waiter)
        try:
            await asyncio.wait_for(waiter, timeout_s)
        finally:
            if waiter in self._idle_waiters:
                self._idle_waiters.remove(waiter)

    # --- Scheduling ---

    def _count_state(self, state: TaskState) -> int:
        return sum(1 for t in self._tasks.values() if t.state is state)

    def _push(self, task: QueueTask) -> None:
        task.state = TaskState.PENDING
        self._sequence += 1
        heappush(self._heap, _PriorityItem(-task.priority, self._sequence, task))

    def _pump(self) -> None:
        """Promotes the highest-priority pending tasks into free slots."""
        while self._heap and len(self._running) < self.max_concurrency:
            task = heappop(self._heap).task
            # Skip heap entries of tasks removed or cleared after they were pushed
            if self._tasks.get(task.id) is not task or task.state is not TaskState.PENDING:
                continue
            task.state = TaskState.RUNNING
            self._running.add(task.id)
            logger.debug(
                f"[{self.name}] Starting task {task.id} ({task.type}). "
                f"Running: {len(self._running)}/{self.max_concurrency}"
            )
            runner = asyncio.ensure_future(self._run(task))
            self._runners.add(runner)
            runner.add_done_callback(self._runners.discard)

    async def _run(self, task: QueueTask) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            if task.timeout_s is None:
                result = await task.execute()
            else:
                result = await asyncio.wait_for(task.execute(), task.timeout_s)
        except asyncio.CancelledError:
            self._running.discard(task.id)
            self._cancel(task, TaskCancelledError(f"Task {task.id} was cancelled while running", task_id=task.id))
            raise
        except Exception as e:
            elapsed_ms = (loop.time() - started) * 1000
            self._running.discard(task.id)
            logger.warning(f"[{self.name}] Task {task.id} ({task.type}) failed after {elapsed_ms:.0f}ms: {e}")
            self._handle_failure(task, e)
        else:
            elapsed_ms = (loop.time() - started) * 1000
            self._running.discard(task.id)
            logger.debug(f"[{self.name}] Task {task.id} ({task.type}) completed in {elapsed_ms:.0f}ms")
            self._handle_success(task, result, elapsed_ms)
        finally:
            self._pump()
            self._check_idle()

    def _handle_success(self, task: QueueTask, result: Any, elapsed_ms: float) -> None:
        task.state = TaskState.COMPLETED
        if self.enable_stats:
            self._completed_tasks += 1
            self._execution_ms_total += elapsed_ms
            self._tasks_by_type.setdefault(task.type, TypeStats()).completed += 1
        self._finish(task, TaskState.COMPLETED, result)
        self._safe_call(task.on_success, result)
        self._safe_call(self.on_task_complete, task.id, result)

    def _handle_failure(self, task: QueueTask, error: Exception) -> None:
        budget = task.max_retries if task.max_retries is not None else self.max_retries
        if task.retries < budget:
            task.retries += 1
            task.state = TaskState.RETRYING
            logger.info(f"[{self.name}] Retrying task {task.id} ({task.type}) - attempt {task.retries}/{budget}")
            event = TaskRetryScheduled(
                queue_name=self.name, task_id=task.id, retry_number=task.retries,
                delay_seconds=self.retry_delay_s, error=error,
            )
            logger.debug(f"EVENT: {event}")
            if self.event_handler is not None:
                self.event_handler(event)
            self._retry_handles[task.id] = asyncio.ensure_future(self._requeue_later(task))
            return

        task.state = TaskState.FAILED
        if self.enable_stats:
            self._failed_tasks += 1
            self._tasks_by_type.setdefault(task.type, TypeStats()).failed += 1
        logger.error(f"[{self.name}] Task {task.id} ({task.type}) failed permanently: {error}")
        self._finish(task, TaskState.FAILED, error)
        self._safe_call(task.on_error, error)
        self._safe_call(self.on_task_error, task.id, error)

    async def _requeue_later(self, task: QueueTask) -> None:
        try:
            await self._sleep(self.retry_delay_s)
        finally:
            self._retry_handles.pop(task.id, None)
        if self._tasks.get(task.id) is task and task.state is TaskState.RETRYING:
            self._push(task)
            self._pump()

    def _cancel(self, task: QueueTask, error: BaseException) -> None:
        handle = self._retry_handles.pop(task.id, None)
        if handle is not None:
            handle.cancel()
        task.state = TaskState.CANCELLED
        self._finish(task, TaskState.CANCELLED, error)

    def _finish(self, task: QueueTask, state: TaskState, value: Any) -> None:
        """Moves a task out of the live set and settles its future."""
        self._tasks.pop(task.id, None)
        self._outcomes[task.id] = (state, value)
        future = self._futures.pop(task.id, None)
        if future is None or future.done():
            return
        if state is TaskState.COMPLETED:
            future.set_result(value)
        else:
            future.set_exception(value)
            # Outcome stays queryable through get_error; no "never retrieved" warning
            future.exception()

    def _check_idle(self) -> None:
        if self._tasks:
            return
        for waiter in self._idle_waiters:
            if not waiter.done():
                waiter.set_result(None)
        self._idle_waiters.clear()
        self._safe_call(self.on_queue_empty)

    def _safe_call(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"[{self.name}] Callback {callback!r} raised: {e}", exc_info=True)


def with_concurrency_limit(
    op: Callable[..., Awaitable[Any]],
    queue: ConcurrentTaskQueue,
    *,
    task_type: Optional[str] = None,
    priority: int = 0,
    timeout_s: Optional[float] = None,
) -> Callable[..., Awaitable[Any]]:
    """Wraps ``op`` so each call runs as a task of ``queue``.

    Calls are not retried by the queue; combine with ``with_retry`` for that.
    ``timeout_s`` bounds each call and is independent of any retry budget.
    """
    label = task_type or getattr(op, "__name__", "call")

    @functools.wraps(op)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        future = queue.submit(
            lambda: op(*args, **kwargs),
            task_type=label,
            priority=priority,
            max_retries=0,
            timeout_s=timeout_s,
        )
        return await future

    wrapper.queue = queue  # type: ignore[attr-defined]
    return wrapper


def build_default_queues(policies: Optional[Dict[str, QueuePolicy]] = None) -> Dict[str, ConcurrentTaskQueue]:
    """Creates one independently configured queue per named policy."""
    selected = policies if policies is not None else DEFAULT_QUEUE_POLICIES
    return {
        name: ConcurrentTaskQueue(
            name=name,
            max_concurrency=policy["max_concurrency"],
            retry_delay_s=policy["retry_delay_s"],
            max_retries=policy["max_retries"],
            max_pending=policy.get("max_pending"),
        )
        for name, policy in selected.items()
    }
