import pytest
from unittest.mock import MagicMock

from quotashield.domain.events.api_events import ApiCallFailed, ApiCallSucceeded, RetryScheduled
from quotashield.infrastructure.resilience.api_retry import BackoffRetryExecutor, RetryAttempt, with_retry


class RateLimited(Exception):
    status_code = 429


class FlakyCall:
    """Fails with the given errors in order, then returns ``result``."""

    def __init__(self, errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.attempts = 0

    async def __call__(self, *args, **kwargs):
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def make_executor(recording_sleep, **kwargs):
    kwargs.setdefault("rng", lambda: 0.0)
    return BackoffRetryExecutor(sleep=recording_sleep, **kwargs)


def test_compute_delay_doubles_per_attempt():
    executor = BackoffRetryExecutor(base_delay_s=1.0, rng=lambda: 0.0)
    assert [executor.compute_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0]


def test_compute_delay_adds_at_most_ten_percent_jitter():
    executor = BackoffRetryExecutor(base_delay_s=2.0, rng=lambda: 0.999)
    delay = executor.compute_delay(3)
    assert 8.0 <= delay < 8.8


def test_invalid_arguments_rejected():
    with pytest.raises(ValueError):
        BackoffRetryExecutor(max_attempts=0)
    with pytest.raises(ValueError):
        BackoffRetryExecutor(base_delay_s=-1)


@pytest.mark.asyncio
async def test_succeeds_after_retryable_failures(recording_sleep):
    call = FlakyCall([RateLimited(), RateLimited()], result="data")
    executor = make_executor(recording_sleep)

    assert await executor.execute_with_retry(call) == "data"
    assert call.attempts == 3
    assert recording_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_delays_never_decrease_with_jitter(recording_sleep):
    jitter = iter([0.9, 0.0, 0.5, 0.1])
    call = FlakyCall([RateLimited()] * 4)
    executor = BackoffRetryExecutor(sleep=recording_sleep, rng=lambda: next(jitter))

    await executor.execute_with_retry(call)

    assert recording_sleep.delays == sorted(recording_sleep.delays)


@pytest.mark.asyncio
async def test_persistent_rate_limit_uses_six_attempts(recording_sleep):
    """Six attempts, five waits of roughly 1, 2, 4, 8 and 16 seconds, then the last error."""
    errors = [RateLimited(f"attempt {n}") for n in range(1, 7)]
    call = FlakyCall(errors)
    executor = make_executor(recording_sleep)

    with pytest.raises(RateLimited) as exc_info:
        await executor.execute_with_retry(call)

    assert str(exc_info.value) == "attempt 6"
    assert call.attempts == 6
    assert recording_sleep.delays == [1.0, 2.0, 4.0, 8.0, 16.0]


@pytest.mark.asyncio
async def test_non_retryable_error_fails_immediately(recording_sleep):
    call = FlakyCall([KeyError("missing")])
    executor = make_executor(recording_sleep)

    with pytest.raises(KeyError):
        await executor.execute_with_retry(call)

    assert call.attempts == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_custom_classifier(recording_sleep):
    call = FlakyCall([ConnectionError(), ConnectionError()])
    executor = make_executor(recording_sleep, is_retryable=lambda e: isinstance(e, ConnectionError))

    assert await executor.execute_with_retry(call) == "ok"
    assert call.attempts == 3


@pytest.mark.asyncio
async def test_events_and_retry_hook(recording_sleep):
    events = []
    on_retry = MagicMock()
    call = FlakyCall([RateLimited()])
    executor = make_executor(recording_sleep, event_handler=events.append, on_retry=on_retry)

    await executor.execute_with_retry(call, endpoint_name="fetching gifts")

    assert isinstance(events[0], RetryScheduled)
    assert events[0].endpoint == "fetching gifts"
    assert events[0].attempt_number == 1
    assert isinstance(events[1], ApiCallSucceeded)
    assert events[1].attempts == 2
    on_retry.assert_called_once()
    attempt, error = on_retry.call_args.args
    assert attempt == RetryAttempt(attempt_number=1, delay_s=1.0)
    assert isinstance(error, RateLimited)


@pytest.mark.asyncio
async def test_failure_event_dispatched(recording_sleep):
    events = []
    executor = make_executor(recording_sleep, max_attempts=2, event_handler=events.append)

    with pytest.raises(RateLimited):
        await executor.execute_with_retry(FlakyCall([RateLimited(), RateLimited()]))

    assert isinstance(events[-1], ApiCallFailed)
    assert events[-1].attempts == 2
    assert events[-1].error_type == "RateLimited"


@pytest.mark.asyncio
async def test_with_retry_wraps_function(recording_sleep):
    executor = make_executor(recording_sleep)
    attempts = []

    async def fetch_actions(constituent_id, limit=10):
        attempts.append((constituent_id, limit))
        if len(attempts) < 2:
            raise RateLimited()
        return ["action"]

    wrapped = with_retry(fetch_actions, executor=executor)

    assert await wrapped("42", limit=5) == ["action"]
    assert attempts == [("42", 5), ("42", 5)]
    assert wrapped.retry_executor is executor
    assert wrapped.__name__ == "fetch_actions"


def test_with_retry_rejects_executor_and_options():
    with pytest.raises(ValueError):
        with_retry(FlakyCall([]), executor=BackoffRetryExecutor(), max_attempts=2)
