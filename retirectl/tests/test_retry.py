import pytest

from retirectl.modules.models import RetryPolicy
from retirectl.modules.retry import RetryError, RetryExecutor


def test_returns_first_success_without_sleeping():
    sleeps = []
    executor = RetryExecutor(sleep=sleeps.append)
    assert executor.call(lambda x: x * 2, 21) == 42
    assert sleeps == []


def test_retries_with_fixed_delay_until_success():
    sleeps = []
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 4:
            raise ConnectionError("api unavailable")
        return "ok"

    executor = RetryExecutor(RetryPolicy(max_attempts=12, delay=8), sleep=sleeps.append)
    assert executor.call(flaky, description="list nodes") == "ok"
    assert len(calls) == 4
    assert sleeps == [8, 8, 8]


def test_gives_up_after_twelve_attempts():
    sleeps = []
    calls = []

    def always_fails():
        calls.append(1)
        raise ConnectionError("refused")

    executor = RetryExecutor(sleep=sleeps.append)
    with pytest.raises(RetryError) as excinfo:
        executor.call(always_fails, description="uncordon node-a")

    assert len(calls) == 12
    assert len(sleeps) == 11
    assert excinfo.value.attempts == 12
    assert isinstance(excinfo.value.last_exception, ConnectionError)
    assert "uncordon node-a" in str(excinfo.value)


def test_does_not_retry_unlisted_exceptions():
    calls = []

    def broken():
        calls.append(1)
        raise KeyError("bug")

    executor = RetryExecutor(sleep=lambda _: None, exceptions=(ConnectionError,))
    with pytest.raises(KeyError):
        executor.call(broken)
    assert len(calls) == 1
