import pytest

import utils
from utils import RetryHelper, with_retry


class FlakyOperation:
    """Fails a fixed number of times before returning a value."""

    def __init__(self, failures: int, result="ok"):
        self.failures = failures
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"failure {self.calls}")
        return self.result


@pytest.mark.asyncio
async def test_succeeds_after_two_failures():
    operation = FlakyOperation(failures=2, result="payload")

    result = await with_retry(operation, 3)

    assert result == "payload"
    assert operation.calls == 3


@pytest.mark.asyncio
async def test_first_success_stops_retrying():
    operation = FlakyOperation(failures=0)

    assert await with_retry(operation, 5) == "ok"
    assert operation.calls == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("attempts", [1, 2, 4])
async def test_always_failing_raises_last_error(attempts):
    operation = FlakyOperation(failures=100)

    with pytest.raises(ConnectionError) as excinfo:
        await with_retry(operation, attempts)

    assert operation.calls == attempts
    assert str(excinfo.value) == f"failure {attempts}"


@pytest.mark.asyncio
async def test_timeouts_count_as_failed_attempts():
    calls = 0

    async def operation():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise TimeoutError()
        return calls

    assert await with_retry(operation, 2) == 2


@pytest.mark.asyncio
async def test_invalid_attempt_count():
    with pytest.raises(ValueError):
        await with_retry(FlakyOperation(0), 0)


@pytest.mark.asyncio
async def test_backoff_delays_between_attempts(monkeypatch):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(utils, "sleep", fake_sleep)
    operation = FlakyOperation(failures=100)

    with pytest.raises(ConnectionError):
        await with_retry(operation, 3, retry_helper=RetryHelper(base_delay=0.5))

    # No sleep after the final attempt
    assert delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_zero_base_delay_retries_immediately(monkeypatch):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(utils, "sleep", fake_sleep)

    await with_retry(FlakyOperation(failures=1), 2, retry_helper=RetryHelper(base_delay=0))

    assert delays == []


def test_delay_is_capped():
    helper = RetryHelper(base_delay=1.0, max_delay=5.0)

    assert [helper.calculate_delay(a) for a in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
