import asyncio
import time

import pytest

from tapan_e2e.errors import ERRORED, FAILED, PolicyExhausted, RunCancelled
from tapan_e2e.retry import RetrySpec, poll_until


@pytest.mark.parametrize(
    "kwargs",
    [
        {"interval_ms": 0},
        {"max_duration_ms": 0},
        {"max_attempts": 0},
        {"backoff": 0.5},
        {"jitter": 1.5},
        {"max_duration_ms": float("inf")},
        {"interval_ms": float("nan")},
        {"max_interval_ms": float("inf")},
        {"max_interval_ms": 0},
        {"backoff": float("inf")},
    ],
)
def test_invalid_spec_rejected(kwargs):
    with pytest.raises(ValueError):
        RetrySpec(**kwargs)


def test_delay_grows_with_backoff_and_is_capped():
    spec = RetrySpec(interval_ms=100, backoff=2.0, max_interval_ms=300)
    assert [spec.delay_for(n) for n in (1, 2, 3, 4)] == [0.1, 0.2, 0.3, 0.3]


async def test_returns_first_accepted_value():
    values = iter([0, 0, 3])
    result = await poll_until(lambda: next(values), RetrySpec(interval_ms=1, max_duration_ms=1_000))
    assert result == 3


async def test_async_predicate_and_errors_count_as_attempts():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("not yet")
        return "ready"

    assert await poll_until(flaky, RetrySpec(interval_ms=1, max_duration_ms=1_000)) == "ready"
    assert len(calls) == 3


async def test_exhaustion_carries_last_value_and_attempts():
    with pytest.raises(PolicyExhausted) as info:
        await poll_until(lambda: False, RetrySpec(interval_ms=1, max_duration_ms=1_000, max_attempts=4), describe="x")
    error = info.value
    assert error.attempts == 4
    assert error.last_value is False
    assert error.verdict == ERRORED


async def test_assertion_waits_exhaust_as_failures():
    with pytest.raises(PolicyExhausted) as info:
        await poll_until(lambda: False, RetrySpec(interval_ms=1, max_attempts=2), assertion=True)
    assert info.value.verdict == FAILED


async def test_polling_is_bounded_by_duration_plus_interval():
    spec = RetrySpec(interval_ms=50, max_duration_ms=200)
    started = time.monotonic()
    with pytest.raises(PolicyExhausted) as info:
        await poll_until(lambda: False, spec)
    elapsed = time.monotonic() - started
    assert elapsed < (200 + 50) / 1000.0 + 0.1
    # no busy spin: roughly one attempt per interval
    assert info.value.attempts <= 200 // 50 + 2


async def test_cancel_interrupts_sleep():
    cancel = asyncio.Event()
    spec = RetrySpec(interval_ms=5_000, max_duration_ms=60_000)

    async def trip():
        await asyncio.sleep(0.05)
        cancel.set()

    started = time.monotonic()
    with pytest.raises(RunCancelled):
        await asyncio.gather(poll_until(lambda: False, spec, cancel=cancel), trip())
    assert time.monotonic() - started < 1.0
