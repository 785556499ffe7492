import asyncio
import inspect
import logging
import math
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from tapan_e2e.errors import PolicyExhausted, RunCancelled

logger = logging.getLogger(__name__)

Predicate = Callable[[], Union[Any, Awaitable[Any]]]


def _positive_finite(value) -> bool:
    return value is not None and math.isfinite(value) and value > 0


@dataclass(frozen=True)
class RetrySpec:
    """Bounded polling configuration. All durations are milliseconds."""

    interval_ms: int = 500
    max_duration_ms: int = 30_000
    max_attempts: Optional[int] = None
    backoff: float = 1.0
    max_interval_ms: Optional[int] = None
    jitter: float = 0.0

    def __post_init__(self):
        if not _positive_finite(self.interval_ms):
            raise ValueError(f"interval_ms must be a positive finite number, got {self.interval_ms}")
        if not _positive_finite(self.max_duration_ms):
            raise ValueError(f"max_duration_ms must be a positive finite number, got {self.max_duration_ms}")
        if self.max_interval_ms is not None and not _positive_finite(self.max_interval_ms):
            raise ValueError(f"max_interval_ms must be a positive finite number, got {self.max_interval_ms}")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if not math.isfinite(self.backoff) or self.backoff < 1.0:
            raise ValueError(f"backoff must be a finite number >= 1.0, got {self.backoff}")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be within [0, 1], got {self.jitter}")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after ``attempt`` (1-based) before the next one."""
        delay_ms = self.interval_ms * (self.backoff ** (attempt - 1))
        if self.max_interval_ms is not None:
            delay_ms = min(delay_ms, self.max_interval_ms)
        if self.jitter:
            delay_ms += random.uniform(0.0, delay_ms * self.jitter)
        return delay_ms / 1000.0

    @classmethod
    def within(cls, timeout_ms: int, interval_ms: int = 250) -> "RetrySpec":
        return cls(interval_ms=min(interval_ms, timeout_ms), max_duration_ms=timeout_ms)


async def _sleep(seconds: float, cancel: Optional[asyncio.Event]) -> None:
    if cancel is None:
        await asyncio.sleep(seconds)
        return
    try:
        await asyncio.wait_for(cancel.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return
    raise RunCancelled("Polling cancelled")


async def poll_until(
    predicate: Predicate,
    spec: RetrySpec,
    cancel: Optional[asyncio.Event] = None,
    describe: str = "",
    assertion: bool = False,
    accept: Callable[[Any], bool] = bool,
) -> Any:
    """
    Call ``predicate`` until ``accept(value)`` holds, then return the value.

    The predicate may be sync or async. An exception raised by it counts as an
    unsuccessful attempt. The interval is always slept between attempts, but
    never past the deadline, so total polling time stays under
    ``max_duration + interval``.
    """
    start = time.monotonic()
    deadline = start + spec.max_duration_ms / 1000.0
    attempt = 0
    last_value = None
    last_error: Optional[BaseException] = None

    while True:
        if cancel is not None and cancel.is_set():
            raise RunCancelled(f"Polling cancelled: {describe}")

        attempt += 1
        try:
            value = predicate()
            if inspect.isawaitable(value):
                value = await value
        except (asyncio.CancelledError, RunCancelled):
            raise
        except Exception as e:
            last_error = e
            logger.debug(f"{describe or 'poll'} attempt {attempt} raised: {e}")
        else:
            last_error = None
            last_value = value
            if accept(value):
                logger.debug(f"{describe or 'poll'} satisfied on attempt {attempt}")
                return value

        now = time.monotonic()
        out_of_attempts = spec.max_attempts is not None and attempt >= spec.max_attempts
        if out_of_attempts or now >= deadline:
            raise PolicyExhausted(
                describe,
                attempts=attempt,
                elapsed_ms=(now - start) * 1000.0,
                last_value=last_value,
                last_error=last_error,
                assertion=assertion,
            )

        await _sleep(min(spec.delay_for(attempt), max(deadline - now, 0.0)), cancel)
