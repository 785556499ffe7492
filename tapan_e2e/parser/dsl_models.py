# parser/dsl_models.py
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, Tuple

from tapan_e2e.retry import RetrySpec

PRE = "pre"
RUN = "run"
FINALLY = "finally"

Action = Callable[[Any], Awaitable[Any]]
Expectation = Callable[[Any, Any], Any]


@dataclass(frozen=True)
class Step:
    name: str
    action: Action
    expect: Optional[Expectation] = None
    retry: Optional[RetrySpec] = None
    best_effort: bool = False
    phase: str = RUN
    target: str = ""

    def as_cleanup(self) -> "Step":
        return replace(self, best_effort=True, phase=FINALLY)


@dataclass(frozen=True)
class Scenario:
    name: str
    steps: Tuple[Step, ...]
    description: str = ""
    depends_on: Tuple[str, ...] = ()
    # polling defaults, in milliseconds
    max_wait_ms: int = 60_000
    poll_interval_ms: int = 1_000
    source: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("Scenario name must not be empty")
        # accept lists from callers, store tuples
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "depends_on", tuple(self.depends_on))
        RetrySpec(interval_ms=self.poll_interval_ms, max_duration_ms=self.max_wait_ms)

    @property
    def polling(self) -> RetrySpec:
        return RetrySpec(interval_ms=self.poll_interval_ms, max_duration_ms=self.max_wait_ms)
