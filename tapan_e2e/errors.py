from typing import Any, Iterable, Optional

FAILED = "failed"
ERRORED = "errored"

MISSING = "<missing>"


class HarnessError(Exception):
    """Base class for every error raised by a step."""

    verdict = ERRORED


class AssertionFailed(HarnessError):
    """The system under test answered, but not with what was expected."""

    verdict = FAILED

    def __init__(self, message: str, path: str = "", expected: Any = None, actual: Any = None):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(message)

    @classmethod
    def mismatch(cls, path: str, expected: Any, actual: Any) -> "AssertionFailed":
        return cls(
            f"{path or '<root>'}: expected {expected!r}, got {actual!r}",
            path=path,
            expected=expected,
            actual=actual,
        )


class UnexpectedStatus(HarnessError):
    verdict = FAILED

    def __init__(self, method: str, url: str, status: int, accepted: Iterable[int], body: str = ""):
        self.method = method
        self.url = url
        self.status = status
        self.accepted = tuple(accepted)
        self.body = body
        snippet = body[:200]
        super().__init__(
            f"{method} {url} returned HTTP {status}, expected one of {list(self.accepted)}: {snippet}".rstrip(": ")
        )


class InfrastructureError(HarnessError):
    """The environment or harness misbehaved; says nothing about the product."""

    verdict = ERRORED


class NotFound(InfrastructureError):
    def __init__(self, selector: str, timeout_ms: int, message: Optional[str] = None):
        self.selector = selector
        self.timeout_ms = timeout_ms
        super().__init__(message or f"Element {selector!r} did not appear within {timeout_ms} ms")


class StepTimeout(InfrastructureError):
    def __init__(self, operation: str, timeout_ms: int):
        self.operation = operation
        self.timeout_ms = timeout_ms
        super().__init__(f"{operation} exceeded {timeout_ms} ms")


class NetworkError(InfrastructureError):
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Request to {url} failed: {reason}")


class InvalidStepInput(InfrastructureError, ValueError):
    pass


class RunCancelled(InfrastructureError):
    pass


class PolicyExhausted(HarnessError):
    """A bounded poll ran out of attempts or time.

    ``assertion=True`` marks waits that stand in for an expectation, which
    makes exhaustion a product failure rather than an environment error.
    """

    def __init__(
        self,
        description: str,
        attempts: int,
        elapsed_ms: float,
        last_value: Any = None,
        last_error: Optional[BaseException] = None,
        assertion: bool = False,
    ):
        self.description = description
        self.attempts = attempts
        self.elapsed_ms = elapsed_ms
        self.last_value = last_value
        self.last_error = last_error
        self.assertion = assertion
        detail = f"last error: {last_error}" if last_error is not None else f"last value: {last_value!r}"
        super().__init__(
            f"{description or 'condition'} not met after {attempts} attempt(s) in {elapsed_ms:.0f} ms ({detail})"
        )

    @property
    def verdict(self) -> str:
        if self.assertion:
            return FAILED
        if isinstance(self.last_error, HarnessError) and self.last_error.verdict == FAILED:
            return FAILED
        return ERRORED


def verdict_of(exc: BaseException) -> str:
    """Map any exception raised inside a step to ``failed`` or ``errored``."""
    if isinstance(exc, HarnessError):
        return exc.verdict
    if isinstance(exc, AssertionError):
        return FAILED
    return ERRORED
