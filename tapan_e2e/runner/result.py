from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ScenarioState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    ERRORED = "errored"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self not in (ScenarioState.PENDING, ScenarioState.RUNNING)


@dataclass
class StepResult:
    index: int
    name: str
    status: str
    phase: str = "run"
    target: str = ""
    error: Optional[str] = None
    error_type: Optional[str] = None
    detail: Dict[str, Any] = field(default_factory=dict)
    duration_ms: float = 0.0
    best_effort: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "index": self.index,
            "name": self.name,
            "phase": self.phase,
            "status": self.status,
            "duration_ms": round(self.duration_ms, 1),
        }
        if self.target:
            data["target"] = self.target
        if self.error:
            data["error"] = self.error
            data["error_type"] = self.error_type
        if self.detail:
            data["detail"] = self.detail
        return data


@dataclass
class ScenarioResult:
    name: str
    state: ScenarioState = ScenarioState.PENDING
    duration_ms: float = 0.0
    steps: List[StepResult] = field(default_factory=list)
    failed_step: Optional[int] = None
    reason: Optional[str] = None
    cause: Optional[str] = None
    teardown_errors: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.state == ScenarioState.PASSED

    @property
    def failure(self) -> Optional[StepResult]:
        if self.failed_step is None:
            return None
        return next((s for s in self.steps if s.index == self.failed_step), None)

    @classmethod
    def skipped(cls, name: str, reason: str) -> "ScenarioResult":
        return cls(name=name, state=ScenarioState.SKIPPED, reason=reason)
