import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from tapan_e2e.runner.result import ScenarioResult, ScenarioState

logger = logging.getLogger(__name__)

TRACE_LIMIT = 5

_MARKERS = {
    ScenarioState.PASSED: "✅",
    ScenarioState.FAILED: "❌",
    ScenarioState.ERRORED: "💥",
    ScenarioState.SKIPPED: "⏭️ ",
}


@dataclass
class ScenarioReport:
    name: str
    state: str
    duration_ms: float
    reason: Optional[str] = None
    cause: Optional[str] = None
    failed_step: Optional[Dict[str, Any]] = None
    trace: List[Dict[str, Any]] = field(default_factory=list)
    trace_truncated: int = 0
    teardown_errors: List[str] = field(default_factory=list)

    @classmethod
    def from_result(cls, result: ScenarioResult, trace_limit: int = TRACE_LIMIT) -> "ScenarioReport":
        report = cls(
            name=result.name,
            state=result.state.value,
            duration_ms=round(result.duration_ms, 1),
            teardown_errors=list(result.teardown_errors),
        )
        if result.state in (ScenarioState.FAILED, ScenarioState.ERRORED):
            report.reason = result.reason
            report.cause = result.cause
            failure = result.failure
            if failure is not None:
                report.failed_step = failure.to_dict()
                prior = [s for s in result.steps if s.index < failure.index]
            else:
                prior = list(result.steps)
            report.trace_truncated = max(len(prior) - trace_limit, 0)
            report.trace = [s.to_dict() for s in prior[-trace_limit:]] if trace_limit else []
        elif result.state == ScenarioState.SKIPPED:
            report.reason = result.reason
        return report

    def to_dict(self) -> Dict[str, Any]:
        data = {"name": self.name, "state": self.state, "duration_ms": self.duration_ms}
        for key in ("reason", "cause", "failed_step"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.trace:
            data["trace"] = self.trace
            data["trace_truncated"] = self.trace_truncated
        if self.teardown_errors:
            data["teardown_errors"] = self.teardown_errors
        return data


def format_report(report: ScenarioReport) -> str:
    marker = _MARKERS.get(ScenarioState(report.state), "•")
    lines = [f"{marker} {report.name}: {report.state.upper()} ({report.duration_ms:.0f} ms)"]
    if report.failed_step:
        step = report.failed_step
        lines.append(f"    step {step['index']} [{step['phase']}] {step['name']}")
        if step.get("target"):
            lines.append(f"    target:   {step['target']}")
        detail = step.get("detail", {})
        for key in ("expected", "actual", "elapsed_ms"):
            if key in detail:
                lines.append(f"    {key + ':':<9} {detail[key]}")
        lines.append(f"    error:    {step.get('error')}")
    elif report.reason:
        lines.append(f"    reason:   {report.reason}")
    if report.cause:
        lines.append(f"    cause:    {report.cause}")
    if report.trace:
        if report.trace_truncated:
            lines.append(f"    ... {report.trace_truncated} earlier step(s)")
        for step in report.trace:
            lines.append(f"    [{step['status']}] {step['index']}. {step['name']}")
    for error in report.teardown_errors:
        lines.append(f"    teardown: {error}")
    return "\n".join(lines)


def format_summary(results: Iterable[ScenarioResult]) -> str:
    results = list(results)
    blocks = [format_report(ScenarioReport.from_result(r)) for r in results]
    counts = {state: sum(1 for r in results if r.state == state) for state in ScenarioState if state.terminal}
    tally = ", ".join(f"{n} {state.value}" for state, n in counts.items() if n)
    blocks.append(f"{len(results)} scenario(s): {tally or 'none run'}")
    return "\n".join(blocks)


def write_jsonl(path: str, results: Iterable[ScenarioResult]) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("a", encoding="utf-8") as f:
        for result in results:
            f.write(json.dumps(ScenarioReport.from_result(result).to_dict(), default=str) + "\n")
    logger.info(f"Report written to {target}")


def exit_code(results: Iterable[ScenarioResult]) -> int:
    results = list(results)
    return 0 if results and all(r.passed for r in results) else 1
