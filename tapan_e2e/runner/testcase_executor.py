# runner/testcase_executor.py
import asyncio
import inspect
import logging
import time
from functools import partial
from typing import Callable, Optional

from tapan_e2e.browser.launcher import launch_browser
from tapan_e2e.browser.locator_store import LocatorStore
from tapan_e2e.config.config import Settings
from tapan_e2e.errors import ERRORED, FAILED, InfrastructureError, RunCancelled, verdict_of
from tapan_e2e.parser.dsl_models import Scenario, Step
from tapan_e2e.retry import poll_until
from tapan_e2e.runner.result import ScenarioResult, ScenarioState, StepResult
from tapan_e2e.runner.session import SessionContext

logger = logging.getLogger(__name__)

SessionFactory = Callable[[Scenario], SessionContext]

_DETAIL_FIELDS = ("path", "expected", "actual", "selector", "url", "status", "timeout_ms", "elapsed_ms", "attempts")


def _detail(error: BaseException) -> dict:
    detail = {}
    for name in _DETAIL_FIELDS:
        value = getattr(error, name, None)
        if value is not None and value != "":
            detail[name] = value if isinstance(value, (int, float, str, bool)) else repr(value)
    return detail


class ScenarioExecutor:
    """Runs one scenario: steps in order, first hard failure halts, cleanup steps and teardown always run."""

    def __init__(self, settings: Settings, session_factory: Optional[SessionFactory] = None):
        self.settings = settings
        self.session_factory = session_factory or self._default_session
        self._store: Optional[LocatorStore] = None

    @property
    def store(self) -> LocatorStore:
        # one store for every session this executor opens
        if self._store is None:
            self._store = LocatorStore(self.settings.locator_store)
        return self._store

    def _default_session(self, scenario: Scenario) -> SessionContext:
        return SessionContext(
            self.settings,
            browser_factory=partial(launch_browser, self.settings, self.store),
            scenario=scenario.name,
        )

    async def execute(self, scenario: Scenario, cancel: Optional[asyncio.Event] = None) -> ScenarioResult:
        logger.info(f"▶ Executing scenario: {scenario.name}")
        result = ScenarioResult(name=scenario.name)
        started = time.monotonic()
        cancel = cancel or asyncio.Event()

        result.state = ScenarioState.RUNNING
        session = self.session_factory(scenario)
        session.cancel = cancel
        try:
            await self._run_bounded(scenario, session, result, cancel)
        finally:
            result.teardown_errors = list(await session.teardown())
            result.duration_ms = (time.monotonic() - started) * 1000.0

        if result.passed:
            logger.info(f"✅ PASSED: {scenario.name} ({result.duration_ms:.0f} ms)")
        else:
            logger.error(f"❌ {result.state.value.upper()}: {scenario.name} - {result.reason}")
        return result

    async def _run_bounded(self, scenario, session, result, cancel) -> None:
        steps_task = asyncio.ensure_future(self._run_steps(scenario, session, result))
        cancel_task = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {steps_task, cancel_task},
                timeout=self.settings.run_timeout_ms / 1000.0,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except BaseException:
            steps_task.cancel()
            raise
        finally:
            cancel_task.cancel()

        if steps_task in done:
            steps_task.result()
            return

        steps_task.cancel()
        try:
            await steps_task
        except asyncio.CancelledError:
            pass
        if cancel.is_set():
            reason = "Run cancelled"
        else:
            reason = f"Run timeout of {self.settings.run_timeout_ms} ms exceeded"
        error = RunCancelled(reason)
        interrupted = len([s for s in result.steps if s.index > 0]) + 1
        if interrupted <= len(scenario.steps):
            step = scenario.steps[interrupted - 1]
            result.steps.append(
                StepResult(index=interrupted, name=step.name, phase=step.phase, status=verdict_of(error),
                           target=step.target, error=reason, error_type=type(error).__name__,
                           best_effort=step.best_effort)
            )
        if result.state == ScenarioState.RUNNING:
            self._halt(result, interrupted, error)
        logger.warning(f"{scenario.name}: {reason} during step {interrupted}, tearing down")

    async def _run_steps(self, scenario: Scenario, session: SessionContext, result: ScenarioResult) -> None:
        try:
            await session.acquire()
            halted = False
        except Exception as e:
            logger.error(f"Session setup failed for {scenario.name}: {e}")
            if verdict_of(e) != ERRORED:
                # setup failures are always environment errors
                e = InfrastructureError(f"Session setup failed: {e}")
            result.steps.append(
                StepResult(index=0, name="acquire session", phase="pre", status=verdict_of(e),
                           error=str(e), error_type=type(e).__name__, detail=_detail(e))
            )
            self._halt(result, 0, e)
            halted = True

        for index, step in enumerate(scenario.steps, start=1):
            if halted and not step.best_effort:
                result.steps.append(
                    StepResult(index=index, name=step.name, phase=step.phase, status="skipped",
                               target=step.target, best_effort=step.best_effort)
                )
                continue

            outcome, error = await self._run_step(index, step, session)
            result.steps.append(outcome)
            if error is None:
                continue
            if step.best_effort:
                logger.warning(f"Cleanup step {index} ({step.name}) failed, verdict unchanged: {error}")
                continue
            self._halt(result, index, error)
            halted = True

        if not halted:
            result.state = ScenarioState.PASSED

    async def _run_step(self, index: int, step: Step, session: SessionContext):
        logger.info(f"[{index}] {step.name}")
        started = time.monotonic()
        error = None
        try:
            if step.retry is not None:
                await poll_until(
                    lambda: self._attempt(step, session),
                    step.retry,
                    cancel=session.cancel,
                    describe=step.name,
                    accept=lambda _: True,
                )
            else:
                await self._attempt(step, session)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e

        duration_ms = (time.monotonic() - started) * 1000.0
        if error is None:
            return StepResult(index=index, name=step.name, phase=step.phase, status="passed",
                              target=step.target, duration_ms=duration_ms, best_effort=step.best_effort), None

        status = verdict_of(error)
        detail = _detail(error)
        detail.setdefault("elapsed_ms", round(duration_ms, 1))
        logger.error(f"Step {index} {status}: {error}")
        return StepResult(
            index=index,
            name=step.name,
            phase=step.phase,
            status=status,
            target=step.target,
            error=str(error),
            error_type=type(error).__name__,
            detail=detail,
            duration_ms=duration_ms,
            best_effort=step.best_effort,
        ), error

    @staticmethod
    async def _attempt(step: Step, session: SessionContext):
        value = await step.action(session)
        if step.expect is not None:
            checked = step.expect(value, session)
            if inspect.isawaitable(checked):
                await checked
        return value

    @staticmethod
    def _halt(result: ScenarioResult, index: int, error: BaseException) -> None:
        if verdict_of(error) == FAILED:
            result.state = ScenarioState.FAILED
        else:
            result.state = ScenarioState.ERRORED
            result.cause = f"{type(error).__name__}: {error}"
        result.failed_step = index
        result.reason = str(error)
