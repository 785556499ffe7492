import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Tuple

from tapan_e2e.parser.testcase_loader import ScenarioLoader
from tapan_e2e.runner.result import ScenarioResult
from tapan_e2e.runner.testcase_executor import ScenarioExecutor

logger = logging.getLogger(__name__)


class CircularDependency(RuntimeError):
    pass


class SuiteOrchestrator:

    def __init__(
        self,
        loader: ScenarioLoader,
        executor: ScenarioExecutor,
        fail_fast: bool = False,
        workers: int = 1,
        cancel: Optional[asyncio.Event] = None,
    ):
        """
        loader   → ScenarioLoader
        executor → ScenarioExecutor (one scenario, with its own session)
        workers  → how many scenarios may execute at the same time
        """
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.loader = loader
        self.executor = executor
        self.fail_fast = fail_fast
        self.cancel = cancel or asyncio.Event()
        self.results: Dict[str, ScenarioResult] = {}
        self._tasks: Dict[str, asyncio.Future] = {}
        self._slots = asyncio.Semaphore(workers)
        self._halted = False

    def check_dependencies(self, names: Iterable[str]) -> None:
        """Raise ``CircularDependency`` if any of ``names`` reaches itself through ``depends_on``."""
        checked = set()

        def visit(name: str, chain: Tuple[str, ...]) -> None:
            if name in chain:
                raise CircularDependency(f"Circular dependency detected: {' -> '.join(chain + (name,))}")
            if name in checked:
                return
            for dep in self.loader.load(name).depends_on:
                visit(dep, chain + (name,))
            checked.add(name)

        for name in names:
            visit(name, ())

    async def run_scenario(self, name: str, _chain: Tuple[str, ...] = ()) -> ScenarioResult:
        # Already executed → reuse result
        if name in self.results:
            return self.results[name]

        # Validate the whole graph before anything is scheduled
        if not _chain:
            self.check_dependencies([name])

        # Circular dependency detection
        if name in _chain:
            raise CircularDependency(f"Circular dependency detected: {' -> '.join(_chain + (name,))}")

        # Already scheduled by another dependant → share the run
        if name not in self._tasks:
            self._tasks[name] = asyncio.ensure_future(self._resolve(name, _chain + (name,)))
        return await self._tasks[name]

    async def _resolve(self, name: str, chain: Tuple[str, ...]) -> ScenarioResult:
        scenario = self.loader.load(name)

        # 1️⃣ RUN DEPENDENCIES FIRST
        for dep in scenario.depends_on:
            dep_result = await self.run_scenario(dep, chain)
            if not dep_result.passed:
                logger.warning(f"Skipping {name}: dependency {dep} is {dep_result.state.value}")
                return self._record(ScenarioResult.skipped(name, f"Dependency {dep} {dep_result.state.value}"))

        # 2️⃣ RUN THIS SCENARIO
        async with self._slots:
            if self._halted:
                return self._record(ScenarioResult.skipped(name, "Suite halted after an earlier failure (fail-fast)"))
            result = await self.executor.execute(scenario, cancel=self.cancel)
            if self.fail_fast and not result.passed:
                self._halted = True

        return self._record(result)

    def _record(self, result: ScenarioResult) -> ScenarioResult:
        self.results[result.name] = result
        return result

    async def run_all(self, names: Iterable[str]) -> List[ScenarioResult]:
        names = list(dict.fromkeys(names))
        self.check_dependencies(names)
        return list(await asyncio.gather(*(self.run_scenario(n) for n in names)))
