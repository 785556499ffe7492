import asyncio

import pytest

from tapan_e2e.parser.dsl_models import Scenario
from tapan_e2e.runner.orchestrator import CircularDependency, SuiteOrchestrator
from tapan_e2e.runner.result import ScenarioResult, ScenarioState


class FakeLoader:
    def __init__(self, graph):
        self.graph = graph

    def load(self, name):
        if name not in self.graph:
            raise FileNotFoundError(name)
        return Scenario(name=name, steps=(), depends_on=self.graph[name])


class FakeExecutor:
    def __init__(self, outcomes=None, delay=0.0):
        self.outcomes = outcomes or {}
        self.delay = delay
        self.executed = []
        self.running = 0
        self.peak = 0

    async def execute(self, scenario, cancel=None):
        self.executed.append(scenario.name)
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.running -= 1
        return ScenarioResult(name=scenario.name, state=self.outcomes.get(scenario.name, ScenarioState.PASSED))


async def test_dependencies_run_first_and_once():
    executor = FakeExecutor()
    loader = FakeLoader({"login": (), "invoices": ("login",), "payments": ("login", "invoices")})
    orchestrator = SuiteOrchestrator(loader, executor)
    results = await orchestrator.run_all(["payments", "invoices"])
    assert [r.name for r in results] == ["payments", "invoices"]
    assert executor.executed == ["login", "invoices", "payments"]
    assert all(r.passed for r in results)


async def test_failed_dependency_skips_dependants():
    executor = FakeExecutor({"login": ScenarioState.FAILED})
    loader = FakeLoader({"login": (), "invoices": ("login",)})
    orchestrator = SuiteOrchestrator(loader, executor)
    result = await orchestrator.run_scenario("invoices")
    assert result.state == ScenarioState.SKIPPED
    assert "login" in result.reason
    assert executor.executed == ["login"]


async def test_circular_dependency_is_rejected():
    loader = FakeLoader({"a": ("b",), "b": ("c",), "c": ("a",)})
    with pytest.raises(CircularDependency) as info:
        await SuiteOrchestrator(loader, FakeExecutor()).run_scenario("a")
    assert "a -> b -> c -> a" in str(info.value)


async def test_self_dependency_is_rejected():
    with pytest.raises(CircularDependency):
        await SuiteOrchestrator(FakeLoader({"a": ("a",)}), FakeExecutor()).run_scenario("a")


async def test_cycle_between_requested_roots_is_rejected_before_running():
    executor = FakeExecutor()
    orchestrator = SuiteOrchestrator(FakeLoader({"a": ("b",), "b": ("a",)}), executor)
    with pytest.raises(CircularDependency) as info:
        await asyncio.wait_for(orchestrator.run_all(["a", "b"]), 2)
    assert "a -> b -> a" in str(info.value)
    assert executor.executed == []


async def test_workers_bound_concurrency():
    executor = FakeExecutor(delay=0.05)
    loader = FakeLoader({name: () for name in "abcdef"})
    await SuiteOrchestrator(loader, executor, workers=2).run_all(list("abcdef"))
    assert executor.peak == 2
    assert sorted(executor.executed) == list("abcdef")


async def test_fail_fast_skips_the_rest():
    executor = FakeExecutor({"a": ScenarioState.ERRORED})
    loader = FakeLoader({"a": (), "b": (), "c": ()})
    results = await SuiteOrchestrator(loader, executor, fail_fast=True).run_all(["a", "b", "c"])
    assert [r.state for r in results] == [ScenarioState.ERRORED, ScenarioState.SKIPPED, ScenarioState.SKIPPED]
    assert executor.executed == ["a"]


def test_workers_must_be_positive():
    with pytest.raises(ValueError):
        SuiteOrchestrator(FakeLoader({}), FakeExecutor(), workers=0)
