from typing import Callable, Dict, List

from tapan_e2e.parser.dsl_models import Scenario

ScenarioBuilder = Callable[[], Scenario]


class ScenarioRegistry:
    """Python-defined scenarios, built on demand by name."""

    def __init__(self):
        self._builders: Dict[str, ScenarioBuilder] = {}

    def register(self, builder: ScenarioBuilder) -> ScenarioBuilder:
        name = builder.__name__
        if name in self._builders:
            raise ValueError(f"Scenario {name} registered twice")
        self._builders[name] = builder
        return builder

    def build(self, name: str) -> Scenario:
        scenario = self._builders[name]()
        if scenario.name != name:
            raise ValueError(f"Builder {name} produced scenario named {scenario.name}")
        return scenario

    def names(self) -> List[str]:
        return sorted(self._builders)

    def __contains__(self, name: str) -> bool:
        return name in self._builders


registry = ScenarioRegistry()
