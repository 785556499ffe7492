# parser/testcase_loader.py
import os
from typing import Dict, List, Optional

from tapan_e2e.parser.dsl_models import Scenario
from tapan_e2e.parser.testcase_parser import parse_testcase
from tapan_e2e.scenarios.registry import ScenarioRegistry


class ScenarioLoader:

    def __init__(self, testcase_dir: str, registry: Optional[ScenarioRegistry] = None):
        self.testcase_dir = testcase_dir
        self.registry = registry
        self._cache: Dict[str, Scenario] = {}

    def load(self, name: str) -> Scenario:
        """
        Return the scenario called ``name``: registered Python scenarios first,
        then ``<testcase_dir>/<name>.txt``.
        """
        name = name[:-4] if name.endswith(".txt") else name
        if name in self._cache:
            return self._cache[name]

        if self.registry is not None and name in self.registry:
            scenario = self.registry.build(name)
        else:
            path = os.path.join(self.testcase_dir, f"{name}.txt")
            if not os.path.exists(path):
                raise FileNotFoundError(f"Testcase not found: {name} (looked in registry and {path})")

            with open(path, encoding="utf-8") as f:
                content = f.read()

            scenario = parse_testcase(content, source=path)
            if scenario.name != name:
                raise ValueError(f"{path} declares @testcase {scenario.name}, expected {name}")

        self._cache[name] = scenario
        return scenario

    def available(self) -> List[str]:
        names = set(self.registry.names()) if self.registry is not None else set()
        if os.path.isdir(self.testcase_dir):
            names.update(f[:-4] for f in os.listdir(self.testcase_dir) if f.endswith(".txt"))
        return sorted(names)
