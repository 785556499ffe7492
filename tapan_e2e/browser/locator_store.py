import json
from pathlib import Path
from typing import Dict, Optional

from tapan_e2e.browser.locator import Locator


class LocatorStore:
    """JSON file mapping alias names to locators."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.data: Dict[str, dict] = self._load()

    def _load(self) -> Dict[str, dict]:
        if self.path.exists():
            return json.loads(self.path.read_text(encoding="utf-8"))
        return {}

    def get(self, alias: str) -> Optional[Locator]:
        raw = self.data.get(alias)
        return Locator.from_dict(raw) if raw else None

    def put(self, alias: str, locator: Locator) -> None:
        # another run may have written aliases since we loaded
        self.data = {**self._load(), **self.data, alias: locator.to_dict()}
        self.path.write_text(json.dumps(self.data, indent=2, sort_keys=True), encoding="utf-8")

    def __contains__(self, alias: str) -> bool:
        return alias in self.data
