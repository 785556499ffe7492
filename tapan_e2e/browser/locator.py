import re
from dataclasses import dataclass
from typing import Optional

ENGINES = ("role", "testid", "text", "label", "placeholder", "css", "xpath", "alias")

_ROLE_RE = re.compile(r"""^(?P<role>[\w-]+)(?:\[name=(?P<q>["'])(?P<name>.*)(?P=q)\])?$""")


@dataclass(frozen=True)
class Locator:
    """A semantic element reference.

    ``role``/``testid``/``text``/``label``/``placeholder`` are preferred;
    ``css``/``xpath`` exist for legacy pages. ``alias`` names an entry in the
    locator store.
    """

    engine: str
    value: str
    name: Optional[str] = None
    exact: bool = False
    description: str = ""

    def __post_init__(self):
        if self.engine not in ENGINES:
            raise ValueError(f"Unknown locator engine: {self.engine!r}")
        if not self.value:
            raise ValueError("Locator value must not be empty")

    def __str__(self) -> str:
        if self.engine == "alias":
            return f"@{self.value}"
        if self.engine == "role" and self.name is not None:
            return f'role={self.value}[name="{self.name}"]'
        return f"{self.engine}={self.value}"

    def to_dict(self) -> dict:
        data = {"engine": self.engine, "value": self.value}
        if self.name is not None:
            data["name"] = self.name
        if self.exact:
            data["exact"] = True
        if self.description:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Locator":
        return cls(
            engine=data["engine"],
            value=data["value"],
            name=data.get("name"),
            exact=bool(data.get("exact", False)),
            description=data.get("description", ""),
        )


def parse_locator(text: str) -> Locator:
    """
    Parse ``role=button[name="Track"]``, ``testid=login``, ``text=Track``,
    ``@alias`` and friends. A string without a recognised prefix is CSS.
    """
    text = (text or "").strip()
    if not text:
        raise ValueError("Locator must not be empty")

    if text.startswith("@"):
        return Locator("alias", text[1:])

    prefix, sep, rest = text.partition("=")
    if sep and prefix in ENGINES and prefix != "alias":
        if prefix == "role":
            match = _ROLE_RE.match(rest)
            if not match:
                raise ValueError(f"Malformed role locator: {text!r}")
            return Locator("role", match.group("role"), name=match.group("name"))
        return Locator(prefix, rest)

    if text.startswith("//") or text.startswith("/html"):
        return Locator("xpath", text)
    return Locator("css", text)
