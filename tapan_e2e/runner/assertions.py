import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

from tapan_e2e.api.client import ApiResponse
from tapan_e2e.errors import MISSING, AssertionFailed

DESCENDING = "desc"
ASCENDING = "asc"


class _Present:
    def __repr__(self) -> str:
        return "<present>"


PRESENT = _Present()


class one_of:
    def __init__(self, *values):
        self.values = values

    def __contains__(self, item) -> bool:
        return item in self.values

    def __repr__(self) -> str:
        return f"one of {list(self.values)!r}"


def lookup(body: Any, path: str) -> Any:
    """Follow a dotted path (``items.0.id``) through dicts and lists; MISSING if absent."""
    if not path:
        return body
    current = body
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.lstrip("-").isdigit():
            index = int(part)
            if not -len(current) <= index < len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def _number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _matches(expected: Any, actual: Any) -> bool:
    if expected is PRESENT:
        return actual is not MISSING
    if actual is MISSING:
        return False
    if isinstance(expected, one_of):
        return actual in expected
    if isinstance(expected, type):
        # bool is an int subclass, do not let True pass as a number
        if expected in (int, float) and isinstance(actual, bool):
            return False
        return isinstance(actual, expected)
    if isinstance(expected, tuple) and expected and all(isinstance(t, type) for t in expected):
        return isinstance(actual, expected) and not isinstance(actual, bool)
    if callable(expected):
        return bool(expected(actual))
    if _number(expected) and _number(actual) and (isinstance(expected, float) or isinstance(actual, float)):
        return abs(float(actual) - float(expected)) < 1e-9
    return actual == expected


def check_fields(body: Any, expectations: Mapping[str, Any]) -> None:
    """Raise ``AssertionFailed`` with path, expected and actual on the first mismatch."""
    for path, expected in expectations.items():
        actual = lookup(body, path)
        if not _matches(expected, actual):
            raise AssertionFailed.mismatch(path, expected, actual)


_TIMESTAMP_RE = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[T ](?P<time>\d{2}:\d{2}(?::\d{2})?)"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<zone>Z|[+-]\d{2}(?::?\d{2})?)?$"
)


def _timestamp(text: str) -> Optional[datetime]:
    """Parse ISO-8601 and Postgres-style timestamps; naive values are taken as UTC."""
    match = _TIMESTAMP_RE.match(text)
    if not match:
        return None
    clock = match.group("time")
    if clock.count(":") == 1:
        clock += ":00"
    fraction = match.group("fraction")
    if fraction:
        clock += "." + fraction[:6].ljust(6, "0")
    zone = match.group("zone")
    if zone == "Z":
        zone = "+00:00"
    elif zone:
        digits = zone[1:].replace(":", "")
        zone = f"{zone[0]}{digits[:2]}:{digits[2:] or '00'}"
    try:
        parsed = datetime.fromisoformat(f"{match.group('date')}T{clock}{zone or ''}")
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _comparable(value: Any) -> Any:
    if isinstance(value, str):
        parsed = _timestamp(value.strip())
        return value if parsed is None else parsed
    return value


def check_order(items: Sequence[Any], field: str, direction: str = DESCENDING) -> Tuple[bool, Optional[int]]:
    """
    True iff every adjacent pair relates per ``direction`` (non-strict).

    Returns ``(False, i)`` for the first violating pair ``(i, i + 1)``.
    Raises ``AssertionFailed`` when a pair cannot be compared at all.
    """
    if direction not in (DESCENDING, ASCENDING):
        raise ValueError(f"direction must be 'asc' or 'desc', got {direction!r}")
    values = [_comparable(lookup(item, field)) for item in items]
    for i in range(len(values) - 1):
        left, right = values[i], values[i + 1]
        if left is MISSING or right is MISSING:
            return False, i
        try:
            ok = left >= right if direction == DESCENDING else left <= right
        except TypeError:
            raw = (lookup(items[i], field), lookup(items[i + 1], field))
            raise AssertionFailed(
                f"{field} values at index {i} and {i + 1} are not comparable: {raw[0]!r} vs {raw[1]!r}",
                path=f"{i}.{field}",
                expected="comparable values",
                actual=repr(raw),
            )
        if not ok:
            return False, i
    return True, None


def assert_order(items: Sequence[Any], field: str, direction: str = DESCENDING) -> None:
    ok, index = check_order(items, field, direction)
    if not ok:
        relation = ">=" if direction == DESCENDING else "<="
        raise AssertionFailed(
            f"{field} not {direction}ending at index {index}: "
            f"{lookup(items[index], field)!r} {relation} {lookup(items[index + 1], field)!r} does not hold",
            path=f"{index}.{field}",
            expected=f"{relation} {lookup(items[index + 1], field)!r}",
            actual=lookup(items[index], field),
        )


def assert_disjoint(first: Iterable[Any], second: Iterable[Any], what: str = "ids") -> None:
    overlap = set(first) & set(second)
    if overlap:
        raise AssertionFailed(
            f"{what} overlap: {sorted(map(str, overlap))}",
            path=what,
            expected="disjoint sets",
            actual=sorted(map(str, overlap)),
        )


def assert_status(response: ApiResponse, accepted: Iterable[int]) -> None:
    accepted = tuple(accepted)
    if response.status not in accepted:
        raise AssertionFailed.mismatch(f"{response.method} {response.url} status", one_of(*accepted), response.status)


def assert_protected(response: ApiResponse) -> None:
    """An unauthenticated call is refused, or returns nothing but an error."""
    if response.status in (401, 403):
        return
    if response.status != 200:
        raise AssertionFailed.mismatch(f"{response.url} status", one_of(200, 401, 403), response.status)

    body = response.json_or_none()
    if body is None and not response.content.strip():
        return
    if isinstance(body, (list, dict)) and not body:
        return
    if isinstance(body, dict) and (body.get("error") or body.get("message")):
        empty_payload = all(not body.get(k) for k in ("data", "items", "results"))
        if empty_payload:
            return
    raise AssertionFailed(
        f"{response.url} returned protected data without credentials",
        path=response.url,
        expected="401/403 or an empty/error body",
        actual=response.text[:200],
    )


def items_of(body: Any, key: Optional[str] = None) -> list:
    """The record list of a collection response: a bare list or ``data``/``items``/``results``."""
    if key:
        value = lookup(body, key)
        if not isinstance(value, list):
            raise AssertionFailed.mismatch(key, list, value)
        return value
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for candidate in ("data", "items", "results"):
            if isinstance(body.get(candidate), list):
                return body[candidate]
    raise AssertionFailed.mismatch("<collection>", "a list of records", body)

