# parser/testcase_parser.py
import json
import shlex
from typing import Callable, Dict, List, Optional, Tuple

from tapan_e2e.parser.dsl_models import FINALLY, PRE, RUN, Scenario, Step
from tapan_e2e.runner import steps


class TestcaseSyntaxError(ValueError):
    __test__ = False

    def __init__(self, message: str, line_no: int = 0, source: str = ""):
        self.line_no = line_no
        self.source = source
        where = f"{source}:{line_no}" if source else f"line {line_no}"
        super().__init__(f"{where}: {message}")


def _ms(value: str, what: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{what} must be an integer number of milliseconds, got {value!r}")
    if parsed <= 0:
        raise ValueError(f"{what} must be positive, got {parsed}")
    return parsed


def _json_value(raw: str):
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _statuses(raw: str) -> Tuple[int, ...]:
    try:
        return tuple(int(part) for part in raw.split(",") if part)
    except ValueError:
        raise ValueError(f"expect= takes comma separated status codes, got {raw!r}")


def _pair(raw: str, keyword: str) -> Tuple[str, str]:
    left, sep, right = raw.partition(":")
    if not sep or not left or not right:
        raise ValueError(f"{keyword}= takes name:path, got {raw!r}")
    return left, right


def _compile_request(args: List[str], phase: str) -> Step:
    if len(args) < 2:
        raise ValueError("request needs a method and a path")
    method, path, rest = args[0].upper(), args[1], args[2:]
    body = None
    if rest and rest[0][:1] in ("{", "["):
        body = json.loads(rest.pop(0))

    expect_status: Tuple[int, ...] = (200,)
    save: Dict[str, str] = {}
    track = None
    authenticated = True
    for token in rest:
        key, sep, value = token.partition("=")
        if token == "anonymous":
            authenticated = False
        elif sep and key == "expect":
            expect_status = _statuses(value)
        elif sep and key == "save":
            var, field = _pair(value, "save")
            save[var] = field
        elif sep and key == "track":
            track = _pair(value, "track")
        else:
            raise ValueError(f"unknown request option {token!r}")
    return steps.request(
        method, path, body=body, expect_status=expect_status, save=save,
        track=track, authenticated=authenticated, phase=phase,
    )


def _compile(args: List[str], phase: str, max_wait: int, poll_interval: int) -> Step:
    verb, args = args[0].lower(), args[1:]

    def need(count: int, usage: str) -> None:
        if len(args) < count:
            raise ValueError(f"usage: {usage}")

    if verb == "navigate":
        need(1, "navigate <url> [expect_ok]")
        return steps.navigate(args[0], expect_ok="expect_ok" in args[1:], phase=phase)
    if verb == "fill":
        need(2, "fill <locator> <value>")
        return steps.fill(args[0], args[1], phase=phase)
    if verb == "click":
        need(1, "click <locator>")
        return steps.click(args[0], phase=phase)
    if verb == "wait_for":
        need(1, "wait_for <locator> [timeout_ms]")
        timeout = _ms(args[1], "timeout") if len(args) > 1 else None
        return steps.wait_visible(args[0], timeout_ms=timeout, phase=phase)
    if verb == "expect_visible":
        need(1, "expect_visible <locator> [timeout_ms]")
        timeout = _ms(args[1], "timeout") if len(args) > 1 else steps.DEFAULT_VISIBLE_TIMEOUT_MS
        return steps.expect_visible(args[0], timeout_ms=timeout, phase=phase)
    if verb == "expect_text":
        need(2, "expect_text <locator> <text> [timeout_ms]")
        timeout = _ms(args[2], "timeout") if len(args) > 2 else steps.DEFAULT_VISIBLE_TIMEOUT_MS
        return steps.expect_text(args[0], args[1], timeout_ms=timeout, phase=phase)
    if verb == "wait_not":
        need(2, "wait_not <locator> <text>")
        return steps.wait_until_not(args[0], args[1], max_wait_ms=max_wait, poll_interval_ms=poll_interval, phase=phase)
    if verb == "request":
        return _compile_request(args, phase)
    if verb == "expect_json":
        need(2, "expect_json <path> <json value>")
        return steps.expect_json({args[0]: _json_value(args[1])}, phase=phase)
    if verb == "expect_order":
        need(2, "expect_order <field> <asc|desc> [list_path]")
        if args[1] not in ("asc", "desc"):
            raise ValueError(f"order must be asc or desc, got {args[1]!r}")
        return steps.expect_order(args[0], args[1], list_path=args[2] if len(args) > 2 else None, phase=phase)
    if verb == "sleep":
        need(1, "sleep <seconds>")
        return steps.sleep(float(args[0]), phase=phase)
    if verb == "wait_server":
        path = args[0] if args else "/"
        return steps.wait_for_server(path, timeout_ms=max_wait, interval_ms=poll_interval, phase=phase)
    raise ValueError(f"unknown step {verb!r}")


def parse_testcase(text: str, source: str = "") -> Scenario:
    lines = [(no, l.strip()) for no, l in enumerate(text.splitlines(), start=1)]
    lines = [(no, l) for no, l in lines if l and not l.startswith("#")]

    name = None
    description = ""
    depends_on: List[str] = []
    max_wait = 60_000  # default 60 seconds
    poll_interval = 1_000  # default 1 second

    section = None
    pending: List[Tuple[int, str, List[str]]] = []

    for line_no, line in lines:
        try:
            if line.startswith("@testcase"):
                parts = line.split()
                if len(parts) != 2:
                    raise ValueError("usage: @testcase <name>")
                name = parts[1]

            elif line.startswith("@description"):
                description = line[len("@description"):].strip()

            elif line.startswith("@depends_on"):
                depends_on = line.split()[1:]

            elif line.startswith("@max_wait"):
                max_wait = _ms(line.split()[1] if len(line.split()) > 1 else "", "@max_wait")

            elif line.startswith("@poll_interval"):
                poll_interval = _ms(line.split()[1] if len(line.split()) > 1 else "", "@poll_interval")

            elif line == "@pre":
                section = PRE

            elif line == "@run":
                section = RUN

            elif line == "@finally":
                section = FINALLY

            elif line.startswith("@"):
                raise ValueError(f"unknown directive {line.split()[0]!r}")

            else:
                if section is None:
                    raise ValueError("step outside of @pre/@run/@finally")
                pending.append((line_no, section, shlex.split(line)))
        except ValueError as e:
            raise TestcaseSyntaxError(str(e), line_no, source)

    if not name:
        raise TestcaseSyntaxError("missing @testcase <name>", 0, source)

    compiled: List[Step] = []
    for line_no, phase, args in pending:
        try:
            step = _compile(args, phase, max_wait, poll_interval)
        except ValueError as e:
            raise TestcaseSyntaxError(str(e), line_no, source)
        compiled.append(step.as_cleanup() if phase == FINALLY else step)

    try:
        return Scenario(
            name=name,
            steps=tuple(compiled),
            description=description,
            depends_on=tuple(depends_on),
            max_wait_ms=max_wait,
            poll_interval_ms=poll_interval,
            source=source,
        )
    except ValueError as e:
        raise TestcaseSyntaxError(str(e), 0, source)
