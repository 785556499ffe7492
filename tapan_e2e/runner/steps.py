"""
Builders for the steps scenarios are written with.

Each builder returns a :class:`Step` wrapping one primitive from
``runner.actions`` plus the bookkeeping around it: rendering ``{var}``
placeholders, saving response fields into the session, tracking created
resources for teardown and checking the outcome.
"""
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Tuple

from tapan_e2e.browser.driver import LocatorLike
from tapan_e2e.errors import MISSING, AssertionFailed, NotFound, PolicyExhausted
from tapan_e2e.parser.dsl_models import RUN, Step
from tapan_e2e.retry import RetrySpec, poll_until
from tapan_e2e.runner import actions
from tapan_e2e.runner.assertions import assert_order, check_fields, items_of, lookup

DEFAULT_VISIBLE_TIMEOUT_MS = 30_000
DEFAULT_VISIBLE_INTERVAL_MS = 250


def navigate(url: str, expect_ok: bool = False, timeout_ms: Optional[int] = None, phase: str = RUN) -> Step:
    async def action(session):
        status = await actions.navigate(session, session.render(url), timeout_ms)
        if expect_ok and (status is None or status >= 400):
            raise AssertionFailed.mismatch(f"navigate {url} status", "< 400", status)
        return status

    return Step(name=f"navigate {url}", action=action, phase=phase, target=url)


def fill(locator: LocatorLike, value: str, timeout_ms: Optional[int] = None, phase: str = RUN) -> Step:
    async def action(session):
        await actions.fill_field(session, locator, session.render(value), timeout_ms)

    return Step(name=f"fill {locator}", action=action, phase=phase, target=str(locator))


def click(locator: LocatorLike, timeout_ms: Optional[int] = None, phase: str = RUN) -> Step:
    async def action(session):
        await actions.click(session, locator, timeout_ms)

    return Step(name=f"click {locator}", action=action, phase=phase, target=str(locator))


def expect_visible(
    locator: LocatorLike,
    timeout_ms: int = DEFAULT_VISIBLE_TIMEOUT_MS,
    interval_ms: int = DEFAULT_VISIBLE_INTERVAL_MS,
    phase: str = RUN,
) -> Step:
    """Visibility assertion with a ``timeout_ms`` window; absence is a Failed verdict."""
    spec = RetrySpec.within(timeout_ms, interval_ms)

    async def action(session):
        driver = await session.browser()
        await poll_until(
            lambda: driver.is_visible(locator),
            spec,
            cancel=session.cancel,
            describe=f"{locator} visible",
            assertion=True,
        )

    return Step(name=f"expect visible {locator}", action=action, phase=phase, target=str(locator))


def wait_visible(locator: LocatorLike, timeout_ms: Optional[int] = None, phase: str = RUN) -> Step:
    """Precondition wait; absence is an environment error (``NotFound``)."""

    async def action(session):
        await actions.wait_for_visible(session, locator, timeout_ms)

    return Step(name=f"wait for {locator}", action=action, phase=phase, target=str(locator))


def expect_text(
    locator: LocatorLike,
    text: str,
    timeout_ms: int = DEFAULT_VISIBLE_TIMEOUT_MS,
    interval_ms: int = DEFAULT_VISIBLE_INTERVAL_MS,
    phase: str = RUN,
) -> Step:
    spec = RetrySpec.within(timeout_ms, interval_ms)

    async def action(session):
        driver = await session.browser()
        expected = session.render(text)

        async def current():
            try:
                return await driver.text_of(locator, min(interval_ms, timeout_ms))
            except NotFound:
                return MISSING

        try:
            return await poll_until(
                current,
                spec,
                cancel=session.cancel,
                describe=f"{locator} contains {expected!r}",
                assertion=True,
                accept=lambda value: value is not MISSING and expected in value,
            )
        except PolicyExhausted as e:
            raise AssertionFailed(
                f"{locator}: expected text containing {expected!r} within {timeout_ms} ms, got {e.last_value!r}",
                path=str(locator),
                expected=expected,
                actual=e.last_value,
            ) from e

    return Step(name=f"expect text {locator}", action=action, phase=phase, target=str(locator))


def wait_until_not(
    locator: LocatorLike,
    forbidden: str,
    max_wait_ms: int = 60_000,
    poll_interval_ms: int = 1_000,
    phase: str = RUN,
) -> Step:
    """Poll an element's text until it no longer contains ``forbidden`` (e.g. a job leaving "Running")."""

    async def action(session):
        driver = await session.browser()
        text = await driver.text_of(locator, session.settings.step_timeout_ms)
        if forbidden in text:
            raise AssertionFailed.mismatch(str(locator), f"not containing {forbidden!r}", text)
        return text

    return Step(
        name=f"wait until {locator} not {forbidden!r}",
        action=action,
        phase=phase,
        target=str(locator),
        retry=RetrySpec(interval_ms=poll_interval_ms, max_duration_ms=max_wait_ms),
    )


def request(
    method: str,
    path: str,
    body: Any = None,
    headers: Optional[Dict[str, str]] = None,
    expect_status: Iterable[int] = (200,),
    authenticated: bool = True,
    save: Optional[Mapping[str, str]] = None,
    track: Optional[Tuple[str, str]] = None,
    check: Optional[Mapping[str, Any]] = None,
    timeout_ms: Optional[int] = None,
    name: Optional[str] = None,
    retry: Optional[RetrySpec] = None,
    retry_rate_limit: bool = True,
    phase: str = RUN,
) -> Step:
    """
    One HTTP call.

    ``save`` maps variable names to response paths, ``track`` is
    ``(collection, id_path)`` registering the created record for deletion,
    ``check`` maps response paths to expected values.
    """
    accepted = tuple(expect_status) if expect_status is not None else None

    async def action(session):
        response = await actions.http_request(
            session,
            method,
            session.render(path),
            headers=headers,
            body=session.render(body),
            timeout_ms=timeout_ms,
            accept=accepted,
            authenticated=authenticated,
            retry_rate_limit=retry_rate_limit,
        )
        session.last_response = response
        payload = response.json_or_none()
        if track is not None:
            collection, id_path = track
            resource_id = lookup(payload, id_path)
            if resource_id is MISSING or resource_id is None:
                raise AssertionFailed.mismatch(id_path, "an id for the created resource", resource_id)
            session.track(collection, resource_id)
        for var, field_path in (save or {}).items():
            value = lookup(payload, field_path)
            if value is MISSING:
                raise AssertionFailed.mismatch(field_path, "present", value)
            session.vars[var] = value
        if check:
            check_fields(payload, check)
        return response

    return Step(
        name=name or f"{method.upper()} {path}",
        action=action,
        phase=phase,
        target=path,
        retry=retry,
    )


def expect_json(checks: Mapping[str, Any], phase: str = RUN) -> Step:
    """Check fields of the last HTTP response."""

    async def action(session):
        if session.last_response is None:
            raise AssertionFailed("No HTTP response to check yet")
        check_fields(session.last_response.json_or_none(), {p: session.render(v) for p, v in checks.items()})

    return Step(name=f"expect json {', '.join(checks)}", action=action, phase=phase)


def expect_order(field: str, direction: str = "desc", list_path: Optional[str] = None, phase: str = RUN) -> Step:
    async def action(session):
        if session.last_response is None:
            raise AssertionFailed("No HTTP response to check yet")
        assert_order(items_of(session.last_response.json_or_none(), list_path), field, direction)

    return Step(name=f"expect {field} {direction}", action=action, phase=phase)


def sleep(seconds: float, phase: str = RUN) -> Step:
    async def action(session):
        await session.sleep(seconds)

    return Step(name=f"sleep {seconds}s", action=action, phase=phase)


def wait_for_server(path: str = "/", timeout_ms: int = 60_000, interval_ms: int = 2_000, phase: str = RUN) -> Step:
    """Poll until the system under test answers at all; exhaustion is Errored, not Failed."""

    async def action(session):
        await poll_until(
            lambda: actions.http_request(session, "GET", path, timeout_ms=min(interval_ms * 2, timeout_ms)),
            RetrySpec(interval_ms=interval_ms, max_duration_ms=timeout_ms),
            cancel=session.cancel,
            describe=f"server reachable at {path}",
            accept=lambda response: response.status < 500,
        )

    return Step(name=f"wait for server {path}", action=action, phase=phase, target=path)


def call(name: str, fn: Callable[[Any], Awaitable[Any]], retry: Optional[RetrySpec] = None, phase: str = RUN) -> Step:
    return Step(name=name, action=fn, phase=phase, retry=retry)


def cleanup(step: Step) -> Step:
    return step.as_cleanup()

