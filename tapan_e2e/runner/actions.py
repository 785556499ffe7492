"""
The closed set of primitives every step is composed from.

Primitives validate their inputs, do one piece of I/O and return its natural
output. They never write to the session; step builders do that with what the
primitive returns.
"""
from typing import Any, Dict, Iterable, Optional

from tapan_e2e.api.client import ApiResponse
from tapan_e2e.browser.driver import LocatorLike
from tapan_e2e.errors import InvalidStepInput


def _require(value: Any, what: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidStepInput(f"{what} must not be empty")


def _timeout(session, timeout_ms: Optional[int]) -> int:
    if timeout_ms is None:
        return session.settings.step_timeout_ms
    if timeout_ms <= 0:
        raise InvalidStepInput(f"timeout must be positive, got {timeout_ms} ms")
    return timeout_ms


async def navigate(session, url: str, timeout_ms: Optional[int] = None) -> Optional[int]:
    _require(url, "URL")
    timeout_ms = _timeout(session, timeout_ms)
    driver = await session.browser()
    return await driver.navigate(session.settings.url(url), timeout_ms)


async def fill_field(session, locator: LocatorLike, value: str, timeout_ms: Optional[int] = None) -> None:
    _require(locator, "selector")
    timeout_ms = _timeout(session, timeout_ms)
    driver = await session.browser()
    await driver.fill(locator, value, timeout_ms)


async def click(session, locator: LocatorLike, timeout_ms: Optional[int] = None) -> None:
    _require(locator, "selector")
    timeout_ms = _timeout(session, timeout_ms)
    driver = await session.browser()
    await driver.click(locator, timeout_ms)


async def wait_for_visible(session, locator: LocatorLike, timeout_ms: Optional[int] = None) -> None:
    _require(locator, "selector")
    timeout_ms = _timeout(session, timeout_ms)
    driver = await session.browser()
    await driver.wait_visible(locator, timeout_ms)


async def http_request(
    session,
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    body: Any = None,
    timeout_ms: Optional[int] = None,
    accept: Optional[Iterable[int]] = None,
    authenticated: bool = True,
    retry_rate_limit: bool = True,
) -> ApiResponse:
    _require(method, "HTTP method")
    _require(url, "URL")
    timeout_ms = _timeout(session, timeout_ms)
    return await session.api.request(
        method,
        url,
        headers=headers,
        body=body,
        timeout_ms=timeout_ms,
        accept=accept,
        authenticated=authenticated,
        retry_rate_limit=retry_rate_limit,
    )
