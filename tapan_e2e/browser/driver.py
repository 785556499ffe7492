import logging
from typing import Awaitable, Callable, List, Optional, Union

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from tapan_e2e.browser.locator import Locator, parse_locator
from tapan_e2e.browser.locator_store import LocatorStore
from tapan_e2e.errors import InfrastructureError, InvalidStepInput, NetworkError, NotFound, StepTimeout

logger = logging.getLogger(__name__)

LocatorLike = Union[str, Locator]


def _as_locator(target: LocatorLike) -> Locator:
    if isinstance(target, Locator):
        return target
    try:
        return parse_locator(target)
    except ValueError as e:
        raise InvalidStepInput(str(e))


class BrowserDriver:
    """
    Element-level operations over a Playwright (or Stagehand) page.

    Every call takes an explicit timeout and raises ``NotFound``,
    ``StepTimeout`` or ``NetworkError`` instead of Playwright exceptions.
    Aliases (``@name``) are looked up in the locator store first; when the
    store has no entry and the page can ``observe`` (Stagehand), the page is
    asked once and the answer is written back to the store.
    """

    def __init__(
        self,
        page,
        store: Optional[LocatorStore] = None,
        closers: Optional[List[Callable[[], Awaitable[None]]]] = None,
    ):
        self.page = page
        self.store = store
        self._closers = list(closers or [])
        self.closed = False

    async def navigate(self, url: str, timeout_ms: int) -> Optional[int]:
        try:
            response = await self.page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")
        except PlaywrightTimeoutError:
            raise StepTimeout(f"navigate {url}", timeout_ms)
        except PlaywrightError as e:
            raise self._translate(e, url)
        return response.status if response is not None else None

    async def fill(self, target: LocatorLike, value: str, timeout_ms: int) -> None:
        locator = await self.locate(target)
        try:
            await locator.fill(value, timeout=timeout_ms)
        except PlaywrightTimeoutError:
            raise NotFound(str(target), timeout_ms)
        except PlaywrightError as e:
            raise self._translate(e, str(target))

    async def click(self, target: LocatorLike, timeout_ms: int) -> None:
        locator = await self.locate(target)
        try:
            await locator.click(timeout=timeout_ms)
        except PlaywrightTimeoutError:
            raise NotFound(str(target), timeout_ms)
        except PlaywrightError as e:
            raise self._translate(e, str(target))

    async def wait_visible(self, target: LocatorLike, timeout_ms: int) -> None:
        locator = await self.locate(target)
        try:
            await locator.wait_for(state="visible", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            raise NotFound(str(target), timeout_ms)
        except PlaywrightError as e:
            raise self._translate(e, str(target))

    async def is_visible(self, target: LocatorLike) -> bool:
        locator = await self.locate(target)
        try:
            return await locator.is_visible()
        except PlaywrightError as e:
            raise self._translate(e, str(target))

    async def text_of(self, target: LocatorLike, timeout_ms: int) -> str:
        locator = await self.locate(target)
        try:
            return (await locator.inner_text(timeout=timeout_ms)).strip()
        except PlaywrightTimeoutError:
            raise NotFound(str(target), timeout_ms)
        except PlaywrightError as e:
            raise self._translate(e, str(target))

    async def locate(self, target: LocatorLike):
        locator = _as_locator(target)
        if locator.engine == "alias":
            locator = await self._resolve_alias(locator)

        page = self.page
        if locator.engine == "role":
            if locator.name is not None:
                found = page.get_by_role(locator.value, name=locator.name, exact=locator.exact)
            else:
                found = page.get_by_role(locator.value)
        elif locator.engine == "testid":
            found = page.get_by_test_id(locator.value)
        elif locator.engine == "text":
            found = page.get_by_text(locator.value, exact=locator.exact)
        elif locator.engine == "label":
            found = page.get_by_label(locator.value, exact=locator.exact)
        elif locator.engine == "placeholder":
            found = page.get_by_placeholder(locator.value, exact=locator.exact)
        elif locator.engine == "xpath":
            found = page.locator(f"xpath={locator.value}")
        else:
            found = page.locator(locator.value)
        return found.first

    async def _resolve_alias(self, alias: Locator) -> Locator:
        if self.store is not None:
            stored = self.store.get(alias.value)
            if stored is not None:
                if stored.engine == "alias":
                    raise InvalidStepInput(f"Alias @{alias.value} points at another alias")
                return stored

        observe = getattr(self.page, "observe", None)
        if observe is None:
            raise self._unknown_alias(alias)

        instruction = alias.description or alias.value.replace("-", " ")
        logger.info(f"Locator @{alias.value} unknown, observing page for: {instruction}")
        try:
            result = await observe(f"find the {instruction}")
        except Exception as e:
            raise InfrastructureError(f"observe failed for @{alias.value}: {e}") from e
        if isinstance(result, list):
            result = result[0] if result else None
        selector = getattr(result, "selector", None) if result is not None else None
        if not selector:
            raise self._unknown_alias(alias)

        resolved = parse_locator(selector)
        resolved = Locator(
            resolved.engine,
            resolved.value,
            name=resolved.name,
            description=getattr(result, "description", "") or instruction,
        )
        if self.store is not None:
            self.store.put(alias.value, resolved)
        return resolved

    @staticmethod
    def _unknown_alias(alias: Locator) -> NotFound:
        return NotFound(
            f"@{alias.value}",
            0,
            f"Locator alias @{alias.value} is not in the locator store and could not be observed on the page",
        )

    @staticmethod
    def _translate(error: PlaywrightError, target: str) -> InfrastructureError:
        message = str(error)
        if "net::" in message or "NS_ERROR" in message:
            return NetworkError(target, message.splitlines()[0])
        return InfrastructureError(f"Browser error on {target}: {message.splitlines()[0] if message else error!r}")

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for closer in self._closers:
            try:
                await closer()
            except Exception as e:
                logger.warning(f"Browser close step failed: {e}")
