import json
from types import SimpleNamespace

import pytest
from playwright.async_api import Error as PlaywrightError

from tapan_e2e.browser.driver import BrowserDriver
from tapan_e2e.browser.locator import Locator
from tapan_e2e.browser.locator_store import LocatorStore
from tapan_e2e.errors import InvalidStepInput, NetworkError, NotFound
from tapan_e2e.runner.testcase_executor import ScenarioExecutor

from conftest import FakeElement, FakePage, tracking_page


@pytest.fixture
def store(tmp_path):
    store = LocatorStore(str(tmp_path / "locators" / "store.json"))
    store.put("track-input", Locator("placeholder", "Enter tracking number"))
    store.put("track-button", Locator("role", "button", name="Track"))
    return store


async def test_fill_click_and_read_through_aliases(store):
    page = tracking_page()
    driver = BrowserDriver(page, store=store)
    await driver.fill("@track-input", "TEST123456789", 1000)
    await driver.click("@track-button", 1000)
    assert await driver.text_of("testid=tracking-result", 1000) == "No shipment or barcode found for TEST123456789"
    assert page.clicks == ["role=button[name=Track]"]


async def test_missing_element_is_not_found(store):
    driver = BrowserDriver(FakePage(), store=store)
    with pytest.raises(NotFound) as info:
        await driver.wait_visible("testid=nothing", 100)
    assert info.value.selector == "testid=nothing"
    assert not await driver.is_visible("testid=nothing")


async def test_hidden_element_is_not_visible():
    driver = BrowserDriver(FakePage({"text=Loading": FakeElement(visible=False)}))
    assert not await driver.is_visible("text=Loading")


async def test_navigate_returns_status():
    page = FakePage(statuses={"/admin": 500})
    driver = BrowserDriver(page)
    assert await driver.navigate("http://tapan.test/admin", 1000) == 500
    assert await driver.navigate("http://tapan.test/", 1000) == 200


async def test_network_failure_on_navigate():
    class Offline(FakePage):
        async def goto(self, url, timeout=None, wait_until=None):
            raise PlaywrightError("net::ERR_CONNECTION_REFUSED at http://tapan.test/")

    with pytest.raises(NetworkError):
        await BrowserDriver(Offline()).navigate("http://tapan.test/", 1000)


async def test_unknown_alias_without_observe_is_not_found(store):
    with pytest.raises(NotFound) as raised:
        await BrowserDriver(FakePage(), store=store).click("@no-such-alias", 100)
    assert raised.value.selector == "@no-such-alias"
    assert str(raised.value) == (
        "Locator alias @no-such-alias is not in the locator store and could not be observed on the page"
    )


async def test_unknown_alias_is_observed_once_and_recorded(store):
    class ObservingPage(FakePage):
        def __init__(self):
            super().__init__({"role=link[name=Support]": FakeElement("Support")})
            self.instructions = []

        async def observe(self, instruction):
            self.instructions.append(instruction)
            return [SimpleNamespace(selector='role=link[name="Support"]', description="support link")]

    page = ObservingPage()
    driver = BrowserDriver(page, store=store)
    await driver.click("@support-link", 100)
    await driver.click("@support-link", 100)
    assert page.instructions == ["find the support link"]
    saved = json.loads(store.path.read_text(encoding="utf-8"))
    assert saved["support-link"] == {"engine": "role", "value": "link", "name": "Support", "description": "support link"}


async def test_empty_selector_is_invalid_input():
    with pytest.raises(InvalidStepInput):
        await BrowserDriver(FakePage()).click("", 100)


async def test_close_runs_closers_once_and_survives_errors():
    calls = []

    async def ok():
        calls.append("ok")

    async def broken():
        calls.append("broken")
        raise RuntimeError("already closed")

    driver = BrowserDriver(FakePage(), closers=[broken, ok])
    await driver.close()
    await driver.close()
    assert calls == ["broken", "ok"]


def test_stores_sharing_a_file_keep_each_others_aliases(tmp_path):
    path = str(tmp_path / "shared.json")
    first = LocatorStore(path)
    second = LocatorStore(path)
    first.put("track-button", Locator("role", "button", name="Track"))
    second.put("support-link", Locator("testid", "support"))
    saved = json.loads((tmp_path / "shared.json").read_text(encoding="utf-8"))
    assert set(saved) == {"track-button", "support-link"}
    assert LocatorStore(path).get("track-button") == Locator("role", "button", name="Track")


def test_executor_reuses_one_locator_store(settings, tmp_path):
    executor = ScenarioExecutor(settings.with_overrides(locator_store=str(tmp_path / "store.json")))
    assert executor.store is executor.store
