import logging
from typing import Optional

from playwright.async_api import async_playwright
from stagehand import Stagehand, StagehandConfig

from tapan_e2e.browser.driver import BrowserDriver
from tapan_e2e.browser.locator_store import LocatorStore
from tapan_e2e.config.config import ConfigError, Settings

logger = logging.getLogger(__name__)


async def launch_browser(settings: Settings, store: Optional[LocatorStore] = None) -> BrowserDriver:
    if settings.browser == "stagehand":
        return await _launch_stagehand(settings, store)
    return await _launch_playwright(settings, store)


async def _launch_playwright(settings: Settings, store: Optional[LocatorStore]) -> BrowserDriver:
    logger.info("🚀 Launching Chromium")
    pw = await async_playwright().start()
    closers = [pw.stop]
    try:
        browser = await pw.chromium.launch(
            headless=settings.headless,
            args=["--disable-dev-shm-usage"],
        )
        closers.insert(0, browser.close)
        context = await browser.new_context(
            viewport={"width": settings.viewport_width, "height": settings.viewport_height},
        )
        closers.insert(0, context.close)
        context.set_default_timeout(settings.step_timeout_ms)
        page = await context.new_page()
    except BaseException:
        await BrowserDriver(None, closers=closers).close()
        raise
    return BrowserDriver(page, store=store, closers=closers)


async def _launch_stagehand(settings: Settings, store: Optional[LocatorStore]) -> BrowserDriver:
    if not settings.model_api_key:
        raise ConfigError("GEMINI_API_KEY must be set to use the stagehand browser")

    logger.info("🚀 Launching Stagehand")
    config = StagehandConfig(
        env="LOCAL",
        model_name=settings.model_name,
        model_api_key=settings.model_api_key,
        local_browser_launch_options={"headless": settings.headless},
        verbose=1,
    )
    stagehand = Stagehand(config)
    try:
        await stagehand.init()
        page = stagehand.page
        await page.set_viewport_size({"width": settings.viewport_width, "height": settings.viewport_height})
    except BaseException:
        await stagehand.close()
        raise
    return BrowserDriver(page, store=store, closers=[stagehand.close])
