"""
Deterministic page rendering with Playwright
"""
import asyncio
import json
import logging
from typing import Optional, Protocol

from playwright.async_api import Browser, Error as PlaywrightError, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .config import RendererConfig, renderer_config
from .errors import RenderFailure
from .models import RenderResult
from .utils.warmup import warmup_page_by_scrolling

logger = logging.getLogger(__name__)

# Pins Date.now() and `new Date()` so client-rendered timestamps are stable
_FREEZE_TIME_SCRIPT = """
(() => {
  const frozen = new Date(%s).getTime();
  const NativeDate = Date;
  class FrozenDate extends NativeDate {
    constructor(...args) {
      if (args.length === 0) { super(frozen); } else { super(...args); }
    }
    static now() { return frozen; }
  }
  window.Date = FrozenDate;
})();
"""


class PageRenderer(Protocol):
    async def render(self, url: str, *, warmup: bool = True, timeout_ms: int = 30000) -> RenderResult:
        ...

    async def close(self) -> None:
        ...


class PlaywrightRenderer:
    """
    Renders pages in a shared Chromium instance.

    The browser is launched on first use; every page gets a fresh context
    with a fixed viewport, locale and timezone so captures are comparable.
    """

    def __init__(self, config: Optional[RendererConfig] = None):
        self.config = config or renderer_config
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._launch_lock = asyncio.Lock()

    async def __aenter__(self) -> "PlaywrightRenderer":
        await self._ensure_browser()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _ensure_browser(self) -> Browser:
        async with self._launch_lock:
            if self._browser is None or not self._browser.is_connected():
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=self.config.headless)
                logger.info("Launched Chromium for page rendering")
            return self._browser

    async def render(self, url: str, *, warmup: bool = True, timeout_ms: int = 30000) -> RenderResult:
        """
        Load a page and capture its HTML and a PNG screenshot.

        Raises:
            RenderFailure: navigation or capture failed (always marked transient)
        """
        try:
            browser = await self._ensure_browser()
        except PlaywrightError as e:
            raise RenderFailure(url, f"Browser launch failed: {e}") from e

        context = await browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
            locale=self.config.locale,
            timezone_id=self.config.timezone_id,
            user_agent=self.config.user_agent,
            reduced_motion="reduce",
            device_scale_factor=1,
        )
        try:
            if self.config.frozen_time_iso:
                await context.add_init_script(_FREEZE_TIME_SCRIPT % json.dumps(self.config.frozen_time_iso))

            page = await context.new_page()
            page.set_default_timeout(timeout_ms)
            await page.goto(url, wait_until="networkidle", timeout=timeout_ms)

            try:
                await page.wait_for_function(
                    "document.readyState === 'complete'",
                    timeout=min(timeout_ms, self.config.ready_state_timeout_ms),
                )
            except PlaywrightTimeoutError:
                # networkidle already reached
                logger.debug(f"readyState wait timed out for {url}")

            if warmup:
                await warmup_page_by_scrolling(page, self.config)

            html = await page.content()
            screenshot = await page.screenshot(type="png", full_page=self.config.full_page)
            return RenderResult(html=html, screenshot=screenshot)
        except PlaywrightTimeoutError as e:
            raise RenderFailure(url, f"Timed out after {timeout_ms}ms: {e}") from e
        except PlaywrightError as e:
            raise RenderFailure(url, str(e)) from e
        finally:
            await context.close()

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
