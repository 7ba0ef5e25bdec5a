import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from sitescope.exceptions import RenderError
from sitescope.render.base import CrawlRequest, RenderedPage, RenderEngine


class BrowserRenderEngine(RenderEngine):
    """Headless Chromium through Playwright; renders JavaScript and can take
    full-page screenshots."""

    name = "browser"

    def __init__(
        self,
        *,
        user_agent: str,
        take_screenshots: bool = False,
        headless: bool = True,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.user_agent = user_agent
        self.take_screenshots = take_screenshots
        self.headless = headless

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[None]:
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=["--no-sandbox", "--disable-dev-shm-usage", "--disable-gpu"],
            )
            self._context = await self._browser.new_context(user_agent=self.user_agent)
            logger.info(f"[{self.name}] Chromium started")
            yield
        finally:
            if self._context is not None:
                await self._context.close()
            if self._browser is not None:
                await self._browser.close()
            await self._playwright.stop()
            self._context = None
            self._browser = None
            self._playwright = None

    async def _render(self, request: CrawlRequest) -> RenderedPage:
        if self._context is None:
            raise RuntimeError("Browser context is not initialized")

        page = await self._context.new_page()
        start = time.perf_counter()
        try:
            response = await page.goto(
                request.url,
                timeout=self.navigation_timeout * 1000,
                wait_until="load",
            )
            if response is None:
                raise RenderError("no_response", f"No response for {request.url}")
            if response.status >= 500:
                raise RenderError("server_error", f"HTTP {response.status} for {request.url}")

            headers = await response.all_headers()
            content_type = (headers.get("content-type") or "").lower()
            if content_type and "html" not in content_type:
                raise RenderError("non_html_content", f"{content_type} at {request.url}")

            try:
                await page.wait_for_selector("body", timeout=10_000)
            except PlaywrightTimeout:
                logger.debug(f"[{self.name}] No body element after load: {request.url}")

            response_time_ms = int((time.perf_counter() - start) * 1000)
            html = await page.content()

            screenshot = None
            if self.take_screenshots:
                try:
                    screenshot = await page.screenshot(full_page=True, type="png")
                except PlaywrightError as exc:
                    logger.warning(f"[{self.name}] Screenshot failed for {request.url}: {exc}")

            return RenderedPage(
                url=request.url,
                loaded_url=page.url,
                status_code=response.status,
                headers=headers,
                html=html,
                response_time_ms=response_time_ms,
                screenshot=screenshot,
            )
        except PlaywrightTimeout as exc:
            raise RenderError("network_timeout", str(exc)) from exc
        except PlaywrightError as exc:
            raise RenderError("navigation_error", str(exc)) from exc
        finally:
            await page.close()
