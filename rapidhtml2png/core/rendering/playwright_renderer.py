"""
Playwright Renderer
===================

High-fidelity backend: headless Chromium screenshots via Playwright.

Pages render with JavaScript disabled and every network request other than
``data:`` URLs aborted, so the output depends only on the sanitized HTML and
the CSS that was inlined into the document.
"""

from typing import Optional, Dict, Any, List, AsyncGenerator
import asyncio
from contextlib import asynccontextmanager
from importlib import metadata
from pathlib import Path

from playwright.async_api import async_playwright, Browser, BrowserContext, Page, Playwright
from playwright.async_api import Error as PlaywrightError

from rapidhtml2png.config.logging import get_logger
from rapidhtml2png.config.settings import get_settings
from rapidhtml2png.core.errors import EngineRenderError
from rapidhtml2png.core.rendering.base import BaseRenderer, build_document, normalize_png
from rapidhtml2png.models.schemas import EngineCapability, EngineFidelity, RenderPlan

logger = get_logger(__name__)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--font-render-hinting=none",
]


class BrowserPool:
    """Chromium instance pool, started on first use."""

    def __init__(self, pool_size: int = 2):
        self.pool_size = pool_size
        self.browsers: List[Browser] = []
        self._semaphore = asyncio.Semaphore(pool_size)
        self._start_lock = asyncio.Lock()
        self._playwright: Optional[Playwright] = None
        self.settings = get_settings()
        self.logger: Any = logger.bind(component="browser_pool")

    @property
    def started(self) -> bool:
        return self._playwright is not None

    async def initialize(self) -> None:
        """Launch the browsers. Safe to call more than once."""
        async with self._start_lock:
            if self._playwright is not None:
                return
            try:
                self._playwright = await async_playwright().start()
                for _ in range(self.pool_size):
                    browser = await self._playwright.chromium.launch(
                        headless=self.settings.playwright_headless, args=CHROMIUM_ARGS
                    )
                    self.browsers.append(browser)
            except Exception as e:
                self.logger.error("Failed to initialize browser pool", error=str(e))
                await self._shutdown()
                raise EngineRenderError(
                    "playwright", f"Browser pool initialization failed: {e}", kind="startup_failed"
                ) from e

            self.logger.info("Browser pool initialized", pool_size=self.pool_size)

    async def close(self) -> None:
        """Close all browsers in the pool."""
        async with self._start_lock:
            await self._shutdown()
        self.logger.info("Browser pool closed")

    async def _shutdown(self) -> None:
        browsers, self.browsers = self.browsers, []
        for browser in browsers:
            try:
                await browser.close()
            except PlaywrightError as e:
                self.logger.warning("Failed to close browser", error=str(e))

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    @asynccontextmanager
    async def get_browser(self) -> AsyncGenerator[Browser, None]:
        """Get a browser instance from the pool."""
        if not self.started:
            await self.initialize()

        async with self._semaphore:
            if not self.browsers:
                raise EngineRenderError("playwright", "Browser pool not initialized", kind="startup_failed")

            browser = self.browsers.pop()
            try:
                yield browser
            finally:
                self.browsers.append(browser)


class PlaywrightRenderer(BaseRenderer):
    """Chromium screenshot renderer."""

    name = "playwright"
    fidelity = EngineFidelity.HIGH

    def __init__(self, browser_pool: Optional[BrowserPool] = None):
        self.settings = get_settings()
        self.logger: Any = logger.bind(generator="playwright")
        self._own_pool = browser_pool is None
        self.browser_pool = browser_pool or BrowserPool(self.settings.browser_pool_size)

    async def probe(self) -> EngineCapability:
        """
        Check that the Playwright package and its Chromium build are installed.

        Starts the Playwright driver briefly to resolve the browser executable;
        no browser is launched.
        """
        try:
            version = metadata.version("playwright")
        except metadata.PackageNotFoundError:
            return self.capability(False, None, "playwright package metadata not found")

        try:
            async with async_playwright() as p:
                executable = p.chromium.executable_path
        except Exception as e:
            return self.capability(False, version, f"Playwright driver unavailable: {e}")

        if not executable or not Path(executable).exists():
            return self.capability(
                False, version, "Chromium not installed (run: playwright install chromium)"
            )
        return self.capability(True, version)

    async def close(self) -> None:
        if self._own_pool:
            await self.browser_pool.close()
        self.logger.info("Playwright renderer closed")

    async def render(self, plan: RenderPlan) -> bytes:
        """
        Screenshot the plan's document at exactly the planned size.

        Raises:
            EngineRenderError: If the browser fails at any stage
        """
        self.logger.info(
            "Generating PNG from HTML",
            html_length=len(plan.content.html),
            css_length=len(plan.content.css),
            width=plan.width,
            height=plan.height,
        )

        try:
            async with self.browser_pool.get_browser() as browser:
                context = await self._create_browser_context(browser, plan)
                try:
                    page = await context.new_page()
                    await self._configure_page(page)
                    await page.set_content(build_document(plan.content), wait_until="load")
                    screenshot_bytes = await page.screenshot(
                        type="png",
                        omit_background=True,
                        clip={"x": 0, "y": 0, "width": plan.width, "height": plan.height},
                    )
                finally:
                    await context.close()
        except PlaywrightError as e:
            self.logger.error("PNG generation error", error=str(e))
            raise EngineRenderError(self.name, f"PNG generation failed: {e}") from e

        try:
            png_bytes = await asyncio.to_thread(
                normalize_png, screenshot_bytes, plan.width, plan.height
            )
        except OSError as e:
            raise EngineRenderError(self.name, f"Unreadable screenshot: {e}") from e
        self.logger.info("PNG generation completed", file_size=len(png_bytes))
        return png_bytes

    async def _create_browser_context(self, browser: Browser, plan: RenderPlan) -> BrowserContext:
        """Create an isolated context sized to the plan."""
        context_options: Dict[str, Any] = {
            "viewport": {"width": plan.width, "height": plan.height},
            "device_scale_factor": 1,
            "java_script_enabled": False,
        }
        return await browser.new_context(**context_options)

    async def _configure_page(self, page: Page) -> None:
        page.set_default_timeout(self.settings.playwright_timeout)
        await page.route("**/*", self._handle_route)

    async def _handle_route(self, route: Any) -> None:
        """Abort every request that would leave the process."""
        if route.request.url.startswith("data:"):
            await route.continue_()
        else:
            await route.abort()
