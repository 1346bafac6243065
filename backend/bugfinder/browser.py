"""
Shared headless Chromium for all requests.

One browser process is launched lazily and reused; every request gets its own
isolated BrowserContext, closed when the request ends. A semaphore bounds how
many contexts can be open at once so a burst of scans can't exhaust memory.
"""
import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from playwright.async_api import async_playwright, Browser, Page, Playwright, Route

from bugfinder.config import get_settings


# Images, fonts and media are irrelevant to DOM analysis and slow down loading
ANALYSIS_BLOCKED_RESOURCES = ("image", "font", "media")


class BrowserPool:
    def __init__(self, max_contexts=4):
        self.max_contexts = max_contexts
        self.lock = asyncio.Lock()
        self._slots = asyncio.Semaphore(max_contexts)
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def _ensure_browser(self) -> Browser:
        async with self.lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            print("[browser-pool] Launching headless Chromium...")
            self._browser = await self._playwright.chromium.launch(headless=True)
            return self._browser

    @asynccontextmanager
    async def page(self, viewport: dict, block_resources: tuple = ()) -> AsyncIterator[Page]:
        """Open a page in a fresh context; the context is closed on exit."""
        async with self._slots:
            browser = await self._ensure_browser()
            context = await browser.new_context(
                viewport=viewport,
                ignore_https_errors=True,
                java_script_enabled=True,
            )
            try:
                page = await context.new_page()
                if block_resources:
                    await page.route("**/*", _resource_blocker(block_resources))
                yield page
            finally:
                try:
                    await context.close()
                except Exception as e:
                    print(f"[browser-pool] Context close failed: {e}")

    async def close(self):
        async with self.lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except Exception as e:
                    print(f"[browser-pool] Browser close failed: {e}")
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
                print("[browser-pool] Stopped")

    @property
    def running(self) -> bool:
        return self._browser is not None


def _resource_blocker(blocked: tuple):
    async def handle_route(route: Route):
        if route.request.resource_type in blocked:
            await route.abort()
        else:
            await route.continue_()
    return handle_route


# ---------------------------------------------------------------------------
# Console / network diagnostics
# ---------------------------------------------------------------------------

@dataclass
class PageDiagnostics:
    console_errors: list = field(default_factory=list)
    console_warnings: list = field(default_factory=list)
    network_errors: list = field(default_factory=list)

    def console_data(self) -> dict:
        return {"errors": self.console_errors, "warnings": self.console_warnings}


def attach_diagnostics(page: Page) -> PageDiagnostics:
    """Subscribe to console messages and failed responses; lists fill in as the page loads."""
    diagnostics = PageDiagnostics()

    def on_console(msg):
        entry = {"text": msg.text, "location": msg.location}
        if msg.type == "error":
            diagnostics.console_errors.append(entry)
        elif msg.type == "warning":
            diagnostics.console_warnings.append(entry)

    def on_response(response):
        if response.status >= 400:
            diagnostics.network_errors.append({
                "url": response.url,
                "status": response.status,
                "statusText": response.status_text,
            })

    page.on("console", on_console)
    page.on("response", on_response)
    return diagnostics


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------

async def load_for_analysis(page: Page, url: str):
    """DOM-ready navigation, then a bounded wait for network quiet."""
    settings = get_settings()
    await page.goto(url, wait_until="domcontentloaded", timeout=settings.navigation_timeout_ms)
    try:
        await page.wait_for_load_state("networkidle", timeout=settings.networkidle_timeout_ms)
    except Exception:
        pass  # DOM is already there, keep going
    await page.wait_for_timeout(settings.analyze_settle_ms)


async def has_head_and_body(page: Page) -> bool:
    return await page.evaluate("() => !!document.head && !!document.body")


def friendly_navigation_error(message: str) -> str:
    if "net::ERR_CONNECTION_REFUSED" in message or "Timeout" in message:
        return "Connection refused or timeout. Make sure the URL is accessible from the server."
    if "net::ERR_NAME_NOT_RESOLVED" in message:
        return "Host not found. Check if the URL is correct."
    return message


# Global singleton
browser_pool = BrowserPool(max_contexts=get_settings().browser_max_contexts)
