"""
/api/scan pipeline: load the page like a user would, collect what went wrong
(console errors, failed responses), capture DOM + full-page screenshot,
and hand the bundle to the LLM for a bug report.
"""

from bugfinder.browser import attach_diagnostics, browser_pool
from bugfinder.config import get_settings
from bugfinder.image_utils import save_screenshot
from bugfinder.llm_analyzer import analyze_scan_data


async def capture_page(url: str) -> dict:
    """Returns {"dom", "screenshot" (PNG bytes), "console_errors", "network_errors"}."""
    settings = get_settings()
    viewport = {"width": settings.scan_viewport_width, "height": settings.scan_viewport_height}

    async with browser_pool.page(viewport) as page:
        diagnostics = attach_diagnostics(page)

        print(f"[scan] Navigating to: {url}")
        await page.goto(url, wait_until="networkidle", timeout=settings.navigation_timeout_ms)
        # Give client-side rendering a moment to finish
        await page.wait_for_timeout(settings.scan_settle_ms)

        dom = await page.content()
        screenshot = await page.screenshot(full_page=True)

    print(f"[scan] Captured {len(dom)} bytes of DOM, "
          f"{len(diagnostics.console_errors)} console errors, "
          f"{len(diagnostics.network_errors)} network errors")
    return {
        "dom": dom,
        "screenshot": screenshot,
        "console_errors": diagnostics.console_errors,
        "network_errors": diagnostics.network_errors,
    }


async def scan_website(url: str) -> dict:
    captured = await capture_page(url)
    filename = save_screenshot(captured["screenshot"], url, get_settings().screenshot_dir)

    verdict = await analyze_scan_data(
        url=url,
        dom=captured["dom"],
        console_errors=captured["console_errors"],
        network_errors=captured["network_errors"],
        screenshot=captured["screenshot"],
    )

    return {
        "url": url,
        "screenshot": filename,
        "bugs": verdict.get("bugs", []),
        "fixes": verdict.get("fixes", []),
        "suggestions": verdict.get("suggestions", []),
        "rawLLMResponse": verdict.get("rawLLMResponse", {}),
    }
