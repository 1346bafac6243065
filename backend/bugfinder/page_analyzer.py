"""
DOM analysis pipeline behind /api/analyze-url and its SSE twin.

Load page → snapshot <head> (title, metas, link health) and <body>
(buttons, inputs, dropdowns, checkboxes) → re-find every body element on the
live page and test it → return everything as plain JSON.
"""

import asyncio
from typing import AsyncGenerator
from urllib.parse import urljoin, urlparse

from playwright.async_api import Page

from bugfinder.browser import (
    ANALYSIS_BLOCKED_RESOURCES,
    attach_diagnostics,
    browser_pool,
    friendly_navigation_error,
    has_head_and_body,
    load_for_analysis,
)
from bugfinder.config import get_settings
from bugfinder.element_tester import test_interactive_elements
from bugfinder.sse_utils import sse_event
from bugfinder.url_utils import validate_link


class PageStructureError(Exception):
    """The loaded document has no <head> or no <body>."""


IMPORTANT_META_NAMES = ("description", "viewport", "charset")

# Links on these hosts are assumed valid instead of being fetched
COMMON_CDN_HOSTS = (
    "cdn.jsdelivr.net",
    "cdnjs.cloudflare.com",
    "unpkg.com",
    "fonts.googleapis.com",
    "fonts.gstatic.com",
    "ajax.googleapis.com",
    "maxcdn.bootstrapcdn.com",
)


# ---------------------------------------------------------------------------
# HEAD
# ---------------------------------------------------------------------------

HEAD_SNAPSHOT_JS = """
() => {
    const head = document.head;
    const result = { title: { hasTitle: false, titleText: null }, metaTags: [], linkTags: [] };

    const titleEl = head.querySelector('title');
    if (titleEl) {
        result.title.hasTitle = true;
        result.title.titleText = (titleEl.textContent || '').trim() || null;
    }

    head.querySelectorAll('meta').forEach(meta => {
        result.metaTags.push({
            nameOrProperty: meta.getAttribute('name') || meta.getAttribute('property') || meta.getAttribute('http-equiv') || null,
            contentOrValue: meta.getAttribute('content') || meta.getAttribute('charset') || null,
            charset: meta.getAttribute('charset') || null,
            httpEquiv: meta.getAttribute('http-equiv') || null,
            property: meta.getAttribute('property') || null
        });
    });

    head.querySelectorAll('link').forEach(link => {
        result.linkTags.push({
            href: link.getAttribute('href') || null,
            rel: link.getAttribute('rel') || null,
            type: link.getAttribute('type') || null,
            as: link.getAttribute('as') || null
        });
    });

    return result;
}
"""


def summarize_meta(meta_tags: list) -> dict:
    """Split metas into all + the important ones, flagging important ones that are missing."""
    important = [
        {**meta, "present": True}
        for meta in meta_tags
        if meta.get("nameOrProperty") and meta["nameOrProperty"].lower() in IMPORTANT_META_NAMES
    ]

    # <meta charset> has no name, so it never matches above
    charset_meta = next(
        (m for m in meta_tags if m.get("charset") or m.get("httpEquiv") == "Content-Type"), None)
    if charset_meta is not None:
        important.append({**charset_meta, "nameOrProperty": "charset", "present": True})

    for name in IMPORTANT_META_NAMES:
        if not any((m.get("nameOrProperty") or "").lower() == name for m in important):
            important.append({"nameOrProperty": name, "contentOrValue": None, "present": False})

    return {"important": important, "all": list(meta_tags)}


def _is_cdn_link(href: str, base_url: str) -> bool:
    try:
        host = urlparse(urljoin(base_url, href)).hostname or ""
    except ValueError:
        return False
    return any(cdn in host for cdn in COMMON_CDN_HOSTS)


async def summarize_links(link_tags: list, base_url: str) -> list:
    limit = get_settings().link_validation_limit

    async def check(link: dict) -> dict:
        if link.get("href") and _is_cdn_link(link["href"], base_url):
            return {**link, "status": "valid", "statusCode": 200, "ok": True,
                    "sameOrigin": False, "errorMessage": None}
        return {**link, **(await validate_link(link.get("href"), base_url))}

    validated = await asyncio.gather(*(check(link) for link in link_tags[:limit]))
    skipped = [
        {**link, "status": "not_validated", "statusCode": None, "ok": None,
         "sameOrigin": None, "errorMessage": "Skipped (too many links)"}
        for link in link_tags[limit:]
    ]
    return list(validated) + skipped


async def analyze_head(page: Page, base_url: str) -> dict:
    head = await page.evaluate(HEAD_SNAPSHOT_JS)
    return {
        "title": head["title"],
        "metaSummary": summarize_meta(head["metaTags"]),
        "linkSummary": await summarize_links(head["linkTags"], base_url),
    }


# ---------------------------------------------------------------------------
# BODY
# ---------------------------------------------------------------------------

BODY_SNAPSHOT_JS = """
() => {
    const body = document.body;
    const result = { buttons: [], dropdowns: [], inputs: [], checkboxes: [] };

    const prefixed = (el, prefix) => {
        const out = {};
        for (const attr of el.attributes) {
            if (attr.name.startsWith(prefix)) out[attr.name] = attr.value;
        }
        return Object.keys(out).length > 0 ? out : null;
    };
    const labelFor = (el) => {
        const id = el.getAttribute('id');
        if (id) {
            const label = body.querySelector(`label[for="${CSS.escape(id)}"]`);
            const text = label && (label.textContent || '').trim();
            if (text) return text;
        }
        const wrapping = el.closest('label');
        return (wrapping && (wrapping.textContent || '').trim()) || null;
    };
    const common = (el) => ({
        id: el.getAttribute('id') || null,
        name: el.getAttribute('name') || null,
        class: el.getAttribute('class') || null,
        dataAttributes: prefixed(el, 'data-')
    });

    body.querySelectorAll('button').forEach(button => {
        result.buttons.push({
            type: button.getAttribute('type') || 'button',
            text: (button.textContent || '').trim() || button.getAttribute('aria-label') || '',
            ...common(button)
        });
    });

    body.querySelectorAll('input[type="button"], input[type="submit"], input[type="reset"]').forEach(input => {
        result.buttons.push({
            type: input.getAttribute('type'),
            text: labelFor(input) || input.getAttribute('aria-label') || input.getAttribute('value') || '',
            ...common(input)
        });
    });

    body.querySelectorAll('select').forEach(select => {
        result.dropdowns.push({
            ...common(select),
            multiple: select.hasAttribute('multiple'),
            options: Array.from(select.querySelectorAll('option')).map(option => ({
                value: option.getAttribute('value') || (option.textContent || '').trim() || '',
                text: (option.textContent || '').trim(),
                selected: option.selected || option.hasAttribute('selected')
            }))
        });
    });

    body.querySelectorAll('input:not([type="checkbox"]):not([type="radio"]):not([type="button"]):not([type="submit"]):not([type="reset"])').forEach(input => {
        result.inputs.push({
            type: input.getAttribute('type') || 'text',
            ...common(input),
            placeholder: input.getAttribute('placeholder') || null,
            required: input.hasAttribute('required'),
            labelText: labelFor(input),
            ariaAttributes: prefixed(input, 'aria-')
        });
    });

    body.querySelectorAll('input[type="checkbox"]').forEach(checkbox => {
        result.checkboxes.push({
            ...common(checkbox),
            checked: checkbox.checked || checkbox.hasAttribute('checked'),
            labelText: labelFor(checkbox)
        });
    });

    return result;
}
"""


async def analyze_body(page: Page) -> dict:
    return await page.evaluate(BODY_SNAPSHOT_JS)


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------

def _analysis_viewport() -> dict:
    settings = get_settings()
    return {"width": settings.analyze_viewport_width, "height": settings.analyze_viewport_height}


async def analyze_url(url: str) -> dict:
    """
    Full DOM analysis in one response.
    Navigation failures propagate; PageStructureError if head/body are missing.
    """
    print(f"[analyze] Analyzing DOM for: {url}")
    async with browser_pool.page(_analysis_viewport(), ANALYSIS_BLOCKED_RESOURCES) as page:
        await load_for_analysis(page, url)
        if not await has_head_and_body(page):
            raise PageStructureError("Invalid HTML structure - missing head or body")

        head_analysis, body_snapshot = await asyncio.gather(
            analyze_head(page, url),
            analyze_body(page),
        )
        body_analysis = await test_interactive_elements(page, body_snapshot)

    return {"url": url, "headAnalysis": head_analysis, "bodyAnalysis": body_analysis}


async def analyze_url_stream(url: str) -> AsyncGenerator[str, None]:
    """Same pipeline as analyze_url, emitting SSE events as each stage completes."""
    yield sse_event("status", {"message": "Initializing browser..."})
    try:
        async with browser_pool.page(_analysis_viewport(), ANALYSIS_BLOCKED_RESOURCES) as page:
            diagnostics = attach_diagnostics(page)

            yield sse_event("status", {"message": "Navigating to page..."})
            print(f"[analyze-stream] Navigating to: {url}")
            await load_for_analysis(page, url)

            if not await has_head_and_body(page):
                yield sse_event("error", {"error": "Invalid HTML structure - missing head or body"})
                return

            yield sse_event("console", {"consoleData": diagnostics.console_data()})
            yield sse_event("network", {"networkErrors": diagnostics.network_errors})

            yield sse_event("status", {"message": "Analyzing HEAD section..."})
            head_analysis = await analyze_head(page, url)
            yield sse_event("head", {"headAnalysis": head_analysis})

            yield sse_event("status", {"message": "Analyzing BODY section..."})
            body_snapshot = await analyze_body(page)

            yield sse_event("status", {"message": "Testing interactive elements..."})
            body_analysis = await test_interactive_elements(page, body_snapshot)
            yield sse_event("body", {"bodyAnalysis": body_analysis})

        yield sse_event("complete", {"url": url})

    except Exception as e:
        print(f"[analyze-stream] Failed to fetch URL with Playwright: {url} {e}")
        yield sse_event("error", {
            "error": "Failed to fetch URL",
            "details": friendly_navigation_error(str(e)),
        })
