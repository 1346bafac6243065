"""
Outbound URL checks: is the target reachable, and are the links in <head> alive.
"""

from typing import Optional
from urllib.parse import urljoin, urlparse

import httpx

from bugfinder.config import get_settings


def normalize_url(raw: Optional[str]) -> str:
    """Strip and validate an absolute http(s) URL. Raises ValueError otherwise."""
    url = (raw or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("Invalid URL format")
    return url


async def check_url_accessible(url: str, client: Optional[httpx.AsyncClient] = None) -> dict:
    """
    Quick HEAD request to decide whether a scan is worth starting.
    Returns {"ok": bool, "status": int, "error"?: str}.
    """
    try:
        url = normalize_url(url)
    except ValueError as e:
        return {"ok": False, "status": 0, "error": str(e)}

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=get_settings().url_check_timeout) as c:
                resp = await c.head(url, follow_redirects=True)
        else:
            resp = await client.head(url, follow_redirects=True)
    except Exception as e:
        return {"ok": False, "status": 0, "error": str(e) or "Unknown error while checking URL"}

    if not resp.is_success:
        return {
            "ok": False,
            "status": resp.status_code,
            "error": f"URL returned non-200 status: {resp.status_code}",
        }
    return {"ok": True, "status": resp.status_code}


def _link_result(status_code: int, same_origin: bool) -> dict:
    ok = 200 <= status_code < 400
    return {
        "status": "valid" if ok else "broken",
        "statusCode": status_code,
        "ok": ok,
        "sameOrigin": same_origin,
        "errorMessage": None if ok else f"HTTP {status_code}",
    }


async def validate_link(href: Optional[str], base_url: str,
                        client: Optional[httpx.AsyncClient] = None) -> dict:
    """Resolve href against base_url and check it responds (HEAD, falling back to GET)."""
    if not href:
        return {"status": "invalidHref", "ok": False, "errorMessage": "Missing href attribute"}

    try:
        resolved = urljoin(base_url, href)
        parsed = urlparse(resolved)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("Invalid URL format")
        same_origin = parsed.hostname == urlparse(base_url).hostname
    except ValueError as e:
        return {"status": "invalidHref", "ok": False, "errorMessage": str(e)}

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(
            timeout=get_settings().link_check_timeout,
            follow_redirects=True,
            max_redirects=5,
        )
    try:
        try:
            resp = await client.head(resolved)
            return _link_result(resp.status_code, same_origin)
        except Exception:
            pass
        try:
            # Only headers matter; don't pull the body down
            async with client.stream("GET", resolved) as resp:
                return _link_result(resp.status_code, same_origin)
        except Exception as e:
            return {
                "status": "broken",
                "ok": False,
                "sameOrigin": same_origin,
                "errorMessage": str(e) or "Unable to reach URL",
            }
    finally:
        if owns_client:
            await client.aclose()
