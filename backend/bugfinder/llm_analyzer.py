"""
LLM verdict for a scanned page: bugs, fixes and suggestions.

The model is best-effort. A missing key, a failed call or unparseable JSON all
degrade to an empty verdict with the reason in rawLLMResponse; nothing here raises.
"""

import asyncio
import json
import os
from datetime import datetime, timezone
from typing import Optional

import anthropic

from bugfinder.config import get_settings
from bugfinder.image_utils import screenshot_to_b64, url_slug


SYSTEM_PROMPT = """You are Smart Bug Finder, an AI for UI bug detection and accessibility analysis.
Your task is to analyze the provided scan data (URL, DOM, console errors, network errors, and a screenshot of the page) and identify potential UI bugs, provide fixes, and suggest improvements.

Look for:
- UI/UX issues (broken layouts, overlapping elements, responsive design problems)
- Accessibility issues (missing alt text, poor contrast, keyboard navigation problems)
- JavaScript errors and their impact
- Network errors and their implications
- Performance or security concerns visible in the DOM or errors

Return your response in valid JSON ONLY (no markdown fences, no explanation), strictly adhering to this schema:

{
  "bugs": [
    {
      "title": "Concise bug title",
      "description": "Detailed description of the bug, including its impact.",
      "severity": "low | medium | high | critical"
    }
  ],
  "fixes": [
    "Suggested fix 1 for identified bugs or issues.",
    "Suggested fix 2."
  ],
  "suggestions": [
    "General suggestion 1 for UI/UX or accessibility improvement.",
    "General suggestion 2."
  ]
}

Prioritize bugs by severity (critical > high > medium > low). If no bugs are found, still provide suggestions."""

# Gemini gets the same contract as a response schema
BUG_REPORT_SCHEMA = {
    "type": "object",
    "properties": {
        "bugs": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "severity": {"type": "string", "enum": ["low", "medium", "high", "critical"]},
                },
                "required": ["title", "description", "severity"],
            },
        },
        "fixes": {"type": "array", "items": {"type": "string"}},
        "suggestions": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["bugs", "fixes", "suggestions"],
}


def truncate(text: Optional[str], max_chars: int) -> str:
    text = text or ""
    if len(text) > max_chars:
        return f"{text[:max_chars]}\n...[truncated]"
    return text


def format_console_errors(console_errors: list) -> str:
    if not console_errors:
        return "None"
    lines = []
    for i, err in enumerate(console_errors, 1):
        location = err.get("location") or {}
        lines.append(
            f"{i}. {err.get('text') or 'Console error'} @ "
            f"{location.get('url') or 'unknown'}:{location.get('lineNumber', '-')}"
        )
    return "\n".join(lines)


def format_network_errors(network_errors: list) -> str:
    if not network_errors:
        return "None"
    return "\n".join(
        f"{i}. [{n.get('status')}] {n.get('url')} - {n.get('statusText') or ''}"
        for i, n in enumerate(network_errors, 1)
    )


def build_user_prompt(url: str, dom: str, console_errors: list, network_errors: list,
                      has_screenshot: bool) -> str:
    settings = get_settings()
    return (
        f"Scan Data:\nURL: {url}\n\n"
        f"DOM (truncated):\n{truncate(dom, settings.dom_truncate_chars)}\n\n"
        f"Console Errors:\n{format_console_errors(console_errors)}\n\n"
        f"Network Errors:\n{format_network_errors(network_errors)}\n\n"
        f"Screenshot: {'attached' if has_screenshot else 'not available'}\n"
    )


def empty_verdict(error: str, details=None) -> dict:
    return {
        "bugs": [],
        "fixes": [],
        "suggestions": [],
        "rawLLMResponse": {"error": error, "details": details},
    }


def parse_llm_json(text: str) -> dict:
    """Parse a JSON object out of model text, tolerating markdown fences. {} when unparseable."""
    text = (text or "").strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    try:
        parsed = json.loads(text.strip())
    except json.JSONDecodeError as e:
        print(f"  [llm] Failed to parse response as JSON: {e}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def normalize_verdict(parsed: dict) -> dict:
    def as_list(value):
        return value if isinstance(value, list) else []

    bugs = []
    for bug in as_list(parsed.get("bugs")):
        if not isinstance(bug, dict):
            bug = {"description": str(bug)}
        bugs.append({
            **bug,
            "title": bug.get("title") or "Untitled Bug",
            "description": bug.get("description") or "No description provided",
            "severity": bug.get("severity") or "medium",
        })
    return {
        "bugs": bugs,
        "fixes": as_list(parsed.get("fixes")),
        "suggestions": as_list(parsed.get("suggestions")),
        "rawLLMResponse": parsed,
    }


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

def _get_anthropic_key():
    key = os.getenv("ANTHROPIC_API_KEY")
    if not key:
        key = get_settings().anthropic_api_key
    return key


def _get_gemini_key():
    key = os.getenv("GEMINI_API_KEY")
    if not key:
        key = get_settings().gemini_api_key
    return key


async def _call_anthropic(api_key: str, user_prompt: str, screenshot: Optional[bytes]) -> str:
    settings = get_settings()
    client = anthropic.AsyncAnthropic(api_key=api_key)

    content = []
    if screenshot:
        b64, media_type = screenshot_to_b64(screenshot)
        content.append({
            "type": "image",
            "source": {"type": "base64", "media_type": media_type, "data": b64},
        })
    content.append({"type": "text", "text": user_prompt})

    response = await client.messages.create(
        model=settings.anthropic_model,
        max_tokens=settings.llm_max_tokens,
        temperature=settings.llm_temperature,
        system=SYSTEM_PROMPT,
        messages=[{"role": "user", "content": content}],
    )
    return "".join(block.text for block in response.content if getattr(block, "text", None))


async def _call_gemini(api_key: str, user_prompt: str) -> str:
    from google import genai
    from google.genai import types

    settings = get_settings()
    client = genai.Client(api_key=api_key)
    response = await client.aio.models.generate_content(
        model=settings.gemini_model,
        contents=f"{SYSTEM_PROMPT}\n\n{user_prompt}",
        config=types.GenerateContentConfig(
            temperature=settings.llm_temperature,
            response_mime_type="application/json",
            response_schema=BUG_REPORT_SCHEMA,
        ),
    )
    return response.text or ""


def _save_verdict(verdict: dict, url: str, model: str):
    """Dump a verdict to llm_response_dir for debugging."""
    out_dir = get_settings().llm_response_dir
    if not out_dir:
        return
    try:
        os.makedirs(out_dir, exist_ok=True)
        now = datetime.now(timezone.utc)
        path = os.path.join(out_dir, f"{url_slug(url, 50)}_{now.strftime('%Y-%m-%dT%H-%M-%S')}.json")
        with open(path, "w", encoding="utf-8") as f:
            json.dump({
                "metadata": {"url": url, "timestamp": now.isoformat(), "model": model},
                "response": verdict,
            }, f, indent=2)
        print(f"  [llm] Response saved to: {path}")
    except OSError as e:
        print(f"  [llm] Failed to save response: {e}")


async def analyze_scan_data(url: str, dom: str, console_errors: list = None,
                            network_errors: list = None, screenshot: bytes = None) -> dict:
    """
    Ask the configured LLM for a bug report.
    Returns {"bugs", "fixes", "suggestions", "rawLLMResponse"}.
    """
    settings = get_settings()
    provider = settings.llm_provider.lower()
    console_errors = console_errors or []
    network_errors = network_errors or []

    if provider == "anthropic":
        api_key, model = _get_anthropic_key(), settings.anthropic_model
        if not api_key:
            return empty_verdict("Missing ANTHROPIC_API_KEY")
    elif provider == "gemini":
        api_key, model = _get_gemini_key(), settings.gemini_model
        if not api_key:
            return empty_verdict("Missing GEMINI_API_KEY")
    else:
        return empty_verdict(f"Unknown LLM provider: {settings.llm_provider}")

    user_prompt = build_user_prompt(url, dom, console_errors, network_errors, screenshot is not None)
    print(f"  [llm] Analyzing {url} with {provider} ({model})...")

    try:
        if provider == "anthropic":
            call = _call_anthropic(api_key, user_prompt, screenshot)
        else:
            call = _call_gemini(api_key, user_prompt)
        text = await asyncio.wait_for(call, timeout=settings.llm_timeout)
    except asyncio.TimeoutError:
        print(f"  [llm] Timed out after {settings.llm_timeout}s")
        return empty_verdict(f"LLM request timed out after {settings.llm_timeout}s")
    except Exception as e:
        print(f"  [llm] Request failed: {e}")
        return empty_verdict(str(e), getattr(e, "body", None))

    verdict = normalize_verdict(parse_llm_json(text))
    print(f"  [llm] Analysis complete: {len(verdict['bugs'])} bugs, "
          f"{len(verdict['fixes'])} fixes, {len(verdict['suggestions'])} suggestions")
    _save_verdict(verdict, url, model)
    return verdict
