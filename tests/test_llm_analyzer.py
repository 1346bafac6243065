"""
Tests for the LLM verdict layer: prompt building, parsing, and the
never-raise fallback behaviour.
"""

import io
import json
from types import SimpleNamespace

import pytest
from PIL import Image

from bugfinder import llm_analyzer
from bugfinder.config import get_settings


def _png_bytes(width=40, height=20):
    buf = io.BytesIO()
    Image.new("RGBA", (width, height), (255, 0, 0, 128)).save(buf, format="PNG")
    return buf.getvalue()


class FakeMessages:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.text)])


@pytest.fixture
def fake_anthropic(monkeypatch):
    """Route anthropic.AsyncAnthropic to an in-memory fake; returns its messages object."""
    messages = FakeMessages(text="{}")

    class FakeClient:
        def __init__(self, api_key=None):
            self.api_key = api_key
            self.messages = messages

    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    monkeypatch.setattr(llm_analyzer.anthropic, "AsyncAnthropic", FakeClient)
    return messages


class FakeModels:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.kwargs = None

    async def generate_content(self, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        return SimpleNamespace(text=self.text)


@pytest.fixture
def fake_gemini(monkeypatch):
    """Switch to the Gemini provider and route genai.Client to a fake; returns its models object."""
    from google import genai

    models = FakeModels(text="{}")

    class FakeClient:
        def __init__(self, api_key=None):
            self.api_key = api_key
            self.aio = SimpleNamespace(models=models)

    monkeypatch.setattr(get_settings(), "llm_provider", "gemini")
    monkeypatch.setenv("GEMINI_API_KEY", "gemini-test-key")
    monkeypatch.setattr(genai, "Client", FakeClient)
    return models


# ---------------------------------------------------------------------------
# Prompt pieces
# ---------------------------------------------------------------------------

class TestPrompt:

    def test_truncate_marks_cut(self):
        assert llm_analyzer.truncate("abcdef", 3) == "abc\n...[truncated]"
        assert llm_analyzer.truncate("abc", 3) == "abc"
        assert llm_analyzer.truncate(None, 3) == ""

    def test_console_errors_numbered(self):
        text = llm_analyzer.format_console_errors([
            {"text": "Uncaught TypeError", "location": {"url": "https://x.test/app.js", "lineNumber": 12}},
            {"text": "", "location": {}},
        ])
        assert text == (
            "1. Uncaught TypeError @ https://x.test/app.js:12\n"
            "2. Console error @ unknown:-"
        )

    def test_empty_sections_are_none(self):
        assert llm_analyzer.format_console_errors([]) == "None"
        assert llm_analyzer.format_network_errors([]) == "None"

    def test_network_errors_numbered(self):
        text = llm_analyzer.format_network_errors([
            {"url": "https://x.test/a.png", "status": 404, "statusText": "Not Found"},
        ])
        assert text == "1. [404] https://x.test/a.png - Not Found"

    def test_user_prompt_includes_sections(self):
        prompt = llm_analyzer.build_user_prompt(
            "https://x.test", "<html></html>", [], [{"url": "u", "status": 500}], True)
        assert "URL: https://x.test" in prompt
        assert "<html></html>" in prompt
        assert "Console Errors:\nNone" in prompt
        assert "1. [500] u - " in prompt
        assert "Screenshot: attached" in prompt


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class TestParsing:

    def test_plain_json(self):
        assert llm_analyzer.parse_llm_json('{"bugs": []}') == {"bugs": []}

    def test_fenced_json(self):
        assert llm_analyzer.parse_llm_json('```json\n{"fixes": ["a"]}\n```') == {"fixes": ["a"]}

    def test_garbage_is_empty(self):
        assert llm_analyzer.parse_llm_json("Sorry, I can't help") == {}
        assert llm_analyzer.parse_llm_json("[1, 2]") == {}

    def test_normalize_fills_bug_defaults(self):
        verdict = llm_analyzer.normalize_verdict({
            "bugs": [{"title": "Overlap"}, "loose string"],
            "fixes": "not a list",
        })
        assert verdict["bugs"][0] == {
            "title": "Overlap", "description": "No description provided", "severity": "medium",
        }
        assert verdict["bugs"][1]["description"] == "loose string"
        assert verdict["fixes"] == []
        assert verdict["suggestions"] == []


# ---------------------------------------------------------------------------
# analyze_scan_data
# ---------------------------------------------------------------------------

class TestAnalyzeScanData:

    async def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setattr(get_settings(), "anthropic_api_key", "")

        verdict = await llm_analyzer.analyze_scan_data("https://x.test", "<html/>")

        assert verdict["bugs"] == []
        assert verdict["rawLLMResponse"]["error"] == "Missing ANTHROPIC_API_KEY"

    async def test_unknown_provider(self, monkeypatch):
        monkeypatch.setattr(get_settings(), "llm_provider", "cohere")
        verdict = await llm_analyzer.analyze_scan_data("https://x.test", "<html/>")
        assert "Unknown LLM provider" in verdict["rawLLMResponse"]["error"]

    async def test_success_with_screenshot(self, fake_anthropic):
        fake_anthropic.text = json.dumps({
            "bugs": [{"title": "Broken image", "description": "404 on hero", "severity": "high"}],
            "fixes": ["Fix the path"],
            "suggestions": ["Add alt text"],
        })

        verdict = await llm_analyzer.analyze_scan_data(
            "https://x.test", "<html/>",
            network_errors=[{"url": "https://x.test/hero.png", "status": 404, "statusText": "Not Found"}],
            screenshot=_png_bytes(),
        )

        assert verdict["bugs"][0]["severity"] == "high"
        assert verdict["fixes"] == ["Fix the path"]
        assert verdict["rawLLMResponse"]["suggestions"] == ["Add alt text"]

        content = fake_anthropic.kwargs["messages"][0]["content"]
        assert content[0]["type"] == "image"
        assert content[0]["source"]["media_type"] == "image/jpeg"
        assert "[404] https://x.test/hero.png" in content[1]["text"]
        assert fake_anthropic.kwargs["system"] == llm_analyzer.SYSTEM_PROMPT

    async def test_malformed_json_is_empty_verdict(self, fake_anthropic):
        fake_anthropic.text = "I think the page looks fine."

        verdict = await llm_analyzer.analyze_scan_data("https://x.test", "<html/>")

        assert verdict == {"bugs": [], "fixes": [], "suggestions": [], "rawLLMResponse": {}}

    async def test_api_error_is_reported(self, fake_anthropic):
        fake_anthropic.error = RuntimeError("overloaded")

        verdict = await llm_analyzer.analyze_scan_data("https://x.test", "<html/>")

        assert verdict["bugs"] == []
        assert verdict["rawLLMResponse"]["error"] == "overloaded"

    async def test_verdict_saved_when_dir_configured(self, fake_anthropic, monkeypatch, tmp_path):
        fake_anthropic.text = '{"bugs": [], "fixes": [], "suggestions": ["ok"]}'
        monkeypatch.setattr(get_settings(), "llm_response_dir", str(tmp_path))

        await llm_analyzer.analyze_scan_data("https://x.test/page", "<html/>")

        saved = list(tmp_path.glob("x_test_page_*.json"))
        assert len(saved) == 1
        data = json.loads(saved[0].read_text(encoding="utf-8"))
        assert data["metadata"]["url"] == "https://x.test/page"
        assert data["response"]["suggestions"] == ["ok"]


class TestGeminiProvider:

    async def test_success_uses_json_schema(self, fake_gemini):
        fake_gemini.text = json.dumps({
            "bugs": [{"title": "Console error", "description": "Uncaught TypeError", "severity": "high"}],
            "fixes": ["Guard the undefined access"],
            "suggestions": [],
        })

        verdict = await llm_analyzer.analyze_scan_data(
            "https://x.test", "<html/>",
            console_errors=[{"text": "Uncaught TypeError", "location": {}}],
        )

        assert verdict["bugs"][0]["title"] == "Console error"
        assert verdict["fixes"] == ["Guard the undefined access"]

        kwargs = fake_gemini.kwargs
        assert kwargs["model"] == get_settings().gemini_model
        assert kwargs["contents"].startswith(llm_analyzer.SYSTEM_PROMPT)
        assert "1. Uncaught TypeError" in kwargs["contents"]
        config = kwargs["config"]
        assert config.response_mime_type == "application/json"
        assert config.response_schema is not None
        assert config.temperature == get_settings().llm_temperature

    async def test_missing_key(self, fake_gemini, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.setattr(get_settings(), "gemini_api_key", "")

        verdict = await llm_analyzer.analyze_scan_data("https://x.test", "<html/>")

        assert verdict["bugs"] == []
        assert verdict["rawLLMResponse"]["error"] == "Missing GEMINI_API_KEY"
        assert fake_gemini.kwargs is None

    async def test_malformed_json_is_empty_verdict(self, fake_gemini):
        fake_gemini.text = "not json at all"

        verdict = await llm_analyzer.analyze_scan_data("https://x.test", "<html/>")

        assert verdict == {"bugs": [], "fixes": [], "suggestions": [], "rawLLMResponse": {}}

    async def test_empty_response_text(self, fake_gemini):
        fake_gemini.text = None

        verdict = await llm_analyzer.analyze_scan_data("https://x.test", "<html/>")

        assert verdict["bugs"] == [] and verdict["rawLLMResponse"] == {}
