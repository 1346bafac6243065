"""
HTTP surface tests. The pipelines are replaced with stubs; only routing,
validation and error mapping are exercised here.
"""

import pytest
from fastapi.testclient import TestClient

from bugfinder import main, page_analyzer, scanner, url_utils
from bugfinder.page_analyzer import PageStructureError
from bugfinder.sse_utils import sse_event


@pytest.fixture
def client():
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def reachable(monkeypatch):
    async def fake_check(url):
        return {"ok": True, "status": 200}

    monkeypatch.setattr(url_utils, "check_url_accessible", fake_check)


class TestBasics:

    def test_root(self, client):
        assert client.get("/").json() == {"message": "Smart Bug Finder backend is running"}

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "ok"
        assert body["uptime"] >= 0
        assert isinstance(body["timestamp"], int)

    def test_cors_for_frontend(self, client):
        resp = client.get("/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers["access-control-allow-origin"] == "http://localhost:5173"


class TestScan:

    def test_missing_url(self, client):
        resp = client.get("/api/scan")
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing url query parameter"}

    def test_invalid_url(self, client):
        resp = client.get("/api/scan", params={"url": "example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid URL format"

    def test_unreachable(self, client, monkeypatch):
        async def fake_check(url):
            return {"ok": False, "status": 404, "error": "URL returned non-200 status: 404"}

        monkeypatch.setattr(url_utils, "check_url_accessible", fake_check)
        resp = client.get("/api/scan", params={"url": "https://gone.test"})

        assert resp.status_code == 400
        assert resp.json() == {
            "error": "URL is not accessible",
            "details": "URL returned non-200 status: 404",
            "status": 404,
        }

    def test_success(self, client, monkeypatch, reachable):
        async def fake_scan(url):
            return {"url": url, "screenshot": "x_fullpage.png", "bugs": [], "fixes": [],
                    "suggestions": ["Add a meta description"], "rawLLMResponse": {}}

        monkeypatch.setattr(scanner, "scan_website", fake_scan)
        resp = client.get("/api/scan", params={"url": "https://shop.test"})

        assert resp.status_code == 200
        assert resp.json()["suggestions"] == ["Add a meta description"]

    def test_failure(self, client, monkeypatch, reachable):
        async def fake_scan(url):
            raise RuntimeError("browser crashed")

        monkeypatch.setattr(scanner, "scan_website", fake_scan)
        resp = client.get("/api/scan", params={"url": "https://shop.test"})

        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to scan website", "details": "browser crashed"}


class TestErrorBody:

    def test_invalid_url_error_at_top_level(self, client):
        resp = client.get("/api/analyze-url", params={"url": "example.com"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid URL format"}
        assert "detail" not in resp.json()

    def test_unknown_route_keeps_default_shape(self, client):
        resp = client.get("/api/does-not-exist")
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Not Found"}


class TestAnalyzeUrl:

    def test_success(self, client, monkeypatch):
        async def fake_analyze(url):
            return {"url": url, "headAnalysis": {}, "bodyAnalysis": {"buttons": []}}

        monkeypatch.setattr(page_analyzer, "analyze_url", fake_analyze)
        resp = client.get("/api/analyze-url", params={"url": "https://shop.test"})

        assert resp.status_code == 200
        assert resp.json()["url"] == "https://shop.test"

    def test_bad_structure(self, client, monkeypatch):
        async def fake_analyze(url):
            raise PageStructureError("Invalid HTML structure - missing head or body")

        monkeypatch.setattr(page_analyzer, "analyze_url", fake_analyze)
        resp = client.get("/api/analyze-url", params={"url": "https://shop.test"})

        assert resp.status_code == 500
        assert resp.json()["error"] == "Invalid HTML structure - missing head or body"

    def test_navigation_timeout(self, client, monkeypatch):
        async def fake_analyze(url):
            raise TimeoutError("Timeout 60000ms exceeded.")

        monkeypatch.setattr(page_analyzer, "analyze_url", fake_analyze)
        resp = client.get("/api/analyze-url", params={"url": "https://slow.test"})

        assert resp.status_code == 500
        assert resp.json() == {
            "error": "Failed to fetch URL",
            "details": "Connection refused or timeout. Make sure the URL is accessible from the server.",
        }


class TestAnalyzeUrlStream:

    def test_missing_url_emits_error(self, client):
        resp = client.get("/api/analyze-url-stream")
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.text == sse_event("error", {"error": "Missing url query parameter"})

    def test_streams_pipeline_events(self, client, monkeypatch):
        async def fake_stream(url):
            yield sse_event("status", {"message": "Initializing browser..."})
            yield sse_event("complete", {"url": url})

        monkeypatch.setattr(main, "analyze_url_stream", fake_stream)
        resp = client.get("/api/analyze-url-stream", params={"url": "https://shop.test"})

        assert resp.text == (
            sse_event("status", {"message": "Initializing browser..."})
            + sse_event("complete", {"url": "https://shop.test"})
        )
