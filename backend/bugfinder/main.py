import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from bugfinder.browser import browser_pool, friendly_navigation_error
from bugfinder.config import get_settings
from bugfinder.page_analyzer import PageStructureError, analyze_url_stream
from bugfinder.sse_utils import sse_event
from bugfinder.url_utils import normalize_url


_started_at = time.monotonic()


class HealthResponse(BaseModel):
    status: str
    uptime: float
    timestamp: int


class ScanResponse(BaseModel):
    url: str
    screenshot: str
    bugs: list = []
    fixes: list = []
    suggestions: list = []
    rawLLMResponse: dict = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Shutdown: tear down the shared browser if any request launched it
    await browser_pool.close()


settings = get_settings()
os.makedirs(settings.screenshot_dir, exist_ok=True)

app = FastAPI(title="Smart Bug Finder API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.mount("/screenshots", StaticFiles(directory=settings.screenshot_dir), name="screenshots")


@app.exception_handler(HTTPException)
async def error_body_handler(request: Request, exc: HTTPException):
    """Dict details become the whole body: {"error", "details"?} at the top level."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)
    return await http_exception_handler(request, exc)


def _require_url(url: Optional[str]) -> str:
    if not url:
        raise HTTPException(status_code=400, detail={"error": "Missing url query parameter"})
    try:
        return normalize_url(url)
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"error": str(e)})


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.get("/")
def root():
    return {"message": "Smart Bug Finder backend is running"}


@app.get("/health", response_model=HealthResponse)
async def health():
    return {
        "status": "ok",
        "uptime": round(time.monotonic() - _started_at, 3),
        "timestamp": int(time.time() * 1000),
    }


@app.get("/api/scan", response_model=ScanResponse)
async def scan_endpoint(url: Optional[str] = None):
    """
    Load the page, collect console/network errors + DOM + screenshot,
    and return the LLM's bugs/fixes/suggestions.
    """
    from bugfinder.scanner import scan_website
    from bugfinder.url_utils import check_url_accessible

    url = _require_url(url)

    validation = await check_url_accessible(url)
    if not validation["ok"]:
        raise HTTPException(status_code=400, detail={
            "error": "URL is not accessible",
            "details": validation.get("error"),
            "status": validation.get("status"),
        })

    try:
        return await scan_website(url)
    except Exception as e:
        print(f"[scan] ScanWebsite error: {e}")
        raise HTTPException(status_code=500, detail={
            "error": "Failed to scan website",
            "details": str(e),
        })


@app.get("/api/analyze-url")
async def analyze_url_endpoint(url: Optional[str] = None):
    """HEAD/BODY analysis plus live testing of every interactive element."""
    from bugfinder.page_analyzer import analyze_url

    url = _require_url(url)

    try:
        return await analyze_url(url)
    except PageStructureError as e:
        raise HTTPException(status_code=500, detail={"error": str(e)})
    except Exception as e:
        print(f"[analyze] Failed to fetch URL with Playwright: {url} {e}")
        raise HTTPException(status_code=500, detail={
            "error": "Failed to fetch URL",
            "details": friendly_navigation_error(str(e)),
        })


# ---------------------------------------------------------------------------
# SSE Streaming Endpoints
# ---------------------------------------------------------------------------

@app.get("/api/analyze-url-stream")
async def analyze_url_stream_endpoint(url: Optional[str] = None):
    """Same analysis as /api/analyze-url, streamed stage by stage via SSE."""

    async def event_stream():
        if not url:
            yield sse_event("error", {"error": "Missing url query parameter"})
            return
        try:
            target = normalize_url(url)
        except ValueError as e:
            yield sse_event("error", {"error": str(e)})
            return
        async for event in analyze_url_stream(target):
            yield event

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
