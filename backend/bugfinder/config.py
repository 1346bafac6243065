from pydantic_settings import BaseSettings
from functools import lru_cache
import os


class Settings(BaseSettings):
    anthropic_api_key: str = ""
    gemini_api_key: str = ""

    # LLM verdict
    llm_provider: str = "anthropic"  # "anthropic" or "gemini"
    anthropic_model: str = "claude-sonnet-4-5-20250929"
    gemini_model: str = "gemini-2.5-flash"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 8000
    llm_timeout: int = 120  # seconds
    dom_truncate_chars: int = 18000
    llm_response_dir: str = ""  # dump normalized verdicts here when set

    # HTTP surface
    cors_origins: list[str] = ["http://localhost:5173"]
    screenshot_dir: str = os.path.join(os.path.dirname(__file__), "..", "screenshots")

    # Browser
    browser_max_contexts: int = 4
    scan_viewport_width: int = 1920
    scan_viewport_height: int = 1080
    analyze_viewport_width: int = 1366
    analyze_viewport_height: int = 768
    navigation_timeout_ms: int = 60000
    networkidle_timeout_ms: int = 10000
    scan_settle_ms: int = 3000
    analyze_settle_ms: int = 1000

    # Element probing
    probe_timeout_ms: int = 800  # per fill / select / click / text lookup

    # Outbound URL checks
    url_check_timeout: float = 8.0  # seconds
    link_check_timeout: float = 5.0  # seconds
    link_validation_limit: int = 30

    class Config:
        # Look for .env in the repo root (two levels up from backend/bugfinder/)
        _env_path = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        env_file = _env_path if os.path.exists(_env_path) else None
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings():
    return Settings()
