"""
Application settings loaded from environment variables.

All credentials and tunables are read here so route handlers never touch
os.environ directly. Call get_settings.cache_clear() after changing the
environment (tests do this through a fixture).
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional


DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_HF_SPACE_URL = "https://Saroshasdsd-my-summarizer.hf.space/summarize"
DEFAULT_SESSION_SECRET = "dev-secret-change-me"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")


def _env_list(name: str, default: str) -> List[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    openai_api_key: Optional[str] = None
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    llm_timeout_seconds: int = 60
    llm_max_retries: int = 2
    hf_space_url: str = DEFAULT_HF_SPACE_URL
    site_password: Optional[str] = None
    session_secret: str = DEFAULT_SESSION_SECRET
    session_max_age_sec: int = 3600
    app_env: str = "development"
    max_upload_bytes: int = 10 * 1024 * 1024
    max_extracted_chars: int = 100_000
    allowed_origins: List[str] = field(default_factory=lambda: ["*"])
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    return Settings(
        # AI_API_KEY is the older variable name some deployments still set
        openai_api_key=os.environ.get("OPENAI_API_KEY") or os.environ.get("AI_API_KEY") or None,
        openai_base_url=os.environ.get("OPENAI_BASE_URL", DEFAULT_OPENAI_BASE_URL).rstrip("/"),
        llm_timeout_seconds=_env_int("LLM_TIMEOUT_SECONDS", 60),
        llm_max_retries=_env_int("LLM_MAX_RETRIES", 2),
        hf_space_url=os.environ.get("HF_SPACE_URL") or DEFAULT_HF_SPACE_URL,
        site_password=os.environ.get("SITE_PASSWORD") or None,
        session_secret=os.environ.get("SESSION_SECRET") or DEFAULT_SESSION_SECRET,
        session_max_age_sec=_env_int("SESSION_MAX_AGE_SEC", 3600),
        app_env=os.environ.get("APP_ENV", "development"),
        max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
        max_extracted_chars=_env_int("MAX_EXTRACTED_CHARS", 100_000),
        allowed_origins=_env_list("ALLOWED_ORIGINS", "*"),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
