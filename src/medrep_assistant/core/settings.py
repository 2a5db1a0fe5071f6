"""
Runtime settings for the Lima assistant, read from the environment / .env
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    lima_api_base_url: str = "https://api.lima.uz"
    lima_api_token: Optional[str] = None
    lima_api_timeout: float = 30.0

    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    openai_max_tokens: int = 1000
    openai_temperature: float = 0.1
    openai_timeout: float = 60.0
    llm_max_calls_per_minute: int = 60

    session_expiry_hours: float = 2.0
    session_cleanup_minutes: float = 30.0
    catalog_ttl_minutes: float = 15.0
    history_window: int = 10

    log_level: str = "INFO"

    @property
    def lima_configured(self) -> bool:
        return bool(self.lima_api_token)

    @property
    def openai_configured(self) -> bool:
        return bool(self.openai_api_key and self.openai_api_key != "your_openai_api_key_here")


def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def load_settings() -> Settings:
    """Load settings from environment variables (and .env if present)."""
    load_dotenv()

    settings = Settings(
        lima_api_base_url=_env_str("LIMA_API_BASE_URL", Settings.lima_api_base_url).rstrip("/"),
        lima_api_token=_env_str("LIMA_API_TOKEN"),
        lima_api_timeout=_env_float("LIMA_API_TIMEOUT", Settings.lima_api_timeout),
        openai_api_key=_env_str("OPENAI_API_KEY"),
        openai_base_url=_env_str("OPENAI_BASE_URL", Settings.openai_base_url).rstrip("/"),
        openai_model=_env_str("OPENAI_MODEL", Settings.openai_model),
        openai_max_tokens=_env_int("OPENAI_MAX_TOKENS", Settings.openai_max_tokens),
        openai_temperature=_env_float("OPENAI_TEMPERATURE", Settings.openai_temperature),
        openai_timeout=_env_float("OPENAI_TIMEOUT", Settings.openai_timeout),
        llm_max_calls_per_minute=_env_int("LLM_MAX_CALLS_PER_MINUTE", Settings.llm_max_calls_per_minute),
        session_expiry_hours=_env_float("SESSION_EXPIRY_HOURS", Settings.session_expiry_hours),
        session_cleanup_minutes=_env_float("SESSION_CLEANUP_MINUTES", Settings.session_cleanup_minutes),
        catalog_ttl_minutes=_env_float("CATALOG_TTL_MINUTES", Settings.catalog_ttl_minutes),
        history_window=_env_int("HISTORY_WINDOW", Settings.history_window),
        log_level=_env_str("LOG_LEVEL", Settings.log_level).upper(),
    )

    if settings.history_window < 2:
        raise ValueError("HISTORY_WINDOW must be at least 2 (system message + one stored message)")

    return settings
