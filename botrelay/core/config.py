"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache

from ..__version__ import __version__

DEFAULT_NAME_PROMPT = "Before we get started, what's your name?"


@dataclasses.dataclass(frozen=True)
class Settings:
    """Service settings with defaults matching the widget contract."""

    database_url: str | None = None
    webhook_timeout_seconds: float = 30.0
    webhook_max_attempts: int = 2
    webhook_retry_delay_seconds: float = 1.0
    webhook_user_agent: str = f"botrelay-chat/{__version__}"
    chat_max_message_length: int = 5000
    chat_rate_limit: str = "60/minute"
    metrics_recent_hours: int = 24
    name_prompt: str = DEFAULT_NAME_PROMPT
    cors_allow_origins: tuple[str, ...] = ("*",)


def _split_origins(raw: str) -> tuple[str, ...]:
    origins = tuple(o.strip() for o in raw.split(",") if o.strip())
    return origins or ("*",)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from the environment."""

    max_attempts = int(os.getenv("WEBHOOK_MAX_ATTEMPTS", "2"))
    if max_attempts < 1:
        raise RuntimeError("WEBHOOK_MAX_ATTEMPTS must be at least 1.")
    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        webhook_timeout_seconds=float(os.getenv("WEBHOOK_TIMEOUT_SECONDS", "30")),
        webhook_max_attempts=max_attempts,
        webhook_retry_delay_seconds=float(
            os.getenv("WEBHOOK_RETRY_DELAY_SECONDS", "1")
        ),
        webhook_user_agent=os.getenv(
            "WEBHOOK_USER_AGENT", f"botrelay-chat/{__version__}"
        ),
        chat_max_message_length=int(os.getenv("CHAT_MAX_MESSAGE_LENGTH", "5000")),
        chat_rate_limit=os.getenv("CHAT_RATE_LIMIT", "60/minute"),
        metrics_recent_hours=int(os.getenv("METRICS_RECENT_HOURS", "24")),
        name_prompt=os.getenv("NAME_PROMPT", DEFAULT_NAME_PROMPT),
        cors_allow_origins=_split_origins(os.getenv("CORS_ALLOW_ORIGINS", "*")),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()


__all__ = ["DEFAULT_NAME_PROMPT", "Settings", "get_settings", "reset_settings_cache"]
