"""Shared slowapi limiter keyed by client IP."""

from __future__ import annotations

from fastapi import Request
from slowapi import Limiter

from ..app_logging import client_ip
from .config import get_settings


def rate_limit_key(request: Request) -> str:
    """First ``X-Forwarded-For`` hop, then the socket peer."""

    return client_ip(request) or "unknown"


def chat_rate_limit() -> str:
    return get_settings().chat_rate_limit


limiter = Limiter(key_func=rate_limit_key)


__all__ = ["chat_rate_limit", "limiter", "rate_limit_key"]
