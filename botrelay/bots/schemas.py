"""Pydantic schemas describing bots and their cached metrics."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

BotStatus = Literal["active", "inactive", "draft"]

DEFAULT_WELCOME_MESSAGE = "Hello! How can I help you today?"
DEFAULT_FALLBACK_MESSAGE = (
    "I'm sorry, I didn't understand that. Can you please rephrase?"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VoiceSettings(BaseModel):
    voice: str = "alloy"
    speed: float = Field(default=1.0, ge=0.25, le=4.0)
    pitch: float = Field(default=1.0, ge=0.25, le=4.0)
    language: str = "en-US"


class BotSettings(BaseModel):
    """Owner configuration; appearance fields are kept but never interpreted."""

    model_config = ConfigDict(extra="allow")

    webhook_url: str = ""
    welcome_message: str = DEFAULT_WELCOME_MESSAGE
    fallback_message: str = DEFAULT_FALLBACK_MESSAGE
    voice_enabled: bool = False
    voice_settings: VoiceSettings = Field(default_factory=VoiceSettings)


class BotMetrics(BaseModel):
    total_conversations: int = 0
    new_messages_24h: int = 0
    average_response_time: float = 0.0
    handover_rate: float = 0.0
    last_updated: datetime | None = None


class BotCreate(BaseModel):
    name: str
    status: BotStatus = "draft"
    settings: BotSettings = Field(default_factory=BotSettings)


class Bot(BaseModel):
    id: str
    name: str
    status: BotStatus = "draft"
    settings: BotSettings = Field(default_factory=BotSettings)
    metrics: BotMetrics = Field(default_factory=BotMetrics)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime | None = None

    def voice_payload(self) -> dict[str, Any] | None:
        """Voice settings returned to the widget, or ``None`` when disabled."""

        if not self.settings.voice_enabled:
            return None
        return self.settings.voice_settings.model_dump()
