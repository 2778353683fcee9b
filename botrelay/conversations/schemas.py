"""Pydantic schemas for conversations and the widget chat contract."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Sender = Literal["user", "bot", "agent"]
ConversationStatus = Literal["new", "active", "closed"]
PendingPrompt = Literal["none", "name"]

OPEN_STATUSES: frozenset[str] = frozenset({"new", "active"})

# The embeddable widget sends this literal instead of a real address.
IP_PLACEHOLDER = "client-ip"
_USER_FIELDS = ("name", "email", "ip", "userAgent", "user_agent")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    content: str
    sender: Sender
    timestamp: datetime = Field(default_factory=utcnow)
    type: str = "text"
    metadata: dict[str, Any] | None = None


class UserInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    email: str | None = None
    ip: str = "unknown"
    user_agent: str = Field(default="unknown", alias="userAgent")


class Conversation(BaseModel):
    id: str
    bot_id: str
    user_id: str | None = None
    status: ConversationStatus = "new"
    user_info: UserInfo = Field(default_factory=UserInfo)
    messages: list[Message] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    pending_prompt: PendingPrompt = "none"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def append(self, sender: Sender, content: str) -> Message:
        """Append a message stamped with the current time.

        The stamp never goes backwards relative to the previous message.
        """

        stamp = utcnow()
        if self.messages and self.messages[-1].timestamp > stamp:
            stamp = self.messages[-1].timestamp
        message = Message(content=content, sender=sender, timestamp=stamp)
        self.messages.append(message)
        return message


class ConversationSummary(BaseModel):
    id: str
    bot_id: str
    status: ConversationStatus
    user_info: UserInfo
    message_count: int
    last_message: Message | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime | None = None

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationSummary":
        return cls(
            id=conversation.id,
            bot_id=conversation.bot_id,
            status=conversation.status,
            user_info=conversation.user_info,
            message_count=len(conversation.messages),
            last_message=conversation.messages[-1] if conversation.messages else None,
            tags=list(conversation.tags),
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )


class ConversationList(BaseModel):
    items: list[ConversationSummary]
    total: int
    page: int
    limit: int


class AgentMessageRequest(BaseModel):
    content: str = Field(min_length=1)


class StatusUpdateRequest(BaseModel):
    status: ConversationStatus


def _user_fields(raw: Any) -> dict[str, str]:
    # Widgets send loosely typed visitor info; drop anything that is not text.
    if not isinstance(raw, dict):
        return {}
    return {
        key: value.strip()
        for key, value in raw.items()
        if key in _USER_FIELDS and isinstance(value, str) and value.strip()
    }


class ChatRequest(BaseModel):
    """Inbound widget message normalised from either payload shape."""

    bot_id: str | None = None
    message: str | None = None
    conversation_id: str | None = None
    user_info: UserInfo = Field(default_factory=UserInfo)

    @classmethod
    def from_payload(
        cls,
        payload: Any,
        *,
        ip: str | None = None,
        user_agent: str | None = None,
    ) -> "ChatRequest":
        """Accept the widget format and the legacy flat format.

        Widget format: ``{"type": "text", "content": {"text": ...},
        "_botId": ..., "_conversationId": ..., "_userInfo": {...}}``.
        Legacy format: ``{"botId", "message", "conversationId", "userInfo"}``.
        IP and user agent fall back to the values taken from the request.
        """

        body = payload if isinstance(payload, dict) else {}
        content = body.get("content")
        if (
            body.get("type") == "text"
            and isinstance(content, dict)
            and content.get("text")
        ):
            message = content.get("text")
            bot_id = body.get("_botId")
            conversation_id = body.get("_conversationId")
            raw_user = body.get("_userInfo")
        else:
            message = body.get("message")
            bot_id = body.get("botId")
            conversation_id = body.get("conversationId")
            raw_user = body.get("userInfo")

        user = _user_fields(raw_user)
        if user.get("ip", IP_PLACEHOLDER) == IP_PLACEHOLDER:
            user["ip"] = ip or "unknown"
        if not (user.get("userAgent") or user.get("user_agent")):
            user["userAgent"] = user_agent or "unknown"
        return cls(
            bot_id=str(bot_id) if bot_id else None,
            message=message if isinstance(message, str) else None,
            conversation_id=str(conversation_id) if conversation_id else None,
            user_info=UserInfo.model_validate(user),
        )


class ReplyContent(BaseModel):
    text: str


class ChatReply(BaseModel):
    """One element of the array returned to the widget."""

    model_config = ConfigDict(populate_by_name=True)

    content: ReplyContent
    conversation_id: str = Field(alias="_id")
    sender: Literal["bot"] = "bot"
    type: str = "text"
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    voice_settings: dict[str, Any] | None = Field(default=None, alias="voiceSettings")
    user_info: dict[str, Any] | None = Field(default=None, alias="userInfo")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
