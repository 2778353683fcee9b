"""Message intake: conversation state, name capture, relay and reply."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from ..bots import schemas as bot_schemas
from ..bots.repository import BotRepository
from ..core.config import Settings, get_settings
from ..errors import BotNotFoundError, ChatValidationError
from ..relay.webhook import WebhookRelay
from . import schemas
from .models import Fingerprint
from .name_capture import NameCapture
from .repository import ConversationRepository
from .resolver import ConversationResolver


def validate_chat_request(
    request: schemas.ChatRequest, settings: Settings
) -> tuple[str, str]:
    """Return ``(bot_id, message)`` or raise :class:`ChatValidationError`.

    Whitespace-only messages count as missing.
    """

    if not request.bot_id or not request.message or not request.message.strip():
        raise ChatValidationError("botId and message are required")
    if len(request.message) > settings.chat_max_message_length:
        raise ChatValidationError("Message too long")
    return request.bot_id, request.message


class MessageIntakeService:
    """Turn one inbound widget message into persisted state and a reply."""

    def __init__(
        self,
        bots: BotRepository,
        conversations: ConversationRepository,
        *,
        relay: WebhookRelay | None = None,
        name_capture: NameCapture | None = None,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._bots = bots
        self._conversations = conversations
        self._resolver = ConversationResolver(conversations)
        self._settings = settings or get_settings()
        self._relay = relay or WebhookRelay(settings=self._settings)
        self._names = name_capture or NameCapture()
        self._logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Entry point

    def handle(self, request: schemas.ChatRequest) -> list[schemas.ChatReply]:
        bot_id, message = self._validate(request)
        bot = self._bots.get_bot(bot_id)
        if bot is None:
            raise BotNotFoundError(f"Bot {bot_id} not found")

        fingerprint = Fingerprint(
            ip=request.user_info.ip or "unknown",
            user_agent=request.user_info.user_agent or "unknown",
        )
        conversation = self._resolver.resolve(
            bot.id, request.conversation_id, fingerprint, request.user_info
        )
        conversation.append("user", message)
        captured = self._names.capture(conversation, message)
        if captured:
            self._logger.info(
                "Captured visitor name for conversation %s",
                conversation.id,
                extra={"event": {"event": "name_captured", "conversation_id": conversation.id}},
            )

        if len(conversation.messages) == 1:
            return self._greet(bot, conversation)

        # The user turn must be durable before the relay, which may take a while.
        self._conversations.save_conversation(conversation)
        reply_text = self._relay_reply(bot, conversation, message)

        conversation.append("bot", reply_text)
        if conversation.status == "new":
            conversation.status = "active"
        self._conversations.save_conversation(conversation)
        self._refresh_metrics(bot.id)

        return [self._reply(bot, conversation, reply_text)]

    # ------------------------------------------------------------------
    # Steps

    def _validate(self, request: schemas.ChatRequest) -> tuple[str, str]:
        return validate_chat_request(request, self._settings)

    def _greet(
        self, bot: bot_schemas.Bot, conversation: schemas.Conversation
    ) -> list[schemas.ChatReply]:
        welcome = bot.settings.welcome_message
        prompt = self._settings.name_prompt
        conversation.append("bot", welcome)
        conversation.append("bot", prompt)
        if conversation.user_info.name is None:
            conversation.pending_prompt = "name"
        self._conversations.save_conversation(conversation)
        return [
            self._reply(bot, conversation, welcome),
            self._reply(bot, conversation, prompt),
        ]

    def _relay_reply(
        self, bot: bot_schemas.Bot, conversation: schemas.Conversation, message: str
    ) -> str:
        fallback = bot.settings.fallback_message
        try:
            result = self._relay.relay(
                bot.settings.webhook_url, message, bot.id, fallback_message=fallback
            )
        except Exception:
            self._logger.exception(
                "Webhook relay raised for conversation %s; using fallback",
                conversation.id,
                extra={"event": {"event": "relay_exception", "bot_id": bot.id}},
            )
            return fallback
        if result.error:
            self._logger.warning(
                "Relay for conversation %s fell back: %s",
                conversation.id,
                result.error,
                extra={
                    "event": {
                        "event": "relay_fallback",
                        "bot_id": bot.id,
                        "conversation_id": conversation.id,
                        "error": result.error,
                        "attempts": result.attempts,
                        "status_code": result.status_code,
                    }
                },
            )
        return result.text or fallback

    def _refresh_metrics(self, bot_id: str) -> None:
        since = datetime.now(timezone.utc) - timedelta(
            hours=self._settings.metrics_recent_hours
        )
        self._bots.refresh_metrics(bot_id, recent_since=since)

    def _reply(
        self, bot: bot_schemas.Bot, conversation: schemas.Conversation, text: str
    ) -> schemas.ChatReply:
        return schemas.ChatReply(
            content=schemas.ReplyContent(text=text),
            conversation_id=conversation.id,
            voice_settings=bot.voice_payload(),
            user_info=conversation.user_info.model_dump(
                by_alias=True, include={"name", "email"}
            ),
        )


__all__ = ["MessageIntakeService"]
