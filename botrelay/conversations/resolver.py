"""Find or create the conversation an inbound message belongs to."""

from __future__ import annotations

import logging

from . import schemas
from .models import Fingerprint
from .repository import ConversationRepository

logger = logging.getLogger(__name__)


class ConversationResolver:
    """Map (bot, conversation id, visitor fingerprint) onto a conversation."""

    def __init__(self, repository: ConversationRepository) -> None:
        self._repository = repository

    def resolve(
        self,
        bot_id: str,
        conversation_id: str | None = None,
        fingerprint: Fingerprint | None = None,
        user_info: schemas.UserInfo | None = None,
    ) -> schemas.Conversation:
        """Return the conversation to append to.

        An explicit ``conversation_id`` wins when it exists and belongs to
        ``bot_id``. Otherwise the visitor's open conversation is reused, or a
        new one is created in the same repository call.
        """

        if conversation_id:
            conversation = self._repository.get_conversation(conversation_id)
            if conversation is not None and conversation.bot_id == bot_id:
                return conversation
            logger.info(
                "Conversation %s not found for bot %s; falling back to fingerprint",
                conversation_id,
                bot_id,
            )
        fingerprint = fingerprint or Fingerprint()
        return self._repository.find_or_create_open(bot_id, fingerprint, user_info)
