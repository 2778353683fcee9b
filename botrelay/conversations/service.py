"""Conversation queries and operator actions (agent replies, status)."""

from __future__ import annotations

import logging

from . import schemas
from ..errors import ConversationNotFoundError
from .repository import ConversationRepository

logger = logging.getLogger(__name__)


class ConversationService:
    """Read and act on stored conversations on behalf of the dashboard."""

    def __init__(self, repository: ConversationRepository) -> None:
        self._repository = repository

    # ------------------------------------------------------------------
    # Queries

    def list_conversations(
        self,
        bot_id: str,
        *,
        status: str | None = None,
        search: str | None = None,
        limit: int = 50,
        page: int = 1,
    ) -> schemas.ConversationList:
        limit = max(1, min(limit, 200))
        page = max(1, page)
        if status == "all":
            status = None
        items, total = self._repository.list_conversations(
            bot_id,
            status=status,
            search=search or None,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return schemas.ConversationList(
            items=[schemas.ConversationSummary.from_conversation(c) for c in items],
            total=total,
            page=page,
            limit=limit,
        )

    def get_conversation(self, bot_id: str, conversation_id: str) -> schemas.Conversation:
        conversation = self._repository.get_conversation(conversation_id)
        if conversation is None or conversation.bot_id != bot_id:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    # ------------------------------------------------------------------
    # Actions

    def post_agent_message(
        self, bot_id: str, conversation_id: str, content: str
    ) -> schemas.Conversation:
        """Append a human agent reply, which marks the conversation as handed over."""

        conversation = self.get_conversation(bot_id, conversation_id)
        conversation.append("agent", content)
        if conversation.status == "new":
            conversation.status = "active"
        logger.info("Agent replied in conversation %s", conversation_id)
        return self._repository.save_conversation(conversation)

    def update_status(
        self, bot_id: str, conversation_id: str, status: schemas.ConversationStatus
    ) -> schemas.Conversation:
        conversation = self.get_conversation(bot_id, conversation_id)
        if conversation.status != status:
            logger.info(
                "Conversation %s status %s -> %s",
                conversation_id,
                conversation.status,
                status,
            )
            conversation.status = status
        return self._repository.save_conversation(conversation)
