"""Conversation management API routes."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import APIRouter, HTTPException

from ..conversations import schemas as convo_schemas
from ..conversations.repository import PostgresConversationRepository
from ..conversations.service import ConversationService
from ..core.db import connect
from ..errors import ConversationConflictError, ConversationNotFoundError

router = APIRouter(tags=["conversations"])


@contextmanager
def _service_context() -> Iterator[ConversationService]:
    try:
        conn = connect()
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - connection failure
        raise HTTPException(status_code=500, detail="Database unavailable") from exc
    service = ConversationService(PostgresConversationRepository(conn))
    try:
        yield service
        conn.commit()
    except ConversationNotFoundError as exc:
        conn.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConversationConflictError as exc:
        conn.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except HTTPException:
        conn.rollback()
        raise
    finally:
        conn.close()


@router.get(
    "/api/bots/{bot_id}/conversations",
    response_model=convo_schemas.ConversationList,
)
def list_conversations(
    bot_id: str,
    status: str | None = None,
    search: str | None = None,
    limit: int = 50,
    page: int = 1,
) -> convo_schemas.ConversationList:
    with _service_context() as conversations:
        return conversations.list_conversations(
            bot_id, status=status, search=search, limit=limit, page=page
        )


@router.get(
    "/api/bots/{bot_id}/conversations/{conversation_id}",
    response_model=convo_schemas.Conversation,
)
def get_conversation(bot_id: str, conversation_id: str) -> convo_schemas.Conversation:
    with _service_context() as conversations:
        return conversations.get_conversation(bot_id, conversation_id)


@router.post(
    "/api/bots/{bot_id}/conversations/{conversation_id}/messages",
    response_model=convo_schemas.Conversation,
)
def post_agent_message(
    bot_id: str,
    conversation_id: str,
    payload: convo_schemas.AgentMessageRequest,
) -> convo_schemas.Conversation:
    with _service_context() as conversations:
        return conversations.post_agent_message(bot_id, conversation_id, payload.content)


@router.patch(
    "/api/bots/{bot_id}/conversations/{conversation_id}",
    response_model=convo_schemas.Conversation,
)
def update_status(
    bot_id: str,
    conversation_id: str,
    payload: convo_schemas.StatusUpdateRequest,
) -> convo_schemas.Conversation:
    with _service_context() as conversations:
        return conversations.update_status(bot_id, conversation_id, payload.status)
