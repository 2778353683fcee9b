"""Widget chat endpoint."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import APIRouter, HTTPException, Request, Response, status
from fastapi.concurrency import run_in_threadpool

from ..app_logging import client_ip
from ..bots.repository import PostgresBotRepository
from ..conversations import schemas as convo_schemas
from ..conversations.intake import MessageIntakeService, validate_chat_request
from ..conversations.repository import PostgresConversationRepository
from ..core.config import get_settings
from ..core.db import connect
from ..core.rate_limit import chat_rate_limit, limiter
from ..errors import (
    BotNotFoundError,
    ChatValidationError,
    ConversationConflictError,
    ConversationNotFoundError,
)

router = APIRouter(tags=["chat"])


@contextmanager
def _service_context() -> Iterator[MessageIntakeService]:
    # Autocommit: the user turn is persisted before the webhook call starts.
    try:
        conn = connect(autocommit=True)
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - connection failure
        raise HTTPException(status_code=500, detail="Database unavailable") from exc
    service = MessageIntakeService(
        PostgresBotRepository(conn),
        PostgresConversationRepository(conn),
    )
    try:
        yield service
    except ChatValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (BotNotFoundError, ConversationNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConversationConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    finally:
        conn.close()


def _handle(request: convo_schemas.ChatRequest) -> list[dict[str, Any]]:
    with _service_context() as service:
        replies = service.handle(request)
    return [reply.to_wire() for reply in replies]


@router.post("/api/chat")
@limiter.limit(chat_rate_limit)
async def chat(request: Request) -> list[dict[str, Any]]:
    """Accept one widget message and return the bot's replies.

    The body may use the widget envelope or the flat ``botId``/``message``
    shape; see :meth:`ChatRequest.from_payload`.
    """

    body = await request.body()
    try:
        payload = json.loads(body.decode("utf-8")) if body else {}
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc

    chat_request = convo_schemas.ChatRequest.from_payload(
        payload,
        ip=client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )
    # Reject malformed requests before a database connection is opened.
    try:
        validate_chat_request(chat_request, get_settings())
    except ChatValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return await run_in_threadpool(_handle, chat_request)


@router.options("/api/chat")
def chat_preflight() -> Response:
    return Response(
        status_code=status.HTTP_204_NO_CONTENT,
        headers={
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type, Authorization",
        },
    )
