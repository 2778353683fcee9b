"""Persistence for bots and their cached metrics."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol
from uuid import uuid4

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..core.db import parse_uuid
from . import schemas

if TYPE_CHECKING:
    from ..conversations.repository import InMemoryConversationRepository


class BotRepository(Protocol):
    """Abstraction over the bot store."""

    def get_bot(self, bot_id: str) -> Optional[schemas.Bot]: ...

    def create_bot(self, payload: schemas.BotCreate) -> schemas.Bot: ...

    def refresh_metrics(self, bot_id: str, *, recent_since: datetime) -> Optional[schemas.Bot]:
        """Recompute conversation counters from the conversation log.

        ``total_conversations`` counts every conversation of the bot and
        ``new_messages_24h`` those created at or after ``recent_since``.
        """
        ...


class PostgresBotRepository:
    """PostgreSQL implementation of :class:`BotRepository`."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def get_bot(self, bot_id: str) -> Optional[schemas.Bot]:
        key = parse_uuid(bot_id)
        if key is None:
            return None
        with self._cursor() as cur:
            cur.execute("SELECT * FROM bots WHERE id = %s", (key,))
            row = cur.fetchone()
        if not row:
            return None
        return self._hydrate(row)

    def create_bot(self, payload: schemas.BotCreate) -> schemas.Bot:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO bots (id, name, status, settings, metrics)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    uuid4(),
                    payload.name,
                    payload.status,
                    Jsonb(payload.settings.model_dump(mode="json")),
                    Jsonb(schemas.BotMetrics().model_dump(mode="json")),
                ),
            )
            row = cur.fetchone()
        return self._hydrate(row)

    def refresh_metrics(self, bot_id: str, *, recent_since: datetime) -> Optional[schemas.Bot]:
        # A single UPDATE derives both counters from the conversation table,
        # so concurrent refreshes converge instead of overwriting each other.
        key = parse_uuid(bot_id)
        if key is None:
            return None
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE bots SET
                    metrics = metrics || jsonb_build_object(
                        'total_conversations',
                        (SELECT count(*) FROM conversations c WHERE c.bot_id = bots.id),
                        'new_messages_24h',
                        (SELECT count(*) FROM conversations c
                         WHERE c.bot_id = bots.id AND c.created_at >= %s),
                        'last_updated', now()
                    ),
                    updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (recent_since, key),
            )
            row = cur.fetchone()
        if not row:
            return None
        return self._hydrate(row)

    def _hydrate(self, row: Dict[str, Any]) -> schemas.Bot:
        data = dict(row)
        data["id"] = str(data["id"])
        data["settings"] = data.get("settings") or {}
        data["metrics"] = data.get("metrics") or {}
        return schemas.Bot(**data)


class InMemoryBotRepository:
    """Process-local bot store used by tests and local runs."""

    def __init__(
        self, conversations: Optional["InMemoryConversationRepository"] = None
    ) -> None:
        self._bots: Dict[str, schemas.Bot] = {}
        self._conversations = conversations
        self._lock = threading.Lock()

    def get_bot(self, bot_id: str) -> Optional[schemas.Bot]:
        bot = self._bots.get(bot_id)
        return bot.model_copy(deep=True) if bot else None

    def create_bot(self, payload: schemas.BotCreate) -> schemas.Bot:
        bot = schemas.Bot(
            id=uuid4().hex,
            name=payload.name,
            status=payload.status,
            settings=payload.settings.model_copy(deep=True),
        )
        self._bots[bot.id] = bot
        return bot.model_copy(deep=True)

    def refresh_metrics(self, bot_id: str, *, recent_since: datetime) -> Optional[schemas.Bot]:
        with self._lock:
            bot = self._bots.get(bot_id)
            if bot is None:
                return None
            total = recent = 0
            if self._conversations is not None:
                total = self._conversations.count_conversations(bot_id)
                recent = self._conversations.count_conversations(
                    bot_id, created_since=recent_since
                )
            bot.metrics.total_conversations = total
            bot.metrics.new_messages_24h = recent
            bot.metrics.last_updated = datetime.now(timezone.utc)
            bot.updated_at = bot.metrics.last_updated
            return bot.model_copy(deep=True)


__all__ = ["BotRepository", "InMemoryBotRepository", "PostgresBotRepository"]
