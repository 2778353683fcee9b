"""Conversation store: protocol, PostgreSQL and in-memory implementations."""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple
from uuid import uuid4

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..core.db import parse_uuid
from ..errors import ConversationConflictError
from . import schemas
from .models import Fingerprint


class ConversationRepository(Protocol):
    """Abstraction for persisting conversations and their message logs."""

    def get_conversation(self, conversation_id: str) -> Optional[schemas.Conversation]: ...

    def find_or_create_open(
        self,
        bot_id: str,
        fingerprint: Fingerprint,
        user_info: Optional[schemas.UserInfo] = None,
    ) -> schemas.Conversation:
        """Return the open conversation for ``fingerprint`` or create one.

        Implementations must make lookup and creation a single atomic step.
        """
        ...

    def save_conversation(self, conversation: schemas.Conversation) -> schemas.Conversation: ...

    def list_conversations(
        self,
        bot_id: str,
        *,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[schemas.Conversation], int]: ...

    def list_in_window(
        self, bot_id: str, start: datetime, end: datetime
    ) -> List[schemas.Conversation]: ...

    def count_conversations(
        self, bot_id: str, *, created_since: Optional[datetime] = None
    ) -> int: ...


def _new_conversation(
    conversation_id: str,
    bot_id: str,
    fingerprint: Fingerprint,
    user_info: Optional[schemas.UserInfo],
) -> schemas.Conversation:
    seed = user_info or schemas.UserInfo()
    return schemas.Conversation(
        id=conversation_id,
        bot_id=bot_id,
        status="new",
        user_info=schemas.UserInfo(
            name=seed.name,
            email=seed.email,
            ip=fingerprint.ip,
            user_agent=fingerprint.user_agent,
        ),
        messages=[],
        tags=[],
    )


class PostgresConversationRepository:
    """PostgreSQL implementation of :class:`ConversationRepository`."""

    _FIND_OR_CREATE_ATTEMPTS = 3

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    # Utility -----------------------------------------------------------------
    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    # Conversation operations --------------------------------------------------
    def get_conversation(self, conversation_id: str) -> Optional[schemas.Conversation]:
        key = parse_uuid(conversation_id)
        if key is None:
            return None
        with self._cursor() as cur:
            cur.execute("SELECT * FROM conversations WHERE id = %s", (key,))
            row = cur.fetchone()
        if not row:
            return None
        return self._hydrate(row)

    def find_or_create_open(
        self,
        bot_id: str,
        fingerprint: Fingerprint,
        user_info: Optional[schemas.UserInfo] = None,
    ) -> schemas.Conversation:
        bot_key = parse_uuid(bot_id)
        if bot_key is None:
            raise ValueError(f"Invalid bot id {bot_id!r}")
        for _ in range(self._FIND_OR_CREATE_ATTEMPTS):
            draft = _new_conversation(str(uuid4()), bot_id, fingerprint, user_info)
            with self._cursor() as cur:
                # The partial unique index on open fingerprints turns a
                # concurrent duplicate insert into a no-op.
                cur.execute(
                    """
                    INSERT INTO conversations
                        (id, bot_id, status, ip, user_agent, user_info,
                         messages, tags, pending_prompt)
                    VALUES (%s, %s, 'new', %s, %s, %s, '[]'::jsonb, '[]'::jsonb, 'none')
                    ON CONFLICT (bot_id, ip, user_agent) WHERE status <> 'closed'
                    DO NOTHING
                    RETURNING *
                    """,
                    (
                        parse_uuid(draft.id),
                        bot_key,
                        fingerprint.ip,
                        fingerprint.user_agent,
                        Jsonb(draft.user_info.model_dump(mode="json")),
                    ),
                )
                row = cur.fetchone()
                if row is None:
                    cur.execute(
                        """
                        SELECT * FROM conversations
                        WHERE bot_id = %s AND ip = %s AND user_agent = %s
                          AND status <> 'closed'
                        ORDER BY created_at DESC
                        LIMIT 1
                        """,
                        (bot_key, fingerprint.ip, fingerprint.user_agent),
                    )
                    row = cur.fetchone()
            if row is not None:
                return self._hydrate(row)
        raise RuntimeError(
            "Could not resolve an open conversation for the visitor fingerprint"
        )

    def save_conversation(self, conversation: schemas.Conversation) -> schemas.Conversation:
        try:
            row = self._update(conversation)
        except psycopg.errors.UniqueViolation as exc:
            raise ConversationConflictError(
                f"Visitor already has another open conversation than {conversation.id}"
            ) from exc
        if row is None:
            raise RuntimeError(f"Conversation {conversation.id} disappeared while saving")
        conversation.updated_at = row["updated_at"]
        return conversation

    def _update(self, conversation: schemas.Conversation) -> Optional[Dict[str, Any]]:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversations SET
                    status = %s,
                    user_id = %s,
                    user_info = %s,
                    messages = %s,
                    tags = %s,
                    pending_prompt = %s,
                    updated_at = now()
                WHERE id = %s
                RETURNING updated_at
                """,
                (
                    conversation.status,
                    conversation.user_id,
                    Jsonb(conversation.user_info.model_dump(mode="json")),
                    Jsonb([m.model_dump(mode="json") for m in conversation.messages]),
                    Jsonb(list(conversation.tags)),
                    conversation.pending_prompt,
                    parse_uuid(conversation.id),
                ),
            )
            return cur.fetchone()

    def list_conversations(
        self,
        bot_id: str,
        *,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[schemas.Conversation], int]:
        bot_key = parse_uuid(bot_id)
        if bot_key is None:
            return [], 0
        clauses: List[str] = ["bot_id = %s"]
        values: List[Any] = [bot_key]
        if status:
            clauses.append("status = %s")
            values.append(status)
        if search:
            pattern = f"%{search}%"
            clauses.append(
                """(
                    EXISTS (
                        SELECT 1 FROM jsonb_array_elements(messages) m
                        WHERE m->>'content' ILIKE %s
                    )
                    OR user_info->>'name' ILIKE %s
                    OR user_info->>'email' ILIKE %s
                )"""
            )
            values.extend((pattern, pattern, pattern))
        where = " AND ".join(clauses)
        with self._cursor() as cur:
            cur.execute(f"SELECT count(*) AS total FROM conversations WHERE {where}", values)
            total = (cur.fetchone() or {"total": 0})["total"]
            cur.execute(
                f"""
                SELECT * FROM conversations
                WHERE {where}
                ORDER BY updated_at DESC NULLS LAST, created_at DESC
                LIMIT %s OFFSET %s
                """,
                [*values, limit, offset],
            )
            rows = cur.fetchall()
        return [self._hydrate(row) for row in rows], int(total)

    def list_in_window(
        self, bot_id: str, start: datetime, end: datetime
    ) -> List[schemas.Conversation]:
        bot_key = parse_uuid(bot_id)
        if bot_key is None:
            return []
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM conversations
                WHERE bot_id = %s AND created_at >= %s AND created_at <= %s
                ORDER BY created_at ASC
                """,
                (bot_key, start, end),
            )
            rows = cur.fetchall()
        return [self._hydrate(row) for row in rows]

    def count_conversations(
        self, bot_id: str, *, created_since: Optional[datetime] = None
    ) -> int:
        bot_key = parse_uuid(bot_id)
        if bot_key is None:
            return 0
        query = "SELECT count(*) AS total FROM conversations WHERE bot_id = %s"
        values: List[Any] = [bot_key]
        if created_since is not None:
            query += " AND created_at >= %s"
            values.append(created_since)
        with self._cursor() as cur:
            cur.execute(query, values)
            row = cur.fetchone() or {"total": 0}
        return int(row["total"])

    # Helpers ------------------------------------------------------------------
    def _hydrate(self, row: Dict[str, Any]) -> schemas.Conversation:
        data = dict(row)
        user_info = dict(data.pop("user_info", None) or {})
        ip = data.pop("ip", None)
        user_agent = data.pop("user_agent", None)
        user_info.setdefault("ip", ip or "unknown")
        user_info.setdefault("user_agent", user_agent or "unknown")
        data["id"] = str(data["id"])
        data["bot_id"] = str(data["bot_id"])
        data["user_info"] = user_info
        data["messages"] = data.get("messages") or []
        data["tags"] = data.get("tags") or []
        return schemas.Conversation(**data)


class InMemoryConversationRepository:
    """Process-local conversation store used by tests and local runs."""

    def __init__(self) -> None:
        self._conversations: Dict[str, schemas.Conversation] = {}
        self._lock = threading.Lock()

    def add(self, conversation: schemas.Conversation) -> schemas.Conversation:
        """Insert a fully formed conversation, e.g. a replayed fixture."""

        with self._lock:
            self._conversations[conversation.id] = conversation.model_copy(deep=True)
        return conversation

    def get_conversation(self, conversation_id: str) -> Optional[schemas.Conversation]:
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy(deep=True) if conversation else None

    def find_or_create_open(
        self,
        bot_id: str,
        fingerprint: Fingerprint,
        user_info: Optional[schemas.UserInfo] = None,
    ) -> schemas.Conversation:
        with self._lock:
            matches = [
                c
                for c in self._conversations.values()
                if c.bot_id == bot_id
                and c.is_open
                and c.user_info.ip == fingerprint.ip
                and c.user_info.user_agent == fingerprint.user_agent
            ]
            if matches:
                latest = max(matches, key=lambda c: c.created_at)
                return latest.model_copy(deep=True)
            conversation = _new_conversation(uuid4().hex, bot_id, fingerprint, user_info)
            self._conversations[conversation.id] = conversation
            return conversation.model_copy(deep=True)

    def save_conversation(self, conversation: schemas.Conversation) -> schemas.Conversation:
        with self._lock:
            if conversation.id not in self._conversations:
                raise RuntimeError(
                    f"Conversation {conversation.id} disappeared while saving"
                )
            if conversation.is_open and self._has_other_open(conversation):
                raise ConversationConflictError(
                    f"Visitor already has another open conversation than {conversation.id}"
                )
            conversation.updated_at = schemas.utcnow()
            self._conversations[conversation.id] = conversation.model_copy(deep=True)
        return conversation

    def _has_other_open(self, conversation: schemas.Conversation) -> bool:
        return any(
            other.id != conversation.id
            and other.bot_id == conversation.bot_id
            and other.is_open
            and other.user_info.ip == conversation.user_info.ip
            and other.user_info.user_agent == conversation.user_info.user_agent
            for other in self._conversations.values()
        )

    def list_conversations(
        self,
        bot_id: str,
        *,
        status: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[schemas.Conversation], int]:
        needle = search.lower() if search else None
        items = []
        for conversation in self._conversations.values():
            if conversation.bot_id != bot_id:
                continue
            if status and conversation.status != status:
                continue
            if needle and not _matches_search(conversation, needle):
                continue
            items.append(conversation)
        items.sort(
            key=lambda c: (c.updated_at or c.created_at, c.created_at), reverse=True
        )
        page = items[offset : offset + limit]
        return [c.model_copy(deep=True) for c in page], len(items)

    def list_in_window(
        self, bot_id: str, start: datetime, end: datetime
    ) -> List[schemas.Conversation]:
        items = [
            c.model_copy(deep=True)
            for c in self._conversations.values()
            if c.bot_id == bot_id and start <= c.created_at <= end
        ]
        items.sort(key=lambda c: c.created_at)
        return items

    def count_conversations(
        self, bot_id: str, *, created_since: Optional[datetime] = None
    ) -> int:
        return sum(
            1
            for c in self._conversations.values()
            if c.bot_id == bot_id
            and (created_since is None or c.created_at >= created_since)
        )


def _matches_search(conversation: schemas.Conversation, needle: str) -> bool:
    if any(needle in m.content.lower() for m in conversation.messages):
        return True
    name = (conversation.user_info.name or "").lower()
    email = (conversation.user_info.email or "").lower()
    return needle in name or needle in email


__all__ = [
    "ConversationRepository",
    "InMemoryConversationRepository",
    "PostgresConversationRepository",
]
