"""Database helpers for psycopg connections."""

from __future__ import annotations

import logging
from pathlib import Path
from uuid import UUID

import psycopg

from .config import get_settings

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parents[2] / "schema.sql"


def connect(*, autocommit: bool = False) -> psycopg.Connection:
    """Open a connection to ``DATABASE_URL``.

    Raises ``RuntimeError`` when no database is configured so callers can
    map it onto an HTTP error.
    """

    url = get_settings().database_url
    if not url:
        raise RuntimeError("DATABASE_URL not configured")
    try:
        return psycopg.connect(url, autocommit=autocommit)
    except Exception:
        logger.exception("Failed to connect to the database")
        raise


def ensure_schema(conn: psycopg.Connection, schema_sql_path: Path = SCHEMA_PATH) -> None:
    """Create the ``bots`` and ``conversations`` tables when missing.

    Non-destructive: ``schema.sql`` only uses ``IF NOT EXISTS`` statements,
    so this can run on every deploy.
    """

    with conn.cursor() as cur:
        cur.execute(schema_sql_path.read_text(encoding="utf-8"))
    conn.commit()


def parse_uuid(value: str | UUID | None) -> UUID | None:
    """Return ``value`` as a UUID, or ``None`` when it is not one.

    Identifiers arrive from the widget as opaque strings; a malformed id is
    simply an id that matches nothing.
    """

    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None
