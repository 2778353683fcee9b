"""Utility script to bootstrap the database with a demo bot."""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from urllib.parse import urlsplit, urlunsplit

import psycopg
from dotenv import load_dotenv

from botrelay.bots import schemas as bot_schemas
from botrelay.bots.repository import PostgresBotRepository
from botrelay.core.db import ensure_schema

logger = logging.getLogger("seed")


@dataclass(slots=True)
class SeedConfig:
    """Configuration derived from the environment for the seed process."""

    db_url: str
    bot_name: str
    webhook_url: str
    welcome_message: str | None


def _safe_url(db_url: str) -> str:
    """Return a version of ``db_url`` with any password redacted."""

    parts = urlsplit(db_url)
    if not parts.password:
        return db_url
    netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
    return urlunsplit(parts._replace(netloc=netloc))


def _build_database_url() -> str:
    """Compute the database URL from ``DATABASE_URL`` or ``PG*`` variables."""

    direct = os.getenv("DATABASE_URL")
    if direct:
        return direct

    host = os.getenv("PGHOST")
    port = os.getenv("PGPORT", "5432")
    database = os.getenv("PGDATABASE")
    user = os.getenv("PGUSER")
    password = os.getenv("PGPASSWORD")

    if not all([host, database, user]):
        raise RuntimeError(
            "DATABASE_URL is not configured and PGHOST/PGDATABASE/PGUSER are missing."
        )

    auth = user
    if password:
        auth = f"{user}:{password}"
    return f"postgresql://{auth}@{host}:{port}/{database}"


def _load_config() -> SeedConfig:
    return SeedConfig(
        db_url=_build_database_url(),
        bot_name=os.getenv("SEED_BOT_NAME", "Demo Bot").strip(),
        webhook_url=os.getenv("SEED_WEBHOOK_URL", "").strip(),
        welcome_message=os.getenv("SEED_WELCOME_MESSAGE") or None,
    )


def wait_for_database(db_url: str, max_attempts: int = 10, delay: float = 3.0) -> None:
    """Attempt to establish a database connection, retrying if necessary."""

    safe_url = _safe_url(db_url)
    for attempt in range(1, max_attempts + 1):
        try:
            with psycopg.connect(db_url, connect_timeout=5) as connection:
                with connection.cursor() as cursor:
                    cursor.execute("SELECT 1")
        except Exception as exc:  # pragma: no cover - depends on external DB
            logger.info(
                "Database not ready (attempt %d/%d): %s; retrying in %.1fs",
                attempt,
                max_attempts,
                exc,
                delay,
            )
            if attempt >= max_attempts:
                raise RuntimeError("Database did not become ready in time") from exc
            time.sleep(delay)
            continue

        logger.info("Database connection established after %d attempt(s): %s", attempt, safe_url)
        return


def _provision_bot(conn: psycopg.Connection, config: SeedConfig) -> bot_schemas.Bot:
    """Create the demo bot, or reuse one with the same name."""

    with conn.cursor() as cur:
        cur.execute("SELECT id FROM bots WHERE name = %s LIMIT 1", (config.bot_name,))
        row = cur.fetchone()
    bots = PostgresBotRepository(conn)
    if row:
        existing = bots.get_bot(str(row[0]))
        if existing is not None:
            return existing
    settings = bot_schemas.BotSettings(webhook_url=config.webhook_url)
    if config.welcome_message:
        settings.welcome_message = config.welcome_message
    bot = bots.create_bot(
        bot_schemas.BotCreate(name=config.bot_name, status="active", settings=settings)
    )
    conn.commit()
    return bot


def main() -> None:
    """Entrypoint for the seeding workflow."""

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    config = _load_config()
    wait_for_database(config.db_url)
    logger.info("Starting seed process using %s", _safe_url(config.db_url))

    with psycopg.connect(config.db_url) as conn:
        ensure_schema(conn)
        logger.info("Schema ensured successfully.")
        bot = _provision_bot(conn, config)

    logger.info("Seed process completed. Bot ID: %s", bot.id)


if __name__ == "__main__":
    main()
