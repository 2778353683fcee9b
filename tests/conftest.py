import pathlib
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from botrelay.app_logging import init_logging
from botrelay.bots import schemas as bot_schemas
from botrelay.bots.repository import InMemoryBotRepository
from botrelay.conversations import schemas as convo_schemas
from botrelay.conversations.repository import InMemoryConversationRepository
from botrelay.core.config import Settings, reset_settings_cache
from botrelay.core.rate_limit import limiter


class FakeResponse:
    """Enough of ``requests.Response`` for the webhook relay."""

    def __init__(self, status_code=200, body=None, text=None, reason="OK"):
        self.status_code = status_code
        self.reason = reason
        self._body = body
        self.text = text if text is not None else ("" if body is None else str(body))

    def json(self):
        if self._body is None:
            raise ValueError("no JSON body")
        return self._body


@dataclass
class FakeSession:
    """Replays queued responses (or raises queued exceptions) in order."""

    responses: list = field(default_factory=list)
    calls: list = field(default_factory=list)

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        outcome = self.responses.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@dataclass
class Store:
    bots: InMemoryBotRepository
    conversations: InMemoryConversationRepository
    bot: bot_schemas.Bot


def make_conversation(
    bot_id: str,
    *,
    conversation_id: str,
    created_at: datetime,
    messages=(),
    status="active",
    user_id=None,
    email=None,
    ip="unknown",
    user_agent="unknown",
) -> convo_schemas.Conversation:
    """Build a stored conversation from ``(sender, content, seconds)`` tuples."""

    return convo_schemas.Conversation(
        id=conversation_id,
        bot_id=bot_id,
        user_id=user_id,
        status=status,
        user_info=convo_schemas.UserInfo(email=email, ip=ip, user_agent=user_agent),
        messages=[
            convo_schemas.Message(
                sender=sender,
                content=content,
                timestamp=created_at + timedelta(seconds=offset),
            )
            for sender, content, offset in messages
        ],
        created_at=created_at,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(webhook_retry_delay_seconds=0)


@pytest.fixture
def store() -> Store:
    conversations = InMemoryConversationRepository()
    bots = InMemoryBotRepository(conversations)
    bot = bots.create_bot(
        bot_schemas.BotCreate(
            name="Support",
            status="active",
            settings=bot_schemas.BotSettings(
                webhook_url="https://hooks.example.test/support",
                welcome_message="Hi there!",
                fallback_message="Sorry, try again later.",
            ),
        )
    )
    return Store(bots=bots, conversations=conversations, bot=bot)


@pytest.fixture
def monday_noon() -> datetime:
    return datetime(2024, 5, 13, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _reset_state():
    reset_settings_cache()
    limiter.reset()
    yield
    reset_settings_cache()


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app
