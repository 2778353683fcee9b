from contextlib import contextmanager

from fastapi import HTTPException
from fastapi.testclient import TestClient

from botrelay.conversations.intake import MessageIntakeService
from botrelay.core.config import reset_settings_cache
from botrelay.conversations.name_capture import NameCapture
from botrelay.errors import BotNotFoundError, ChatValidationError
from botrelay.relay.webhook import WebhookRelay

from conftest import FakeResponse, FakeSession


def create_client(monkeypatch, store, settings, session=None):
    import botrelay.routers.chat as chat_router

    session = session if session is not None else FakeSession()
    relay = WebhookRelay(session=session, settings=settings, sleep=lambda _: None)

    @contextmanager
    def fake_context():
        service = MessageIntakeService(
            store.bots,
            store.conversations,
            relay=relay,
            name_capture=NameCapture(lambda: "Generated"),
            settings=settings,
        )
        try:
            yield service
        except ChatValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except BotNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    monkeypatch.setattr(chat_router, "_service_context", fake_context)

    import botrelay.main as main

    return TestClient(main.app), session


def test_first_message_returns_welcome_pair(monkeypatch, store, settings):
    client, session = create_client(monkeypatch, store, settings)

    resp = client.post(
        "/api/chat",
        json={"botId": store.bot.id, "message": "hello"},
        headers={"X-Forwarded-For": "203.0.113.10, 10.0.0.1", "User-Agent": "Widget/3"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert [item["content"]["text"] for item in body] == ["Hi there!", settings.name_prompt]
    assert {item["sender"] for item in body} == {"bot"}
    assert body[0]["_id"] == body[1]["_id"]
    assert "createdAt" in body[0]
    assert session.calls == []

    conversation = store.conversations.get_conversation(body[0]["_id"])
    assert conversation.user_info.ip == "203.0.113.10"
    assert conversation.user_info.user_agent == "Widget/3"


def test_widget_payload_shape(monkeypatch, store, settings):
    session = FakeSession([FakeResponse(200, [{"content": {"text": "from automation"}}])])
    client, _ = create_client(monkeypatch, store, settings, session)
    headers = {"X-Forwarded-For": "203.0.113.11"}
    first = client.post(
        "/api/chat",
        json={"type": "text", "content": {"text": "hello"}, "_botId": store.bot.id},
        headers=headers,
    ).json()

    resp = client.post(
        "/api/chat",
        json={
            "type": "text",
            "content": {"text": "maria"},
            "_botId": store.bot.id,
            "_conversationId": first[0]["_id"],
            "_userInfo": {"email": "maria@example.test"},
        },
        headers=headers,
    )

    assert resp.status_code == 200
    [reply] = resp.json()
    assert reply["content"]["text"] == "from automation"
    assert reply["userInfo"]["name"] == "Maria"


def test_missing_fields_return_400(monkeypatch, store, settings):
    client, _ = create_client(monkeypatch, store, settings)

    resp = client.post(
        "/api/chat", json={"botId": store.bot.id}, headers={"X-Forwarded-For": "203.0.113.12"}
    )

    assert resp.status_code == 400
    assert resp.json() == {"error": "botId and message are required"}


def test_invalid_json_returns_400(monkeypatch, store, settings):
    client, _ = create_client(monkeypatch, store, settings)

    resp = client.post(
        "/api/chat",
        content=b"{not json",
        headers={"Content-Type": "application/json", "X-Forwarded-For": "203.0.113.13"},
    )

    assert resp.status_code == 400
    assert "error" in resp.json()


def test_unknown_bot_returns_404(monkeypatch, store, settings):
    client, _ = create_client(monkeypatch, store, settings)

    resp = client.post(
        "/api/chat",
        json={"botId": "nope", "message": "hi"},
        headers={"X-Forwarded-For": "203.0.113.14"},
    )

    assert resp.status_code == 404
    assert "nope" in resp.json()["error"]


def test_rate_limit_returns_429(monkeypatch, store, settings):
    monkeypatch.setenv("CHAT_RATE_LIMIT", "2/minute")
    client, _ = create_client(monkeypatch, store, settings)
    headers = {"X-Forwarded-For": "203.0.113.15"}
    payload = {"botId": store.bot.id, "message": "hello"}

    statuses = [client.post("/api/chat", json=payload, headers=headers).status_code for _ in range(3)]

    assert statuses == [200, 200, 429]
    other = client.post("/api/chat", json=payload, headers={"X-Forwarded-For": "203.0.113.16"})
    assert other.status_code == 200


def test_unexpected_error_returns_generic_500(monkeypatch, store, settings):
    import botrelay.routers.chat as chat_router
    import botrelay.main as main

    @contextmanager
    def broken_context():
        raise RuntimeError("secret connection string")
        yield  # pragma: no cover

    monkeypatch.setattr(chat_router, "_service_context", broken_context)
    client = TestClient(main.app, raise_server_exceptions=False)

    resp = client.post(
        "/api/chat",
        json={"botId": store.bot.id, "message": "hi"},
        headers={"X-Forwarded-For": "203.0.113.17"},
    )

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error"}


def test_missing_database_returns_500(monkeypatch, store):
    import botrelay.main as main

    monkeypatch.delenv("DATABASE_URL", raising=False)
    reset_settings_cache()
    client = TestClient(main.app)

    resp = client.post(
        "/api/chat",
        json={"botId": store.bot.id, "message": "hi"},
        headers={"X-Forwarded-For": "203.0.113.18"},
    )

    assert resp.status_code == 500
    assert resp.json() == {"error": "DATABASE_URL not configured"}


def test_preflight_allows_any_origin(monkeypatch, store, settings):
    client, _ = create_client(monkeypatch, store, settings)

    cors = client.options(
        "/api/chat",
        headers={"Origin": "https://shop.example.test", "Access-Control-Request-Method": "POST"},
    )
    plain = client.options("/api/chat")

    assert cors.status_code == 200
    assert cors.headers["access-control-allow-origin"] == "*"
    assert plain.status_code == 204
    assert plain.headers["access-control-allow-origin"] == "*"


def test_health_and_version(monkeypatch, store, settings):
    client, _ = create_client(monkeypatch, store, settings)

    assert client.get("/api/health").json() == {"status": "ok"}
    assert "version" in client.get("/api/version").json()


def test_mistyped_user_info_is_ignored(monkeypatch, store, settings):
    client, _ = create_client(monkeypatch, store, settings)

    resp = client.post(
        "/api/chat",
        json={"botId": store.bot.id, "message": "hello", "userInfo": {"name": 5, "email": ["x"]}},
        headers={"X-Forwarded-For": "203.0.113.19"},
    )

    assert resp.status_code == 200
    conversation = store.conversations.get_conversation(resp.json()[0]["_id"])
    assert conversation.user_info.name is None
    assert conversation.user_info.ip == "203.0.113.19"


def test_missing_fields_rejected_without_database(monkeypatch):
    import botrelay.main as main

    monkeypatch.delenv("DATABASE_URL", raising=False)
    reset_settings_cache()
    client = TestClient(main.app)

    resp = client.post("/api/chat", json={"message": "hi"}, headers={"X-Forwarded-For": "203.0.113.20"})

    assert resp.status_code == 400
    assert resp.json() == {"error": "botId and message are required"}
