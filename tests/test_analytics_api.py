import csv
import io
import json
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException
from fastapi.testclient import TestClient

from botrelay.analytics.engine import AnalyticsService
from botrelay.errors import AnalyticsRangeError, BotNotFoundError

from conftest import make_conversation


def create_client(monkeypatch, store):
    import botrelay.routers.analytics as analytics_router

    @contextmanager
    def fake_context():
        try:
            yield AnalyticsService(store.bots, store.conversations)
        except AnalyticsRangeError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except BotNotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    monkeypatch.setattr(analytics_router, "_service_context", fake_context)

    import botrelay.main as main

    return TestClient(main.app)


def _seed(store):
    day = datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    store.conversations.add(
        make_conversation(
            store.bot.id,
            conversation_id="a1",
            created_at=day,
            status="closed",
            user_id="u1",
            messages=[("user", "Hi", 0), ("bot", "Hello", 4)],
        )
    )
    store.conversations.add(
        make_conversation(
            store.bot.id,
            conversation_id="a2",
            created_at=day + timedelta(days=1),
            user_id="u2",
            messages=[("user", "hi", 0), ("bot", "Hello", 2), ("agent", "I can help", 30)],
        )
    )


def test_custom_period_report(monkeypatch, store):
    _seed(store)
    client = create_client(monkeypatch, store)

    resp = client.get(
        f"/api/bots/{store.bot.id}/analytics",
        params={"period": "custom", "startDate": "2024-05-01", "endDate": "2024-05-03"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    analytics = body["analytics"]
    assert analytics["performance"]["total_conversations"] == 2
    assert analytics["performance"]["resolution_rate"] == 50.0
    assert analytics["performance"]["handover_rate"] == 50.0
    assert analytics["performance"]["average_response_time"] == 3.0
    assert [d["count"] for d in analytics["conversations"]] == [1, 1, 0]
    assert analytics["top_questions"][0] == {
        "question": "hi",
        "count": 2,
        "percentage": 100.0,
        "avg_response_time": 3.0,
    }


def test_csv_download(monkeypatch, store):
    _seed(store)
    client = create_client(monkeypatch, store)

    resp = client.get(
        f"/api/bots/{store.bot.id}/analytics",
        params={"period": "custom", "startDate": "2024-05-01", "endDate": "2024-05-03", "format": "csv"},
    )

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert (
        resp.headers["content-disposition"]
        == f'attachment; filename="bot-analytics-{store.bot.id}-custom.csv"'
    )
    rows = list(csv.reader(io.StringIO(resp.text)))
    assert rows[0] == ["Date", "Conversations", "Resolved", "Handovers", "Avg Messages"]
    assert len(rows) == 4


def test_export_action_json(monkeypatch, store):
    _seed(store)
    client = create_client(monkeypatch, store)

    resp = client.post(
        f"/api/bots/{store.bot.id}/analytics",
        json={
            "action": "export",
            "format": "json",
            "period": "custom",
            "startDate": "2024-05-01",
            "endDate": "2024-05-02",
        },
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert json.loads(body["data"])["performance"]["total_conversations"] == 2


def test_export_action_defaults_to_csv(monkeypatch, store):
    client = create_client(monkeypatch, store)

    resp = client.post(f"/api/bots/{store.bot.id}/analytics", json={"action": "export"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert f"bot-analytics-{store.bot.id}-month.csv" in resp.headers["content-disposition"]


def test_unknown_action_is_rejected(monkeypatch, store):
    client = create_client(monkeypatch, store)

    resp = client.post(f"/api/bots/{store.bot.id}/analytics", json={"action": "delete"})

    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid action"}


def test_invalid_range_is_400(monkeypatch, store):
    client = create_client(monkeypatch, store)

    missing = client.get(f"/api/bots/{store.bot.id}/analytics", params={"period": "custom"})
    reversed_range = client.get(
        f"/api/bots/{store.bot.id}/analytics",
        params={"period": "custom", "startDate": "2024-05-05", "endDate": "2024-05-01"},
    )

    assert missing.status_code == 400
    assert reversed_range.status_code == 400
    assert "error" in reversed_range.json()


def test_unknown_bot_is_404(monkeypatch, store):
    client = create_client(monkeypatch, store)

    resp = client.get("/api/bots/unknown/analytics")

    assert resp.status_code == 404
    assert "error" in resp.json()


def test_invalid_format_is_400(monkeypatch, store):
    client = create_client(monkeypatch, store)

    resp = client.get(f"/api/bots/{store.bot.id}/analytics", params={"format": "xml"})

    assert resp.status_code == 400
    assert "error" in resp.json()
