"""Bot analytics report and export routes."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Literal

from fastapi import APIRouter, HTTPException, Response
from pydantic import ValidationError

from ..analytics import schemas as analytics_schemas
from ..analytics.engine import AnalyticsService
from ..analytics.export import csv_filename, to_csv, to_json
from ..bots.repository import PostgresBotRepository
from ..conversations.repository import PostgresConversationRepository
from ..core.db import connect
from ..errors import AnalyticsRangeError, BotNotFoundError

router = APIRouter(tags=["analytics"])


@contextmanager
def _service_context() -> Iterator[AnalyticsService]:
    try:
        conn = connect()
    except RuntimeError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - connection failure
        raise HTTPException(status_code=500, detail="Database unavailable") from exc
    service = AnalyticsService(
        PostgresBotRepository(conn), PostgresConversationRepository(conn)
    )
    try:
        yield service
        conn.commit()
    except AnalyticsRangeError as exc:
        conn.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except BotNotFoundError as exc:
        conn.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except HTTPException:
        conn.rollback()
        raise
    finally:
        conn.close()


def _csv_response(report: analytics_schemas.AnalyticsReport) -> Response:
    filename = csv_filename(report.bot_id, report.period)
    return Response(
        content=to_csv(report),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/api/bots/{bot_id}/analytics")
def get_analytics(
    bot_id: str,
    period: str = "week",
    startDate: str | None = None,
    endDate: str | None = None,
    format: Literal["json", "csv"] = "json",
) -> Any:
    with _service_context() as analytics:
        report = analytics.report(bot_id, period, startDate, endDate)
    if format == "csv":
        return _csv_response(report)
    return {"success": True, "analytics": report.model_dump(mode="json")}


@router.post("/api/bots/{bot_id}/analytics")
def export_analytics(bot_id: str, payload: dict[str, Any]) -> Any:
    """Export a report as a CSV attachment or a JSON document string."""

    try:
        request = analytics_schemas.AnalyticsExportRequest.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail="Invalid export request") from exc
    if request.action != "export":
        raise HTTPException(status_code=400, detail="Invalid action")
    with _service_context() as analytics:
        report = analytics.report(
            bot_id, request.period, request.startDate, request.endDate
        )
    if request.format == "csv":
        return _csv_response(report)
    return {"success": True, "data": to_json(report)}
