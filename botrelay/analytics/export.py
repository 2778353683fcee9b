"""Render analytics reports for download."""

from __future__ import annotations

import csv
import io

from .schemas import AnalyticsReport

CSV_HEADER = ("Date", "Conversations", "Resolved", "Handovers", "Avg Messages")


def _number(value: float) -> str:
    # 3.0 -> "3", 2.5 -> "2.5"
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def to_csv(report: AnalyticsReport) -> str:
    """One row per day of the report window, header first."""

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for day in report.conversations:
        writer.writerow(
            (
                day.date.isoformat(),
                day.count,
                day.resolved,
                day.handovers,
                _number(day.avg_messages),
            )
        )
    return buffer.getvalue()


def to_json(report: AnalyticsReport) -> str:
    return report.model_dump_json(indent=2)


def csv_filename(bot_id: str, period: str) -> str:
    return f"bot-analytics-{bot_id}-{period}.csv"


__all__ = ["CSV_HEADER", "csv_filename", "to_csv", "to_json"]
