from .engine import (
    AnalyticsService,
    build_report,
    naive_percentile,
    resolve_window,
    response_times,
)
from .export import csv_filename, to_csv, to_json
from .schemas import AnalyticsReport, AnalyticsWindow

__all__ = [
    "AnalyticsReport",
    "AnalyticsService",
    "AnalyticsWindow",
    "build_report",
    "csv_filename",
    "naive_percentile",
    "resolve_window",
    "response_times",
    "to_csv",
    "to_json",
]
