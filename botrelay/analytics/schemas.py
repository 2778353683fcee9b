"""Pydantic schemas for analytics reports."""

from __future__ import annotations

import datetime as dt
from typing import Literal

from pydantic import BaseModel, Field

Period = Literal["day", "week", "month", "custom"]
ExportFormat = Literal["json", "csv"]


class AnalyticsWindow(BaseModel):
    start: dt.datetime
    end: dt.datetime


class DailyConversationStats(BaseModel):
    date: dt.date
    count: int
    resolved: int
    handovers: int
    avg_messages: float


class PerformanceMetrics(BaseModel):
    total_conversations: int
    total_interactions: int
    unique_users: int
    active_users: int
    active_conversations: int
    resolution_rate: float
    average_response_time: float
    handover_rate: float
    avg_messages_per_conversation: float
    avg_interactions_per_user: float


class HourlyActivity(BaseModel):
    hour: int
    conversations: int
    users: int


class UserEngagementMetrics(BaseModel):
    total_users: int
    returning_users: int
    new_users: int
    peak_hours: list[HourlyActivity]


class TopQuestion(BaseModel):
    question: str
    count: int
    percentage: float
    avg_response_time: float


class ResponseTimeStats(BaseModel):
    date: dt.date
    avg_response_time: float
    p95_response_time: float
    p99_response_time: float


class HandoverRateStats(BaseModel):
    date: dt.date
    handover_rate: float
    total_conversations: int
    handovers: int


class AnalyticsReport(BaseModel):
    bot_id: str
    period: Period
    window: AnalyticsWindow
    conversations: list[DailyConversationStats] = Field(default_factory=list)
    performance: PerformanceMetrics
    user_engagement: UserEngagementMetrics
    top_questions: list[TopQuestion] = Field(default_factory=list)
    response_time: list[ResponseTimeStats] = Field(default_factory=list)
    handover_rate: list[HandoverRateStats] = Field(default_factory=list)


class AnalyticsExportRequest(BaseModel):
    action: str
    format: ExportFormat = "csv"
    period: Period = "month"
    startDate: str | None = None
    endDate: str | None = None
