"""Derive conversation analytics by replaying stored message logs.

Every function here is a pure function of the conversations it receives.
Averages are plain arithmetic means and percentiles use the naive index
``sorted_values[floor(n * q)]``; dashboards and exports already depend on
exactly these numbers.
"""

from __future__ import annotations

import math
from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta, timezone

from ..bots.repository import BotRepository
from ..conversations import schemas as convo_schemas
from ..conversations.repository import ConversationRepository
from ..errors import AnalyticsRangeError, BotNotFoundError
from . import schemas

TOP_QUESTIONS_LIMIT = 10
MAX_CUSTOM_DAYS = 366
_END_OF_DAY = time(23, 59, 59, 999999)

Conversation = convo_schemas.Conversation
Message = convo_schemas.Message


# ----------------------------------------------------------------------
# Time windows
# ----------------------------------------------------------------------

def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _day_bounds(day: date) -> tuple[datetime, datetime]:
    return (
        datetime.combine(day, time.min, tzinfo=timezone.utc),
        datetime.combine(day, _END_OF_DAY, tzinfo=timezone.utc),
    )


def parse_boundary(value: str | datetime | None, *, end: bool = False) -> datetime | None:
    """Parse an ISO 8601 query value; date-only end values cover the whole day."""

    if value is None or isinstance(value, datetime):
        return _as_utc(value) if value is not None else None
    text = value.strip()
    if not text:
        return None
    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            start_of_day, end_of_day = _day_bounds(day)
            return end_of_day if end else start_of_day
        return _as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError as exc:
        raise AnalyticsRangeError(f"Invalid date: {value!r}") from exc


def resolve_window(
    period: str,
    start: str | datetime | None = None,
    end: str | datetime | None = None,
    *,
    now: datetime | None = None,
) -> schemas.AnalyticsWindow:
    """Map a reporting period onto a UTC ``[start, end]`` window."""

    today = _as_utc(now or datetime.now(timezone.utc)).date()
    if period == "day":
        lower, upper = _day_bounds(today)
    elif period == "week":
        monday = today - timedelta(days=today.weekday())
        lower = _day_bounds(monday)[0]
        upper = _day_bounds(monday + timedelta(days=6))[1]
    elif period == "month":
        first = today.replace(day=1)
        next_month = (first + timedelta(days=32)).replace(day=1)
        lower = _day_bounds(first)[0]
        upper = _day_bounds(next_month - timedelta(days=1))[1]
    elif period == "custom":
        lower = parse_boundary(start)
        upper = parse_boundary(end, end=True)
        if lower is None or upper is None:
            raise AnalyticsRangeError("Custom period requires startDate and endDate")
        if lower > upper:
            raise AnalyticsRangeError("startDate must not be after endDate")
        if (upper.date() - lower.date()).days >= MAX_CUSTOM_DAYS:
            raise AnalyticsRangeError(
                f"Custom period must not span more than {MAX_CUSTOM_DAYS} days"
            )
    else:
        raise AnalyticsRangeError(f"Unsupported period {period!r}")
    return schemas.AnalyticsWindow(start=lower, end=upper)


def window_days(window: schemas.AnalyticsWindow) -> list[date]:
    first = _as_utc(window.start).date()
    last = _as_utc(window.end).date()
    return [first + timedelta(days=i) for i in range((last - first).days + 1)]


# ----------------------------------------------------------------------
# Per-conversation helpers
# ----------------------------------------------------------------------

def created_day(conversation: Conversation) -> date:
    return _as_utc(conversation.created_at).date()


def has_handover(conversation: Conversation) -> bool:
    return any(m.sender == "agent" for m in conversation.messages)


def response_pairs(conversation: Conversation) -> list[tuple[Message, Message]]:
    """Adjacent (user, bot) pairs of the timestamp-ordered message log."""

    ordered = sorted(conversation.messages, key=lambda m: _as_utc(m.timestamp))
    return [
        (first, second)
        for first, second in zip(ordered, ordered[1:])
        if first.sender == "user" and second.sender == "bot"
    ]


def _delta_seconds(pair: tuple[Message, Message]) -> float:
    user_message, bot_message = pair
    return (_as_utc(bot_message.timestamp) - _as_utc(user_message.timestamp)).total_seconds()


def response_times(conversation: Conversation) -> list[float]:
    """Seconds between each user message and the bot reply right after it."""

    return [_delta_seconds(pair) for pair in response_pairs(conversation)]


def visitor_key(conversation: Conversation) -> str | None:
    """Identity used for user counts: user id, then email, then fingerprint."""

    if conversation.user_id:
        return conversation.user_id
    info = conversation.user_info
    if info.email:
        return f"email:{info.email.strip().lower()}"
    if info.ip and info.ip != "unknown":
        return f"fp:{info.ip}|{info.user_agent}"
    return None


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def naive_percentile(values: Sequence[float], q: float) -> float:
    """``sorted(values)[floor(n * q)]``, or 0 for an empty sequence."""

    if not values:
        return 0.0
    ordered = sorted(values)
    index = min(math.floor(len(ordered) * q), len(ordered) - 1)
    return ordered[index]


def _pct(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


# ----------------------------------------------------------------------
# Report sections
# ----------------------------------------------------------------------

def daily_conversation_stats(
    conversations: Iterable[Conversation], window: schemas.AnalyticsWindow
) -> list[schemas.DailyConversationStats]:
    by_day: dict[date, list[Conversation]] = defaultdict(list)
    for conversation in conversations:
        by_day[created_day(conversation)].append(conversation)
    series = []
    for day in window_days(window):
        items = by_day.get(day, [])
        series.append(
            schemas.DailyConversationStats(
                date=day,
                count=len(items),
                resolved=sum(1 for c in items if c.status == "closed"),
                handovers=sum(1 for c in items if has_handover(c)),
                avg_messages=round(mean([len(c.messages) for c in items]), 2),
            )
        )
    return series


def performance_metrics(
    conversations: Sequence[Conversation], window: schemas.AnalyticsWindow
) -> schemas.PerformanceMetrics:
    total = len(conversations)
    interactions = sum(len(c.messages) for c in conversations)
    users = {key for c in conversations if (key := visitor_key(c))}
    start, end = _as_utc(window.start), _as_utc(window.end)
    active_users = {
        key
        for c in conversations
        if start <= _as_utc(c.created_at) <= end and (key := visitor_key(c))
    }
    all_times = [t for c in conversations for t in response_times(c)]
    return schemas.PerformanceMetrics(
        total_conversations=total,
        total_interactions=interactions,
        unique_users=len(users),
        active_users=len(active_users),
        active_conversations=sum(1 for c in conversations if c.status == "active"),
        resolution_rate=_pct(sum(1 for c in conversations if c.status == "closed"), total),
        average_response_time=round(mean(all_times), 2),
        handover_rate=_pct(sum(1 for c in conversations if has_handover(c)), total),
        avg_messages_per_conversation=round(interactions / total, 2) if total else 0.0,
        avg_interactions_per_user=round(interactions / len(users), 2) if users else 0.0,
    )


def user_engagement(conversations: Sequence[Conversation]) -> schemas.UserEngagementMetrics:
    per_user = Counter(key for c in conversations if (key := visitor_key(c)))
    returning = sum(1 for count in per_user.values() if count > 1)
    hourly_conversations = [0] * 24
    hourly_users: list[set[str]] = [set() for _ in range(24)]
    for conversation in conversations:
        hour = _as_utc(conversation.created_at).hour
        hourly_conversations[hour] += 1
        key = visitor_key(conversation)
        if key:
            hourly_users[hour].add(key)
    return schemas.UserEngagementMetrics(
        total_users=len(per_user),
        returning_users=returning,
        new_users=len(per_user) - returning,
        peak_hours=[
            schemas.HourlyActivity(
                hour=hour,
                conversations=hourly_conversations[hour],
                users=len(hourly_users[hour]),
            )
            for hour in range(24)
        ],
    )


def top_questions(
    conversations: Iterable[Conversation], limit: int = TOP_QUESTIONS_LIMIT
) -> list[schemas.TopQuestion]:
    times: dict[str, list[float]] = {}
    for conversation in conversations:
        for pair in response_pairs(conversation):
            key = pair[0].content.strip().lower()
            times.setdefault(key, []).append(_delta_seconds(pair))
    total_pairs = sum(len(values) for values in times.values())
    ranked = sorted(times.items(), key=lambda item: len(item[1]), reverse=True)
    return [
        schemas.TopQuestion(
            question=question,
            count=len(values),
            percentage=_pct(len(values), total_pairs),
            avg_response_time=round(mean(values), 2),
        )
        for question, values in ranked[:limit]
    ]


def response_time_series(
    conversations: Iterable[Conversation],
) -> list[schemas.ResponseTimeStats]:
    by_day: dict[date, list[float]] = defaultdict(list)
    for conversation in conversations:
        by_day[created_day(conversation)].extend(response_times(conversation))
    return [
        schemas.ResponseTimeStats(
            date=day,
            avg_response_time=round(mean(values), 2),
            p95_response_time=round(naive_percentile(values, 0.95), 2),
            p99_response_time=round(naive_percentile(values, 0.99), 2),
        )
        for day, values in sorted(by_day.items())
        if values
    ]


def handover_rate_series(
    conversations: Iterable[Conversation],
) -> list[schemas.HandoverRateStats]:
    totals: Counter[date] = Counter()
    handovers: Counter[date] = Counter()
    for conversation in conversations:
        day = created_day(conversation)
        totals[day] += 1
        if has_handover(conversation):
            handovers[day] += 1
    return [
        schemas.HandoverRateStats(
            date=day,
            handover_rate=_pct(handovers[day], total),
            total_conversations=total,
            handovers=handovers[day],
        )
        for day, total in sorted(totals.items())
    ]


def build_report(
    bot_id: str,
    conversations: Sequence[Conversation],
    window: schemas.AnalyticsWindow,
    period: schemas.Period,
) -> schemas.AnalyticsReport:
    start, end = _as_utc(window.start), _as_utc(window.end)
    in_window = [c for c in conversations if start <= _as_utc(c.created_at) <= end]
    return schemas.AnalyticsReport(
        bot_id=bot_id,
        period=period,
        window=window,
        conversations=daily_conversation_stats(in_window, window),
        performance=performance_metrics(in_window, window),
        user_engagement=user_engagement(in_window),
        top_questions=top_questions(in_window),
        response_time=response_time_series(in_window),
        handover_rate=handover_rate_series(in_window),
    )


class AnalyticsService:
    """Load a bot's conversations for a window and build the report."""

    def __init__(self, bots: BotRepository, conversations: ConversationRepository) -> None:
        self._bots = bots
        self._conversations = conversations

    def report(
        self,
        bot_id: str,
        period: str = "week",
        start: str | datetime | None = None,
        end: str | datetime | None = None,
        *,
        now: datetime | None = None,
    ) -> schemas.AnalyticsReport:
        window = resolve_window(period, start, end, now=now)
        if self._bots.get_bot(bot_id) is None:
            raise BotNotFoundError(f"Bot {bot_id} not found")
        conversations = self._conversations.list_in_window(bot_id, window.start, window.end)
        return build_report(bot_id, conversations, window, period)  # type: ignore[arg-type]


__all__ = [
    "AnalyticsService",
    "build_report",
    "daily_conversation_stats",
    "handover_rate_series",
    "naive_percentile",
    "parse_boundary",
    "performance_metrics",
    "resolve_window",
    "response_pairs",
    "response_time_series",
    "response_times",
    "top_questions",
    "user_engagement",
    "visitor_key",
]
