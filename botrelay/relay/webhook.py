"""Relay visitor messages to a bot owner's automation webhook.

The relay posts one JSON payload per message, retries once on transport
errors and 5xx responses, and extracts reply text from whichever response
shape the automation returned. It never raises for relay failures: callers
always get a :class:`RelayResult` whose ``text`` is either the parsed reply
or the fallback message they supplied.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import requests

from ..core.config import Settings, get_settings

NO_ENDPOINT = "no endpoint configured"
UNUSABLE_BODY = "unusable response body"


@dataclass
class RelayResult:
    text: str | None
    raw: Any = None
    error: str | None = None
    attempts: int = 0
    status_code: int | None = None
    used_fallback: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


# ----------------------------------------------------------------------
# Response parsing
# ----------------------------------------------------------------------

def _as_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, (int, float)):
        return str(value)
    return None


def _content_text(value: Any) -> str | None:
    if isinstance(value, dict) and isinstance(value.get("content"), dict):
        return _as_text(value["content"].get("text"))
    return None


def _match_output(body: Any) -> str | None:
    return _as_text(body.get("output")) if isinstance(body, dict) else None


def _match_message_list(body: Any) -> str | None:
    if isinstance(body, list) and body:
        return _content_text(body[0])
    return None


def _match_content(body: Any) -> str | None:
    return _content_text(body)


def _key_matcher(key: str) -> Callable[[Any], str | None]:
    def _match(body: Any) -> str | None:
        return _as_text(body.get(key)) if isinstance(body, dict) else None

    _match.__name__ = f"_match_{key}"
    return _match


def _match_bare_string(body: Any) -> str | None:
    return _as_text(body) if isinstance(body, str) else None


RESPONSE_MATCHERS: Sequence[Callable[[Any], str | None]] = (
    _match_output,
    _match_message_list,
    _match_content,
    _key_matcher("message"),
    _key_matcher("response"),
    _key_matcher("reply"),
    _key_matcher("text"),
    _match_bare_string,
)


def extract_reply(body: Any) -> str | None:
    """Return reply text from a webhook body, trying each shape in order."""

    for matcher in RESPONSE_MATCHERS:
        text = matcher(body)
        if text is not None:
            return text
    return None


def _read_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


# ----------------------------------------------------------------------
# Relay
# ----------------------------------------------------------------------

class WebhookRelay:
    """POST visitor messages to a webhook with bounded retries."""

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        settings: Settings | None = None,
        logger: logging.Logger | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session = session or requests.Session()
        self.settings = settings or get_settings()
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def build_payload(self, message: str, bot_id: str) -> dict[str, Any]:
        now = self._clock()
        return {
            "action": "sendMessage",
            "sessionId": f"widget_{bot_id}_{int(now.timestamp() * 1000)}",
            "chatInput": message,
            "message": message,
            "timestamp": now.isoformat(),
        }

    def relay(
        self,
        webhook_url: str | None,
        message: str,
        bot_id: str,
        fallback_message: str | None = None,
    ) -> RelayResult:
        if not webhook_url or not webhook_url.strip():
            self._log_summary(bot_id, outcome="skipped", error=NO_ENDPOINT, attempts=0)
            return RelayResult(
                text=fallback_message,
                error=NO_ENDPOINT,
                used_fallback=True,
            )

        payload = self.build_payload(message, bot_id)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.settings.webhook_user_agent,
        }
        max_attempts = self.settings.webhook_max_attempts
        response: requests.Response | None = None
        last_error: str | None = None
        attempts = 0

        for attempt in range(1, max_attempts + 1):
            attempts = attempt
            started = time.perf_counter()
            try:
                response = self.session.post(
                    webhook_url,
                    json=payload,
                    headers=headers,
                    timeout=self.settings.webhook_timeout_seconds,
                )
            except requests.RequestException as exc:
                response = None
                last_error = f"{type(exc).__name__}: {exc}"
                self._log_attempt(bot_id, attempt, "transport_error", None, started, last_error)
            else:
                status = response.status_code
                if 200 <= status < 300:
                    self._log_attempt(bot_id, attempt, "success", status, started)
                    break
                last_error = f"HTTP {status}: {response.reason or ''}".strip()
                if status < 500:
                    self._log_attempt(bot_id, attempt, "rejected", status, started, last_error)
                    break
                self._log_attempt(bot_id, attempt, "server_error", status, started, last_error)
            if attempt < max_attempts:
                self._sleep(self.settings.webhook_retry_delay_seconds)

        status_code = response.status_code if response is not None else None
        if response is None or not 200 <= response.status_code < 300:
            error = last_error or "no response"
            self._log_summary(
                bot_id, outcome="fallback", error=error, attempts=attempts, status_code=status_code
            )
            return RelayResult(
                text=fallback_message,
                raw=_read_body(response) if response is not None else None,
                error=error,
                attempts=attempts,
                status_code=status_code,
                used_fallback=True,
            )

        body = _read_body(response)
        text = extract_reply(body)
        if text is None:
            self._log_summary(
                bot_id, outcome="fallback", error=UNUSABLE_BODY, attempts=attempts, status_code=status_code
            )
            return RelayResult(
                text=fallback_message,
                raw=body,
                error=UNUSABLE_BODY,
                attempts=attempts,
                status_code=status_code,
                used_fallback=True,
            )
        self._log_summary(bot_id, outcome="reply", attempts=attempts, status_code=status_code)
        return RelayResult(text=text, raw=body, attempts=attempts, status_code=status_code)

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def _log_attempt(
        self,
        bot_id: str,
        attempt: int,
        outcome: str,
        status_code: int | None,
        started: float,
        error: str | None = None,
    ) -> None:
        event = {
            "event": "webhook_attempt",
            "bot_id": bot_id,
            "attempt": attempt,
            "max_attempts": self.settings.webhook_max_attempts,
            "outcome": outcome,
            "status_code": status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        }
        if error:
            event["error"] = error
        level = logging.INFO if outcome == "success" else logging.WARNING
        self.logger.log(level, "webhook attempt %s: %s", attempt, outcome, extra={"event": event})

    def _log_summary(
        self,
        bot_id: str,
        *,
        outcome: str,
        attempts: int,
        error: str | None = None,
        status_code: int | None = None,
    ) -> None:
        event = {
            "event": "webhook_relay",
            "bot_id": bot_id,
            "outcome": outcome,
            "attempts": attempts,
            "status_code": status_code,
        }
        if error:
            event["error"] = error
        level = logging.INFO if outcome == "reply" else logging.WARNING
        self.logger.log(level, "webhook relay %s", outcome, extra={"event": event})


__all__ = ["RESPONSE_MATCHERS", "RelayResult", "WebhookRelay", "extract_reply"]
