"""Domain value objects used by the conversation services."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Fingerprint:
    """Visitor fingerprint used to re-associate an open conversation."""

    ip: str = "unknown"
    user_agent: str = "unknown"
