"""Domain errors shared by services and routers."""

from __future__ import annotations


class ChatValidationError(ValueError):
    """Raised when an inbound chat request is missing required fields."""


class BotNotFoundError(RuntimeError):
    """Raised when a bot could not be located."""


class ConversationNotFoundError(RuntimeError):
    """Raised when a conversation could not be located."""


class ConversationConflictError(RuntimeError):
    """Raised when reopening would give a visitor two open conversations."""


class AnalyticsRangeError(ValueError):
    """Raised when an analytics window cannot be resolved."""


__all__ = [
    "AnalyticsRangeError",
    "BotNotFoundError",
    "ChatValidationError",
    "ConversationConflictError",
    "ConversationNotFoundError",
]
