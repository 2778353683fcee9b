"""Bot configuration records and their store."""

from . import schemas
from .repository import BotRepository, InMemoryBotRepository, PostgresBotRepository

__all__ = [
    "BotRepository",
    "InMemoryBotRepository",
    "PostgresBotRepository",
    "schemas",
]
