"""Conversation store, intake flow and operator actions."""

from . import schemas
from .intake import MessageIntakeService
from .models import Fingerprint
from .name_capture import NameCapture
from .resolver import ConversationResolver
from .service import ConversationService

__all__ = [
    "ConversationResolver",
    "ConversationService",
    "Fingerprint",
    "MessageIntakeService",
    "NameCapture",
    "schemas",
]
