"""Capture the visitor's display name from the answer to the name prompt.

A conversation waits for a name while ``user_info.name`` is unset. An
inbound message counts as the answer when the conversation's
``pending_prompt`` is ``"name"`` or, for conversations stored before that
field existed, when the message right before it is a bot message containing
``"your name"``.
"""

from __future__ import annotations

import random
import re
from collections.abc import Callable

from . import schemas

NAME_PROMPT_MARKER = "your name"
MAX_NAME_LENGTH = 50

SKIP_KEYWORDS = (
    "no",
    "skip",
    "anonymous",
    "none",
    "n/a",
    "not sure",
    "rather not say",
    "prefer not to say",
)

DISPLAY_NAMES = (
    "Alex", "Jamie", "Taylor", "Jordan", "Morgan", "Casey", "Riley", "Drew",
    "Skyler", "Avery", "Peyton", "Quinn", "Reese", "Rowan", "Sawyer", "Emerson",
    "Finley", "Harper", "Charlie", "Sam", "Cameron", "Dakota", "Elliot", "Jesse",
    "Kai", "Logan", "Parker", "Remy", "Shay", "Toby", "Blake", "Corey", "Dylan",
    "Frankie", "Jules", "Kendall", "Lane", "Marley", "Nico", "Oakley", "Phoenix",
    "Reagan", "Sage", "Tatum", "Val", "Wren", "Zion", "John", "Tom", "Chris",
    "Pat", "Alexis", "Robin", "Shawn", "Tracy",
)

_DISALLOWED = re.compile(r"[^\w\s-]")


def random_display_name(rng: random.Random | None = None) -> str:
    return (rng or random).choice(DISPLAY_NAMES)


def normalise_name(raw: str, generate: Callable[[], str] = random_display_name) -> str:
    """Turn a free-text answer into a display name."""

    text = raw.strip().lower()
    if not text or any(keyword in text for keyword in SKIP_KEYWORDS):
        return generate()
    cleaned = _DISALLOWED.sub("", text).strip()
    if not 1 <= len(cleaned) <= MAX_NAME_LENGTH:
        return generate()
    return " ".join(token[:1].upper() + token[1:] for token in cleaned.split())


class NameCapture:
    """Decide whether a message answers the name prompt and record the name."""

    def __init__(
        self,
        name_generator: Callable[[], str] = random_display_name,
        *,
        scan_messages: bool = True,
    ) -> None:
        self._generate = name_generator
        self._scan_messages = scan_messages

    def is_name_response(self, conversation: schemas.Conversation) -> bool:
        if conversation.user_info.name is not None:
            return False
        if conversation.pending_prompt == "name":
            return True
        if not self._scan_messages or len(conversation.messages) < 2:
            return False
        previous = conversation.messages[-2]
        return previous.sender == "bot" and NAME_PROMPT_MARKER in previous.content

    def capture(self, conversation: schemas.Conversation, text: str) -> str | None:
        """Set ``user_info.name`` when ``text`` answers the name prompt.

        ``text`` is the just-appended user message. Returns the captured
        name, or ``None`` when the message is not a name answer.
        """

        if not self.is_name_response(conversation):
            return None
        name = normalise_name(text, self._generate)
        conversation.user_info.name = name
        conversation.pending_prompt = "none"
        return name
