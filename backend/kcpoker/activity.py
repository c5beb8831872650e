"""Per-table activity log: a bounded ring of action, event and chat entries."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Optional

from kcpoker.errors import IllegalAction

MAX_ENTRIES = 50
MAX_CHAT_LENGTH = 200


class EntryKind(str, Enum):
    ACTION = "action"
    EVENT = "event"
    CHAT = "chat"


def append(
    log: list[dict[str, Any]],
    kind: EntryKind,
    event_type: str,
    text: str,
    player_uid: Optional[str] = None,
    player_name: Optional[str] = None,
    timestamp: Optional[float] = None,
) -> dict[str, Any]:
    """Append an entry in place, evicting the oldest beyond MAX_ENTRIES."""
    entry: dict[str, Any] = {
        "kind": kind.value,
        "event_type": event_type,
        "text": text,
        "timestamp": timestamp if timestamp is not None else time.time(),
    }
    if player_uid is not None:
        entry["player_uid"] = player_uid
    if player_name is not None:
        entry["player_name"] = player_name
    log.append(entry)
    if len(log) > MAX_ENTRIES:
        del log[: len(log) - MAX_ENTRIES]
    return entry


def clean_chat_text(text: str) -> str:
    text = text.strip()
    if not text:
        raise IllegalAction("Chat message is empty")
    if len(text) > MAX_CHAT_LENGTH:
        raise IllegalAction(f"Chat message longer than {MAX_CHAT_LENGTH} characters")
    return text
