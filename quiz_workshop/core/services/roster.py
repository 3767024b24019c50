"""Participant roster and presence detection.

Kicking a participant is plain deletion of its roster row; nobody is notified.
A polling participant notices its own removal when its name is missing from
the roster it reads back. A session reset empties the whole roster, so pollers
cannot tell a reset from a kick.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from enum import Enum

from quiz_workshop.core.errors import ValidationError
from quiz_workshop.core.models import Participant
from quiz_workshop.core.services.session_store import SessionStore

MAX_DISPLAY_NAME_LENGTH = 64


class Presence(str, Enum):
    PRESENT = "present"
    REMOVED = "removed"
    NOT_JOINED = "not_joined"


def detect_presence(roster_names: Iterable[str], display_name: str | None) -> Presence:
    """Classify a poller's own name against the roster it just read."""
    if not display_name:
        return Presence.NOT_JOINED
    if display_name in set(roster_names):
        return Presence.PRESENT
    return Presence.REMOVED


def normalize_display_name(display_name: str | None) -> str:
    cleaned = (display_name or "").strip()
    if not cleaned:
        raise ValidationError("User name required.")
    if len(cleaned) > MAX_DISPLAY_NAME_LENGTH:
        raise ValidationError(
            f"User name must be at most {MAX_DISPLAY_NAME_LENGTH} characters."
        )
    return cleaned


class RosterManager:
    """Joins, kicks and lists the participants of a session."""

    def __init__(self, store: SessionStore, clock: Callable[[], datetime]) -> None:
        self._store = store
        self._clock = clock

    def join(self, code: str, display_name: str) -> Participant:
        """Register a participant; joining again with the same name is a no-op."""
        name = normalize_display_name(display_name)
        return self._store.add_participant(
            Participant(session_code=code, display_name=name, joined_at=self._clock())
        )

    def kick(self, code: str, display_name: str) -> bool:
        name = normalize_display_name(display_name)
        return self._store.remove_participant(code, name)

    def clear(self, code: str) -> int:
        return self._store.clear_participants(code)

    def participants(self, code: str) -> list[Participant]:
        return self._store.list_participants(code)

    def presence_of(self, code: str, display_name: str | None) -> Presence:
        names = (participant.display_name for participant in self.participants(code))
        return detect_presence(names, display_name)
