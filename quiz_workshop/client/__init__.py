"""Participant-side polling client."""

from .participant_poller import ENTRY_SCREEN, ParticipantPoller, ParticipantView, derive_screen

__all__ = [
    "ENTRY_SCREEN",
    "ParticipantPoller",
    "ParticipantView",
    "derive_screen",
]
