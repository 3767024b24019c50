"""Session Store port and its in-process implementation.

The store holds exactly three record sets keyed by join-code (sessions,
participants and answer submissions) plus the rotation journal. Every method
is a single short operation; the store offers no multi-table transaction, so
callers that must keep the record sets aligned (code rotation) compensate on
their own.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import replace
from threading import Lock

from quiz_workshop.core.errors import StoreFailure
from quiz_workshop.core.models import (
    AnswerSubmission,
    Participant,
    RotationJournal,
    WorkshopSession,
)


class SessionStore(ABC):
    """Persistence operations the workshop core relies on."""

    # --- Sessions ---

    @abstractmethod
    def get_session(self, code: str) -> WorkshopSession | None: ...

    @abstractmethod
    def list_sessions(self) -> list[WorkshopSession]:
        """All sessions, newest first."""

    @abstractmethod
    def code_exists(self, code: str) -> bool: ...

    @abstractmethod
    def insert_session(self, session: WorkshopSession) -> WorkshopSession: ...

    @abstractmethod
    def update_session(self, session: WorkshopSession) -> WorkshopSession | None:
        """Overwrite the session filed under ``session.code``; None if it is gone."""

    @abstractmethod
    def delete_session(self, code: str) -> bool:
        """Delete a session together with its participants and answers."""

    @abstractmethod
    def rekey_session(self, old_code: str, new_code: str) -> bool:
        """Refile the session row; False if it is gone, StoreFailure if ``new_code`` is taken."""

    # --- Participants ---

    @abstractmethod
    def list_participants(self, code: str) -> list[Participant]:
        """Participants of a session in join order."""

    @abstractmethod
    def add_participant(self, participant: Participant) -> Participant:
        """Insert a participant, or return the existing row for the same name."""

    @abstractmethod
    def remove_participant(self, code: str, display_name: str) -> bool: ...

    @abstractmethod
    def clear_participants(self, code: str) -> int: ...

    @abstractmethod
    def rekey_participants(self, old_code: str, new_code: str) -> int: ...

    # --- Answer submissions ---

    @abstractmethod
    def add_answer(self, answer: AnswerSubmission) -> tuple[AnswerSubmission, bool]:
        """Insert an answer unless one exists for (code, name, question, round).

        Returns the stored row and whether it was created by this call.
        """

    @abstractmethod
    def list_answers(
        self,
        code: str,
        question_number: int | None = None,
        round: int | None = None,
    ) -> list[AnswerSubmission]:
        """Answers of a session in submission order."""

    @abstractmethod
    def rekey_answers(self, old_code: str, new_code: str) -> int: ...

    # --- Rotation journal ---

    @abstractmethod
    def begin_rotation(self, journal: RotationJournal) -> bool:
        """Record a new rotation; False if one is already open for ``old_code``."""

    @abstractmethod
    def save_rotation(self, journal: RotationJournal) -> bool:
        """Update an open journal in place; False if it no longer exists."""

    @abstractmethod
    def get_rotation(self, code: str) -> RotationJournal | None:
        """The open rotation that moves a session from or to ``code``."""

    @abstractmethod
    def list_rotations(self) -> list[RotationJournal]: ...

    @abstractmethod
    def delete_rotation(self, old_code: str) -> None: ...

    def close(self) -> None:
        """Release any held resources."""


class InMemorySessionStore(SessionStore):
    """Process-local store; rows are copied in and out so callers never alias them."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._sessions: dict[str, WorkshopSession] = {}
        self._participants: list[Participant] = []
        self._answers: list[AnswerSubmission] = []
        self._rotations: dict[str, RotationJournal] = {}

    # --- Sessions ---

    def get_session(self, code: str) -> WorkshopSession | None:
        with self._lock:
            session = self._sessions.get(code)
            return session.copy() if session else None

    def list_sessions(self) -> list[WorkshopSession]:
        with self._lock:
            sessions = [session.copy() for session in self._sessions.values()]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    def code_exists(self, code: str) -> bool:
        with self._lock:
            return code in self._sessions

    def insert_session(self, session: WorkshopSession) -> WorkshopSession:
        with self._lock:
            if session.code in self._sessions:
                raise StoreFailure(f"Session code {session.code} is already in use.")
            self._sessions[session.code] = session.copy()
            return session.copy()

    def update_session(self, session: WorkshopSession) -> WorkshopSession | None:
        with self._lock:
            if session.code not in self._sessions:
                return None
            self._sessions[session.code] = session.copy()
            return session.copy()

    def delete_session(self, code: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(code, None)
            self._participants = [p for p in self._participants if p.session_code != code]
            self._answers = [a for a in self._answers if a.session_code != code]
            return removed is not None

    def rekey_session(self, old_code: str, new_code: str) -> bool:
        with self._lock:
            if new_code in self._sessions:
                raise StoreFailure(f"Session code {new_code} is already in use.")
            session = self._sessions.pop(old_code, None)
            if session is None:
                return False
            session.code = new_code
            self._sessions[new_code] = session
            return True

    # --- Participants ---

    def list_participants(self, code: str) -> list[Participant]:
        with self._lock:
            rows = [replace(p) for p in self._participants if p.session_code == code]
        return sorted(rows, key=lambda p: p.joined_at)

    def add_participant(self, participant: Participant) -> Participant:
        with self._lock:
            existing = next(
                (
                    p
                    for p in self._participants
                    if p.session_code == participant.session_code
                    and p.display_name == participant.display_name
                ),
                None,
            )
            if existing is not None:
                return replace(existing)
            self._participants.append(replace(participant))
            return replace(participant)

    def remove_participant(self, code: str, display_name: str) -> bool:
        with self._lock:
            before = len(self._participants)
            self._participants = [
                p
                for p in self._participants
                if not (p.session_code == code and p.display_name == display_name)
            ]
            return len(self._participants) != before

    def clear_participants(self, code: str) -> int:
        with self._lock:
            before = len(self._participants)
            self._participants = [p for p in self._participants if p.session_code != code]
            return before - len(self._participants)

    def rekey_participants(self, old_code: str, new_code: str) -> int:
        with self._lock:
            moved = 0
            for participant in self._participants:
                if participant.session_code == old_code:
                    participant.session_code = new_code
                    moved += 1
            return moved

    # --- Answer submissions ---

    def add_answer(self, answer: AnswerSubmission) -> tuple[AnswerSubmission, bool]:
        with self._lock:
            existing = next(
                (
                    a
                    for a in self._answers
                    if a.session_code == answer.session_code
                    and a.display_name == answer.display_name
                    and a.question_number == answer.question_number
                    and a.round == answer.round
                ),
                None,
            )
            if existing is not None:
                return replace(existing), False
            self._answers.append(replace(answer))
            return replace(answer), True

    def list_answers(
        self,
        code: str,
        question_number: int | None = None,
        round: int | None = None,
    ) -> list[AnswerSubmission]:
        with self._lock:
            return [
                replace(a)
                for a in self._answers
                if a.session_code == code
                and (question_number is None or a.question_number == question_number)
                and (round is None or a.round == round)
            ]

    def rekey_answers(self, old_code: str, new_code: str) -> int:
        with self._lock:
            moved = 0
            for answer in self._answers:
                if answer.session_code == old_code:
                    answer.session_code = new_code
                    moved += 1
            return moved

    # --- Rotation journal ---

    def begin_rotation(self, journal: RotationJournal) -> bool:
        with self._lock:
            if journal.old_code in self._rotations:
                return False
            self._rotations[journal.old_code] = replace(journal)
            return True

    def save_rotation(self, journal: RotationJournal) -> bool:
        with self._lock:
            if journal.old_code not in self._rotations:
                return False
            self._rotations[journal.old_code] = replace(journal)
            return True

    def get_rotation(self, code: str) -> RotationJournal | None:
        with self._lock:
            journal = next((j for j in self._rotations.values() if j.involves(code)), None)
            return replace(journal) if journal else None

    def list_rotations(self) -> list[RotationJournal]:
        with self._lock:
            journals = [replace(j) for j in self._rotations.values()]
        return sorted(journals, key=lambda j: j.started_at)

    def delete_rotation(self, old_code: str) -> None:
        with self._lock:
            self._rotations.pop(old_code, None)
