"""Domain models for the quiz workshop."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from quiz_workshop.core.phases import Phase


@dataclass(slots=True)
class QuestionTimer:
    """Time limit and server-recorded start instant of one question."""

    number: int
    time_limit_seconds: int
    started_at: datetime | None = None


@dataclass(slots=True)
class WorkshopSession:
    """Durable session record, filed under its current join-code."""

    session_id: str
    code: str
    phase: Phase
    active_question: int
    questions: list[QuestionTimer]
    created_at: datetime
    round: int = 1

    def timer_for(self, number: int) -> QuestionTimer | None:
        return next((timer for timer in self.questions if timer.number == number), None)

    def copy(self) -> WorkshopSession:
        """Return a copy whose question timers can be mutated independently."""
        return replace(self, questions=[replace(timer) for timer in self.questions])


@dataclass(slots=True)
class Participant:
    """A display name that joined a session."""

    session_code: str
    display_name: str
    joined_at: datetime


@dataclass(slots=True)
class AnswerSubmission:
    """Append-only record of a participant answering a question."""

    session_code: str
    display_name: str
    question_number: int
    elapsed_ms: int
    submitted_at: datetime
    round: int = 1


class RotationStep(str, Enum):
    MINTED = "minted"
    PARTICIPANTS_MOVED = "participants_moved"
    ANSWERS_MOVED = "answers_moved"
    SESSION_MOVED = "session_moved"


class RotationStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPENSATION_FAILED = "compensation_failed"


@dataclass(slots=True)
class RotationJournal:
    """Persisted progress marker of a join-code rotation."""

    session_id: str
    old_code: str
    new_code: str
    started_at: datetime
    step: RotationStep = RotationStep.MINTED
    status: RotationStatus = RotationStatus.IN_PROGRESS

    def involves(self, code: str) -> bool:
        return code in (self.old_code, self.new_code)


@dataclass(slots=True)
class SessionSnapshot:
    """Read projection returned to pollers and after every command."""

    session: WorkshopSession
    roster: list[Participant] = field(default_factory=list)
    server_time: datetime | None = None

    @property
    def code(self) -> str:
        return self.session.code

    @property
    def phase(self) -> Phase:
        return self.session.phase

    def roster_names(self) -> list[str]:
        return [participant.display_name for participant in self.roster]


@dataclass(slots=True)
class RotationResult:
    """Outcome of a successful join-code rotation."""

    old_code: str
    new_code: str
    snapshot: SessionSnapshot
