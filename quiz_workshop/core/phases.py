"""Workshop phases derived from a per-question template.

A session with ``question_count`` N moves through::

    waiting -> question1 -> dashboard1 -> question2 -> ... -> dashboardN -> finished

``correctK`` is a per-participant view (the participant has answered question K
while the session is still on ``questionK``). It is never written by an
administrator command but is accepted wherever ``questionK`` is accepted.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re

from quiz_workshop.core.errors import ValidationError

_NUMBERED_PHASE = re.compile(r"^(question|correct|dashboard)([1-9][0-9]*)$")


class PhaseKind(Enum):
    WAITING = "waiting"
    QUESTION = "question"
    CORRECT = "correct"
    DASHBOARD = "dashboard"
    FINISHED = "finished"


@dataclass(frozen=True, slots=True)
class Phase:
    """A single workshop phase, e.g. ``Phase(PhaseKind.QUESTION, 2)`` for ``question2``."""

    kind: PhaseKind
    number: int = 0

    def __str__(self) -> str:
        if self.kind in (PhaseKind.WAITING, PhaseKind.FINISHED):
            return self.kind.value
        return f"{self.kind.value}{self.number}"

    @classmethod
    def waiting(cls) -> Phase:
        return cls(PhaseKind.WAITING)

    @classmethod
    def finished(cls) -> Phase:
        return cls(PhaseKind.FINISHED)

    @classmethod
    def question(cls, number: int) -> Phase:
        return cls(PhaseKind.QUESTION, number)

    @classmethod
    def correct(cls, number: int) -> Phase:
        return cls(PhaseKind.CORRECT, number)

    @classmethod
    def dashboard(cls, number: int) -> Phase:
        return cls(PhaseKind.DASHBOARD, number)

    @classmethod
    def parse(cls, value: str) -> Phase:
        """Parse a stored phase name such as ``"dashboard1"``."""
        cleaned = (value or "").strip()
        if cleaned == PhaseKind.WAITING.value:
            return cls.waiting()
        if cleaned == PhaseKind.FINISHED.value:
            return cls.finished()
        match = _NUMBERED_PHASE.match(cleaned)
        if match is None:
            raise ValidationError(f"Unknown phase '{value}'.")
        return cls(PhaseKind(match.group(1)), int(match.group(2)))

    def is_question_stage(self) -> bool:
        """True for ``questionK`` and its per-participant ``correctK`` view."""
        return self.kind in (PhaseKind.QUESTION, PhaseKind.CORRECT)


class PhaseGraph:
    """The ordered phase set for a fixed number of questions."""

    def __init__(self, question_count: int) -> None:
        if question_count < 1:
            raise ValueError("A workshop needs at least one question.")
        self._question_count = question_count

    @property
    def question_count(self) -> int:
        return self._question_count

    def phases(self) -> list[Phase]:
        """All phases in workflow order, ``correctK`` included."""
        ordered = [Phase.waiting()]
        for number in self.question_numbers():
            ordered.extend(
                (Phase.question(number), Phase.correct(number), Phase.dashboard(number))
            )
        ordered.append(Phase.finished())
        return ordered

    def question_numbers(self) -> range:
        return range(1, self._question_count + 1)

    def has_question(self, number: int) -> bool:
        return 1 <= number <= self._question_count

    def require_question(self, number: int) -> int:
        if not self.has_question(number):
            raise ValidationError(
                f"Question number must be between 1 and {self._question_count}, got {number}."
            )
        return number

    def contains(self, phase: Phase) -> bool:
        if phase.kind in (PhaseKind.WAITING, PhaseKind.FINISHED):
            return True
        return self.has_question(phase.number)

    def parse(self, value: str) -> Phase:
        phase = Phase.parse(value)
        if not self.contains(phase):
            raise ValidationError(
                f"Phase '{value}' does not exist in a {self._question_count}-question workshop."
            )
        return phase

    def active_question_for(self, phase: Phase) -> int:
        """The ``active_question`` value that must accompany ``phase``."""
        if phase.kind is PhaseKind.WAITING:
            return 0
        if phase.kind is PhaseKind.FINISHED:
            return self._question_count
        return phase.number

    def is_last_question(self, number: int) -> bool:
        return number == self._question_count
