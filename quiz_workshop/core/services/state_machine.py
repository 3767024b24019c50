"""Phase transitions of a workshop session and their guards.

Every transition takes the current session record and returns an updated copy;
the input is never mutated, so a failed guard leaves nothing to undo. The
caller persists the returned record.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from quiz_workshop.core.errors import GuardViolation, ValidationError
from quiz_workshop.core.models import WorkshopSession
from quiz_workshop.core.phases import Phase, PhaseGraph, PhaseKind


class SessionStateMachine:
    """Owns the legal phase graph and the guard of every administrator command."""

    def __init__(self, graph: PhaseGraph, clock: Callable[[], datetime]) -> None:
        self._graph = graph
        self._clock = clock

    @property
    def graph(self) -> PhaseGraph:
        return self._graph

    def start(self, session: WorkshopSession, time_limit: int | None = None) -> WorkshopSession:
        return self.start_question(session, 1, time_limit)

    def start_question(
        self,
        session: WorkshopSession,
        number: int,
        time_limit: int | None = None,
    ) -> WorkshopSession:
        """Open question ``number`` and record its start instant.

        Question 1 may only start from ``waiting``; question K from ``dashboard(K-1)``.
        """
        self._graph.require_question(number)
        required = Phase.waiting() if number == 1 else Phase.dashboard(number - 1)
        if session.phase != required:
            raise GuardViolation(
                f"Must be on {required} to start question {number} (currently {session.phase})."
            )
        limit = validate_time_limit(time_limit)

        updated = session.copy()
        timer = updated.timer_for(number)
        if timer is None:
            raise GuardViolation(f"Session {session.code} has no timer for question {number}.")
        timer.started_at = self._clock()
        if limit is not None:
            timer.time_limit_seconds = limit
        return self._enter(updated, Phase.question(number))

    def show_dashboard(self, session: WorkshopSession, number: int) -> WorkshopSession:
        self._graph.require_question(number)
        phase = session.phase
        if not (phase.is_question_stage() and phase.number == number):
            raise GuardViolation(
                f"Must be on question{number} or correct{number} to show dashboard "
                f"(currently {phase})."
            )
        return self._enter(session.copy(), Phase.dashboard(number))

    def advance(self, session: WorkshopSession) -> WorkshopSession:
        """Move on from a dashboard: to the next question, or to ``finished`` after the last."""
        phase = session.phase
        if phase.kind is not PhaseKind.DASHBOARD:
            raise GuardViolation(f"Cannot proceed from current state ({phase}).")
        if self._graph.is_last_question(phase.number):
            return self._enter(session.copy(), Phase.finished())
        return self.start_question(session, phase.number + 1)

    def reset(self, session: WorkshopSession) -> WorkshopSession:
        """Return to ``waiting`` from any phase; time limits are kept, start instants cleared."""
        updated = session.copy()
        for timer in updated.questions:
            timer.started_at = None
        updated.round = session.round + 1
        return self._enter(updated, Phase.waiting())

    def _enter(self, session: WorkshopSession, phase: Phase) -> WorkshopSession:
        session.phase = phase
        session.active_question = self._graph.active_question_for(phase)
        return session


def validate_time_limit(time_limit: int | None) -> int | None:
    if time_limit is None:
        return None
    if isinstance(time_limit, bool) or not isinstance(time_limit, int):
        raise ValidationError("Time limit must be provided as an integer number of seconds.")
    if time_limit <= 0:
        raise ValidationError("Time limit must be a positive integer.")
    return time_limit
