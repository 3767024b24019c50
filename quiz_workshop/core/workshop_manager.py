"""Business logic for running quiz workshops, shared by the API and tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging
import re
from uuid import uuid4

from quiz_workshop.constants.session_constants import (
    DEFAULT_QUESTION_COUNT,
    DEFAULT_TIME_LIMIT_SECONDS,
    ROTATION_STALE_AFTER_SECONDS,
)
from quiz_workshop.core.code_generator import JoinCodeGenerator
from quiz_workshop.core.errors import GuardViolation, NotFound, ValidationError
from quiz_workshop.core.models import (
    AnswerSubmission,
    Participant,
    QuestionTimer,
    RotationResult,
    SessionSnapshot,
    WorkshopSession,
)
from quiz_workshop.core.phases import Phase, PhaseGraph
from quiz_workshop.core.services.code_rotation import CodeRotationCoordinator, RecoveryOutcome
from quiz_workshop.core.services.roster import RosterManager, normalize_display_name
from quiz_workshop.core.services.scoreboard import (
    LeaderboardRow,
    StandingRow,
    overall_standings,
    rank_submissions,
)
from quiz_workshop.core.services.session_store import SessionStore
from quiz_workshop.core.services.state_machine import SessionStateMachine, validate_time_limit
from quiz_workshop.core.services.timer import CountdownState, TimerAuthority, utc_now

logger = logging.getLogger(__name__)

_START_QUESTION_ACTION = re.compile(r"^startQuestion([1-9][0-9]*)$")
_SHOW_DASHBOARD_ACTION = re.compile(r"^showDashboard([1-9][0-9]*)$")


class WorkshopManager:
    """Facade over the store, state machine, roster, rotation and ranking services.

    Holds no session state of its own: every call reads and writes through the
    store, so any number of manager instances can serve the same store.
    """

    def __init__(
        self,
        store: SessionStore,
        question_count: int = DEFAULT_QUESTION_COUNT,
        default_time_limit: int = DEFAULT_TIME_LIMIT_SECONDS,
        codes: JoinCodeGenerator | None = None,
        clock: Callable[[], datetime] = utc_now,
        rotation_stale_after: float = ROTATION_STALE_AFTER_SECONDS,
    ) -> None:
        self._store = store
        self._clock = clock
        self._graph = PhaseGraph(question_count)
        self._default_time_limit = validate_time_limit(default_time_limit)
        self._codes = codes or JoinCodeGenerator()
        self._machine = SessionStateMachine(self._graph, clock)
        self._roster = RosterManager(store, clock)
        self._rotation = CodeRotationCoordinator(
            store, self._codes, clock, stale_after_seconds=rotation_stale_after
        )
        self._timers = TimerAuthority()

    @property
    def graph(self) -> PhaseGraph:
        return self._graph

    # --- Sessions ---

    def create_session(self, time_limits: list[int] | None = None) -> SessionSnapshot:
        limits = list(time_limits or [])
        if len(limits) > self._graph.question_count:
            raise ValidationError(
                f"Got {len(limits)} time limits for {self._graph.question_count} questions."
            )
        timers = []
        for number in self._graph.question_numbers():
            limit = limits[number - 1] if number <= len(limits) else None
            timers.append(
                QuestionTimer(
                    number=number,
                    time_limit_seconds=validate_time_limit(limit) or self._default_time_limit,
                )
            )
        session = WorkshopSession(
            session_id=uuid4().hex,
            code=self._codes.mint(self._rotation.code_taken),
            phase=Phase.waiting(),
            active_question=0,
            questions=timers,
            created_at=self._clock(),
        )
        self._store.insert_session(session)
        logger.info("Created session %s", session.code)
        return self.get_snapshot(session.code)

    def list_sessions(self) -> list[WorkshopSession]:
        return self._store.list_sessions()

    def delete_session(self, code: str) -> None:
        code = _normalize_code(code)
        self._ensure_not_rotating(code)
        if not self._store.delete_session(code):
            raise NotFound(f"Session {code} not found.")
        logger.info("Deleted session %s", code)

    def get_snapshot(self, code: str) -> SessionSnapshot:
        """Read projection polled by participants and the administrator dashboard."""
        session = self._require_session(code)
        return SessionSnapshot(
            session=session,
            roster=self._roster.participants(session.code),
            server_time=self._clock(),
        )

    def countdowns(self, snapshot: SessionSnapshot) -> list[CountdownState]:
        now = snapshot.server_time or self._clock()
        return self._timers.countdowns(snapshot.session.questions, now)

    # --- Administrator commands ---

    def start(self, code: str, time_limit: int | None = None) -> SessionSnapshot:
        return self._transition(code, lambda s: self._machine.start(s, time_limit))

    def start_question(
        self,
        code: str,
        number: int,
        time_limit: int | None = None,
    ) -> SessionSnapshot:
        return self._transition(
            code, lambda s: self._machine.start_question(s, number, time_limit)
        )

    def show_dashboard(self, code: str, number: int) -> SessionSnapshot:
        return self._transition(code, lambda s: self._machine.show_dashboard(s, number))

    def advance(self, code: str) -> SessionSnapshot:
        return self._transition(code, self._machine.advance)

    def reset(self, code: str) -> SessionSnapshot:
        return self._transition(code, self._machine.reset, clear_roster=True)

    def kick(self, code: str, display_name: str) -> SessionSnapshot:
        session = self._require_session(code)
        self._ensure_not_rotating(session.code)
        if self._roster.kick(session.code, display_name):
            logger.info("Kicked %r from session %s", display_name, session.code)
        return self.get_snapshot(session.code)

    def rotate_code(self, code: str) -> RotationResult:
        session = self._require_session(code)
        new_code = self._rotation.rotate(session)
        return RotationResult(
            old_code=session.code,
            new_code=new_code,
            snapshot=self.get_snapshot(new_code),
        )

    def recover_rotations(self) -> list[RecoveryOutcome]:
        return self._rotation.recover_pending()

    def apply_action(
        self,
        code: str,
        action: str,
        time_limit: int | None = None,
        user_name: str | None = None,
    ) -> SessionSnapshot | RotationResult:
        """Dispatch an administrator action by name (``start``, ``showDashboard1``, ...)."""
        name = (action or "").strip()
        if name == "start":
            return self.start(code, time_limit)
        if name in ("next", "advance"):
            return self.advance(code)
        if name == "reset":
            return self.reset(code)
        if name in ("kickUser", "kick"):
            if not user_name:
                raise ValidationError("User name required.")
            return self.kick(code, user_name)
        if name in ("resetSessionCode", "rotateCode"):
            return self.rotate_code(code)
        match = _START_QUESTION_ACTION.match(name)
        if match:
            return self.start_question(code, int(match.group(1)), time_limit)
        match = _SHOW_DASHBOARD_ACTION.match(name)
        if match:
            return self.show_dashboard(code, int(match.group(1)))
        raise ValidationError(f"Invalid action '{action}'.")

    # --- Participant operations ---

    def join(self, code: str, display_name: str) -> Participant:
        session = self._require_session(code)
        self._ensure_not_rotating(session.code)
        participant = self._roster.join(session.code, display_name)
        logger.debug("%r joined session %s", participant.display_name, session.code)
        return participant

    def submit_answer(
        self,
        code: str,
        display_name: str,
        question_number: int,
        elapsed_ms: int,
    ) -> tuple[AnswerSubmission, bool]:
        """Record an answer; a retry for the same question and round returns the stored row."""
        name = normalize_display_name(display_name)
        self._graph.require_question(question_number)
        if isinstance(elapsed_ms, bool) or not isinstance(elapsed_ms, int) or elapsed_ms < 0:
            raise ValidationError("Elapsed time must be a non-negative number of milliseconds.")
        session = self._require_session(code)
        self._ensure_not_rotating(session.code)
        stored, created = self._store.add_answer(
            AnswerSubmission(
                session_code=session.code,
                display_name=name,
                question_number=question_number,
                elapsed_ms=elapsed_ms,
                submitted_at=self._clock(),
                round=session.round,
            )
        )
        if not created:
            logger.debug(
                "Duplicate answer from %r for question %d in session %s",
                name,
                question_number,
                session.code,
            )
        return stored, created

    # --- Results ---

    def list_results(
        self,
        code: str,
        question_number: int | None = None,
        round: int | None = None,
    ) -> list[AnswerSubmission]:
        session = self._require_session(code)
        if question_number is not None:
            self._graph.require_question(question_number)
        return self._store.list_answers(
            session.code,
            question_number=question_number,
            round=session.round if round is None else round,
        )

    def leaderboard(
        self,
        code: str,
        question_number: int,
        round: int | None = None,
    ) -> list[LeaderboardRow]:
        return rank_submissions(self.list_results(code, question_number, round))

    def standings(self, code: str, round: int | None = None) -> list[StandingRow]:
        return overall_standings(self.list_results(code, None, round))

    # --- Helpers ---

    def _require_session(self, code: str) -> WorkshopSession:
        code = _normalize_code(code)
        session = self._store.get_session(code)
        if session is None:
            raise NotFound(f"Session {code} not found.")
        return session

    def _ensure_not_rotating(self, code: str) -> None:
        if self._store.get_rotation(code) is not None:
            raise GuardViolation(f"Session code {code} is being rotated; try again shortly.")

    def _transition(
        self,
        code: str,
        change: Callable[[WorkshopSession], WorkshopSession],
        clear_roster: bool = False,
    ) -> SessionSnapshot:
        session = self._require_session(code)
        self._ensure_not_rotating(session.code)
        updated = change(session)
        if clear_roster:
            self._roster.clear(session.code)
        if self._store.update_session(updated) is None:
            raise NotFound(f"Session {session.code} not found.")
        logger.info("Session %s: %s -> %s", session.code, session.phase, updated.phase)
        return self.get_snapshot(session.code)


def _normalize_code(code: str | None) -> str:
    cleaned = (code or "").strip().upper()
    if not cleaned:
        raise ValidationError("Session code required.")
    return cleaned
