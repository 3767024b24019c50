"""Polling client used by a participant to follow a workshop session.

The client never receives pushes. Each poll re-reads the session projection
and derives from it the screen to show, the countdown, and whether this
participant has been removed (its name is missing from the roster). Transient
transport failures and 5xx responses are swallowed; the previous view is kept
and the next poll simply tries again.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from threading import Event

import httpx

from quiz_workshop.constants.session_constants import PARTICIPANT_POLL_INTERVAL_SECONDS
from quiz_workshop.core.errors import (
    CodeExhaustion,
    GuardViolation,
    NotFound,
    StoreFailure,
    Unauthorized,
    ValidationError,
    WorkshopError,
)
from quiz_workshop.core.phases import Phase, PhaseKind
from quiz_workshop.core.services.roster import Presence, detect_presence
from quiz_workshop.core.services.timer import as_utc, remaining_seconds, utc_now

logger = logging.getLogger(__name__)

ENTRY_SCREEN = "entry"

_ERRORS_BY_KIND: dict[str, type[WorkshopError]] = {
    cls.kind: cls
    for cls in (NotFound, GuardViolation, CodeExhaustion, StoreFailure, Unauthorized, ValidationError)
}


@dataclass(slots=True)
class ParticipantView:
    """What a participant should currently see."""

    screen: str
    presence: Presence
    session_code: str | None = None
    phase: str | None = None
    active_question: int = 0
    remaining_seconds: int | None = None
    roster: list[str] = field(default_factory=list)


@dataclass(slots=True)
class _ActiveTimer:
    time_limit_seconds: int
    started_at: datetime


def derive_screen(phase: Phase, answered: set[int]) -> str:
    """Map the session-wide phase onto this participant's screen."""
    if phase.is_question_stage():
        if phase.number in answered:
            return str(Phase.correct(phase.number))
        return str(Phase.question(phase.number))
    return str(phase)


def _parse_time(value: str | None) -> datetime | None:
    return as_utc(datetime.fromisoformat(value)) if value else None


def _raise_for_failure(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    detail = body.get("detail") if isinstance(body, dict) else None
    error_cls = _ERRORS_BY_KIND.get(body.get("kind", "") if isinstance(body, dict) else "")
    if error_cls is None:
        error_cls = StoreFailure if response.status_code >= 500 else ValidationError
    raise error_cls(str(detail or f"Request failed with status {response.status_code}."))


class ParticipantPoller:
    """Join a session, poll it, and submit timed answers."""

    def __init__(
        self,
        http: httpx.Client,
        clock: Callable[[], datetime] = utc_now,
        interval_seconds: float = PARTICIPANT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._http = http
        self._clock = clock
        self._interval = interval_seconds
        self._session_code: str | None = None
        self._display_name: str | None = None
        self._round: int | None = None
        self._answered: set[int] = set()
        self._clock_offset = timedelta(0)
        self._timer: _ActiveTimer | None = None
        self._last_view = ParticipantView(screen=ENTRY_SCREEN, presence=Presence.NOT_JOINED)

    @property
    def session_code(self) -> str | None:
        return self._session_code

    @property
    def display_name(self) -> str | None:
        return self._display_name

    @property
    def last_view(self) -> ParticipantView:
        return self._last_view

    def join(self, code: str, display_name: str) -> ParticipantView:
        """Join a session; errors such as an unknown code are raised to the caller."""
        cleaned_code = code.strip().upper()
        response = self._http.post(
            f"/api/sessions/{cleaned_code}/join",
            json={"display_name": display_name},
        )
        _raise_for_failure(response)
        self._session_code = cleaned_code
        self._display_name = response.json()["display_name"]
        self._answered = set()
        self._round = None
        return self.poll()

    def poll(self) -> ParticipantView:
        if self._session_code is None:
            return self._last_view
        try:
            response = self._http.get(f"/api/sessions/{self._session_code}")
        except httpx.TransportError as exc:
            logger.debug("Poll of %s failed: %s", self._session_code, exc)
            return self._last_view
        if response.status_code >= 500:
            logger.debug("Poll of %s returned %d", self._session_code, response.status_code)
            return self._last_view
        if response.status_code == 404:
            # Deleted, or filed under a rotated code: either way we are out.
            return self._removed()
        _raise_for_failure(response)
        return self._apply_projection(response.json())

    def tick(self) -> int | None:
        """Re-derive the countdown of the active question from the server start instant."""
        if self._timer is None:
            return None
        now = self._clock() + self._clock_offset
        remaining = remaining_seconds(self._timer.time_limit_seconds, self._timer.started_at, now)
        self._last_view.remaining_seconds = remaining
        return remaining

    def submit_answer(self, elapsed_ms: int) -> bool:
        """Submit an answer for the active question.

        Returns False when the request could not reach the server so the caller
        can retry; retries are safe because the server files one answer per
        question and round.
        """
        view = self._last_view
        if self._session_code is None or not view.phase:
            raise ValidationError("Join a session before answering.")
        phase = Phase.parse(view.phase)
        if not phase.is_question_stage():
            raise GuardViolation("No question is open right now.")
        try:
            response = self._http.post(
                "/api/results",
                json={
                    "session_code": self._session_code,
                    "display_name": self._display_name,
                    "question_number": phase.number,
                    "elapsed_ms": int(elapsed_ms),
                },
            )
        except httpx.TransportError as exc:
            logger.debug("Answer submission failed: %s", exc)
            return False
        if response.status_code >= 500:
            return False
        _raise_for_failure(response)
        self._answered.add(phase.number)
        view.screen = derive_screen(phase, self._answered)
        return True

    def run(
        self,
        stop: Event,
        on_view: Callable[[ParticipantView], None],
        max_polls: int | None = None,
    ) -> None:
        """Poll on a fixed interval until ``stop`` is set or the participant is removed."""
        polls = 0
        while not stop.is_set():
            view = self.poll()
            self.tick()
            on_view(view)
            polls += 1
            if view.presence is Presence.REMOVED:
                return
            if max_polls is not None and polls >= max_polls:
                return
            stop.wait(self._interval)

    def _apply_projection(self, data: dict) -> ParticipantView:
        names = [p["display_name"] for p in data.get("participants", [])]
        presence = detect_presence(names, self._display_name)
        if presence is Presence.REMOVED:
            return self._removed()

        server_time = _parse_time(data.get("server_time"))
        if server_time is not None:
            self._clock_offset = server_time - self._clock()

        if data.get("round") != self._round:
            self._round = data.get("round")
            self._answered = set()

        phase = Phase.parse(data["phase"])
        self._timer = None
        if phase.kind in (PhaseKind.QUESTION, PhaseKind.CORRECT):
            question = next(
                (q for q in data.get("questions", []) if q["number"] == phase.number),
                None,
            )
            started_at = _parse_time(question.get("started_at")) if question else None
            if question and started_at is not None:
                self._timer = _ActiveTimer(question["time_limit_seconds"], started_at)

        self._last_view = ParticipantView(
            screen=derive_screen(phase, self._answered),
            presence=presence,
            session_code=data["session_code"],
            phase=str(phase),
            active_question=data.get("active_question", 0),
            roster=names,
        )
        self.tick()
        return self._last_view

    def _removed(self) -> ParticipantView:
        logger.info("%r is no longer in session %s", self._display_name, self._session_code)
        self._session_code = None
        self._display_name = None
        self._answered = set()
        self._round = None
        self._timer = None
        self._last_view = ParticipantView(screen=ENTRY_SCREEN, presence=Presence.REMOVED)
        return self._last_view
