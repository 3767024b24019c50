"""Join-code rotation across the session, participant and answer record sets.

The store has no multi-table transaction, so rotation runs as a saga:

1. mint a code that is neither in use nor reserved by another rotation, and
   persist a ``RotationJournal``;
2. re-key participants, then answers, then the session row itself,
   advancing the journal after each step;
3. on a failed step, undo the applied steps in reverse order;
4. on success, clear the roster under the new code and drop the journal.

The session row moves last because it is the record everything else is filed
under. A journal that outlives its request (crash, failed compensation) is
finished by ``recover``: if the session row already carries the new code the
rotation is rolled forward, otherwise it is rolled back. Both directions only
move rows between the two codes, so recovery can be repeated safely.

Recovery only touches journals that are stale or marked as failed, so a
rotation still running on another instance is left alone. If a journal is
recovered anyway while its rotation runs, the rotation notices on its next
journal update and settles the records the same way recovery does.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
import logging

from quiz_workshop.constants.session_constants import ROTATION_STALE_AFTER_SECONDS
from quiz_workshop.core.code_generator import JoinCodeGenerator
from quiz_workshop.core.errors import GuardViolation, NotFound, StoreFailure
from quiz_workshop.core.models import (
    RotationJournal,
    RotationStatus,
    RotationStep,
    WorkshopSession,
)
from quiz_workshop.core.services.session_store import SessionStore
from quiz_workshop.core.services.timer import as_utc

logger = logging.getLogger(__name__)

# Store method applied at each step, in order.
_STEPS: tuple[tuple[RotationStep, str], ...] = (
    (RotationStep.PARTICIPANTS_MOVED, "rekey_participants"),
    (RotationStep.ANSWERS_MOVED, "rekey_answers"),
    (RotationStep.SESSION_MOVED, "rekey_session"),
)


class RecoveryAction(str, Enum):
    ROLLED_FORWARD = "rolled_forward"
    ROLLED_BACK = "rolled_back"
    DISCARDED = "discarded"


@dataclass(slots=True)
class RecoveryOutcome:
    old_code: str
    new_code: str
    action: RecoveryAction


class _JournalLost(Exception):
    """The rotation's journal was recovered by someone else mid-rotation."""


class CodeRotationCoordinator:
    """Runs and recovers join-code rotations."""

    def __init__(
        self,
        store: SessionStore,
        codes: JoinCodeGenerator,
        clock: Callable[[], datetime],
        stale_after_seconds: float = ROTATION_STALE_AFTER_SECONDS,
    ) -> None:
        self._store = store
        self._codes = codes
        self._clock = clock
        self._stale_after = timedelta(seconds=stale_after_seconds)

    def code_taken(self, code: str) -> bool:
        """True if ``code`` names a session or is reserved by an open rotation."""
        return self._store.code_exists(code) or self._store.get_rotation(code) is not None

    def rotate(self, session: WorkshopSession) -> str:
        """Move ``session`` and its dependents to a fresh code and return that code."""
        old_code = session.code
        new_code = self._codes.mint(self.code_taken)
        journal = RotationJournal(
            session_id=session.session_id,
            old_code=old_code,
            new_code=new_code,
            started_at=self._clock(),
        )
        if not self._store.begin_rotation(journal):
            raise GuardViolation(f"A code rotation is already in progress for session {old_code}.")
        logger.info("Rotating session code %s -> %s", old_code, new_code)

        applied: list[str] = []
        try:
            for step, method_name in _STEPS:
                try:
                    moved = getattr(self._store, method_name)(old_code, new_code)
                    if moved is False:
                        raise NotFound(f"Session {old_code} was deleted during code rotation.")
                    applied.append(method_name)
                    journal.step = step
                    if not self._store.save_rotation(journal):
                        raise _JournalLost()
                except StoreFailure as exc:
                    logger.error(
                        "Code rotation %s -> %s failed before %s: %s",
                        old_code,
                        new_code,
                        step.value,
                        exc,
                    )
                    self._compensate(journal, applied)
                    raise StoreFailure(
                        f"Failed to rotate session code {old_code} ({step.value} step); "
                        "all records remain under the old code."
                    ) from exc
        except NotFound:
            self._settle(old_code, new_code)
            self._drop_journal(old_code)
            raise
        except _JournalLost:
            logger.warning("Rotation %s -> %s was recovered while running", old_code, new_code)
            if self._settle(old_code, new_code) is RecoveryAction.ROLLED_FORWARD:
                return new_code
            raise StoreFailure(
                f"Rotation of session {old_code} was interrupted by recovery; "
                "all records remain under the old code."
            )

        self._finish(journal)
        logger.info("Session code %s rotated to %s", old_code, new_code)
        return new_code

    def _compensate(self, journal: RotationJournal, applied: list[str]) -> None:
        for method_name in reversed(applied):
            try:
                getattr(self._store, method_name)(journal.new_code, journal.old_code)
            except StoreFailure as exc:
                journal.status = RotationStatus.COMPENSATION_FAILED
                try:
                    if not self._store.save_rotation(journal):
                        logger.error("Rotation journal %s vanished during compensation", journal.old_code)
                except StoreFailure:
                    logger.exception("Could not mark rotation %s as failed", journal.old_code)
                logger.critical(
                    "Compensation of rotation %s -> %s failed at %s; records are split "
                    "between both codes until recovery runs",
                    journal.old_code,
                    journal.new_code,
                    method_name,
                )
                raise StoreFailure(
                    f"Rotation of session {journal.old_code} could not be undone; records are "
                    f"split between {journal.old_code} and {journal.new_code} and need recovery."
                ) from exc
        self._drop_journal(journal.old_code)

    def _drop_journal(self, old_code: str) -> None:
        try:
            self._store.delete_rotation(old_code)
        except StoreFailure:
            logger.exception("Could not drop rotation journal %s", old_code)

    def _finish(self, journal: RotationJournal) -> None:
        # Rotating also empties the roster so everyone rejoins under the new code.
        self._store.clear_participants(journal.new_code)
        self._store.delete_rotation(journal.old_code)

    def _settle(self, old_code: str, new_code: str) -> RecoveryAction:
        """Move every dependent to wherever the session row lives now."""
        if self._store.code_exists(new_code):
            self._store.rekey_participants(old_code, new_code)
            self._store.rekey_answers(old_code, new_code)
            self._store.clear_participants(new_code)
            return RecoveryAction.ROLLED_FORWARD
        if self._store.code_exists(old_code):
            self._store.rekey_answers(new_code, old_code)
            self._store.rekey_participants(new_code, old_code)
            return RecoveryAction.ROLLED_BACK
        # The session was deleted mid-rotation; drop what is left of it.
        self._store.delete_session(old_code)
        self._store.delete_session(new_code)
        return RecoveryAction.DISCARDED

    def is_abandoned(self, journal: RotationJournal, now: datetime | None = None) -> bool:
        """A journal is recoverable once compensation failed or it has gone stale."""
        if journal.status is RotationStatus.COMPENSATION_FAILED:
            return True
        now = now or self._clock()
        return as_utc(now) - as_utc(journal.started_at) >= self._stale_after

    def recover(self, journal: RotationJournal) -> RecoveryOutcome:
        """Finish an interrupted rotation based on where the session row lives now."""
        old_code, new_code = journal.old_code, journal.new_code
        action = self._settle(old_code, new_code)
        self._store.delete_rotation(old_code)
        logger.warning("Recovered rotation %s -> %s: %s", old_code, new_code, action.value)
        return RecoveryOutcome(old_code=old_code, new_code=new_code, action=action)

    def recover_pending(self) -> list[RecoveryOutcome]:
        """Recover abandoned journals; rotations still in flight are skipped."""
        now = self._clock()
        outcomes = []
        for journal in self._store.list_rotations():
            if not self.is_abandoned(journal, now):
                logger.info(
                    "Skipping rotation %s -> %s, still in progress",
                    journal.old_code,
                    journal.new_code,
                )
                continue
            outcomes.append(self.recover(journal))
        return outcomes
