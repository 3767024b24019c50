"""Relational Session Store backed by SQLModel / SQLAlchemy.

Every public method runs in its own short transaction. Tables are linked by
join-code only (no foreign keys) because a code rotation re-keys the
dependent tables before the session row itself.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
import logging
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint, delete, or_, update
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from quiz_workshop.core.errors import StoreFailure
from quiz_workshop.core.models import (
    AnswerSubmission,
    Participant,
    QuestionTimer,
    RotationJournal,
    RotationStatus,
    RotationStep,
    WorkshopSession,
)
from quiz_workshop.core.phases import Phase
from quiz_workshop.core.services.session_store import SessionStore
from quiz_workshop.core.services.timer import as_utc

logger = logging.getLogger(__name__)


class SessionRow(SQLModel, table=True):
    __tablename__ = "sessions"

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: str = Field(index=True, unique=True)
    code: str = Field(index=True, unique=True)
    phase: str
    active_question: int = 0
    round: int = 1
    question_timers: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ParticipantRow(SQLModel, table=True):
    __tablename__ = "participants"
    __table_args__ = (UniqueConstraint("session_code", "display_name"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    session_code: str = Field(index=True)
    display_name: str
    joined_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ResultRow(SQLModel, table=True):
    __tablename__ = "results"
    __table_args__ = (
        UniqueConstraint("session_code", "display_name", "question_number", "round"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    session_code: str = Field(index=True)
    display_name: str
    question_number: int
    elapsed_ms: int
    round: int = 1
    submitted_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class RotationRow(SQLModel, table=True):
    __tablename__ = "code_rotations"

    old_code: str = Field(primary_key=True)
    new_code: str = Field(index=True)
    session_id: str
    step: str
    status: str
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


def create_store_engine(database_url: str) -> Engine:
    """Build an engine; SQLite URLs get the thread and in-memory settings they need."""
    url = make_url(database_url)
    options: dict[str, Any] = {}
    if url.drivername.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
    return create_engine(database_url, **options)


class SqlSessionStore(SessionStore):
    """SessionStore implementation for any SQLAlchemy-supported database."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> "SqlSessionStore":
        store = cls(create_store_engine(database_url))
        store.create_schema()
        return store

    def create_schema(self) -> None:
        SQLModel.metadata.create_all(self._engine)

    def close(self) -> None:
        self._engine.dispose()

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        try:
            with Session(self._engine) as db:
                yield db
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("Store operation %s failed: %s", operation, exc)
            raise StoreFailure(f"Store operation '{operation}' failed.") from exc

    # --- Sessions ---

    def get_session(self, code: str) -> WorkshopSession | None:
        with self._transaction("get_session") as db:
            row = db.exec(select(SessionRow).where(SessionRow.code == code)).first()
            return _session_from_row(row) if row else None

    def list_sessions(self) -> list[WorkshopSession]:
        with self._transaction("list_sessions") as db:
            rows = db.exec(select(SessionRow).order_by(SessionRow.created_at.desc())).all()
            return [_session_from_row(row) for row in rows]

    def code_exists(self, code: str) -> bool:
        with self._transaction("code_exists") as db:
            return db.exec(select(SessionRow.id).where(SessionRow.code == code)).first() is not None

    def insert_session(self, session: WorkshopSession) -> WorkshopSession:
        with self._transaction("insert_session") as db:
            db.add(
                SessionRow(
                    session_id=session.session_id,
                    code=session.code,
                    phase=str(session.phase),
                    active_question=session.active_question,
                    round=session.round,
                    question_timers=_timers_to_json(session.questions),
                    created_at=session.created_at,
                )
            )
        return session.copy()

    def update_session(self, session: WorkshopSession) -> WorkshopSession | None:
        with self._transaction("update_session") as db:
            row = db.exec(select(SessionRow).where(SessionRow.code == session.code)).first()
            if row is None:
                return None
            row.phase = str(session.phase)
            row.active_question = session.active_question
            row.round = session.round
            row.question_timers = _timers_to_json(session.questions)
            db.add(row)
        return session.copy()

    def delete_session(self, code: str) -> bool:
        with self._transaction("delete_session") as db:
            db.exec(delete(ParticipantRow).where(ParticipantRow.session_code == code))
            db.exec(delete(ResultRow).where(ResultRow.session_code == code))
            result = db.exec(delete(SessionRow).where(SessionRow.code == code))
            return result.rowcount > 0

    def rekey_session(self, old_code: str, new_code: str) -> bool:
        with self._transaction("rekey_session") as db:
            result = db.exec(
                update(SessionRow).where(SessionRow.code == old_code).values(code=new_code)
            )
            return result.rowcount > 0

    # --- Participants ---

    def list_participants(self, code: str) -> list[Participant]:
        with self._transaction("list_participants") as db:
            rows = db.exec(
                select(ParticipantRow)
                .where(ParticipantRow.session_code == code)
                .order_by(ParticipantRow.joined_at, ParticipantRow.id)
            ).all()
            return [_participant_from_row(row) for row in rows]

    def _find_participant(self, code: str, display_name: str) -> Participant | None:
        with self._transaction("find_participant") as db:
            row = db.exec(
                select(ParticipantRow).where(
                    ParticipantRow.session_code == code,
                    ParticipantRow.display_name == display_name,
                )
            ).first()
            return _participant_from_row(row) if row else None

    def add_participant(self, participant: Participant) -> Participant:
        existing = self._find_participant(participant.session_code, participant.display_name)
        if existing is not None:
            return existing
        try:
            with self._transaction("add_participant") as db:
                db.add(
                    ParticipantRow(
                        session_code=participant.session_code,
                        display_name=participant.display_name,
                        joined_at=participant.joined_at,
                    )
                )
        except StoreFailure as exc:
            # A concurrent join with the same name won the insert.
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            existing = self._find_participant(participant.session_code, participant.display_name)
            if existing is None:
                raise
            return existing
        return participant

    def remove_participant(self, code: str, display_name: str) -> bool:
        with self._transaction("remove_participant") as db:
            result = db.exec(
                delete(ParticipantRow).where(
                    ParticipantRow.session_code == code,
                    ParticipantRow.display_name == display_name,
                )
            )
            return result.rowcount > 0

    def clear_participants(self, code: str) -> int:
        with self._transaction("clear_participants") as db:
            result = db.exec(delete(ParticipantRow).where(ParticipantRow.session_code == code))
            return result.rowcount

    def rekey_participants(self, old_code: str, new_code: str) -> int:
        with self._transaction("rekey_participants") as db:
            result = db.exec(
                update(ParticipantRow)
                .where(ParticipantRow.session_code == old_code)
                .values(session_code=new_code)
            )
            return result.rowcount

    # --- Answer submissions ---

    def _find_answer(self, answer: AnswerSubmission) -> AnswerSubmission | None:
        with self._transaction("find_answer") as db:
            row = db.exec(
                select(ResultRow).where(
                    ResultRow.session_code == answer.session_code,
                    ResultRow.display_name == answer.display_name,
                    ResultRow.question_number == answer.question_number,
                    ResultRow.round == answer.round,
                )
            ).first()
            return _answer_from_row(row) if row else None

    def add_answer(self, answer: AnswerSubmission) -> tuple[AnswerSubmission, bool]:
        existing = self._find_answer(answer)
        if existing is not None:
            return existing, False
        try:
            with self._transaction("add_answer") as db:
                db.add(
                    ResultRow(
                        session_code=answer.session_code,
                        display_name=answer.display_name,
                        question_number=answer.question_number,
                        elapsed_ms=answer.elapsed_ms,
                        round=answer.round,
                        submitted_at=answer.submitted_at,
                    )
                )
        except StoreFailure as exc:
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            existing = self._find_answer(answer)
            if existing is None:
                raise
            return existing, False
        return answer, True

    def list_answers(
        self,
        code: str,
        question_number: int | None = None,
        round: int | None = None,
    ) -> list[AnswerSubmission]:
        statement = select(ResultRow).where(ResultRow.session_code == code)
        if question_number is not None:
            statement = statement.where(ResultRow.question_number == question_number)
        if round is not None:
            statement = statement.where(ResultRow.round == round)
        statement = statement.order_by(ResultRow.submitted_at, ResultRow.id)
        with self._transaction("list_answers") as db:
            return [_answer_from_row(row) for row in db.exec(statement).all()]

    def rekey_answers(self, old_code: str, new_code: str) -> int:
        with self._transaction("rekey_answers") as db:
            result = db.exec(
                update(ResultRow)
                .where(ResultRow.session_code == old_code)
                .values(session_code=new_code)
            )
            return result.rowcount

    # --- Rotation journal ---

    def begin_rotation(self, journal: RotationJournal) -> bool:
        try:
            with self._transaction("begin_rotation") as db:
                db.add(_rotation_to_row(journal))
        except StoreFailure as exc:
            if isinstance(exc.__cause__, IntegrityError):
                return False
            raise
        return True

    def save_rotation(self, journal: RotationJournal) -> bool:
        with self._transaction("save_rotation") as db:
            result = db.exec(
                update(RotationRow)
                .where(RotationRow.old_code == journal.old_code)
                .values(
                    new_code=journal.new_code,
                    session_id=journal.session_id,
                    step=journal.step.value,
                    status=journal.status.value,
                )
            )
            return result.rowcount > 0

    def get_rotation(self, code: str) -> RotationJournal | None:
        with self._transaction("get_rotation") as db:
            row = db.exec(
                select(RotationRow).where(
                    or_(RotationRow.old_code == code, RotationRow.new_code == code)
                )
            ).first()
            return _rotation_from_row(row) if row else None

    def list_rotations(self) -> list[RotationJournal]:
        with self._transaction("list_rotations") as db:
            rows = db.exec(select(RotationRow).order_by(RotationRow.started_at)).all()
            return [_rotation_from_row(row) for row in rows]

    def delete_rotation(self, old_code: str) -> None:
        with self._transaction("delete_rotation") as db:
            db.exec(delete(RotationRow).where(RotationRow.old_code == old_code))


def _timers_to_json(timers: list[QuestionTimer]) -> list[dict[str, Any]]:
    return [
        {
            "number": timer.number,
            "time_limit_seconds": timer.time_limit_seconds,
            "started_at": timer.started_at.isoformat() if timer.started_at else None,
        }
        for timer in timers
    ]


def _timers_from_json(payload: list[dict[str, Any]] | None) -> list[QuestionTimer]:
    timers = []
    for item in payload or []:
        started_at = item.get("started_at")
        timers.append(
            QuestionTimer(
                number=int(item["number"]),
                time_limit_seconds=int(item["time_limit_seconds"]),
                started_at=as_utc(datetime.fromisoformat(started_at)) if started_at else None,
            )
        )
    return sorted(timers, key=lambda timer: timer.number)


def _session_from_row(row: SessionRow) -> WorkshopSession:
    return WorkshopSession(
        session_id=row.session_id,
        code=row.code,
        phase=Phase.parse(row.phase),
        active_question=row.active_question,
        questions=_timers_from_json(row.question_timers),
        created_at=as_utc(row.created_at),
        round=row.round,
    )


def _participant_from_row(row: ParticipantRow) -> Participant:
    return Participant(
        session_code=row.session_code,
        display_name=row.display_name,
        joined_at=as_utc(row.joined_at),
    )


def _answer_from_row(row: ResultRow) -> AnswerSubmission:
    return AnswerSubmission(
        session_code=row.session_code,
        display_name=row.display_name,
        question_number=row.question_number,
        elapsed_ms=row.elapsed_ms,
        submitted_at=as_utc(row.submitted_at),
        round=row.round,
    )


def _rotation_to_row(journal: RotationJournal) -> RotationRow:
    return RotationRow(
        old_code=journal.old_code,
        new_code=journal.new_code,
        session_id=journal.session_id,
        step=journal.step.value,
        status=journal.status.value,
        started_at=journal.started_at,
    )


def _rotation_from_row(row: RotationRow) -> RotationJournal:
    return RotationJournal(
        session_id=row.session_id,
        old_code=row.old_code,
        new_code=row.new_code,
        started_at=as_utc(row.started_at),
        step=RotationStep(row.step),
        status=RotationStatus(row.status),
    )
