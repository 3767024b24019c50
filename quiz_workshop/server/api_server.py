"""FastAPI server exposing the administrator and participant endpoints."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import uvicorn

from quiz_workshop.constants.about import APP_ABOUT_TEXT, APP_LICENSE, APP_NAME, APP_VERSION
from quiz_workshop.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from quiz_workshop.core.errors import (
    CodeExhaustion,
    GuardViolation,
    NotFound,
    StoreFailure,
    Unauthorized,
    ValidationError,
    WorkshopError,
)
from quiz_workshop.core.models import (
    AnswerSubmission,
    RotationResult,
    SessionSnapshot,
    WorkshopSession,
)
from quiz_workshop.core.services.scoreboard import LeaderboardRow, StandingRow
from quiz_workshop.core.services.session_store import InMemorySessionStore, SessionStore
from quiz_workshop.core.services.sql_store import SqlSessionStore
from quiz_workshop.core.services.timer import as_utc
from quiz_workshop.core.workshop_manager import WorkshopManager
from quiz_workshop.server.auth import admin_guard
from quiz_workshop.utils.settings import WorkshopSettings

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[WorkshopError], int] = {
    ValidationError: 422,
    Unauthorized: 401,
    NotFound: 404,
    GuardViolation: 409,
    CodeExhaustion: 503,
    StoreFailure: 500,
}


class CreateSessionPayload(BaseModel):
    """Optional per-question time limits for a new session."""

    time_limits: list[int] | None = None


class ActionPayload(BaseModel):
    """Administrator command against one session."""

    action: str
    time_limit: int | None = None
    user_name: str | None = None


class JoinPayload(BaseModel):
    """Payload schema for joining a session."""

    display_name: str | None = None


class ResultPayload(BaseModel):
    """Payload schema for a submitted answer."""

    session_code: str | None = None
    display_name: str | None = None
    question_number: int | None = None
    elapsed_ms: int | None = None


def _iso(moment: datetime | None) -> str | None:
    if moment is None:
        return None
    return as_utc(moment).isoformat()


def _session_summary(session: WorkshopSession) -> dict[str, object]:
    return {
        "session_code": session.code,
        "phase": str(session.phase),
        "active_question": session.active_question,
        "round": session.round,
        "created_at": _iso(session.created_at),
    }


def _snapshot_payload(manager: WorkshopManager, snapshot: SessionSnapshot) -> dict[str, object]:
    payload = _session_summary(snapshot.session)
    payload["server_time"] = _iso(snapshot.server_time)
    payload["participants"] = [
        {"display_name": p.display_name, "joined_at": _iso(p.joined_at)}
        for p in snapshot.roster
    ]
    payload["questions"] = [
        {
            "number": countdown.number,
            "time_limit_seconds": countdown.time_limit_seconds,
            "started_at": _iso(countdown.started_at),
            "remaining_seconds": countdown.remaining_seconds,
            "expired": countdown.expired,
        }
        for countdown in manager.countdowns(snapshot)
    ]
    return payload


def _rotation_payload(manager: WorkshopManager, result: RotationResult) -> dict[str, object]:
    payload = _snapshot_payload(manager, result.snapshot)
    payload["previous_session_code"] = result.old_code
    payload["new_session_code"] = result.new_code
    return payload


def _answer_payload(answer: AnswerSubmission) -> dict[str, object]:
    return {
        "session_code": answer.session_code,
        "display_name": answer.display_name,
        "question_number": answer.question_number,
        "elapsed_ms": answer.elapsed_ms,
        "submitted_at": _iso(answer.submitted_at),
        "round": answer.round,
    }


def _leaderboard_payload(row: LeaderboardRow) -> dict[str, object]:
    return {
        "rank": row.rank,
        "display_name": row.display_name,
        "question_number": row.question_number,
        "elapsed_ms": row.elapsed_ms,
        "submitted_at": _iso(row.submitted_at),
    }


def _standing_payload(row: StandingRow) -> dict[str, object]:
    return {
        "rank": row.rank,
        "display_name": row.display_name,
        "questions_answered": row.questions_answered,
        "total_elapsed_ms": row.total_elapsed_ms,
        "per_question_ms": {str(k): v for k, v in row.per_question_ms.items()},
    }


def _get_manager_dependency(manager: WorkshopManager):
    def dependency() -> WorkshopManager:
        return manager

    return dependency


def create_api_app(manager: WorkshopManager, admin_secret: str | None) -> FastAPI:
    """Create a FastAPI application wired to the provided workshop manager."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        for outcome in manager.recover_rotations():
            logger.warning(
                "Finished interrupted rotation %s -> %s (%s)",
                outcome.old_code,
                outcome.new_code,
                outcome.action.value,
            )
        yield

    app = FastAPI(
        title=f"{APP_NAME} API",
        version=APP_VERSION,
        description=APP_ABOUT_TEXT,
        license_info={"name": APP_LICENSE},
        lifespan=lifespan,
    )
    manager_dep = _get_manager_dependency(manager)
    require_admin = admin_guard(admin_secret)

    @app.exception_handler(WorkshopError)
    async def handle_workshop_error(request: Request, exc: WorkshopError) -> JSONResponse:
        status = next(
            (code for kind, code in _STATUS_BY_ERROR.items() if isinstance(exc, kind)),
            500,
        )
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.get("/ping")
    def ping() -> dict[str, str]:
        return {"status": "ok"}

    # --- Administrator surface ---

    @app.post("/api/admin/auth", dependencies=[Depends(require_admin)])
    def verify_admin() -> dict[str, bool]:
        return {"success": True}

    @app.post("/api/admin/sessions", dependencies=[Depends(require_admin)])
    def create_session(
        payload: CreateSessionPayload | None = None,
        manager: WorkshopManager = Depends(manager_dep),
    ) -> dict[str, object]:
        snapshot = manager.create_session(payload.time_limits if payload else None)
        return _snapshot_payload(manager, snapshot)

    @app.get("/api/admin/sessions", dependencies=[Depends(require_admin)])
    def list_sessions(manager: WorkshopManager = Depends(manager_dep)) -> dict[str, object]:
        return {"sessions": [_session_summary(s) for s in manager.list_sessions()]}

    @app.delete("/api/admin/sessions/{code}", dependencies=[Depends(require_admin)])
    def delete_session(
        code: str,
        manager: WorkshopManager = Depends(manager_dep),
    ) -> dict[str, bool]:
        manager.delete_session(code)
        return {"success": True}

    @app.post("/api/admin/sessions/{code}/actions", dependencies=[Depends(require_admin)])
    def apply_action(
        code: str,
        payload: ActionPayload,
        manager: WorkshopManager = Depends(manager_dep),
    ) -> dict[str, object]:
        outcome = manager.apply_action(
            code,
            payload.action,
            time_limit=payload.time_limit,
            user_name=payload.user_name,
        )
        if isinstance(outcome, RotationResult):
            return _rotation_payload(manager, outcome)
        return _snapshot_payload(manager, outcome)

    @app.post("/api/admin/rotations/recover", dependencies=[Depends(require_admin)])
    def recover_rotations(manager: WorkshopManager = Depends(manager_dep)) -> dict[str, object]:
        outcomes = manager.recover_rotations()
        return {
            "recovered": [
                {
                    "previous_session_code": o.old_code,
                    "new_session_code": o.new_code,
                    "action": o.action.value,
                }
                for o in outcomes
            ]
        }

    # --- Participant surface ---

    @app.get("/api/sessions/{code}")
    def get_session(code: str, manager: WorkshopManager = Depends(manager_dep)) -> dict[str, object]:
        return _snapshot_payload(manager, manager.get_snapshot(code))

    @app.post("/api/sessions/{code}/join")
    def join_session(
        code: str,
        payload: JoinPayload,
        manager: WorkshopManager = Depends(manager_dep),
    ) -> dict[str, object]:
        participant = manager.join(code, payload.display_name or "")
        snapshot = manager.get_snapshot(participant.session_code)
        return {
            "display_name": participant.display_name,
            "joined_at": _iso(participant.joined_at),
            "phase": str(snapshot.phase),
        }

    @app.post("/api/results")
    def submit_result(
        payload: ResultPayload,
        manager: WorkshopManager = Depends(manager_dep),
    ) -> JSONResponse:
        if (
            not payload.session_code
            or not payload.display_name
            or payload.question_number is None
            or payload.elapsed_ms is None
        ):
            raise ValidationError("Required fields missing")
        answer, created = manager.submit_answer(
            payload.session_code,
            payload.display_name,
            payload.question_number,
            payload.elapsed_ms,
        )
        return JSONResponse(
            status_code=201 if created else 200,
            content={"created": created, "result": _answer_payload(answer)},
        )

    @app.get("/api/results")
    def list_results(
        session_code: str | None = None,
        question: int | None = None,
        round: int | None = None,
        manager: WorkshopManager = Depends(manager_dep),
    ) -> dict[str, object]:
        if not session_code:
            raise ValidationError("Session code required.")
        results = manager.list_results(session_code, question, round)
        return {"results": [_answer_payload(a) for a in results]}

    @app.get("/api/sessions/{code}/leaderboard/{question}")
    def question_leaderboard(
        code: str,
        question: int,
        round: int | None = None,
        manager: WorkshopManager = Depends(manager_dep),
    ) -> dict[str, object]:
        rows = manager.leaderboard(code, question, round)
        return {"question_number": question, "leaderboard": [_leaderboard_payload(r) for r in rows]}

    @app.get("/api/sessions/{code}/standings")
    def standings(
        code: str,
        round: int | None = None,
        manager: WorkshopManager = Depends(manager_dep),
    ) -> dict[str, object]:
        return {"standings": [_standing_payload(r) for r in manager.standings(code, round)]}

    return app


def build_store(settings: WorkshopSettings) -> SessionStore:
    if settings.database_url:
        return SqlSessionStore.from_url(settings.database_url)
    logger.warning("QUIZ_DATABASE_URL is not set; sessions are kept in memory only.")
    return InMemorySessionStore()


def create_app_from_settings(settings: WorkshopSettings) -> FastAPI:
    if not settings.admin_secret:
        logger.warning("QUIZ_ADMIN_SECRET is not set; administrator endpoints will refuse all calls.")
    manager = WorkshopManager(
        build_store(settings),
        question_count=settings.question_count,
        default_time_limit=settings.default_time_limit,
        rotation_stale_after=settings.rotation_stale_after,
    )
    return create_api_app(manager, settings.admin_secret)


def create_app_from_env() -> FastAPI:
    """Application factory for ``uvicorn --factory``."""
    return create_app_from_settings(WorkshopSettings.from_env())


def run_api_server(
    app: FastAPI,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = "info",
) -> None:
    """Serve ``app`` with uvicorn until interrupted."""
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level)
    server = uvicorn.Server(config)
    server.run()
