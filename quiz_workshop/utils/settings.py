"""Runtime configuration read from the environment (and an optional ``.env`` file)."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import os

from dotenv import load_dotenv

from quiz_workshop.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from quiz_workshop.constants.session_constants import (
    DEFAULT_QUESTION_COUNT,
    DEFAULT_TIME_LIMIT_SECONDS,
    ROTATION_STALE_AFTER_SECONDS,
)


@dataclass(slots=True, frozen=True)
class WorkshopSettings:
    """Settings for one service process."""

    admin_secret: str | None = None
    database_url: str | None = None
    question_count: int = DEFAULT_QUESTION_COUNT
    default_time_limit: int = DEFAULT_TIME_LIMIT_SECONDS
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    rotation_stale_after: int = ROTATION_STALE_AFTER_SECONDS

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> WorkshopSettings:
        """Build settings from ``environ`` (``os.environ`` after loading ``.env`` by default)."""
        if environ is None:
            load_dotenv()
            environ = os.environ
        return cls(
            admin_secret=environ.get("QUIZ_ADMIN_SECRET") or None,
            database_url=environ.get("QUIZ_DATABASE_URL") or None,
            question_count=_int_setting(environ, "QUIZ_QUESTION_COUNT", DEFAULT_QUESTION_COUNT),
            default_time_limit=_int_setting(
                environ, "QUIZ_DEFAULT_TIME_LIMIT", DEFAULT_TIME_LIMIT_SECONDS
            ),
            host=environ.get("QUIZ_HOST") or DEFAULT_HOST,
            port=_int_setting(environ, "QUIZ_PORT", DEFAULT_PORT),
            log_level=(environ.get("QUIZ_LOG_LEVEL") or "INFO").upper(),
            rotation_stale_after=_int_setting(
                environ, "QUIZ_ROTATION_STALE_AFTER", ROTATION_STALE_AFTER_SECONDS
            ),
        )


def _int_setting(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}.") from exc
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {value}.")
    return value
