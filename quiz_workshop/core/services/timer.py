"""Server-authoritative countdowns for timed questions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from quiz_workshop.core.models import QuestionTimer

_ONE_SECOND = timedelta(seconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def remaining_seconds(
    time_limit_seconds: int,
    started_at: datetime | None,
    now: datetime,
) -> int | None:
    """Whole seconds left on a question, never below zero.

    Returns ``None`` while the question has not been started. A start instant
    ahead of ``now`` counts as zero elapsed seconds.
    """
    if started_at is None:
        return None
    elapsed = max(timedelta(0), as_utc(now) - as_utc(started_at))
    return max(0, time_limit_seconds - elapsed // _ONE_SECOND)


@dataclass(slots=True)
class CountdownState:
    """Countdown of one question as seen at a given instant."""

    number: int
    time_limit_seconds: int
    started_at: datetime | None
    remaining_seconds: int | None

    @property
    def expired(self) -> bool:
        return self.remaining_seconds == 0


class TimerAuthority:
    """Derives every question's countdown from server-recorded start instants."""

    def countdown(self, timer: QuestionTimer, now: datetime) -> CountdownState:
        return CountdownState(
            number=timer.number,
            time_limit_seconds=timer.time_limit_seconds,
            started_at=timer.started_at,
            remaining_seconds=remaining_seconds(timer.time_limit_seconds, timer.started_at, now),
        )

    def countdowns(self, timers: list[QuestionTimer], now: datetime) -> list[CountdownState]:
        return [self.countdown(timer, now) for timer in timers]
