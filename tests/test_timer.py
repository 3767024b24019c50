"""Tests for the server-authoritative countdown."""

from datetime import datetime, timedelta, timezone

from quiz_workshop.core.models import QuestionTimer
from quiz_workshop.core.services.timer import TimerAuthority, as_utc, remaining_seconds

NOW = datetime(2025, 1, 6, 9, 0, 0, tzinfo=timezone.utc)


def test_remaining_time_never_goes_negative():
    started = NOW - timedelta(seconds=305)

    assert remaining_seconds(300, started, NOW) == 0


def test_remaining_time_floors_partial_seconds():
    started = NOW - timedelta(seconds=10, milliseconds=999)

    assert remaining_seconds(300, started, NOW) == 290


def test_not_started_question_has_no_countdown():
    assert remaining_seconds(300, None, NOW) is None


def test_future_start_counts_as_zero_elapsed():
    started = NOW + timedelta(seconds=5)

    assert remaining_seconds(60, started, NOW) == 60


def test_naive_instants_are_treated_as_utc():
    naive_start = datetime(2025, 1, 6, 8, 59, 0)

    assert as_utc(naive_start).tzinfo is timezone.utc
    assert remaining_seconds(120, naive_start, NOW) == 60


def test_authority_derives_every_countdown_independently():
    timers = [
        QuestionTimer(number=1, time_limit_seconds=30, started_at=NOW - timedelta(seconds=45)),
        QuestionTimer(number=2, time_limit_seconds=300),
    ]

    first, second = TimerAuthority().countdowns(timers, NOW)

    assert first.remaining_seconds == 0
    assert first.expired
    assert second.remaining_seconds is None
    assert not second.expired
