"""Leaderboard ranking of submitted answers."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from quiz_workshop.core.models import AnswerSubmission


@dataclass(slots=True)
class LeaderboardRow:
    """Immutable snapshot of one ranked submission."""

    rank: int
    display_name: str
    question_number: int
    elapsed_ms: int
    submitted_at: datetime


@dataclass(slots=True)
class StandingEntry:
    """Mutable cross-question tally used internally."""

    display_name: str
    questions_answered: int = 0
    total_elapsed_ms: int = 0


@dataclass(slots=True)
class StandingRow:
    """Overall position of a participant across every question of a round."""

    rank: int
    display_name: str
    questions_answered: int
    total_elapsed_ms: int
    per_question_ms: dict[int, int] = field(default_factory=dict)


def rank_submissions(answers: Iterable[AnswerSubmission]) -> list[LeaderboardRow]:
    """Order submissions fastest first.

    The sort is stable, so equal times keep their submission order. A row's
    rank is one plus the number of strictly faster submissions, so ties share
    a rank.
    """
    ordered = sorted(answers, key=lambda answer: answer.elapsed_ms)
    rows: list[LeaderboardRow] = []
    for index, answer in enumerate(ordered):
        if index and answer.elapsed_ms == ordered[index - 1].elapsed_ms:
            rank = rows[-1].rank
        else:
            rank = index + 1
        rows.append(
            LeaderboardRow(
                rank=rank,
                display_name=answer.display_name,
                question_number=answer.question_number,
                elapsed_ms=answer.elapsed_ms,
                submitted_at=answer.submitted_at,
            )
        )
    return rows


def rank_of(answers: Iterable[AnswerSubmission], display_name: str) -> int | None:
    """Rank of ``display_name`` among ``answers``, or None if it never submitted."""
    snapshot = list(answers)
    own = next((a for a in snapshot if a.display_name == display_name), None)
    if own is None:
        return None
    return 1 + sum(1 for a in snapshot if a.elapsed_ms < own.elapsed_ms)


def overall_standings(answers: Iterable[AnswerSubmission]) -> list[StandingRow]:
    """Rank participants by questions answered (desc), then total time (asc)."""
    entries: dict[str, StandingEntry] = {}
    per_question: dict[str, dict[int, int]] = {}
    for answer in answers:
        entry = entries.get(answer.display_name)
        if entry is None:
            entry = StandingEntry(display_name=answer.display_name)
            entries[answer.display_name] = entry
            per_question[answer.display_name] = {}
        entry.questions_answered += 1
        entry.total_elapsed_ms += answer.elapsed_ms
        per_question[answer.display_name][answer.question_number] = answer.elapsed_ms

    sorted_entries = sorted(
        entries.values(),
        key=lambda e: (-e.questions_answered, e.total_elapsed_ms),
    )
    rows: list[StandingRow] = []
    for index, entry in enumerate(sorted_entries):
        previous = sorted_entries[index - 1] if index else None
        if previous is not None and (
            previous.questions_answered,
            previous.total_elapsed_ms,
        ) == (entry.questions_answered, entry.total_elapsed_ms):
            rank = rows[-1].rank
        else:
            rank = index + 1
        rows.append(
            StandingRow(
                rank=rank,
                display_name=entry.display_name,
                questions_answered=entry.questions_answered,
                total_elapsed_ms=entry.total_elapsed_ms,
                per_question_ms=per_question[entry.display_name],
            )
        )
    return rows
