"""Tests for the phase template and its parsing."""

import pytest

from quiz_workshop.core.errors import ValidationError
from quiz_workshop.core.phases import Phase, PhaseGraph, PhaseKind


def test_two_question_graph_lists_every_phase_in_order():
    names = [str(phase) for phase in PhaseGraph(2).phases()]

    assert names == [
        "waiting",
        "question1",
        "correct1",
        "dashboard1",
        "question2",
        "correct2",
        "dashboard2",
        "finished",
    ]


def test_graph_generalizes_to_more_questions():
    graph = PhaseGraph(4)

    assert len(graph.phases()) == 2 + 3 * 4
    assert graph.contains(Phase.dashboard(4))
    assert not graph.contains(Phase.question(5))


@pytest.mark.parametrize(
    "name,expected",
    [
        ("waiting", Phase(PhaseKind.WAITING)),
        ("finished", Phase(PhaseKind.FINISHED)),
        ("question2", Phase(PhaseKind.QUESTION, 2)),
        ("correct1", Phase(PhaseKind.CORRECT, 1)),
        ("dashboard12", Phase(PhaseKind.DASHBOARD, 12)),
    ],
)
def test_parse_round_trips_names(name, expected):
    assert Phase.parse(name) == expected
    assert str(expected) == name


@pytest.mark.parametrize("name", ["", "question", "question0", "lobby", "dashboard-1"])
def test_parse_rejects_unknown_names(name):
    with pytest.raises(ValidationError):
        Phase.parse(name)


def test_graph_parse_rejects_questions_beyond_the_template():
    with pytest.raises(ValidationError):
        PhaseGraph(2).parse("question3")


@pytest.mark.parametrize(
    "phase,active",
    [
        (Phase.waiting(), 0),
        (Phase.question(1), 1),
        (Phase.correct(1), 1),
        (Phase.dashboard(1), 1),
        (Phase.question(2), 2),
        (Phase.dashboard(2), 2),
        (Phase.finished(), 2),
    ],
)
def test_active_question_matches_phase(phase, active):
    assert PhaseGraph(2).active_question_for(phase) == active


def test_require_question_checks_range():
    graph = PhaseGraph(2)

    assert graph.require_question(2) == 2
    with pytest.raises(ValidationError):
        graph.require_question(0)
    with pytest.raises(ValidationError):
        graph.require_question(3)


def test_graph_needs_at_least_one_question():
    with pytest.raises(ValueError):
        PhaseGraph(0)
