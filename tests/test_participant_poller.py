"""Tests for the participant polling client."""

from datetime import timedelta
from threading import Event

import httpx
import pytest
from fastapi.testclient import TestClient

from quiz_workshop.client import ENTRY_SCREEN, ParticipantPoller, derive_screen
from quiz_workshop.core.errors import GuardViolation, NotFound
from quiz_workshop.core.phases import Phase
from quiz_workshop.core.services.roster import Presence
from quiz_workshop.server.api_server import create_api_app

from conftest import ADMIN_SECRET, FakeClock

ADMIN = {"X-Admin-Secret": ADMIN_SECRET}


@pytest.fixture
def http(manager):
    with TestClient(create_api_app(manager, ADMIN_SECRET)) as client:
        yield client


@pytest.fixture
def device_clock(clock) -> FakeClock:
    return FakeClock(clock.now)


@pytest.fixture
def poller(http, device_clock) -> ParticipantPoller:
    return ParticipantPoller(http, clock=device_clock, interval_seconds=0)


@pytest.fixture
def code(manager) -> str:
    return manager.create_session([60, 60]).code


def act(http, code, action, **extra):
    res = http.post(
        f"/api/admin/sessions/{code}/actions",
        json={"action": action, **extra},
        headers=ADMIN,
    )
    assert res.status_code == 200, res.text
    return res.json()


class TestParticipantFlow:
    def test_join_lands_on_the_waiting_screen(self, poller, code):
        view = poller.join(code.lower(), "Ada")

        assert view.screen == "waiting"
        assert view.presence is Presence.PRESENT
        assert view.roster == ["Ada"]
        assert poller.session_code == code

    def test_join_unknown_code_raises(self, poller):
        with pytest.raises(NotFound):
            poller.join("QQQQQQ", "Ada")
        assert poller.last_view.screen == ENTRY_SCREEN

    def test_screens_follow_the_session(self, http, poller, code):
        poller.join(code, "Ada")

        act(http, code, "start")
        view = poller.poll()
        assert view.screen == "question1"
        assert view.remaining_seconds == 60

        assert poller.submit_answer(1500) is True
        assert poller.last_view.screen == "correct1"
        assert poller.poll().screen == "correct1"

        act(http, code, "showDashboard1")
        assert poller.poll().screen == "dashboard1"

        act(http, code, "next")
        view = poller.poll()
        assert view.screen == "question2"
        assert view.active_question == 2

    def test_answering_outside_a_question_is_refused(self, poller, code):
        poller.join(code, "Ada")

        with pytest.raises(GuardViolation):
            poller.submit_answer(100)

    def test_retried_submission_is_accepted(self, http, poller, code, manager):
        poller.join(code, "Ada")
        act(http, code, "start")
        poller.poll()

        assert poller.submit_answer(800) is True
        assert poller.submit_answer(900) is True
        assert [a.elapsed_ms for a in manager.list_results(code, 1)] == [800]


class TestRemoval:
    def test_kicked_participant_returns_to_entry(self, http, poller, code):
        poller.join(code, "Ada")

        act(http, code, "kickUser", user_name="Ada")
        view = poller.poll()

        assert view.screen == ENTRY_SCREEN
        assert view.presence is Presence.REMOVED
        assert poller.session_code is None
        assert poller.display_name is None

    def test_reset_looks_like_a_kick(self, http, poller, code):
        poller.join(code, "Ada")
        act(http, code, "start")

        act(http, code, "reset")

        assert poller.poll().presence is Presence.REMOVED

    def test_rotation_drops_participants_back_to_entry(self, http, poller, code):
        poller.join(code, "Ada")

        act(http, code, "resetSessionCode")

        assert poller.poll().screen == ENTRY_SCREEN

    def test_other_kicks_do_not_affect_me(self, http, poller, code):
        poller.join(code, "Ada")
        http.post(f"/api/sessions/{code}/join", json={"display_name": "Grace"})

        act(http, code, "kickUser", user_name="Grace")

        assert poller.poll().presence is Presence.PRESENT

    def test_run_stops_once_removed(self, http, poller, code):
        poller.join(code, "Ada")
        act(http, code, "kickUser", user_name="Ada")
        seen = []

        poller.run(Event(), seen.append, max_polls=5)

        assert [v.presence for v in seen] == [Presence.REMOVED]


class TestCountdown:
    def test_tick_never_goes_below_zero(self, http, poller, code, device_clock):
        poller.join(code, "Ada")
        act(http, code, "start")
        poller.poll()

        device_clock.advance(seconds=20)
        assert poller.tick() == 40
        device_clock.advance(seconds=400)
        assert poller.tick() == 0

    def test_device_clock_skew_is_corrected(self, http, manager, code, clock):
        skewed = FakeClock(clock.now - timedelta(hours=1))
        poller = ParticipantPoller(http, clock=skewed, interval_seconds=0)
        poller.join(code, "Ada")
        act(http, code, "start")
        poller.poll()

        skewed.advance(seconds=15)

        assert poller.tick() == 45

    def test_no_countdown_outside_questions(self, poller, code):
        poller.join(code, "Ada")

        assert poller.tick() is None


class TestUnreliableNetwork:
    PROJECTION = {
        "session_code": "ABC234",
        "phase": "question1",
        "active_question": 1,
        "round": 1,
        "server_time": "2025-01-06T09:00:10+00:00",
        "participants": [{"display_name": "Ada", "joined_at": "2025-01-06T09:00:00+00:00"}],
        "questions": [
            {
                "number": 1,
                "time_limit_seconds": 60,
                "started_at": "2025-01-06T09:00:00+00:00",
                "remaining_seconds": 50,
            }
        ],
    }

    def _poller(self, failures):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/join"):
                return httpx.Response(200, json={"display_name": "Ada", "phase": "question1"})
            if failures:
                failure = failures.pop(0)
                if isinstance(failure, Exception):
                    raise failure
                return httpx.Response(failure)
            if request.method == "POST":
                return httpx.Response(201, json={"created": True})
            return httpx.Response(200, json=self.PROJECTION)

        client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://quiz.test")
        return ParticipantPoller(client, clock=FakeClock(), interval_seconds=0)

    def test_transport_error_keeps_the_last_view(self):
        failures = []
        poller = self._poller(failures)
        before = poller.join("ABC234", "Ada")
        failures.append(httpx.ConnectError("offline"))

        view = poller.poll()

        assert view is before
        assert view.screen == "question1"
        assert view.presence is Presence.PRESENT

    def test_server_error_keeps_the_last_view(self):
        failures = []
        poller = self._poller(failures)
        before = poller.join("ABC234", "Ada")
        failures.extend([500, 503])

        assert poller.poll() is before
        assert poller.poll() is before
        assert poller.poll().screen == "question1"

    def test_failed_submission_can_be_retried(self):
        failures = []
        poller = self._poller(failures)
        poller.join("ABC234", "Ada")
        failures.extend([httpx.ConnectError("offline"), 502])

        assert poller.submit_answer(100) is False
        assert poller.submit_answer(100) is False
        assert poller.last_view.screen == "question1"
        assert poller.submit_answer(100) is True
        assert poller.last_view.screen == "correct1"


@pytest.mark.parametrize(
    "phase,answered,screen",
    [
        (Phase.waiting(), set(), "waiting"),
        (Phase.question(1), set(), "question1"),
        (Phase.question(1), {1}, "correct1"),
        (Phase.question(2), {1}, "question2"),
        (Phase.correct(2), set(), "question2"),
        (Phase.dashboard(1), {1}, "dashboard1"),
        (Phase.finished(), {1, 2}, "finished"),
    ],
)
def test_derive_screen(phase, answered, screen):
    assert derive_screen(phase, answered) == screen
