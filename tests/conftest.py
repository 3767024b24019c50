"""Shared fixtures for the quiz workshop tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from quiz_workshop.core.errors import StoreFailure
from quiz_workshop.core.services.session_store import InMemorySessionStore, SessionStore
from quiz_workshop.core.services.sql_store import SqlSessionStore
from quiz_workshop.core.workshop_manager import WorkshopManager

ADMIN_SECRET = "test-secret"


class FakeClock:
    """Manually advanced clock returning timezone-aware UTC instants."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 6, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class FlakyStore(InMemorySessionStore):
    """In-memory store that raises StoreFailure on chosen calls or runs a hook after them."""

    _FAULTY = (
        "rekey_participants",
        "rekey_answers",
        "rekey_session",
        "clear_participants",
        "save_rotation",
        "update_session",
        "get_session",
    )

    def __init__(self) -> None:
        super().__init__()
        self._plans: dict[str, tuple[int, int]] = {}
        self._hooks: dict[str, Callable[[], None]] = {}
        self.calls: dict[str, int] = {}

    def fail(self, method: str, *, after: int = 0, times: int = 1) -> None:
        """Let ``after`` further calls of ``method`` through, then fail ``times`` calls."""
        assert method in self._FAULTY, method
        self._plans[method] = (self.calls.get(method, 0) + after, times)

    def run_after(self, method: str, hook: Callable[[], None]) -> None:
        """Run ``hook`` once, right after the next successful call of ``method``."""
        assert method in self._FAULTY, method
        self._hooks[method] = hook

    def _check(self, method: str) -> None:
        index = self.calls.get(method, 0)
        self.calls[method] = index + 1
        plan = self._plans.get(method)
        if plan is None:
            return
        first, times = plan
        if first <= index < first + times:
            raise StoreFailure(f"injected failure in {method}")

    def _call(self, method: str, *args):
        self._check(method)
        result = getattr(super(), method)(*args)
        hook = self._hooks.pop(method, None)
        if hook is not None:
            hook()
        return result

    def rekey_participants(self, old_code: str, new_code: str) -> int:
        return self._call("rekey_participants", old_code, new_code)

    def rekey_answers(self, old_code: str, new_code: str) -> int:
        return self._call("rekey_answers", old_code, new_code)

    def rekey_session(self, old_code: str, new_code: str) -> bool:
        return self._call("rekey_session", old_code, new_code)

    def clear_participants(self, code: str) -> int:
        return self._call("clear_participants", code)

    def save_rotation(self, journal) -> bool:
        return self._call("save_rotation", journal)

    def update_session(self, session):
        return self._call("update_session", session)

    def get_session(self, code: str):
        return self._call("get_session", code)



@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(params=["memory", "sqlite"])
def store(request) -> SessionStore:
    """Every store implementation the core must behave identically on."""
    if request.param == "memory":
        backend: SessionStore = InMemorySessionStore()
    else:
        backend = SqlSessionStore.from_url("sqlite://")
    yield backend
    backend.close()


@pytest.fixture
def manager(store: SessionStore, clock: FakeClock) -> WorkshopManager:
    return WorkshopManager(store, clock=clock)


@pytest.fixture
def flaky_store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def flaky_manager(flaky_store: FlakyStore, clock: FakeClock) -> WorkshopManager:
    return WorkshopManager(flaky_store, clock=clock)
