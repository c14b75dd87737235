"""Shared test fixtures."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from vigil.scheduler.handlers import HandlerRegistry
from vigil.scheduler.history import HistoryLog
from vigil.scheduler.store import TaskStore

T0 = datetime(2025, 6, 1, 9, 0, tzinfo=UTC)


class FakeClock:
    """Deterministic clock; call it to read the time, ``advance`` to move it."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> datetime:
        self.now = self.now + delta
        return self.now


@pytest.fixture
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("vigil.config.settings.turso_database_url", "")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def store(db_path: Path, _no_turso: None) -> TaskStore:
    """A TaskStore backed by a temp database."""
    return TaskStore(db_path=db_path)


@pytest.fixture
def history(db_path: Path, _no_turso: None) -> HistoryLog:
    return HistoryLog(db_path=db_path, retention=5)


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()
