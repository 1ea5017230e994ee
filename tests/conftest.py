"""Test configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from collab_issues.config import TrackerSettings
from collab_issues.tracker.audit import AuditLog
from collab_issues.tracker.broadcaster import Broadcaster
from collab_issues.tracker.hub import TrackerHub
from collab_issues.tracker.persistence import JsonFilePersistence
from collab_issues.tracker.sessions import SessionRegistry
from collab_issues.tracker.store import IssueStore


class FakeClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(seconds=1)
        return current


class Recorder:
    """Stand-in for a WebSocket's `send_json`."""

    def __init__(self) -> None:
        self.messages: list[dict[str, object]] = []

    async def __call__(self, message: dict[str, object]) -> None:
        self.messages.append(message)

    def types(self) -> list[str]:
        return [str(m["type"]) for m in self.messages]

    def of_type(self, event_type: str) -> list[dict[str, object]]:
        return [m for m in self.messages if m["type"] == event_type]


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Provide a temporary data directory."""
    return tmp_path / "data"


@pytest.fixture
def settings(data_dir: Path, tmp_path: Path) -> TrackerSettings:
    return TrackerSettings(
        TRACKER_DATA_DIR=data_dir,
        TRACKER_STATIC_DIR=tmp_path / "public",
        _env_file=None,
    )


@pytest.fixture
def persistence(data_dir: Path) -> JsonFilePersistence:
    p = JsonFilePersistence(data_dir / "issues.json", data_dir / "users.json")
    p.initialize()
    return p


@pytest.fixture
def audit(data_dir: Path) -> AuditLog:
    return AuditLog(data_dir / "audit.jsonl")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(persistence: JsonFilePersistence, audit: AuditLog, clock: FakeClock) -> IssueStore:
    return IssueStore(persistence, audit, clock=clock)


@pytest.fixture
def make_hub(persistence: JsonFilePersistence, store: IssueStore, audit: AuditLog, clock: FakeClock):
    """Build a hub inside the running event loop of the test."""

    def _make() -> TrackerHub:
        return TrackerHub(
            SessionRegistry(persistence), store, Broadcaster(), audit=audit, clock=clock
        )

    return _make


@pytest.fixture
def make_recorder():
    return Recorder
