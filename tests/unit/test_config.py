"""Unit tests for configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from collab_issues.config import TrackerSettings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("TRACKER_DATA_DIR", "TRACKER_PORT", "LOG_LEVEL", "TRACKER_AUDIT_GIT_COMMIT"):
        monkeypatch.delenv(name, raising=False)

    settings = TrackerSettings(_env_file=None)

    assert settings.data_dir == Path("data")
    assert settings.port == 3000
    assert settings.log_level == "INFO"
    assert settings.audit_git_commit is False
    assert settings.issues_file == Path("data/issues.json")
    assert settings.users_file == Path("data/users.json")
    assert settings.audit_file == Path("data/audit.jsonl")


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("TRACKER_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("TRACKER_PORT", "8123")
    monkeypatch.setenv("TRACKER_AUDIT_GIT_COMMIT", "true")
    monkeypatch.setenv("TRACKER_CORS_ORIGINS", "http://a.example, ,http://b.example")

    settings = TrackerSettings(_env_file=None)

    assert settings.issues_file == tmp_path / "issues.json"
    assert settings.port == 8123
    assert settings.audit_git_commit is True
    assert settings.parsed_cors_origins() == ["http://a.example", "http://b.example"]


def test_env_file_is_read(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    env = tmp_path / ".env"
    env.write_text("LOG_LEVEL=DEBUG\n", encoding="utf-8")

    assert TrackerSettings(_env_file=env).log_level == "DEBUG"


def test_invalid_port_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRACKER_PORT", "70000")

    with pytest.raises(ValidationError):
        TrackerSettings(_env_file=None)


def test_max_pending_events_must_be_positive(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRACKER_MAX_PENDING_EVENTS", "0")

    with pytest.raises(ValidationError):
        TrackerSettings(_env_file=None)

    monkeypatch.setenv("TRACKER_MAX_PENDING_EVENTS", "50")
    assert TrackerSettings(_env_file=None).max_pending_events == 50
