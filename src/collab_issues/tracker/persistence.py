"""JSON-file persistence for the issue collection and the user roster.

The whole collection is rewritten on every save. Writes land in a temp file
next to the target and are moved into place with `os.replace`, so a concurrent
reader sees either the previous or the new file, never a partial one.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from collab_issues.tracker.errors import PersistenceError
from collab_issues.tracker.models import Issue, UserRecord

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _atomic_write_json(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    os.replace(tmp, path)


def _load_wrapped_list(path: Path, key: str) -> list[dict[str, object]]:
    """Read `{"<key>": [...]}`; anything unreadable is treated as empty."""
    if not path.exists():
        return []
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except OSError:
        logger.exception("State file could not be read; treating as empty", extra={"path": str(path)})
        return []
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("State file is not valid JSON; treating as empty", extra={"path": str(path)})
        return []

    items = raw.get(key) if isinstance(raw, dict) else None
    if not isinstance(items, list):
        logger.warning(
            "State file has unexpected shape; treating as empty", extra={"path": str(path)}
        )
        return []
    return [item for item in items if isinstance(item, dict)]


def _validate_all(model: type[M], items: list[dict[str, object]], path: Path) -> list[M]:
    out: list[M] = []
    for item in items:
        try:
            out.append(model.model_validate(item))
        except ModelValidationError:
            logger.warning(
                "Skipping unreadable record", extra={"path": str(path), "record": item}
            )
    return out


class JsonFilePersistence:
    """Durable read/write of full snapshots of issues and users."""

    def __init__(self, issues_file: Path, users_file: Path) -> None:
        self.issues_file = issues_file
        self.users_file = users_file
        self._lock = threading.Lock()

    def initialize(self) -> None:
        """Create empty, valid data files when they don't exist yet."""
        with self._lock:
            if not self.issues_file.exists():
                self._write(self.issues_file, {"issues": []})
            if not self.users_file.exists():
                self._write(self.users_file, {"users": []})

    def load_all(self) -> list[Issue]:
        with self._lock:
            items = _load_wrapped_list(self.issues_file, "issues")
        return _validate_all(Issue, items, self.issues_file)

    def save_all(self, issues: Sequence[Issue]) -> None:
        payload = {"issues": [issue.to_json() for issue in issues]}
        with self._lock:
            self._write(self.issues_file, payload)

    def load_users(self) -> list[UserRecord]:
        with self._lock:
            items = _load_wrapped_list(self.users_file, "users")
        return _validate_all(UserRecord, items, self.users_file)

    def save_users(self, users: Sequence[UserRecord]) -> None:
        payload = {"users": [user.to_json() for user in users]}
        with self._lock:
            self._write(self.users_file, payload)

    @staticmethod
    def _write(path: Path, payload: object) -> None:
        try:
            _atomic_write_json(path, payload)
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {e}") from e
