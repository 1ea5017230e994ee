"""Append-only audit history of accepted changes.

Each accepted mutation becomes one JSON line in `audit.jsonl`. Optionally the
data files are also committed to git with the same message, so the repository
history doubles as the audit trail.

The audit trail is observability, not a correctness dependency: `append` logs
failures and never raises.
"""

from __future__ import annotations

import json
import logging
import subprocess
import threading
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel

from collab_issues.tracker.models import utc_now

logger = logging.getLogger(__name__)


class AuditEntry(BaseModel):
    seq: int
    timestamp: datetime
    actor: str
    action: str
    subject: str
    message: str


class AuditLog:
    def __init__(
        self,
        path: Path,
        *,
        git_commit: bool = False,
        tracked_files: Sequence[Path] = (),
    ) -> None:
        """Initialize the audit log.

        Args:
            path: JSONL file the entries are appended to.
            git_commit: Also commit `tracked_files` (and the log) to git per entry.
            tracked_files: Data files staged alongside each commit.
        """
        self.path = path
        self.git_commit = git_commit
        self.tracked_files = list(tracked_files)
        self._lock = threading.Lock()
        self._seq: int | None = None

    def append(self, *, actor: str, action: str, subject: str, message: str) -> AuditEntry | None:
        """Append one entry. Returns None when the entry could not be written."""
        with self._lock:
            try:
                entry = AuditEntry(
                    seq=self._next_seq(),
                    timestamp=utc_now(),
                    actor=actor,
                    action=action,
                    subject=subject,
                    message=message,
                )
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(entry.model_dump_json() + "\n")
            except Exception:
                logger.exception(
                    "Failed to append audit entry", extra={"path": str(self.path), "msg_text": message}
                )
                return None

            self._seq = entry.seq
            logger.info("Audit: %s", message, extra={"seq": entry.seq, "action": action})

            if self.git_commit:
                try:
                    self._commit(message)
                except Exception:
                    logger.exception("Git commit for audit entry failed", extra={"msg_text": message})
            return entry

    def entries(self, limit: int | None = None) -> list[AuditEntry]:
        """Read the history back, oldest first. `limit` keeps the most recent N."""
        with self._lock:
            entries = self._read_unlocked()
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

    def _read_unlocked(self) -> list[AuditEntry]:
        if not self.path.exists():
            return []
        entries: list[AuditEntry] = []
        for raw in self.path.read_bytes().splitlines():
            if not raw.strip():
                continue
            try:
                entries.append(AuditEntry.model_validate_json(raw.decode("utf-8")))
            except ValueError:
                # Covers UnicodeDecodeError and pydantic validation errors.
                logger.warning("Skipping corrupt audit line", extra={"path": str(self.path)})
        return entries

    def _next_seq(self) -> int:
        if self._seq is None:
            # Continue numbering across restarts.
            existing = self._read_unlocked()
            self._seq = existing[-1].seq if existing else 0
        return self._seq + 1

    def _commit(self, message: str) -> None:
        """Commit the data files to git (if the data dir is in a git repository)."""
        cwd = self.path.parent
        try:
            result = subprocess.run(
                ["git", "rev-parse", "--git-dir"],
                cwd=cwd,
                capture_output=True,
                text=True,
            )
            if result.returncode != 0:
                logger.debug("Not in a git repository, skipping audit commit")
                return

            files = [str(p) for p in [*self.tracked_files, self.path] if p.exists()]
            subprocess.run(["git", "add", "--", *files], cwd=cwd, check=True, capture_output=True)
            subprocess.run(
                ["git", "commit", "-m", message, "--", *files],
                cwd=cwd,
                check=True,
                capture_output=True,
            )
            logger.debug("Audit entry committed to git", extra={"msg_text": message})

        except subprocess.CalledProcessError as e:
            logger.warning("Git commit for audit entry failed: %s", e)
        except OSError:
            logger.exception("git is not available; disabling audit commits")
            self.git_commit = False
