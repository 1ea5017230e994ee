"""Errors raised by the tracker engine.

Every error carries a `notice`: the text sent back to the client whose request
was rejected. Other connections never see it.
"""

from __future__ import annotations

GENERIC_FAILURE_NOTICE = "The change could not be saved; please try again"


class TrackerError(Exception):
    """Base class for rejected client requests."""

    def __init__(self, notice: str) -> None:
        super().__init__(notice)
        self.notice = notice


class ValidationError(TrackerError):
    """Malformed input: empty required field, unknown status, bad message shape."""


class ForbiddenError(TrackerError):
    """The requester is not allowed to perform the operation."""


class NotFoundError(TrackerError):
    """The referenced issue does not exist (possibly deleted concurrently)."""

    def __init__(self, issue_id: str) -> None:
        super().__init__(f"Issue not found: {issue_id}")
        self.issue_id = issue_id


class PersistenceError(TrackerError):
    """The persistence adapter could not complete a write.

    The detailed cause stays in the server log; the client only gets the
    generic notice.
    """

    def __init__(self, detail: str) -> None:
        super().__init__(GENERIC_FAILURE_NOTICE)
        self.detail = detail

    def __str__(self) -> str:
        return self.detail
