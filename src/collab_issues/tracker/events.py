"""Server-to-client events.

Each event is a `type` tag plus a payload complete enough for a client to
update its local view without asking the server again.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from collab_issues.tracker.models import Comment, Issue
from collab_issues.tracker.store import StatusChange


class EventType(str, Enum):
    ALL_ISSUES = "issues:all"
    ISSUE_CREATED = "issue:created"
    STATUS_UPDATED = "issue:statusUpdated"
    COMMENT_ADDED = "issue:commentAdded"
    ISSUE_DELETED = "issue:deleted"
    USER_JOINED = "user:joined"
    USER_LEFT = "user:left"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class TrackerEvent:
    type: EventType
    payload: dict[str, object] | list[object] = field(default_factory=dict)

    def to_message(self) -> dict[str, object]:
        return {"type": self.type.value, "data": self.payload}


def all_issues(issues: Sequence[Issue]) -> TrackerEvent:
    # Clients list newest first; the store keeps creation order.
    return TrackerEvent(EventType.ALL_ISSUES, [issue.to_json() for issue in reversed(issues)])


def issue_created(issue: Issue) -> TrackerEvent:
    return TrackerEvent(EventType.ISSUE_CREATED, issue.to_json())


def status_updated(change: StatusChange) -> TrackerEvent:
    updated_at = change.issue.updated_at
    return TrackerEvent(
        EventType.STATUS_UPDATED,
        {
            "issueId": change.issue.id,
            "status": change.issue.status.value,
            "updatedBy": change.updated_by,
            "timestamp": updated_at.isoformat() if updated_at else None,
        },
    )


def comment_added(issue_id: str, comment: Comment) -> TrackerEvent:
    return TrackerEvent(EventType.COMMENT_ADDED, {"issueId": issue_id, "comment": comment.to_json()})


def issue_deleted(issue_id: str) -> TrackerEvent:
    return TrackerEvent(EventType.ISSUE_DELETED, {"issueId": issue_id})


def user_joined(username: str, at: datetime) -> TrackerEvent:
    return TrackerEvent(EventType.USER_JOINED, {"username": username, "timestamp": at.isoformat()})


def user_left(username: str, at: datetime) -> TrackerEvent:
    return TrackerEvent(EventType.USER_LEFT, {"username": username, "timestamp": at.isoformat()})


def error_notice(message: str) -> TrackerEvent:
    return TrackerEvent(EventType.ERROR, {"message": message})
