"""The shared issue collection and its ownership rules.

All mutations are serialized by one lock and follow the same commit order:

1. validate against the current collection
2. build the next collection and persist it in full
3. swap it in (only after the write succeeded)
4. append the audit record

If step 2 fails the mutation never happened: nothing changes in memory and a
`PersistenceError` is raised. A failed audit append (step 4) is logged by the
audit log and does not undo the mutation.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from collab_issues.tracker.audit import AuditLog
from collab_issues.tracker.errors import ForbiddenError, NotFoundError, ValidationError
from collab_issues.tracker.models import Comment, IdGenerator, Issue, IssueStatus, utc_now
from collab_issues.tracker.persistence import JsonFilePersistence

logger = logging.getLogger(__name__)

STATUS_FORBIDDEN_NOTICE = "Only the issue creator can update the status"
DELETE_FORBIDDEN_NOTICE = "Only the issue creator can delete the issue"


@dataclass(frozen=True, slots=True)
class StatusChange:
    issue: Issue
    previous: IssueStatus
    updated_by: str


@dataclass(frozen=True, slots=True)
class CommentAdded:
    issue_id: str
    comment: Comment


@dataclass(frozen=True, slots=True)
class IssueDeleted:
    issue: Issue
    deleted_by: str


def _require_text(value: str | None, field: str) -> str:
    text = value if isinstance(value, str) else ""
    if not text.strip():
        raise ValidationError(f"{field} must not be empty")
    return text


def _parse_status(value: str | IssueStatus | None) -> IssueStatus:
    try:
        return IssueStatus(value)
    except ValueError:
        allowed = ", ".join(IssueStatus.values())
        raise ValidationError(f"Invalid status {value!r}; expected one of: {allowed}") from None


class IssueStore:
    """Owns the issue collection. All access goes through these operations."""

    def __init__(
        self,
        persistence: JsonFilePersistence,
        audit: AuditLog | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        ids: IdGenerator | None = None,
    ) -> None:
        self._persistence = persistence
        self._audit = audit
        self._clock = clock
        self._ids = ids or IdGenerator()
        self._lock = threading.Lock()

        self._issues: list[Issue] = persistence.load_all()
        for issue in self._issues:
            self._ids.observe(issue.id)
            for comment in issue.comments:
                self._ids.observe(comment.id)
        logger.info("Issue store loaded", extra={"issues": len(self._issues)})

    # -- reads ---------------------------------------------------------------

    def snapshot(self) -> list[Issue]:
        """Full collection in creation order (oldest first), as copies."""
        with self._lock:
            return [issue.model_copy(deep=True) for issue in self._issues]

    def get(self, issue_id: str) -> Issue:
        with self._lock:
            _, issue = self._find_unlocked(issue_id)
            return issue.model_copy(deep=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._issues)

    # -- mutations -----------------------------------------------------------

    def create(self, title: str, description: str, creator: str) -> Issue:
        title = _require_text(title, "Title")
        description = _require_text(description, "Description")
        creator = _require_text(creator, "Creator")

        with self._lock:
            issue = Issue(
                id=self._ids.next_id(),
                title=title,
                description=description,
                status=IssueStatus.OPEN,
                creator=creator,
                created_at=self._clock(),
                comments=[],
            )
            self._commit_unlocked([*self._issues, issue])
            self._record(creator, "create", issue.id, f"Issue created: {issue.title} by {creator}")
            return issue.model_copy(deep=True)

    def update_status(
        self, issue_id: str, new_status: str | IssueStatus, requester: str
    ) -> StatusChange:
        with self._lock:
            idx, issue = self._find_unlocked(issue_id)
            if requester != issue.creator:
                raise ForbiddenError(STATUS_FORBIDDEN_NOTICE)
            status = _parse_status(new_status)

            updated = issue.model_copy(update={"status": status, "updated_at": self._clock()})
            issues = list(self._issues)
            issues[idx] = updated
            self._commit_unlocked(issues)
            self._record(
                requester,
                "update_status",
                issue.id,
                f"Issue status updated: {issue.title} from {issue.status.value} "
                f"to {status.value} by {requester}",
            )
            return StatusChange(
                issue=updated.model_copy(deep=True), previous=issue.status, updated_by=requester
            )

    def add_comment(self, issue_id: str, text: str, author: str) -> CommentAdded:
        text = _require_text(text, "Comment text")

        with self._lock:
            idx, issue = self._find_unlocked(issue_id)
            comment = Comment(
                id=self._ids.next_id(), author=author, text=text, created_at=self._clock()
            )
            issues = list(self._issues)
            issues[idx] = issue.model_copy(update={"comments": [*issue.comments, comment]})
            self._commit_unlocked(issues)
            self._record(
                author, "add_comment", issue.id, f"Comment added to issue: {issue.title} by {author}"
            )
            return CommentAdded(issue_id=issue.id, comment=comment)

    def delete(self, issue_id: str, requester: str) -> IssueDeleted | None:
        """Remove an issue permanently. Unknown ids are a no-op (returns None)."""
        with self._lock:
            try:
                idx, issue = self._find_unlocked(issue_id)
            except NotFoundError:
                logger.debug("Delete of unknown issue ignored", extra={"issue_id": issue_id})
                return None
            if requester != issue.creator:
                raise ForbiddenError(DELETE_FORBIDDEN_NOTICE)

            self._commit_unlocked(self._issues[:idx] + self._issues[idx + 1 :])
            self._record(requester, "delete", issue.id, f"Issue deleted: {issue.title} by {requester}")
            return IssueDeleted(issue=issue, deleted_by=requester)

    # -- internals -----------------------------------------------------------

    def _find_unlocked(self, issue_id: str) -> tuple[int, Issue]:
        for idx, issue in enumerate(self._issues):
            if issue.id == issue_id:
                return idx, issue
        raise NotFoundError(issue_id)

    def _commit_unlocked(self, issues: list[Issue]) -> None:
        # Raises PersistenceError; in-memory state is only replaced after a good write.
        self._persistence.save_all(issues)
        self._issues = issues

    def _record(self, actor: str, action: str, subject: str, message: str) -> None:
        if self._audit is None:
            logger.info(message)
            return
        self._audit.append(actor=actor, action=action, subject=subject, message=message)
