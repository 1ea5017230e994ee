"""The synchronization engine: client requests in, ordered events out.

The hub is the only caller of the store's mutating operations. It resolves the
requester from the session registry (a connection's declared username is its
capability), applies the mutation under a single lock and publishes the
resulting event before releasing that lock. The publish order therefore equals
the order in which the store accepted the mutations.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from pydantic import ValidationError as ModelValidationError

from collab_issues.config import TrackerSettings
from collab_issues.tracker import events
from collab_issues.tracker.audit import AuditLog
from collab_issues.tracker.broadcaster import Broadcaster, Send
from collab_issues.tracker.errors import (
    GENERIC_FAILURE_NOTICE,
    ForbiddenError,
    NotFoundError,
    PersistenceError,
    TrackerError,
    ValidationError,
)
from collab_issues.tracker.models import Comment, Issue, utc_now
from collab_issues.tracker.persistence import JsonFilePersistence
from collab_issues.tracker.protocol import (
    AddComment,
    CreateIssue,
    DeleteIssue,
    JoinRequest,
    UpdateStatus,
    parse_client_message,
)
from collab_issues.tracker.sessions import AlreadyActive, SessionJoined, SessionRegistry
from collab_issues.tracker.store import IssueStore, StatusChange

logger = logging.getLogger(__name__)

JOIN_REQUIRED_NOTICE = "Join with a username before making changes"

R = TypeVar("R")


class TrackerHub:
    def __init__(
        self,
        registry: SessionRegistry,
        store: IssueStore,
        broadcaster: Broadcaster,
        *,
        audit: AuditLog | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.registry = registry
        self.store = store
        self.broadcaster = broadcaster
        self.audit = audit
        self._clock = clock
        self._mutations = asyncio.Lock()

    # -- connection lifecycle ------------------------------------------------

    def connect(self, connection_id: str, send: Send) -> None:
        self.broadcaster.subscribe(connection_id, send)

    async def disconnect(self, connection_id: str) -> None:
        """Tear down a connection. Leaving is terminal for that connection id."""
        async with self._mutations:
            await self.broadcaster.unsubscribe(connection_id)
            left = self.registry.leave(connection_id)
            if left is not None:
                self.broadcaster.publish(events.user_left(left.session.username, self._clock()))

    async def join(self, connection_id: str, username: str) -> SessionJoined | AlreadyActive:
        async with self._mutations:
            outcome = await asyncio.to_thread(self.registry.join, connection_id, username)
            session = outcome.session
            if outcome.first_seen and self.audit is not None:
                await asyncio.to_thread(
                    self.audit.append,
                    actor=session.username,
                    action="join",
                    subject=session.username,
                    message=f"User joined: {session.username}",
                )

            self.broadcaster.send_to(connection_id, events.all_issues(self.store.snapshot()))
            if isinstance(outcome, SessionJoined) or outcome.renamed:
                self.broadcaster.publish(events.user_joined(session.username, self._clock()))
            return outcome

    # -- client operations ---------------------------------------------------

    async def create_issue(self, connection_id: str, title: str, description: str) -> Issue:
        requester = self._requester(connection_id)
        issue = await self._commit(
            self.store.create, (title, description, requester), events.issue_created
        )
        logger.info("Issue created", extra={"issue_id": issue.id, "username": requester})
        return issue

    async def update_status(self, connection_id: str, issue_id: str, status: str) -> StatusChange:
        requester = self._requester(connection_id)
        change = await self._commit(
            self.store.update_status, (issue_id, status, requester), events.status_updated
        )
        logger.info(
            "Issue status updated",
            extra={"issue_id": issue_id, "status": change.issue.status.value, "username": requester},
        )
        return change

    async def add_comment(self, connection_id: str, issue_id: str, text: str) -> Comment:
        requester = self._requester(connection_id)
        added = await self._commit(
            self.store.add_comment,
            (issue_id, text, requester),
            lambda a: events.comment_added(a.issue_id, a.comment),
        )
        logger.info("Comment added", extra={"issue_id": issue_id, "username": requester})
        return added.comment

    async def delete_issue(self, connection_id: str, issue_id: str) -> bool:
        """Returns False when the issue did not exist (nothing is broadcast)."""
        requester = self._requester(connection_id)
        deleted = await self._commit(
            self.store.delete, (issue_id, requester), lambda d: events.issue_deleted(d.issue.id)
        )
        if deleted is None:
            return False
        logger.info("Issue deleted", extra={"issue_id": issue_id, "username": requester})
        return True

    def snapshot(self) -> list[Issue]:
        return self.store.snapshot()

    async def _commit(
        self,
        operation: Callable[..., R],
        args: tuple[Any, ...],
        to_event: Callable[[R], events.TrackerEvent],
    ) -> R:
        # A started mutation runs to completion (persist, audit, publish) even if
        # the requesting task is cancelled.
        return await asyncio.shield(self._apply(operation, args, to_event))

    async def _apply(
        self,
        operation: Callable[..., R],
        args: tuple[Any, ...],
        to_event: Callable[[R], events.TrackerEvent],
    ) -> R:
        async with self._mutations:
            result = await asyncio.to_thread(operation, *args)
            if result is not None:
                self.broadcaster.publish(to_event(result))
            return result

    # -- inbound messages ----------------------------------------------------

    async def dispatch(self, connection_id: str, message: Any) -> None:
        """Handle one raw inbound message.

        Never raises for bad input: a rejected request is answered with an
        error event to the requester only.
        """
        try:
            request = parse_client_message(message)
            if isinstance(request, JoinRequest):
                await self.join(connection_id, request.data)
            elif isinstance(request, CreateIssue):
                await self.create_issue(connection_id, request.data.title, request.data.description)
            elif isinstance(request, UpdateStatus):
                await self.update_status(connection_id, request.data.issue_id, request.data.status)
            elif isinstance(request, AddComment):
                await self.add_comment(connection_id, request.data.issue_id, request.data.text)
            elif isinstance(request, DeleteIssue):
                await self.delete_issue(connection_id, request.data)
        except ModelValidationError as e:
            self._reject(connection_id, ValidationError(f"Malformed request: {_first_error(e)}"))
        except PersistenceError as e:
            logger.exception(
                "Mutation rejected: persistence failed",
                extra={"connection_id": connection_id, "detail": e.detail},
            )
            self._reject(connection_id, e)
        except TrackerError as e:
            self._reject(connection_id, e)
        except Exception:
            logger.exception("Unexpected error handling request", extra={"connection_id": connection_id})
            self.broadcaster.send_to(connection_id, events.error_notice(GENERIC_FAILURE_NOTICE))

    def _requester(self, connection_id: str) -> str:
        username = self.registry.username_for(connection_id)
        if username is None:
            raise ForbiddenError(JOIN_REQUIRED_NOTICE)
        return username

    def _reject(self, connection_id: str, error: TrackerError) -> None:
        level = logging.INFO if isinstance(error, NotFoundError | ValidationError) else logging.WARNING
        logger.log(
            level,
            "Request rejected: %s",
            error.notice,
            extra={"connection_id": connection_id, "error": type(error).__name__},
        )
        self.broadcaster.send_to(connection_id, events.error_notice(error.notice))


def _first_error(exc: ModelValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid payload"
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    return f"{loc}: {first.get('msg', 'invalid')}" if loc else str(first.get("msg", "invalid"))


def build_hub(settings: TrackerSettings) -> TrackerHub:
    """Wire a hub from settings, creating empty data files if needed."""
    persistence = JsonFilePersistence(settings.issues_file, settings.users_file)
    persistence.initialize()
    audit = AuditLog(
        settings.audit_file,
        git_commit=settings.audit_git_commit,
        tracked_files=(settings.issues_file, settings.users_file),
    )
    return TrackerHub(
        SessionRegistry(persistence),
        IssueStore(persistence, audit),
        Broadcaster(max_pending=settings.max_pending_events),
        audit=audit,
    )
