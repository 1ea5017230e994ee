"""Registry of live connections and the usernames they declared."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime

from collab_issues.tracker.errors import PersistenceError, ValidationError
from collab_issues.tracker.models import UserRecord, utc_now
from collab_issues.tracker.persistence import JsonFilePersistence

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Session:
    connection_id: str
    username: str
    joined_at: datetime


@dataclass(frozen=True, slots=True)
class SessionJoined:
    """A connection joined for the first time.

    `first_seen` is true when the username had never joined before and was
    added to the persistent roster.
    """

    session: Session
    first_seen: bool = False


@dataclass(frozen=True, slots=True)
class AlreadyActive:
    """The connection had already joined; its username was replaced."""

    session: Session
    previous_username: str
    first_seen: bool = False

    @property
    def renamed(self) -> bool:
        return self.previous_username != self.session.username


@dataclass(frozen=True, slots=True)
class SessionLeft:
    session: Session


class SessionRegistry:
    """Tracks each live connection's declared username.

    When a persistence adapter is given, usernames are also remembered in the
    user roster the first time they are seen. Roster write failures are logged
    and never block a join.
    """

    def __init__(self, persistence: JsonFilePersistence | None = None) -> None:
        self._persistence = persistence
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._known: set[str] | None = None

    def join(self, connection_id: str, username: str) -> SessionJoined | AlreadyActive:
        name = (username or "").strip()
        if not name:
            raise ValidationError("A username is required to join")

        with self._lock:
            now = utc_now()
            existing = self._sessions.get(connection_id)
            if existing is not None:
                session = replace(existing, username=name)
                self._sessions[connection_id] = session
                first_seen = self._remember(session)
                return AlreadyActive(
                    session=session, previous_username=existing.username, first_seen=first_seen
                )

            session = Session(connection_id=connection_id, username=name, joined_at=now)
            self._sessions[connection_id] = session
            first_seen = self._remember(session)

        logger.info(
            "Session joined",
            extra={"connection_id": connection_id, "username": name, "first_seen": first_seen},
        )
        return SessionJoined(session=session, first_seen=first_seen)

    def leave(self, connection_id: str) -> SessionLeft | None:
        """Forget a connection. Returns None if it never joined."""
        with self._lock:
            session = self._sessions.pop(connection_id, None)
        if session is None:
            return None
        logger.info(
            "Session left", extra={"connection_id": connection_id, "username": session.username}
        )
        return SessionLeft(session=session)

    def get(self, connection_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(connection_id)

    def username_for(self, connection_id: str) -> str | None:
        session = self.get(connection_id)
        return session.username if session is not None else None

    def active(self) -> list[Session]:
        """Point-in-time copy of the joined sessions, in join order."""
        with self._lock:
            return list(self._sessions.values())

    def roster(self) -> list[UserRecord]:
        if self._persistence is None:
            return []
        return self._persistence.load_users()

    def _remember(self, session: Session) -> bool:
        """Add the username to the persistent roster. Returns True if it was new."""
        if self._persistence is None:
            return False
        if self._known is None:
            self._known = {u.username for u in self._persistence.load_users()}
        if session.username in self._known:
            return False

        users = self._persistence.load_users()
        users.append(
            UserRecord(
                username=session.username,
                connection_id=session.connection_id,
                joined_at=session.joined_at,
            )
        )
        try:
            self._persistence.save_users(users)
        except PersistenceError:
            logger.exception("Failed to persist user roster", extra={"username": session.username})
            return False
        self._known.add(session.username)
        return True
