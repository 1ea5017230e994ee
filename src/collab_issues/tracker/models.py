"""Domain models shared by the store, the persistence adapter and the wire protocol.

Python attributes are snake_case; the JSON form (files and wire) keeps the
camelCase names browser clients already understand.
"""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class IssueStatus(str, Enum):
    OPEN = "open"
    ON_GOING = "on-going"
    CLOSED = "closed"

    @classmethod
    def values(cls) -> list[str]:
        return [s.value for s in cls]


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class Comment(_WireModel):
    """A comment on an issue. Never edited once appended."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    author: str
    text: str
    created_at: datetime = Field(alias="createdAt")


class Issue(_WireModel):
    id: str
    title: str
    description: str
    status: IssueStatus = IssueStatus.OPEN
    creator: str
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    comments: list[Comment] = Field(default_factory=list)


class UserRecord(_WireModel):
    """Roster entry written the first time a username joins."""

    username: str
    connection_id: str = Field(alias="socketId")
    joined_at: datetime = Field(alias="joinedAt")


class IdGenerator:
    """Epoch-millisecond string ids, strictly increasing within a process.

    Two ids requested in the same millisecond get consecutive values instead of
    colliding, so ids still sort by creation order.
    """

    def __init__(self, floor: int = 0) -> None:
        self._last = floor
        self._lock = threading.Lock()

    def observe(self, existing_id: str) -> None:
        """Make sure future ids sort after an id loaded from disk."""
        try:
            value = int(existing_id)
        except ValueError:
            return
        with self._lock:
            self._last = max(self._last, value)

    def next_id(self) -> str:
        with self._lock:
            now = time.time_ns() // 1_000_000
            self._last = now if now > self._last else self._last + 1
            return str(self._last)
