"""Fan-out of tracker events to connected clients.

Every subscriber owns an outbound queue drained by its own sender task.
Publishing only enqueues, so it never waits on a slow client and the order in
which events are published is the order every client receives them. A client
that falls `max_pending` events behind is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from collab_issues.tracker.events import TrackerEvent

logger = logging.getLogger(__name__)

Send = Callable[[dict[str, object]], Awaitable[None]]

DEFAULT_MAX_PENDING = 1000


class Subscriber:
    """One connection's outbound side."""

    def __init__(
        self,
        connection_id: str,
        send: Send,
        on_failure: Callable[[str], None],
        *,
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        self.connection_id = connection_id
        self._send = send
        self._on_failure = on_failure
        self._queue: asyncio.Queue[TrackerEvent] = asyncio.Queue(maxsize=max_pending)
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(
                self._run(), name=f"subscriber-{self.connection_id}"
            )

    def enqueue(self, event: TrackerEvent) -> bool:
        """Queue an event. Returns False (and drops the subscriber) when it is too far behind."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Client too slow; dropping subscriber",
                extra={"connection_id": self.connection_id, "pending": self._queue.qsize()},
            )
            if self._task is not None:
                self._task.cancel()
                self._task = None
            self._discard_pending()
            self._on_failure(self.connection_id)
            return False
        return True

    async def drain(self) -> None:
        """Wait until everything enqueued so far has been handed to `send`."""
        await self._queue.join()

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        if task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._send(event.to_message())
            except asyncio.CancelledError:
                raise
            except Exception:
                # Best effort: a connection that can't be written to is dropped.
                logger.debug(
                    "Send failed; dropping subscriber",
                    exc_info=True,
                    extra={"connection_id": self.connection_id},
                )
                self._queue.task_done()
                self._discard_pending()
                self._on_failure(self.connection_id)
                return
            self._queue.task_done()

    def _discard_pending(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()


class Broadcaster:
    """Delivers events to every subscriber, or to a single one."""

    def __init__(self, *, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self.max_pending = max_pending
        self._subscribers: dict[str, Subscriber] = {}

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._subscribers

    def subscribe(self, connection_id: str, send: Send) -> Subscriber:
        if connection_id in self._subscribers:
            raise ValueError(f"Connection already subscribed: {connection_id}")
        subscriber = Subscriber(connection_id, send, self._drop, max_pending=self.max_pending)
        self._subscribers[connection_id] = subscriber
        subscriber.start()
        logger.info(
            "Client subscribed (%d total)",
            len(self._subscribers),
            extra={"connection_id": connection_id},
        )
        return subscriber

    async def unsubscribe(self, connection_id: str) -> None:
        subscriber = self._subscribers.pop(connection_id, None)
        if subscriber is None:
            return
        await subscriber.stop()
        logger.info(
            "Client unsubscribed (%d total)",
            len(self._subscribers),
            extra={"connection_id": connection_id},
        )

    def publish(self, event: TrackerEvent) -> int:
        """Enqueue an event for every current subscriber. Returns the recipient count."""
        # Copy first: a subscriber may be dropped while we iterate.
        targets = list(self._subscribers.values())
        return sum(1 for subscriber in targets if subscriber.enqueue(event))

    def send_to(self, connection_id: str, event: TrackerEvent) -> bool:
        subscriber = self._subscribers.get(connection_id)
        if subscriber is None:
            return False
        return subscriber.enqueue(event)

    async def flush(self) -> None:
        """Wait until all queued events have been delivered (or dropped)."""
        for subscriber in list(self._subscribers.values()):
            await subscriber.drain()

    async def close(self) -> None:
        for connection_id in list(self._subscribers):
            await self.unsubscribe(connection_id)

    def _drop(self, connection_id: str) -> None:
        subscriber = self._subscribers.pop(connection_id, None)
        if subscriber is not None:
            logger.info(
                "Dropped unreachable client (%d total)",
                len(self._subscribers),
                extra={"connection_id": connection_id},
            )
