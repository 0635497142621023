"""
Session Mailbox: Per-Session Serialized Event Delivery

Every event that can mutate a session (tick, deadline, stop, attempt
outcome, cleanup) is posted to that session's mailbox and applied by a
single consumer task, one event at a time, in arrival order. Two events
for the same session are therefore never processed concurrently, while
different sessions progress independently.

Producers never block: timer callbacks call post() from plain
synchronous code. Callers that need the outcome (stop requests) attach
a reply future to the event.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from cadence.observability.logging import log_context

logger = logging.getLogger(__name__)


class MailboxClosedError(RuntimeError):
    """The event was discarded because the mailbox closed before handling it."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Mailbox for session {session_id} is closed")
        self.session_id = session_id


class EventType(Enum):
    """Kinds of mailbox events."""
    TICK = "tick"
    DEADLINE = "deadline"
    STOP = "stop"
    ATTEMPT_SUCCEEDED = "attempt_succeeded"
    ATTEMPT_FAILED = "attempt_failed"
    CLEANUP = "cleanup"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    """One unit of work for a session's consumer."""
    type: EventType
    session_id: str
    message: Optional[str] = None
    reply: Optional[asyncio.Future[Any]] = None


EventHandler = Callable[[SessionEvent], Awaitable[None]]


class SessionMailbox:
    """
    FIFO of SessionEvents drained by one consumer task.

    Usage:
        mailbox = SessionMailbox(session_id, handle_event)
        mailbox.start()
        mailbox.post(SessionEvent(EventType.TICK, session_id))
        await mailbox.join()      # wait until drained
        mailbox.retire()          # consumer exits after the current event
    """

    __slots__ = ("_session_id", "_handler", "_queue", "_task", "_closed", "_retiring")

    def __init__(self, session_id: str, handler: EventHandler) -> None:
        self._session_id = session_id
        self._handler = handler
        self._queue: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._task: Optional[asyncio.Task[None]] = None
        self._closed = False
        self._retiring = False

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._task is None:
            with log_context(session_id=self._session_id):
                self._task = asyncio.create_task(
                    self._consume(), name=f"session-mailbox:{self._session_id}",
                )

    def post(self, event: SessionEvent) -> bool:
        """
        Enqueue an event without blocking.

        Returns:
            False if the mailbox no longer accepts events
        """
        if self._closed or self._retiring:
            return False
        self._queue.put_nowait(event)
        return True

    def retire(self) -> None:
        """Stop accepting events; the consumer exits once the current event is done."""
        self._retiring = True

    async def join(self) -> None:
        """Wait until every posted event has been handled (or discarded)."""
        await self._queue.join()

    async def close(self) -> None:
        """Cancel the consumer and discard undelivered events."""
        self._closed = True
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._discard_pending()

    async def _consume(self) -> None:
        try:
            while not self._closed:
                event = await self._queue.get()
                try:
                    await self._handler(event)
                except asyncio.CancelledError:
                    if event.reply is not None and not event.reply.done():
                        event.reply.set_exception(MailboxClosedError(self._session_id))
                    raise
                except Exception as exc:
                    logger.exception(
                        "Unhandled error processing %s for session %s",
                        event.type.value, self._session_id,
                    )
                    if event.reply is not None and not event.reply.done():
                        event.reply.set_exception(exc)
                finally:
                    self._queue.task_done()
                if self._retiring:
                    break
        finally:
            self._discard_pending()

    def _discard_pending(self) -> None:
        while True:
            try:
                event = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            if event.reply is not None and not event.reply.done():
                event.reply.set_exception(MailboxClosedError(self._session_id))
            self._queue.task_done()
