"""
Deferred Cleanup: Grace-Period Removal of Terminal Sessions

A session that enters a terminal state stays queryable for the grace
period, then is removed from the indexes and the primary store (the
store unlinks indexes first, under one lock).

The timer does not remove anything itself: on fire it hands the id to
`deliver`, which the scheduler wires to the session's mailbox, so the
removal is serialized with every other event of that session.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from cadence.engine.timers import TimerKind, TimerRegistry
from cadence.observability.metrics import EngineMetrics
from cadence.session.store import IndexedSessionStore

logger = logging.getLogger(__name__)


class DeferredCleanup:
    """
    Arms and executes the per-session CLEANUP timer.

    Usage:
        cleanup = DeferredCleanup(store, timers, 3600, deliver=post_cleanup)
        cleanup.schedule(session_id)     # on terminal transition
        cleanup.purge_now(session_id)    # from the CLEANUP event handler
    """

    __slots__ = ("_store", "_timers", "_grace_seconds", "_deliver", "_metrics")

    def __init__(
        self,
        store: IndexedSessionStore,
        timers: TimerRegistry,
        grace_seconds: float,
        deliver: Callable[[str], bool],
        metrics: Optional[EngineMetrics] = None,
    ) -> None:
        self._store = store
        self._timers = timers
        self._grace_seconds = grace_seconds
        self._deliver = deliver
        self._metrics = metrics

    @property
    def grace_seconds(self) -> float:
        return self._grace_seconds

    def schedule(self, session_id: str) -> int:
        """Arm (or re-arm) the cleanup timer; returns its handle."""
        logger.debug(
            "Session %s scheduled for removal in %ss", session_id, self._grace_seconds,
        )
        return self._timers.arm_once(
            session_id,
            TimerKind.CLEANUP,
            self._grace_seconds,
            lambda: self._fire(session_id),
        )

    def is_scheduled(self, session_id: str) -> bool:
        return self._timers.is_armed(session_id, TimerKind.CLEANUP)

    def purge_now(self, session_id: str) -> bool:
        """
        Cancel any pending cleanup timer and remove the session.

        Returns:
            True if a record was removed
        """
        self._timers.cancel_kind(session_id, TimerKind.CLEANUP)
        try:
            removed = self._store.remove(session_id)
        except Exception:
            logger.exception("Failed to remove session %s", session_id)
            return False

        if removed:
            logger.info("Session %s removed from store", session_id)
            if self._metrics is not None:
                self._metrics.sessions_removed.inc()
        return removed

    def _fire(self, session_id: str) -> None:
        if self._deliver(session_id):
            return
        # No consumer left to serialize with; remove directly
        logger.debug("Cleanup for session %s delivered without a mailbox", session_id)
        self.purge_now(session_id)
