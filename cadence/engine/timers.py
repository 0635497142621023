"""
Timers: Scheduling Backends and the Opaque-Handle Registry

Layers:
    TimerService       → "call this callback after N seconds"
        LoopTimerService   : asyncio event loop (loop.call_later)
        ManualTimerService : virtual clock advanced explicitly, used for
                             tests and offline simulations
    TimerRegistry      → per-session bookkeeping on top of a service:
                         hands out opaque integer handles and keeps the
                         (session_id, TimerKind) -> handle mapping

Callbacks are plain synchronous callables. They must not do work
themselves; the scheduler's callbacks only enqueue a mailbox event.
Cancelling a handle whose fire is already queued is safe because the
mailbox consumer re-checks session state.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Protocol


TimerCallback = Callable[[], None]


class TimerKind(Enum):
    """The three timers a session may own."""
    RECURRING = "recurring"
    SAFETY = "safety"
    CLEANUP = "cleanup"


# =============================================================================
# TIMER SERVICE PROTOCOL
# =============================================================================
class Cancellable(Protocol):
    def cancel(self) -> None: ...


class TimerService(Protocol):
    """Minimal one-shot scheduling backend."""

    def call_later(self, delay: float, callback: TimerCallback) -> Cancellable: ...

    def now(self) -> float: ...


class LoopTimerService:
    """
    TimerService backed by the running asyncio event loop.

    The loop is looked up lazily so the service can be built before
    the loop starts.
    """

    __slots__ = ("_loop",)

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: TimerCallback) -> asyncio.TimerHandle:
        return self.loop.call_later(max(0.0, delay), callback)

    def now(self) -> float:
        return self.loop.time()


@dataclass(eq=False)
class ManualTimer:
    """Pending entry of a ManualTimerService."""
    when: float
    callback: TimerCallback
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimerService:
    """
    Virtual-time TimerService.

    Nothing fires until advance() is called. Due timers fire in
    (deadline, arming order) order and the clock is moved to each
    deadline before its callback runs, so callbacks that re-arm
    themselves behave exactly as under a real loop.

    Usage:
        timers = ManualTimerService()
        timers.call_later(5, on_fire)
        timers.advance(5)   # on_fire runs here
    """

    __slots__ = ("_now", "_heap", "_seq")

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._heap: list[tuple[float, int, ManualTimer]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: TimerCallback) -> ManualTimer:
        timer = ManualTimer(when=self._now + max(0.0, delay), callback=callback)
        heapq.heappush(self._heap, (timer.when, next(self._seq), timer))
        return timer

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> int:
        """
        Move the clock forward, firing every timer that falls due.

        Returns:
            Number of callbacks run
        """
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        target = self._now + seconds
        fired = 0
        while self._heap and self._heap[0][0] <= target:
            when, _, timer = heapq.heappop(self._heap)
            if timer.cancelled:
                continue
            self._now = when
            timer.callback()
            fired += 1
        self._now = target
        return fired

    def next_deadline(self) -> Optional[float]:
        """Deadline of the earliest live timer, if any."""
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)
        return self._heap[0][0] if self._heap else None

    @property
    def pending(self) -> int:
        return sum(1 for _, _, t in self._heap if not t.cancelled)


# =============================================================================
# TIMER REGISTRY
# =============================================================================
@dataclass
class _ArmedTimer:
    session_id: str
    kind: TimerKind
    backend: Cancellable
    interval: Optional[float] = None
    fires: int = field(default=0)


class TimerRegistry:
    """
    Opaque-handle timer bookkeeping keyed by session id.

    Each session owns at most one timer per TimerKind; arming a kind
    that is already armed replaces it. Handles are never reused.

    Usage:
        registry = TimerRegistry(LoopTimerService())
        handle = registry.arm_recurring(sid, TimerKind.RECURRING, 5, on_tick)
        registry.cancel_session(sid)
    """

    __slots__ = ("_service", "_armed", "_by_session", "_next_handle")

    def __init__(self, service: TimerService) -> None:
        self._service = service
        self._armed: dict[int, _ArmedTimer] = {}
        self._by_session: dict[tuple[str, TimerKind], int] = {}
        self._next_handle = itertools.count(1)

    @property
    def service(self) -> TimerService:
        return self._service

    def arm_once(
        self,
        session_id: str,
        kind: TimerKind,
        delay: float,
        callback: TimerCallback,
    ) -> int:
        """Arm a one-shot timer; the handle is released when it fires."""
        self.cancel_kind(session_id, kind)
        handle = next(self._next_handle)

        def fire() -> None:
            armed = self._armed.pop(handle, None)
            if armed is None:
                return
            self._by_session.pop((session_id, kind), None)
            callback()

        self._armed[handle] = _ArmedTimer(
            session_id=session_id,
            kind=kind,
            backend=self._service.call_later(delay, fire),
        )
        self._by_session[(session_id, kind)] = handle
        return handle

    def arm_recurring(
        self,
        session_id: str,
        kind: TimerKind,
        interval: float,
        callback: TimerCallback,
    ) -> int:
        """Arm a periodic timer firing every `interval` seconds until cancelled."""
        if interval <= 0:
            raise ValueError("Recurring interval must be positive")
        self.cancel_kind(session_id, kind)
        handle = next(self._next_handle)

        def fire() -> None:
            armed = self._armed.get(handle)
            if armed is None:
                return
            armed.fires += 1
            armed.backend = self._service.call_later(interval, fire)
            callback()

        self._armed[handle] = _ArmedTimer(
            session_id=session_id,
            kind=kind,
            backend=self._service.call_later(interval, fire),
            interval=interval,
        )
        self._by_session[(session_id, kind)] = handle
        return handle

    def cancel(self, handle: int) -> bool:
        """Cancel by handle. Unknown or already-fired handles are a no-op."""
        armed = self._armed.pop(handle, None)
        if armed is None:
            return False
        armed.backend.cancel()
        if self._by_session.get((armed.session_id, armed.kind)) == handle:
            del self._by_session[(armed.session_id, armed.kind)]
        return True

    def cancel_kind(self, session_id: str, kind: TimerKind) -> bool:
        handle = self._by_session.get((session_id, kind))
        if handle is None:
            return False
        return self.cancel(handle)

    def cancel_session(self, session_id: str) -> int:
        """Cancel every timer owned by a session. Returns count cancelled."""
        return sum(1 for kind in TimerKind if self.cancel_kind(session_id, kind))

    def cancel_all(self) -> int:
        handles = list(self._armed)
        for handle in handles:
            self.cancel(handle)
        return len(handles)

    def handle_for(self, session_id: str, kind: TimerKind) -> Optional[int]:
        return self._by_session.get((session_id, kind))

    def is_armed(self, session_id: str, kind: TimerKind) -> bool:
        return (session_id, kind) in self._by_session

    def fire_count(self, handle: int) -> int:
        """How often a recurring timer has fired (0 for unknown handles)."""
        armed = self._armed.get(handle)
        return armed.fires if armed else 0

    def __len__(self) -> int:
        return len(self._armed)
