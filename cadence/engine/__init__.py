"""
Engine module: timers, mailboxes, scheduling and the public facade.

Provides:
- TimerRegistry over LoopTimerService / ManualTimerService
- SessionMailbox: per-session serialized event delivery
- SessionScheduler: setup, ticks, attempts, terminal handling
- DeferredCleanup: grace-period removal
- SessionEngine: the operations used by the API and the CLI
"""

from cadence.engine.timers import (
    LoopTimerService,
    ManualTimerService,
    TimerKind,
    TimerRegistry,
    TimerService,
)
from cadence.engine.mailbox import (
    EventType,
    MailboxClosedError,
    SessionEvent,
    SessionMailbox,
)
from cadence.engine.cleanup import DeferredCleanup
from cadence.engine.scheduler import SessionScheduler
from cadence.engine.service import SessionEngine, StartSessionRequest

__all__ = [
    "LoopTimerService",
    "ManualTimerService",
    "TimerKind",
    "TimerRegistry",
    "TimerService",
    "EventType",
    "MailboxClosedError",
    "SessionEvent",
    "SessionMailbox",
    "DeferredCleanup",
    "SessionScheduler",
    "SessionEngine",
    "StartSessionRequest",
]
