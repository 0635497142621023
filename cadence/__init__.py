"""
Cadence: Repeating-Action Session Engine

Runs many independent, long-lived sessions in one process. Each session
triggers an external action at a fixed interval until it reaches its
target count, hits its safety deadline, fails, or is stopped:
- Lifecycle FSM: ACTIVE → COMPLETED | STOPPED | ERRORED | TIMED_OUT
- Timers: recurring tick, safety deadline, deferred cleanup
- Indexed store: lookup by group key and by normalized target ref
- Per-session mailboxes serialize every state change

Sessions live in memory only; nothing survives a restart.
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from cadence.core.types import Result, Ok, Err
from cadence.core.errors import (
    ErrorCode,
    CadenceError,
    InvalidInputError,
    SetupError,
    ExecutionFailure,
    NotFoundError,
    EngineError,
)
from cadence.core.config import EngineConfig
from cadence.session import (
    SearchKind,
    Session,
    SessionState,
    SessionView,
    IndexedSessionStore,
)
from cadence.actions import (
    ActionExecutor,
    AttemptOutcome,
    GroupResolver,
)
from cadence.engine import (
    LoopTimerService,
    ManualTimerService,
    SessionEngine,
    StartSessionRequest,
)

__all__ = [
    "__version__",
    "Result",
    "Ok",
    "Err",
    "ErrorCode",
    "CadenceError",
    "InvalidInputError",
    "SetupError",
    "ExecutionFailure",
    "NotFoundError",
    "EngineError",
    "EngineConfig",
    "SearchKind",
    "Session",
    "SessionState",
    "SessionView",
    "IndexedSessionStore",
    "ActionExecutor",
    "AttemptOutcome",
    "GroupResolver",
    "LoopTimerService",
    "ManualTimerService",
    "SessionEngine",
    "StartSessionRequest",
]
