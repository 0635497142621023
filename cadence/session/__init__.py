"""
Session Module: Records, Lifecycle, Indexing and Lookup

Provides:
- SessionStateMachine: Lifecycle FSM with guard conditions
- Session / SessionView: canonical record and read projection
- IndexedSessionStore: primary map + group / target-ref indexes
- SessionSearch: read-only lookup surface
"""

from cadence.session.state_machine import (
    SessionState,
    SessionStateMachine,
    SessionTransition,
    StateTransitionEvent,
    TransitionGuard,
    Trigger,
)
from cadence.session.model import (
    Session,
    SessionView,
)
from cadence.session.store import IndexedSessionStore
from cadence.session.search import (
    SearchKind,
    SessionSearch,
)

__all__ = [
    # State Machine
    "SessionState",
    "SessionStateMachine",
    "SessionTransition",
    "StateTransitionEvent",
    "TransitionGuard",
    "Trigger",
    # Records
    "Session",
    "SessionView",
    # Store
    "IndexedSessionStore",
    # Search
    "SearchKind",
    "SessionSearch",
]
