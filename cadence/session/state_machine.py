"""
Session State Machine: Lifecycle FSM with Guard Conditions

States:
    ACTIVE     → Recurring timer armed, attempts being issued
    COMPLETED  → Target count reached
    STOPPED    → Explicit stop request
    ERRORED    → An attempt failed (no retry; start a new session)
    TIMED_OUT  → Safety deadline elapsed while still active

Transitions:
    ACTIVE → ACTIVE     : ATTEMPT_SUCCEEDED, count+1 <  target
    ACTIVE → COMPLETED  : ATTEMPT_SUCCEEDED, count+1 >= target
    ACTIVE → ERRORED    : ATTEMPT_FAILED
    ACTIVE → STOPPED    : STOP_REQUESTED
    ACTIVE → TIMED_OUT  : DEADLINE_ELAPSED

Every other (state, trigger) pair is rejected as Err and leaves the
record untouched; terminal states are sticky.

Design:
    - The machine owns no timers; the scheduler reacts to the emitted
      events (cancel recurring timer, arm cleanup)
    - Guard conditions select between transitions sharing a trigger
    - Callers must serialize apply() per session (see engine.mailbox)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from cadence.core.types import Result, Ok, Err, utc_now

if TYPE_CHECKING:
    from cadence.session.model import Session

logger = logging.getLogger(__name__)


# =============================================================================
# SESSION STATE ENUMERATION
# =============================================================================
class SessionState(Enum):
    """
    Session lifecycle states.

    Values are the lowercase status strings exposed to API consumers.
    """
    ACTIVE = "active"
    COMPLETED = "completed"
    STOPPED = "stopped"
    ERRORED = "error"
    TIMED_OUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state."""
        return self is not SessionState.ACTIVE

    @property
    def is_active(self) -> bool:
        return self is SessionState.ACTIVE


class Trigger(Enum):
    """Events that drive the lifecycle."""
    ATTEMPT_SUCCEEDED = "attempt_succeeded"
    ATTEMPT_FAILED = "attempt_failed"
    STOP_REQUESTED = "stop_requested"
    DEADLINE_ELAPSED = "deadline_elapsed"


# =============================================================================
# TRANSITION DEFINITIONS
# =============================================================================
@dataclass(frozen=True, slots=True)
class SessionTransition:
    """A valid (from, to, trigger) edge of the lifecycle graph."""
    from_state: SessionState
    to_state: SessionState
    trigger: Trigger


# Ordered: the first edge whose guards pass wins
TRANSITIONS: tuple[SessionTransition, ...] = (
    SessionTransition(SessionState.ACTIVE, SessionState.ACTIVE, Trigger.ATTEMPT_SUCCEEDED),
    SessionTransition(SessionState.ACTIVE, SessionState.COMPLETED, Trigger.ATTEMPT_SUCCEEDED),
    SessionTransition(SessionState.ACTIVE, SessionState.ERRORED, Trigger.ATTEMPT_FAILED),
    SessionTransition(SessionState.ACTIVE, SessionState.STOPPED, Trigger.STOP_REQUESTED),
    SessionTransition(SessionState.ACTIVE, SessionState.TIMED_OUT, Trigger.DEADLINE_ELAPSED),
)


# =============================================================================
# GUARD CONDITIONS
# =============================================================================
class TransitionGuard:
    """
    Guard condition for a transition.

    Guards see the record as it is before the transition's effects are
    applied. All guards of an edge must pass for it to be taken.
    """

    __slots__ = ("_name", "_predicate", "_error_message")

    def __init__(
        self,
        name: str,
        predicate: Callable[[Session], bool],
        error_message: str,
    ) -> None:
        self._name = name
        self._predicate = predicate
        self._error_message = error_message

    def evaluate(self, session: Session) -> Result[None, str]:
        if self._predicate(session):
            return Ok(None)
        return Err(f"Guard '{self._name}' failed: {self._error_message}")

    @property
    def name(self) -> str:
        return self._name


# =============================================================================
# TRANSITION EVENT
# =============================================================================
@dataclass(frozen=True, slots=True)
class StateTransitionEvent:
    """Event emitted on every applied transition (self-loops included)."""
    session_id: str
    from_state: SessionState
    to_state: SessionState
    trigger: Trigger
    completed_count: int
    target_count: int
    timestamp: datetime
    error: Optional[str] = None

    @property
    def entered_terminal(self) -> bool:
        """True when this event moved the session out of ACTIVE."""
        return self.from_state.is_active and self.to_state.is_terminal


# =============================================================================
# STATE MACHINE IMPLEMENTATION
# =============================================================================
class SessionStateMachine:
    """
    Finite state machine for the session lifecycle.

    The machine is shared by all sessions; it mutates the record handed
    to apply() and returns the resulting event.

    Usage:
        fsm = SessionStateMachine()
        fsm.add_listener(metrics_hook)

        result = fsm.apply(session, Trigger.ATTEMPT_SUCCEEDED)
        if result.is_ok() and result.unwrap().entered_terminal:
            scheduler.on_terminal(session)

    Thread Safety:
        External synchronization required: apply() is a
        read-modify-write of state and completed_count.
    """

    __slots__ = ("_guards", "_listeners")

    def __init__(self) -> None:
        self._guards: dict[SessionTransition, list[TransitionGuard]] = {}
        self._listeners: list[Callable[[StateTransitionEvent], None]] = []
        self._register_default_guards()

    def _register_default_guards(self) -> None:
        below_target = TransitionGuard(
            "below_target",
            lambda s: s.completed_count + 1 < s.target_count,
            "Success would reach the target count",
        )
        reaches_target = TransitionGuard(
            "reaches_target",
            lambda s: s.completed_count + 1 >= s.target_count,
            "Success would not reach the target count",
        )
        has_headroom = TransitionGuard(
            "has_headroom",
            lambda s: s.completed_count < s.target_count,
            "Target count already reached",
        )

        for transition in TRANSITIONS:
            if transition.trigger is not Trigger.ATTEMPT_SUCCEEDED:
                continue
            guards = self._guards.setdefault(transition, [has_headroom])
            if transition.to_state is SessionState.ACTIVE:
                guards.append(below_target)
            else:
                guards.append(reaches_target)

    def add_listener(
        self,
        listener: Callable[[StateTransitionEvent], None],
    ) -> None:
        """Register listener for transition events."""
        self._listeners.append(listener)

    def apply(
        self,
        session: Session,
        trigger: Trigger,
        error: Optional[str] = None,
    ) -> Result[StateTransitionEvent, str]:
        """
        Apply a trigger to a session.

        Args:
            session: Record to mutate
            trigger: Lifecycle event
            error: Failure message, recorded for ATTEMPT_FAILED

        Returns:
            Ok(event) when a transition was applied
            Err(message) when the trigger is not valid in the current state
        """
        current = session.state
        candidates = [
            t for t in TRANSITIONS
            if t.from_state is current and t.trigger is trigger
        ]
        if not candidates:
            return Err(
                f"No valid transition from {current.name} "
                f"with trigger '{trigger.value}'"
            )

        chosen: Optional[SessionTransition] = None
        last_failure = ""
        for transition in candidates:
            failed = False
            for guard in self._guards.get(transition, ()):
                verdict = guard.evaluate(session)
                if verdict.is_err():
                    last_failure = verdict.error
                    failed = True
                    break
            if not failed:
                chosen = transition
                break

        if chosen is None:
            return Err(last_failure)

        now = utc_now()
        if trigger is Trigger.ATTEMPT_SUCCEEDED:
            session.completed_count += 1
        elif trigger is Trigger.ATTEMPT_FAILED:
            session.last_error = error or "Action attempt failed"

        session.state = chosen.to_state
        if chosen.to_state.is_terminal:
            session.finished_at = now

        event = StateTransitionEvent(
            session_id=session.session_id,
            from_state=current,
            to_state=chosen.to_state,
            trigger=trigger,
            completed_count=session.completed_count,
            target_count=session.target_count,
            timestamp=now,
            error=session.last_error if trigger is Trigger.ATTEMPT_FAILED else None,
        )

        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Transition listener failed for session %s", session.session_id,
                )

        return Ok(event)

    def can_apply(self, session: Session, trigger: Trigger) -> bool:
        """Check if a trigger is accepted in the session's current state."""
        return any(
            t.from_state is session.state and t.trigger is trigger
            for t in TRANSITIONS
        )

    def available_triggers(self, session: Session) -> list[Trigger]:
        """List triggers accepted from the session's current state."""
        seen: list[Trigger] = []
        for t in TRANSITIONS:
            if t.from_state is session.state and t.trigger not in seen:
                seen.append(t.trigger)
        return seen
