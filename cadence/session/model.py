"""
Session Record and Read Projection

Session      → mutable canonical record owned by the IndexedSessionStore;
               only the state machine changes its lifecycle fields
SessionView  → frozen snapshot handed to callers and the transport layer
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from cadence.core.types import new_session_id, utc_now
from cadence.session.state_machine import SessionState


# =============================================================================
# SESSION RECORD
# =============================================================================
@dataclass(slots=True)
class Session:
    """
    Canonical session record.

    Identity and targeting fields are fixed at creation; the lifecycle
    fields (state, completed_count, last_error, finished_at) are only
    written by SessionStateMachine.apply(). Timer handles are not kept
    here: the scheduler's TimerRegistry owns them.
    """
    # Immutable identity
    group_key: str
    target_ref: str
    target_count: int
    interval_seconds: int
    session_id: str = field(default_factory=new_session_id)

    # Lifecycle
    state: SessionState = SessionState.ACTIVE
    completed_count: int = 0
    attempt_count: int = 0
    last_error: Optional[str] = None

    # Timestamps
    created_at: datetime = field(default_factory=utc_now)
    estimated_completion_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.target_count < 1:
            raise ValueError(f"target_count must be >= 1, got {self.target_count}")
        if self.interval_seconds < 1:
            raise ValueError(
                f"interval_seconds must be >= 1, got {self.interval_seconds}"
            )
        if self.estimated_completion_at is None:
            self.estimated_completion_at = self.created_at + timedelta(
                seconds=self.target_count * self.interval_seconds,
            )

    @property
    def normalized_ref(self) -> str:
        """Case-folded target reference used as the secondary index key."""
        return self.target_ref.lower()

    @property
    def progress_percent(self) -> int:
        """Whole percent, halves rounded up (1/8 -> 13)."""
        return (200 * self.completed_count + self.target_count) // (2 * self.target_count)

    @property
    def is_active(self) -> bool:
        return self.state.is_active

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def view(self) -> SessionView:
        """Snapshot the record for readers."""
        return SessionView(
            session_id=self.session_id,
            target_ref=self.target_ref,
            group_key=self.group_key,
            completed_count=self.completed_count,
            target_count=self.target_count,
            progress_percent=self.progress_percent,
            state=self.state,
            interval_seconds=self.interval_seconds,
            created_at=self.created_at,
            estimated_completion_at=self.estimated_completion_at,
            finished_at=self.finished_at,
            last_error=self.last_error,
        )


# =============================================================================
# READ PROJECTION
# =============================================================================
@dataclass(frozen=True, slots=True)
class SessionView:
    """Immutable view of a session as exposed to callers."""
    session_id: str
    target_ref: str
    group_key: str
    completed_count: int
    target_count: int
    progress_percent: int
    state: SessionState
    interval_seconds: int
    created_at: datetime
    estimated_completion_at: Optional[datetime]
    finished_at: Optional[datetime] = None
    last_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses; last_error only when present."""
        data: dict[str, Any] = {
            "session_id": self.session_id,
            "target_ref": self.target_ref,
            "group_key": self.group_key,
            "completed_count": self.completed_count,
            "target_count": self.target_count,
            "progress_percent": self.progress_percent,
            "state": self.state.value,
            "interval_seconds": self.interval_seconds,
            "created_at": self.created_at.isoformat(),
            "estimated_completion_at": (
                self.estimated_completion_at.isoformat()
                if self.estimated_completion_at else None
            ),
            "finished_at": (
                self.finished_at.isoformat() if self.finished_at else None
            ),
        }
        if self.last_error is not None:
            data["last_error"] = self.last_error
        return data
