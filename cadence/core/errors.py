"""
Error Hierarchy for the Cadence Session Engine

Design Principles:
- Domain failures are returned as Err(CadenceError), never raised
  through the public engine API
- One subclass per failure family, built through classmethod factories
- Every error carries a unique id, a code and structured context so the
  transport layer and logs can report it without string parsing

Families:
    InvalidInputError  → request rejected before any state exists
    SetupError         → resolver / executor preparation failed,
                         no session registered
    ExecutionFailure   → an armed session's attempt failed; the session
                         moves to ERRORED, the process carries on
    NotFoundError      → operation on an unknown session id
    EngineError        → engine lifecycle / internal problems

Usage:
    result = await engine.start_session(request)
    match result:
        case Ok(session_id):
            ...
        case Err(InvalidInputError() as e):
            reply(400, e.to_dict())
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from cadence.core.types import utc_now


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Unique error codes for programmatic error handling.

    Codes are grouped by family:
    - 1xxx: Invalid input
    - 2xxx: Setup (pre-registration) failures
    - 3xxx: Execution failures inside armed sessions
    - 4xxx: Lookup failures
    - 9xxx: Engine / internal errors
    """

    # Invalid input (1xxx)
    INVALID_TARGET_COUNT = 1001
    INVALID_INTERVAL = 1002
    INVALID_TARGET_REF = 1003
    INVALID_SEARCH_TERM = 1004
    INVALID_REQUEST = 1005
    CAPACITY_EXCEEDED = 1006

    # Setup (2xxx)
    SETUP_RESOLUTION_FAILED = 2001
    SETUP_CONTEXT_FAILED = 2002
    SETUP_TIMEOUT = 2003

    # Execution (3xxx)
    EXECUTION_ATTEMPT_FAILED = 3001
    EXECUTION_TIMEOUT = 3002

    # Lookup (4xxx)
    SESSION_NOT_FOUND = 4001

    # Engine (9xxx)
    ENGINE_SHUT_DOWN = 9001
    ENGINE_INTERNAL_ERROR = 9002


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class CadenceError(Exception):
    """
    Base class for all engine errors.

    Provides:
    - Unique error id for correlating API responses with log lines
    - Error code for programmatic handling
    - Timestamp of creation
    - Optional cause for root cause analysis
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utc_now)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize error for logging/API responses.

        The cause is deliberately left out; it may hold collaborator
        internals such as request headers.
        """
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# INVALID INPUT
# =============================================================================
@dataclass
class InvalidInputError(CadenceError):
    """Request rejected before any state is created."""

    @classmethod
    def target_count(cls, value: Any) -> InvalidInputError:
        return cls(
            code=ErrorCode.INVALID_TARGET_COUNT,
            message="target_count must be a positive integer",
            context={"field": "target_count", "value": str(value)[:100]},
        )

    @classmethod
    def interval(cls, value: Any) -> InvalidInputError:
        return cls(
            code=ErrorCode.INVALID_INTERVAL,
            message="interval_seconds must be at least 1 second",
            context={"field": "interval_seconds", "value": str(value)[:100]},
        )

    @classmethod
    def target_ref(cls, value: Any) -> InvalidInputError:
        return cls(
            code=ErrorCode.INVALID_TARGET_REF,
            message="target_ref is required",
            context={"field": "target_ref", "value": str(value)[:100]},
        )

    @classmethod
    def search_term(cls) -> InvalidInputError:
        return cls(
            code=ErrorCode.INVALID_SEARCH_TERM,
            message="Search term is required",
            context={"field": "term"},
        )

    @classmethod
    def request(cls, field_name: str, reason: str) -> InvalidInputError:
        """Malformed transport-level request."""
        return cls(
            code=ErrorCode.INVALID_REQUEST,
            message=f"Invalid field '{field_name}': {reason}",
            context={"field": field_name, "reason": reason},
        )

    @classmethod
    def capacity_exceeded(cls, active: int, limit: int) -> InvalidInputError:
        return cls(
            code=ErrorCode.CAPACITY_EXCEEDED,
            message=f"Active session limit reached: {active}/{limit}",
            context={"active": active, "limit": limit},
        )


# =============================================================================
# SETUP ERRORS
# =============================================================================
@dataclass
class SetupError(CadenceError):
    """
    Setup failed before registration.

    Raised neither by the store nor by timers: only the resolver and the
    executor's prepare step can produce it, so no session ever exists
    for a SetupError.
    """

    @classmethod
    def resolution_failed(
        cls,
        target_ref: str,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> SetupError:
        return cls(
            code=ErrorCode.SETUP_RESOLUTION_FAILED,
            message=(
                f"Unable to resolve group key for '{target_ref[:80]}': {reason}"
            ),
            cause=cause,
            context={"target_ref": target_ref[:200], "reason": reason},
        )

    @classmethod
    def context_failed(
        cls,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> SetupError:
        return cls(
            code=ErrorCode.SETUP_CONTEXT_FAILED,
            message=f"Failed to prepare action context: {reason}",
            cause=cause,
            context={"reason": reason},
        )

    @classmethod
    def timeout(cls, step: str, timeout_seconds: float) -> SetupError:
        return cls(
            code=ErrorCode.SETUP_TIMEOUT,
            message=f"Setup step '{step}' timed out after {timeout_seconds}s",
            context={"step": step, "timeout_seconds": timeout_seconds},
        )


# =============================================================================
# EXECUTION FAILURES
# =============================================================================
@dataclass
class ExecutionFailure(CadenceError):
    """
    An attempt of an armed session failed.

    Never returned to a caller directly: the scheduler converts it into
    the ERRORED transition and keeps its message as ``last_error``.
    """

    @classmethod
    def attempt_failed(
        cls,
        session_id: str,
        reason: str,
        cause: Optional[BaseException] = None,
    ) -> ExecutionFailure:
        return cls(
            code=ErrorCode.EXECUTION_ATTEMPT_FAILED,
            message=reason,
            cause=cause,
            context={"session_id": session_id},
        )

    @classmethod
    def timeout(cls, session_id: str, timeout_seconds: float) -> ExecutionFailure:
        return cls(
            code=ErrorCode.EXECUTION_TIMEOUT,
            message=f"Action attempt timed out after {timeout_seconds}s",
            context={"session_id": session_id, "timeout_seconds": timeout_seconds},
        )


# =============================================================================
# LOOKUP ERRORS
# =============================================================================
@dataclass
class NotFoundError(CadenceError):
    """Operation on an unknown session id."""

    @classmethod
    def session(cls, session_id: str) -> NotFoundError:
        return cls(
            code=ErrorCode.SESSION_NOT_FOUND,
            message=f"Session '{session_id}' not found",
            context={"session_id": session_id},
        )


# =============================================================================
# ENGINE ERRORS
# =============================================================================
@dataclass
class EngineError(CadenceError):
    """Engine lifecycle and internal errors."""

    @classmethod
    def shut_down(cls) -> EngineError:
        return cls(
            code=ErrorCode.ENGINE_SHUT_DOWN,
            message="Engine is shut down",
        )

    @classmethod
    def internal(
        cls,
        operation: str,
        cause: Optional[BaseException] = None,
    ) -> EngineError:
        return cls(
            code=ErrorCode.ENGINE_INTERNAL_ERROR,
            message=f"Internal error during {operation}",
            cause=cause,
            context={"operation": operation},
        )
