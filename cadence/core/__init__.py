"""
Core module: Result types, error hierarchy, and configuration.

This module provides the foundational abstractions for the engine:
- Result/Either pair for exception-free control flow
- Error taxonomy (invalid input, setup, execution, not found)
- Configuration management with validation
"""

from cadence.core.types import (
    Result,
    Ok,
    Err,
    new_session_id,
    utc_now,
)
from cadence.core.errors import (
    ErrorCode,
    CadenceError,
    InvalidInputError,
    SetupError,
    ExecutionFailure,
    NotFoundError,
    EngineError,
)
from cadence.core.config import (
    EngineConfig,
    SchedulerConfig,
    HttpConfig,
    ObservabilityConfig,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "new_session_id",
    "utc_now",
    "ErrorCode",
    "CadenceError",
    "InvalidInputError",
    "SetupError",
    "ExecutionFailure",
    "NotFoundError",
    "EngineError",
    "EngineConfig",
    "SchedulerConfig",
    "HttpConfig",
    "ObservabilityConfig",
]
