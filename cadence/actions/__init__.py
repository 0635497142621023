"""
Actions module: collaborator protocols and implementations.

Provides:
- GroupResolver / ActionExecutor protocols and AttemptOutcome
- In-process implementations (static, pattern, callable)
- httpx-backed implementations
"""

from cadence.actions.protocols import (
    ActionExecutor,
    AttemptOutcome,
    GroupResolver,
)
from cadence.actions.local import (
    CallableActionExecutor,
    PatternGroupResolver,
    StaticGroupResolver,
)
from cadence.actions.http import (
    HttpActionExecutor,
    HttpGroupResolver,
    PreparedRequest,
)

__all__ = [
    "ActionExecutor",
    "AttemptOutcome",
    "GroupResolver",
    "CallableActionExecutor",
    "PatternGroupResolver",
    "StaticGroupResolver",
    "HttpActionExecutor",
    "HttpGroupResolver",
    "PreparedRequest",
]
