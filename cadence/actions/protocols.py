"""
Collaborator Protocols

The engine reaches the outside world only through these two seams:

    GroupResolver   target_ref -> group_key           (setup, once)
    ActionExecutor  prepare(action_context) -> prepared (setup, once)
                    attempt(prepared) -> AttemptOutcome (every tick)

Before prepare() the scheduler adds `group_key` and `target_ref` to the
action context (keys already present are kept).

Both may raise: the scheduler converts exceptions from resolve/prepare
into SetupError and exceptions from attempt into a failed outcome.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class AttemptOutcome:
    """Result of one action attempt."""
    success: bool
    message: Optional[str] = None

    @classmethod
    def ok(cls, message: Optional[str] = None) -> AttemptOutcome:
        return cls(success=True, message=message)

    @classmethod
    def failed(cls, message: str) -> AttemptOutcome:
        return cls(success=False, message=message)


@runtime_checkable
class GroupResolver(Protocol):
    """Maps a target reference to the group key the action addresses."""

    async def resolve(self, target_ref: str) -> str: ...


@runtime_checkable
class ActionExecutor(Protocol):
    """Performs the repeated side-effecting action."""

    async def prepare(self, action_context: Mapping[str, Any]) -> Any: ...

    async def attempt(self, prepared: Any) -> AttemptOutcome: ...
