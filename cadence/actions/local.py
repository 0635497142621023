"""
In-Process Collaborators

Resolvers and executors that need no network, for embedding the engine
in another program, for the `demo` command and for tests.
"""

from __future__ import annotations

import inspect
import re
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from cadence.actions.protocols import AttemptOutcome


class StaticGroupResolver:
    """
    Resolve target refs through a fixed mapping.

    Lookups are case-insensitive on the ref. Unknown refs raise
    LookupError unless a default group key is configured.
    """

    __slots__ = ("_mapping", "_default")

    def __init__(
        self,
        mapping: Mapping[str, str],
        default: Optional[str] = None,
    ) -> None:
        self._mapping = {ref.lower(): key for ref, key in mapping.items()}
        self._default = default

    async def resolve(self, target_ref: str) -> str:
        key = self._mapping.get(target_ref.lower(), self._default)
        if key is None:
            raise LookupError(f"No group key known for '{target_ref}'")
        return key


class PatternGroupResolver:
    """
    Extract the group key from the ref with a regular expression.

    Usage:
        resolver = PatternGroupResolver(r"/posts/(?P<group>\\d+)")
        await resolver.resolve("https://example.com/posts/42")  # "42"

    The named group `group` is used when present, else group 1, else
    the whole match.
    """

    __slots__ = ("_pattern",)

    def __init__(self, pattern: Union[str, re.Pattern[str]]) -> None:
        self._pattern = re.compile(pattern) if isinstance(pattern, str) else pattern

    async def resolve(self, target_ref: str) -> str:
        match = self._pattern.search(target_ref)
        if match is None:
            raise ValueError(f"Reference does not match {self._pattern.pattern!r}")
        if "group" in self._pattern.groupindex:
            key = match.group("group")
        elif self._pattern.groups:
            key = match.group(1)
        else:
            key = match.group(0)
        if not key:
            raise ValueError("Matched an empty group key")
        return key


AttemptFn = Callable[[Any], Awaitable[Union[AttemptOutcome, bool, None]]]
PrepareFn = Callable[[Mapping[str, Any]], Union[Any, Awaitable[Any]]]


class CallableActionExecutor:
    """
    Executor wrapping an async callable.

    The callable receives the prepared context and may return an
    AttemptOutcome, a bool, or None (treated as success). Exceptions
    propagate to the scheduler, which records them as failures.

    Usage:
        async def poke(prepared):
            return AttemptOutcome.ok()

        executor = CallableActionExecutor(poke)
    """

    __slots__ = ("_attempt", "_prepare", "calls")

    def __init__(self, attempt: AttemptFn, prepare: Optional[PrepareFn] = None) -> None:
        self._attempt = attempt
        self._prepare = prepare
        self.calls = 0

    async def prepare(self, action_context: Mapping[str, Any]) -> Any:
        if self._prepare is None:
            return dict(action_context)
        prepared = self._prepare(action_context)
        if inspect.isawaitable(prepared):
            prepared = await prepared
        return prepared

    async def attempt(self, prepared: Any) -> AttemptOutcome:
        self.calls += 1
        result = await self._attempt(prepared)
        if isinstance(result, AttemptOutcome):
            return result
        if result is None or result is True:
            return AttemptOutcome.ok()
        return AttemptOutcome.failed("Action reported failure")
