"""
Shared fixtures: virtual clock, scripted collaborators, engine.
"""

import asyncio
from typing import Any, Mapping, Optional

import pytest
import pytest_asyncio

from cadence.actions.local import PatternGroupResolver
from cadence.actions.protocols import AttemptOutcome
from cadence.core.config import EngineConfig, SchedulerConfig
from cadence.engine.service import SessionEngine, StartSessionRequest
from cadence.engine.timers import ManualTimerService


class ScriptedExecutor:
    """
    Executor whose outcomes are scripted per call.

    Script entries: True / False, an AttemptOutcome, or an exception
    instance to raise. When the script runs out, `default` applies.
    While `gate` is set to an unset asyncio.Event, attempts block on it.
    """

    def __init__(self, outcomes: Optional[list[Any]] = None, default: bool = True) -> None:
        self.outcomes = list(outcomes or [])
        self.default = default
        self.calls = 0
        self.prepared: list[dict[str, Any]] = []
        self.gate: Optional[asyncio.Event] = None
        self.prepare_error: Optional[Exception] = None

    async def prepare(self, action_context: Mapping[str, Any]) -> dict[str, Any]:
        if self.prepare_error is not None:
            raise self.prepare_error
        context = dict(action_context)
        self.prepared.append(context)
        return context

    async def attempt(self, prepared: Any) -> AttemptOutcome:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, AttemptOutcome):
            return outcome
        return AttemptOutcome.ok() if outcome else AttemptOutcome.failed("scripted failure")


class CountingResolver(PatternGroupResolver):
    """Pattern resolver that counts calls."""

    def __init__(self) -> None:
        super().__init__(r"/posts/(?P<group>\w+)")
        self.calls = 0

    async def resolve(self, target_ref: str) -> str:
        self.calls += 1
        return await super().resolve(target_ref)


async def advance(engine: SessionEngine, clock: ManualTimerService, seconds: float) -> None:
    """Move virtual time forward deadline by deadline, settling the engine after each."""
    target = clock.now() + seconds
    while True:
        deadline = clock.next_deadline()
        if deadline is None or deadline > target:
            break
        clock.advance(deadline - clock.now())
        await engine.quiesce()
    clock.advance(target - clock.now())
    await engine.quiesce()


async def settle(rounds: int = 20) -> None:
    """Let queued callbacks and tasks run without waiting on in-flight attempts."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def request(
    target_ref: str = "https://example.com/posts/G1",
    target_count: int = 3,
    interval_seconds: int = 1,
    **kwargs: Any,
) -> StartSessionRequest:
    return StartSessionRequest(
        target_ref=target_ref,
        target_count=target_count,
        interval_seconds=interval_seconds,
        **kwargs,
    )


@pytest.fixture
def clock() -> ManualTimerService:
    return ManualTimerService()


@pytest.fixture
def executor() -> ScriptedExecutor:
    return ScriptedExecutor()


@pytest.fixture
def resolver() -> CountingResolver:
    return CountingResolver()


@pytest.fixture
def config() -> EngineConfig:
    return EngineConfig(scheduler=SchedulerConfig())


@pytest_asyncio.fixture
async def engine(resolver, executor, config, clock):
    engine = SessionEngine(resolver, executor, config=config, timer_service=clock)
    await engine.start()
    yield engine
    await engine.shutdown()
