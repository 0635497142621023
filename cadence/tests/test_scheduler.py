"""
Scheduler Tests on a Virtual Clock

Tests:
    - Input validation and setup failures create nothing
    - Tick → attempt → transition flow up to completion
    - Failure, stop, deadline and attempt timeout
    - Executors returning bare values
    - Overlapping ticks are skipped
    - Deferred cleanup and operator purge
    - Shutdown
"""

import asyncio

import pytest

from cadence.actions.protocols import AttemptOutcome
from cadence.core.config import EngineConfig, SchedulerConfig
from cadence.core.errors import (
    EngineError,
    ErrorCode,
    InvalidInputError,
    NotFoundError,
    SetupError,
)
from cadence.engine.service import SessionEngine
from cadence.engine.timers import TimerKind
from cadence.session.state_machine import SessionState
from cadence.tests.conftest import (
    CountingResolver,
    ScriptedExecutor,
    advance,
    request,
    settle,
)


async def start(engine, **kwargs):
    result = await engine.start_session(request(**kwargs))
    assert result.is_ok(), result
    return result.unwrap()


def state_of(engine, session_id):
    return engine.get_session(session_id).unwrap().state


class PlainResultExecutor:
    """Executor returning bare values instead of AttemptOutcome."""

    def __init__(self, results):
        self.results = list(results)

    async def prepare(self, action_context):
        return dict(action_context)

    async def attempt(self, prepared):
        return self.results.pop(0) if self.results else True


class TestValidation:
    """Rejected before any state is created."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs,code", [
        ({"target_count": 0}, ErrorCode.INVALID_TARGET_COUNT),
        ({"target_count": -3}, ErrorCode.INVALID_TARGET_COUNT),
        ({"interval_seconds": 0}, ErrorCode.INVALID_INTERVAL),
        ({"target_ref": ""}, ErrorCode.INVALID_TARGET_REF),
        ({"target_ref": "   "}, ErrorCode.INVALID_TARGET_REF),
    ])
    async def test_invalid_input(self, engine, resolver, kwargs, code):
        result = await engine.start_session(request(**kwargs))

        assert result.is_err()
        assert isinstance(result.error, InvalidInputError)
        assert result.error.code is code
        assert len(engine.store) == 0
        assert len(engine.timers) == 0
        assert resolver.calls == 0

    @pytest.mark.asyncio
    async def test_non_integer_count_rejected(self, engine):
        result = await engine.start_session(request(target_count="many"))
        assert result.error.code is ErrorCode.INVALID_TARGET_COUNT

    @pytest.mark.asyncio
    async def test_capacity_limit(self, resolver, executor, clock):
        config = EngineConfig(scheduler=SchedulerConfig(max_active_sessions=1))
        async with SessionEngine(resolver, executor, config=config, timer_service=clock) as engine:
            await start(engine)
            result = await engine.start_session(request())

            assert result.error.code is ErrorCode.CAPACITY_EXCEEDED
            assert len(engine.store) == 1


class TestSetup:
    """Resolver and executor preparation."""

    @pytest.mark.asyncio
    async def test_resolution_failure(self, engine):
        result = await engine.start_session(request(target_ref="https://example.com/nothing"))

        assert isinstance(result.error, SetupError)
        assert result.error.code is ErrorCode.SETUP_RESOLUTION_FAILED
        assert len(engine.store) == 0
        assert len(engine.timers) == 0

    @pytest.mark.asyncio
    async def test_context_failure(self, engine, executor):
        executor.prepare_error = ValueError("bad cookie")

        result = await engine.start_session(request())

        assert result.error.code is ErrorCode.SETUP_CONTEXT_FAILED
        assert "bad cookie" in result.error.message
        assert len(engine.store) == 0

    @pytest.mark.asyncio
    async def test_setup_timeout(self, executor, clock):
        class SlowResolver:
            async def resolve(self, target_ref):
                await asyncio.sleep(5)
                return "G1"

        config = EngineConfig(scheduler=SchedulerConfig(setup_timeout_seconds=0.01))
        async with SessionEngine(SlowResolver(), executor, config=config, timer_service=clock) as engine:
            result = await engine.start_session(request())

            assert result.error.code is ErrorCode.SETUP_TIMEOUT
            assert len(engine.store) == 0

    @pytest.mark.asyncio
    async def test_explicit_group_key_skips_resolution(self, engine, resolver):
        sid = await start(engine, target_ref="no pattern here", group_key="G9")

        assert resolver.calls == 0
        assert engine.get_session(sid).unwrap().group_key == "G9"

    @pytest.mark.asyncio
    async def test_prepare_receives_group_key_and_target_ref(self, engine, executor):
        await start(engine, action_context={"headers": {"X-Token": "t"}})

        context = executor.prepared[0]
        assert context["group_key"] == "G1"
        assert context["target_ref"] == "https://example.com/posts/G1"
        assert context["headers"] == {"X-Token": "t"}

    @pytest.mark.asyncio
    async def test_registration_arms_recurring_and_safety(self, engine):
        sid = await start(engine)

        assert engine.timers.is_armed(sid, TimerKind.RECURRING)
        assert engine.timers.is_armed(sid, TimerKind.SAFETY)
        assert not engine.timers.is_armed(sid, TimerKind.CLEANUP)
        view = engine.get_session(sid).unwrap()
        assert view.state is SessionState.ACTIVE
        assert view.completed_count == 0


class TestCompletion:
    """Happy path to the target count."""

    @pytest.mark.asyncio
    async def test_three_ticks_complete_session(self, engine, clock, executor):
        sid = await start(engine, target_count=3, interval_seconds=1)

        states = []
        for _ in range(3):
            await advance(engine, clock, 1)
            states.append(state_of(engine, sid))

        assert states == [SessionState.ACTIVE, SessionState.ACTIVE, SessionState.COMPLETED]
        view = engine.get_session(sid).unwrap()
        assert view.completed_count == 3
        assert view.progress_percent == 100
        assert view.finished_at is not None
        assert executor.calls == 3

    @pytest.mark.asyncio
    async def test_completion_happens_once_and_no_attempts_follow(self, engine, clock, executor):
        sid = await start(engine, target_count=2, interval_seconds=1)

        await advance(engine, clock, 30)

        assert executor.calls == 2
        assert engine.get_session(sid).unwrap().completed_count == 2
        assert engine.metrics.transitions.get(to="completed") == 1
        assert not engine.timers.is_armed(sid, TimerKind.RECURRING)
        assert not engine.timers.is_armed(sid, TimerKind.SAFETY)
        assert engine.timers.is_armed(sid, TimerKind.CLEANUP)

    @pytest.mark.asyncio
    async def test_count_never_exceeds_target(self, engine, clock):
        ids = [await start(engine, target_count=n, interval_seconds=1) for n in (1, 2, 5)]

        for _ in range(10):
            await advance(engine, clock, 1)
            for sid in ids:
                view = engine.get_session(sid).unwrap()
                assert view.completed_count <= view.target_count

    @pytest.mark.asyncio
    async def test_interval_is_respected(self, engine, clock, executor):
        await start(engine, target_count=10, interval_seconds=5)

        await advance(engine, clock, 4)
        assert executor.calls == 0
        await advance(engine, clock, 1)
        assert executor.calls == 1
        await advance(engine, clock, 10)
        assert executor.calls == 3


class TestFailure:
    """Attempt failures are terminal."""

    @pytest.mark.asyncio
    async def test_second_attempt_failure_errors_session(self, engine, clock, executor):
        executor.outcomes = [True, False]
        sid = await start(engine, target_count=5, interval_seconds=1)

        await advance(engine, clock, 2)

        view = engine.get_session(sid).unwrap()
        assert view.state is SessionState.ERRORED
        assert view.completed_count == 1
        assert view.last_error == "scripted failure"

        await advance(engine, clock, 10)
        assert executor.calls == 2

    @pytest.mark.asyncio
    async def test_exception_is_a_failure_carrying_its_message(self, engine, clock, executor):
        executor.outcomes = [ConnectionError("connection reset")]
        sid = await start(engine)

        await advance(engine, clock, 1)

        view = engine.get_session(sid).unwrap()
        assert view.state is SessionState.ERRORED
        assert view.last_error == "connection reset"
        assert engine.metrics.attempts.get(outcome="failure") == 1

    @pytest.mark.asyncio
    async def test_failure_outcome_message_is_kept(self, engine, clock, executor):
        executor.outcomes = [AttemptOutcome.failed("HTTP 403")]
        sid = await start(engine)

        await advance(engine, clock, 1)

        assert engine.get_session(sid).unwrap().last_error == "HTTP 403"

    @pytest.mark.asyncio
    async def test_attempt_timeout(self, resolver, clock):
        executor = ScriptedExecutor()
        executor.gate = asyncio.Event()
        config = EngineConfig(scheduler=SchedulerConfig(action_timeout_seconds=0.05))
        async with SessionEngine(resolver, executor, config=config, timer_service=clock) as engine:
            sid = await start(engine)

            await advance(engine, clock, 1)

            view = engine.get_session(sid).unwrap()
            assert view.state is SessionState.ERRORED
            assert "timed out" in view.last_error

    @pytest.mark.asyncio
    async def test_bool_and_none_results_are_accepted(self, resolver, clock):
        executor = PlainResultExecutor([True, None])
        async with SessionEngine(resolver, executor, timer_service=clock) as engine:
            sid = await start(engine, target_count=2)

            await advance(engine, clock, 2)

            view = engine.get_session(sid).unwrap()
            assert view.state is SessionState.COMPLETED
            assert view.completed_count == 2

    @pytest.mark.asyncio
    async def test_false_result_is_a_failure(self, resolver, clock):
        executor = PlainResultExecutor([False])
        async with SessionEngine(resolver, executor, timer_service=clock) as engine:
            sid = await start(engine)

            await advance(engine, clock, 1)

            view = engine.get_session(sid).unwrap()
            assert view.state is SessionState.ERRORED
            assert view.last_error == "Action reported failure"

    @pytest.mark.asyncio
    async def test_unexpected_result_type_errors_session(self, resolver, clock):
        executor = PlainResultExecutor(["yes"])
        async with SessionEngine(resolver, executor, timer_service=clock) as engine:
            sid = await start(engine, target_count=5)

            await advance(engine, clock, 1)

            view = engine.get_session(sid).unwrap()
            assert view.state is SessionState.ERRORED
            assert view.completed_count == 0
            assert "expected AttemptOutcome" in view.last_error
            assert not engine.scheduler.in_flight(sid)
            assert engine.metrics.sessions_active.get() == 0


class TestStop:
    """Explicit stop requests."""

    @pytest.mark.asyncio
    async def test_stop_freezes_session(self, engine, clock, executor):
        sid = await start(engine, target_count=5)
        await advance(engine, clock, 2)

        result = await engine.stop_session(sid)

        assert result.is_ok()
        assert result.unwrap().state is SessionState.STOPPED
        assert result.unwrap().completed_count == 2

        await advance(engine, clock, 10)
        view = engine.get_session(sid).unwrap()
        assert view.state is SessionState.STOPPED
        assert view.completed_count == 2
        assert executor.calls == 2

    @pytest.mark.asyncio
    async def test_stop_twice_is_ok_noop(self, engine):
        sid = await start(engine)

        first = await engine.stop_session(sid)
        second = await engine.stop_session(sid)

        assert first.is_ok() and second.is_ok()
        assert second.unwrap().state is SessionState.STOPPED
        assert engine.metrics.transitions.get(to="stopped") == 1

    @pytest.mark.asyncio
    async def test_stop_unknown_session(self, engine):
        result = await engine.stop_session("does-not-exist")
        assert isinstance(result.error, NotFoundError)

    @pytest.mark.asyncio
    async def test_stop_completed_session_keeps_completed(self, engine, clock):
        sid = await start(engine, target_count=1)
        await advance(engine, clock, 1)

        result = await engine.stop_session(sid)

        assert result.unwrap().state is SessionState.COMPLETED

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_attempt(self, engine, clock, executor):
        executor.gate = asyncio.Event()
        sid = await start(engine, target_count=5)
        clock.advance(1)
        await settle()
        assert engine.scheduler.in_flight(sid)

        result = await engine.stop_session(sid)
        executor.gate.set()
        await engine.quiesce()

        assert result.unwrap().state is SessionState.STOPPED
        assert not engine.scheduler.in_flight(sid)
        view = engine.get_session(sid).unwrap()
        assert view.state is SessionState.STOPPED
        assert view.completed_count == 0


class TestOverlap:
    """At most one attempt per session."""

    @pytest.mark.asyncio
    async def test_tick_during_attempt_is_skipped(self, engine, clock, executor):
        executor.gate = asyncio.Event()
        sid = await start(engine, target_count=5)

        clock.advance(1)
        await settle()
        clock.advance(1)
        await settle()

        assert executor.calls == 1
        assert engine.metrics.ticks_skipped.get() == 1

        executor.gate.set()
        await engine.quiesce()

        view = engine.get_session(sid).unwrap()
        assert view.completed_count == 1
        assert view.state is SessionState.ACTIVE


class TestDeadline:
    """Safety timer."""

    @pytest.mark.asyncio
    async def test_deadline_times_out_stuck_session(self, resolver, clock):
        executor = ScriptedExecutor()
        executor.gate = asyncio.Event()
        config = EngineConfig(scheduler=SchedulerConfig(
            safety_margin_seconds=5, action_timeout_seconds=10_000,
        ))
        async with SessionEngine(resolver, executor, config=config, timer_service=clock) as engine:
            sid = await start(engine, target_count=2, interval_seconds=1)

            clock.advance(1)
            await settle()
            clock.advance(6)
            await settle()

            view = engine.get_session(sid).unwrap()
            assert view.state is SessionState.TIMED_OUT
            assert not engine.scheduler.in_flight(sid)
            assert not engine.timers.is_armed(sid, TimerKind.RECURRING)
            assert engine.timers.is_armed(sid, TimerKind.CLEANUP)

    @pytest.mark.asyncio
    async def test_deadline_after_completion_is_ignored(self, engine, clock):
        sid = await start(engine, target_count=1)
        await advance(engine, clock, 1)

        await advance(engine, clock, 400)

        assert state_of(engine, sid) is SessionState.COMPLETED
        assert engine.metrics.transitions.get(to="timeout") == 0


class TestCleanup:
    """Deferred removal after the grace period."""

    @pytest.mark.asyncio
    async def test_stopped_session_removed_after_grace(self, engine, clock):
        sid = await start(engine, target_ref="https://example.com/posts/G1")
        await engine.stop_session(sid)

        assert engine.get_session(sid).is_ok()
        await advance(engine, clock, 3599)
        assert engine.get_session(sid).is_ok()

        await advance(engine, clock, 2)

        assert engine.get_session(sid).is_err()
        assert not engine.store.has_group("G1")
        assert not engine.store.has_target_ref("https://example.com/posts/g1")
        assert len(engine.timers) == 0
        assert engine.metrics.sessions_removed.get() == 1

    @pytest.mark.asyncio
    async def test_active_session_never_removed(self, engine, clock):
        sid = await start(engine, target_count=10, interval_seconds=1000)
        engine.scheduler.cleanup.schedule(sid)

        await advance(engine, clock, 3601)

        assert state_of(engine, sid) is SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_purge_terminal_session(self, engine):
        sid = await start(engine)
        await engine.stop_session(sid)

        result = await engine.purge_session(sid)

        assert result.unwrap() is True
        assert engine.get_session(sid).is_err()
        assert not engine.scheduler.cleanup.is_scheduled(sid)

    @pytest.mark.asyncio
    async def test_purge_active_session_refused(self, engine):
        sid = await start(engine)

        result = await engine.purge_session(sid)

        assert result.error.code is ErrorCode.INVALID_REQUEST
        assert engine.get_session(sid).is_ok()

    @pytest.mark.asyncio
    async def test_purge_unknown_session(self, engine):
        result = await engine.purge_session("missing")
        assert isinstance(result.error, NotFoundError)


class TestShutdown:
    """Engine shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_cancels_everything(self, resolver, executor, clock):
        engine = SessionEngine(resolver, executor, timer_service=clock)
        await start(engine)
        await start(engine)

        await engine.shutdown()

        assert len(engine.timers) == 0
        assert engine.health()["status"] == "shut_down"
        result = await engine.start_session(request())
        assert isinstance(result.error, EngineError)
        assert result.error.code is ErrorCode.ENGINE_SHUT_DOWN

    @pytest.mark.asyncio
    async def test_stop_after_shutdown_returns_view(self, resolver, executor, clock):
        engine = SessionEngine(resolver, executor, timer_service=clock)
        sid = await start(engine)
        await engine.shutdown()

        result = await engine.stop_session(sid)

        assert result.is_ok()
        assert result.unwrap().session_id == sid

    @pytest.mark.asyncio
    async def test_shutdown_records_active_sessions_stopped(self, resolver, executor, clock):
        engine = SessionEngine(resolver, executor, timer_service=clock)
        sid = await start(engine, target_count=5)
        await advance(engine, clock, 1)
        assert engine.metrics.sessions_active.get() == 1

        await engine.shutdown()

        view = engine.get_session(sid).unwrap()
        assert view.state is SessionState.STOPPED
        assert view.completed_count == 1
        assert view.finished_at is not None
        assert engine.metrics.sessions_active.get() == 0
        assert engine.metrics.transitions.get(to="stopped") == 1
        assert engine.health()["sessions"]["stopped"] == 1

    @pytest.mark.asyncio
    async def test_shutdown_keeps_terminal_states(self, resolver, executor, clock):
        engine = SessionEngine(resolver, executor, timer_service=clock)
        sid = await start(engine, target_count=1)
        await advance(engine, clock, 1)

        await engine.shutdown()

        assert state_of(engine, sid) is SessionState.COMPLETED
        assert engine.metrics.transitions.get(to="stopped") == 0
