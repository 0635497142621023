"""
Session Scheduler: Setup, Timer-Driven Attempts and Terminal Handling

Flow per session:

    start_session()
        validate → resolve group key → prepare action context
        → register (store + mailbox + RECURRING + SAFETY timers)

    RECURRING fires → TICK ─┐
    SAFETY fires → DEADLINE ├─► mailbox ─► one consumer per session
    stop_session() → STOP   │
    attempt task → ATTEMPT_*┘

    terminal transition → cancel RECURRING/SAFETY, cancel in-flight
                          attempt, arm CLEANUP (DeferredCleanup)

Attempts run as their own tasks, so a slow action never delays a stop or
a deadline for the same session. At most one attempt is in flight per
session; a tick that finds one outstanding is skipped. Outcomes re-enter
through the mailbox and are dropped if the session left ACTIVE meanwhile.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional

from cadence.actions.protocols import ActionExecutor, AttemptOutcome, GroupResolver
from cadence.core.config import SchedulerConfig
from cadence.core.errors import (
    CadenceError,
    EngineError,
    ExecutionFailure,
    InvalidInputError,
    NotFoundError,
    SetupError,
)
from cadence.core.types import Result, Ok, Err
from cadence.engine.cleanup import DeferredCleanup
from cadence.engine.mailbox import (
    EventType,
    MailboxClosedError,
    SessionEvent,
    SessionMailbox,
)
from cadence.engine.timers import TimerKind, TimerRegistry
from cadence.observability.metrics import EngineMetrics
from cadence.session.model import Session, SessionView
from cadence.session.state_machine import (
    SessionState,
    SessionStateMachine,
    StateTransitionEvent,
    Trigger,
)
from cadence.session.store import IndexedSessionStore

logger = logging.getLogger(__name__)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _as_outcome(result: Any) -> AttemptOutcome:
    """Normalize an executor's return value; bools and None are accepted."""
    if isinstance(result, AttemptOutcome):
        return result
    if result is None or result is True:
        return AttemptOutcome.ok()
    if result is False:
        return AttemptOutcome.failed("Action reported failure")
    raise TypeError(
        f"Executor returned {type(result).__name__}, expected AttemptOutcome"
    )


class SessionScheduler:
    """
    Owns every session's timers, mailbox and in-flight attempt.

    Usage:
        scheduler = SessionScheduler(store, resolver, executor, TimerRegistry(LoopTimerService()))
        result = await scheduler.start_session("https://example.com/p/1", 10, 5)
        ...
        await scheduler.stop_session(result.unwrap())
        await scheduler.shutdown()
    """

    def __init__(
        self,
        store: IndexedSessionStore,
        resolver: GroupResolver,
        executor: ActionExecutor,
        timers: TimerRegistry,
        config: Optional[SchedulerConfig] = None,
        metrics: Optional[EngineMetrics] = None,
        state_machine: Optional[SessionStateMachine] = None,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._executor = executor
        self._timers = timers
        self._config = config or SchedulerConfig()
        self._metrics = metrics or EngineMetrics()
        self._fsm = state_machine or SessionStateMachine()
        self._fsm.add_listener(self._record_transition)

        self._mailboxes: dict[str, SessionMailbox] = {}
        self._prepared: dict[str, Any] = {}
        self._inflight: dict[str, asyncio.Task[None]] = {}
        self._cleanup = DeferredCleanup(
            store,
            timers,
            self._config.cleanup_grace_seconds,
            deliver=lambda sid: self._post(sid, EventType.CLEANUP),
            metrics=self._metrics,
        )
        self._closed = False

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------
    @property
    def store(self) -> IndexedSessionStore:
        return self._store

    @property
    def timers(self) -> TimerRegistry:
        return self._timers

    @property
    def cleanup(self) -> DeferredCleanup:
        return self._cleanup

    @property
    def metrics(self) -> EngineMetrics:
        return self._metrics

    @property
    def state_machine(self) -> SessionStateMachine:
        return self._fsm

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def closed(self) -> bool:
        return self._closed

    def in_flight(self, session_id: str) -> bool:
        return session_id in self._inflight

    # -------------------------------------------------------------------------
    # Start
    # -------------------------------------------------------------------------
    async def start_session(
        self,
        target_ref: str,
        target_count: int,
        interval_seconds: int,
        action_context: Optional[Mapping[str, Any]] = None,
        group_key: Optional[str] = None,
    ) -> Result[str, CadenceError]:
        """
        Validate, set up and register a new session.

        Nothing is registered unless every setup step succeeds.

        Returns:
            Ok(session_id) or Err(InvalidInputError | SetupError | EngineError)
        """
        if self._closed:
            return Err(EngineError.shut_down())

        invalid = self._validate(target_ref, target_count, interval_seconds)
        if invalid is not None:
            return Err(invalid)
        over_capacity = self._check_capacity()
        if over_capacity is not None:
            return Err(over_capacity)

        if group_key is None:
            resolved = await self._setup_step(
                "resolve",
                lambda: self._resolver.resolve(target_ref),
                lambda e: SetupError.resolution_failed(target_ref, str(e) or type(e).__name__, e),
            )
            if resolved.is_err():
                return resolved
            group_key = resolved.unwrap()
        if not group_key or not str(group_key).strip():
            return Err(SetupError.resolution_failed(target_ref, "empty group key"))
        group_key = str(group_key)

        context: dict[str, Any] = {"group_key": group_key, "target_ref": target_ref}
        context.update(action_context or {})
        prepared = await self._setup_step(
            "prepare",
            lambda: self._executor.prepare(context),
            lambda e: SetupError.context_failed(str(e) or type(e).__name__, e),
        )
        if prepared.is_err():
            return prepared

        # Setup awaited; the engine may have been shut down or filled up meanwhile
        if self._closed:
            return Err(EngineError.shut_down())
        over_capacity = self._check_capacity()
        if over_capacity is not None:
            return Err(over_capacity)

        session = Session(
            group_key=group_key,
            target_ref=target_ref,
            target_count=target_count,
            interval_seconds=interval_seconds,
        )
        self._register(session, prepared.unwrap())
        return Ok(session.session_id)

    def _validate(
        self,
        target_ref: Any,
        target_count: Any,
        interval_seconds: Any,
    ) -> Optional[InvalidInputError]:
        if not isinstance(target_ref, str) or not target_ref.strip():
            return InvalidInputError.target_ref(target_ref)
        if not _is_int(target_count) or target_count <= 0:
            return InvalidInputError.target_count(target_count)
        if not _is_int(interval_seconds) or interval_seconds < 1:
            return InvalidInputError.interval(interval_seconds)
        return None

    def _check_capacity(self) -> Optional[InvalidInputError]:
        limit = self._config.max_active_sessions
        if limit <= 0:
            return None
        active = self._store.count_by_state()[SessionState.ACTIVE]
        if active >= limit:
            return InvalidInputError.capacity_exceeded(active, limit)
        return None

    async def _setup_step(
        self,
        step: str,
        call: Callable[[], Awaitable[Any]],
        on_error: Callable[[Exception], SetupError],
    ) -> Result[Any, SetupError]:
        timeout = self._config.setup_timeout_seconds
        try:
            value = await asyncio.wait_for(call(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Setup step %s timed out after %ss", step, timeout)
            return Err(SetupError.timeout(step, timeout))
        except Exception as e:
            error = on_error(e)
            logger.warning("Setup step %s failed: %s", step, error.message)
            return Err(error)
        return Ok(value)

    def _register(self, session: Session, prepared: Any) -> None:
        sid = session.session_id
        self._store.put(session)
        self._prepared[sid] = prepared

        mailbox = SessionMailbox(sid, self._handle_event)
        self._mailboxes[sid] = mailbox
        mailbox.start()

        self._timers.arm_recurring(
            sid,
            TimerKind.RECURRING,
            session.interval_seconds,
            lambda: self._post(sid, EventType.TICK),
        )
        deadline = (
            session.target_count * session.interval_seconds
            + self._config.safety_margin_seconds
        )
        self._timers.arm_once(
            sid,
            TimerKind.SAFETY,
            deadline,
            lambda: self._post(sid, EventType.DEADLINE),
        )

        self._metrics.sessions_started.inc()
        self._metrics.sessions_active.inc()
        logger.info(
            "Session %s started: group=%s target=%d interval=%ds deadline=%ss",
            sid, session.group_key, session.target_count,
            session.interval_seconds, deadline,
        )

    # -------------------------------------------------------------------------
    # Stop / purge
    # -------------------------------------------------------------------------
    async def stop_session(self, session_id: str) -> Result[SessionView, CadenceError]:
        """
        Stop a session and return its post-stop view.

        Stopping a session that is already terminal is an Ok no-op.
        """
        if session_id not in self._store:
            return Err(NotFoundError.session(session_id))

        reply: asyncio.Future[Optional[SessionView]] = (
            asyncio.get_running_loop().create_future()
        )
        if not self._post(session_id, EventType.STOP, reply=reply):
            return self._current_view(session_id)

        try:
            view = await reply
        except MailboxClosedError:
            return self._current_view(session_id)
        except Exception as e:
            return Err(EngineError.internal("stop_session", e))

        if view is None:
            return Err(NotFoundError.session(session_id))
        return Ok(view)

    async def purge_session(self, session_id: str) -> Result[bool, CadenceError]:
        """Remove a terminal session now instead of waiting for its grace period."""
        session = self._store.get(session_id)
        if session is None:
            return Err(NotFoundError.session(session_id))
        if session.is_active:
            return Err(InvalidInputError.request("session_id", "session is still active"))

        reply: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        if not self._post(session_id, EventType.CLEANUP, reply=reply):
            return Ok(self._cleanup.purge_now(session_id))
        try:
            removed = await reply
        except MailboxClosedError:
            return Ok(session_id not in self._store)
        except Exception as e:
            return Err(EngineError.internal("purge_session", e))
        if not removed and session_id in self._store:
            return Err(InvalidInputError.request("session_id", "session is still active"))
        return Ok(bool(removed))

    def _current_view(self, session_id: str) -> Result[SessionView, CadenceError]:
        session = self._store.get(session_id)
        if session is None:
            return Err(NotFoundError.session(session_id))
        return Ok(session.view())

    # -------------------------------------------------------------------------
    # Event delivery
    # -------------------------------------------------------------------------
    def _post(
        self,
        session_id: str,
        event_type: EventType,
        message: Optional[str] = None,
        reply: Optional[asyncio.Future[Any]] = None,
    ) -> bool:
        mailbox = self._mailboxes.get(session_id)
        if mailbox is None:
            return False
        return mailbox.post(SessionEvent(event_type, session_id, message, reply))

    async def _handle_event(self, event: SessionEvent) -> None:
        session = self._store.get(event.session_id)
        if session is None:
            if event.reply is not None and not event.reply.done():
                event.reply.set_result(None)
            return

        if event.type is EventType.TICK:
            self._on_tick(session)
        elif event.type is EventType.DEADLINE:
            self._on_deadline(session)
        elif event.type is EventType.STOP:
            self._on_stop(session, event.reply)
        elif event.type is EventType.ATTEMPT_SUCCEEDED:
            self._on_attempt_result(session, AttemptOutcome.ok(event.message))
        elif event.type is EventType.ATTEMPT_FAILED:
            self._on_attempt_result(
                session, AttemptOutcome.failed(event.message or "Action attempt failed"),
            )
        elif event.type is EventType.CLEANUP:
            self._on_cleanup(session, event.reply)

    def _on_tick(self, session: Session) -> None:
        sid = session.session_id
        if not session.is_active or session.completed_count >= session.target_count:
            return
        if sid in self._inflight:
            self._metrics.ticks_skipped.inc()
            logger.debug("Session %s: attempt still in flight, tick skipped", sid)
            return

        session.attempt_count += 1
        self._inflight[sid] = asyncio.create_task(
            self._run_attempt(sid, self._prepared.get(sid)),
            name=f"session-attempt:{sid}",
        )

    async def _run_attempt(self, session_id: str, prepared: Any) -> None:
        timeout = self._config.action_timeout_seconds
        try:
            with self._metrics.attempt_latency.time():
                result = await asyncio.wait_for(self._executor.attempt(prepared), timeout)
            outcome = _as_outcome(result)
        except asyncio.TimeoutError:
            failure = ExecutionFailure.timeout(session_id, timeout)
            outcome = AttemptOutcome.failed(failure.message)
        except Exception as e:
            failure = ExecutionFailure.attempt_failed(
                session_id, str(e) or type(e).__name__, cause=e,
            )
            outcome = AttemptOutcome.failed(failure.message)

        event_type = (
            EventType.ATTEMPT_SUCCEEDED if outcome.success else EventType.ATTEMPT_FAILED
        )
        if not self._post(session_id, event_type, message=outcome.message):
            self._inflight.pop(session_id, None)

    def _on_attempt_result(self, session: Session, outcome: AttemptOutcome) -> None:
        sid = session.session_id
        self._inflight.pop(sid, None)
        self._metrics.attempts.inc(outcome="success" if outcome.success else "failure")

        if not session.is_active:
            logger.debug(
                "Session %s is %s; discarding attempt outcome", sid, session.state.value,
            )
            return

        if outcome.success:
            event = self._transition(session, Trigger.ATTEMPT_SUCCEEDED)
            if event is not None and not event.entered_terminal:
                logger.info(
                    "Session %s: attempt %d/%d completed",
                    sid, session.completed_count, session.target_count,
                )
        else:
            self._transition(session, Trigger.ATTEMPT_FAILED, error=outcome.message)

    def _on_deadline(self, session: Session) -> None:
        if session.is_active:
            self._transition(session, Trigger.DEADLINE_ELAPSED)

    def _on_stop(
        self,
        session: Session,
        reply: Optional[asyncio.Future[Any]],
    ) -> None:
        if session.is_active:
            self._transition(session, Trigger.STOP_REQUESTED)
        else:
            logger.info(
                "Session %s already %s; stop ignored",
                session.session_id, session.state.value,
            )
        if reply is not None and not reply.done():
            reply.set_result(session.view())

    def _on_cleanup(
        self,
        session: Session,
        reply: Optional[asyncio.Future[Any]],
    ) -> None:
        sid = session.session_id
        if session.is_active:
            logger.warning("Session %s is still active; cleanup refused", sid)
            if reply is not None and not reply.done():
                reply.set_result(False)
            return

        removed = self._cleanup.purge_now(sid)
        self._timers.cancel_session(sid)
        self._prepared.pop(sid, None)
        mailbox = self._mailboxes.pop(sid, None)
        if mailbox is not None:
            mailbox.retire()
        if reply is not None and not reply.done():
            reply.set_result(removed)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------
    def _transition(
        self,
        session: Session,
        trigger: Trigger,
        error: Optional[str] = None,
    ) -> Optional[StateTransitionEvent]:
        result = self._fsm.apply(session, trigger, error)
        if result.is_err():
            logger.debug(
                "Session %s: %s ignored (%s)", session.session_id, trigger.value, result.error,
            )
            return None
        event = result.unwrap()
        if event.entered_terminal:
            self._on_terminal(session, event)
        return event

    def _on_terminal(self, session: Session, event: StateTransitionEvent) -> None:
        sid = session.session_id
        self._timers.cancel_kind(sid, TimerKind.RECURRING)
        self._timers.cancel_kind(sid, TimerKind.SAFETY)
        task = self._inflight.pop(sid, None)
        if task is not None and not task.done():
            task.cancel()
        self._prepared.pop(sid, None)
        self._metrics.sessions_active.dec()
        self._cleanup.schedule(sid)

        state = event.to_state
        if state is SessionState.COMPLETED:
            logger.info(
                "Session %s completed: %d/%d", sid, session.completed_count, session.target_count,
            )
        elif state is SessionState.ERRORED:
            logger.error(
                "Session %s failed after %d/%d: %s",
                sid, session.completed_count, session.target_count, session.last_error,
            )
        elif state is SessionState.TIMED_OUT:
            logger.warning(
                "Session %s timed out at %d/%d",
                sid, session.completed_count, session.target_count,
            )
        else:
            logger.info(
                "Session %s stopped at %d/%d",
                sid, session.completed_count, session.target_count,
            )

    def _record_transition(self, event: StateTransitionEvent) -> None:
        self._metrics.transitions.inc(to=event.to_state.value)

    # -------------------------------------------------------------------------
    # Quiesce / shutdown
    # -------------------------------------------------------------------------
    async def quiesce(self) -> None:
        """Wait until no attempt is in flight and every mailbox is drained."""
        while True:
            tasks = list(self._inflight.values())
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
            mailboxes = list(self._mailboxes.values())
            await asyncio.gather(*(m.join() for m in mailboxes))
            if not self._inflight and all(m.pending == 0 for m in self._mailboxes.values()):
                return

    async def shutdown(self) -> None:
        """Mark active sessions STOPPED, cancel timers and attempts, close mailboxes."""
        if self._closed:
            return
        self._closed = True

        # Nothing will drive the remaining sessions again; record them as stopped
        stopped = 0
        for session in self._store.all():
            if session.is_active and self._fsm.apply(session, Trigger.STOP_REQUESTED).is_ok():
                self._metrics.sessions_active.dec()
                stopped += 1

        timers = self._timers.cancel_all()
        tasks = list(self._inflight.values())
        self._inflight.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        mailboxes = list(self._mailboxes.values())
        self._mailboxes.clear()
        await asyncio.gather(*(m.close() for m in mailboxes))
        self._prepared.clear()

        logger.info(
            "Scheduler shut down: %d sessions stopped, %d timers, %d attempts, "
            "%d mailboxes cancelled",
            stopped, timers, len(tasks), len(mailboxes),
        )
