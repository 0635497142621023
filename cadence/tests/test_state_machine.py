"""
Unit Tests: Session Lifecycle Machine

Tests:
    - Transition table and guard selection
    - Terminal states are sticky
    - Record effects (count, last_error, finished_at)
    - Listener isolation
"""

import pytest

from cadence.session.model import Session
from cadence.session.state_machine import (
    SessionState,
    SessionStateMachine,
    Trigger,
)


@pytest.fixture
def fsm():
    return SessionStateMachine()


def make_session(target_count=3):
    return Session(
        group_key="G1",
        target_ref="https://example.com/posts/G1",
        target_count=target_count,
        interval_seconds=1,
    )


class TestSuccessPath:
    """ATTEMPT_SUCCEEDED edges."""

    def test_success_below_target_stays_active(self, fsm):
        s = make_session(target_count=3)

        event = fsm.apply(s, Trigger.ATTEMPT_SUCCEEDED).unwrap()

        assert s.state is SessionState.ACTIVE
        assert s.completed_count == 1
        assert event.from_state is SessionState.ACTIVE
        assert event.to_state is SessionState.ACTIVE
        assert not event.entered_terminal

    def test_success_reaching_target_completes(self, fsm):
        s = make_session(target_count=2)
        fsm.apply(s, Trigger.ATTEMPT_SUCCEEDED)

        event = fsm.apply(s, Trigger.ATTEMPT_SUCCEEDED).unwrap()

        assert s.state is SessionState.COMPLETED
        assert s.completed_count == 2
        assert s.finished_at is not None
        assert event.entered_terminal

    def test_target_of_one_completes_immediately(self, fsm):
        s = make_session(target_count=1)

        fsm.apply(s, Trigger.ATTEMPT_SUCCEEDED)

        assert s.state is SessionState.COMPLETED
        assert s.completed_count == 1


class TestTerminalTransitions:
    """Failure, stop and deadline."""

    def test_failure_records_error(self, fsm):
        s = make_session()

        event = fsm.apply(s, Trigger.ATTEMPT_FAILED, error="HTTP 500").unwrap()

        assert s.state is SessionState.ERRORED
        assert s.last_error == "HTTP 500"
        assert event.error == "HTTP 500"

    def test_failure_without_message_gets_default(self, fsm):
        s = make_session()
        fsm.apply(s, Trigger.ATTEMPT_FAILED)
        assert s.last_error

    @pytest.mark.parametrize("trigger,state", [
        (Trigger.STOP_REQUESTED, SessionState.STOPPED),
        (Trigger.DEADLINE_ELAPSED, SessionState.TIMED_OUT),
    ])
    def test_stop_and_deadline(self, fsm, trigger, state):
        s = make_session()
        fsm.apply(s, trigger)
        assert s.state is state
        assert s.last_error is None

    @pytest.mark.parametrize("terminal", [
        Trigger.STOP_REQUESTED,
        Trigger.DEADLINE_ELAPSED,
        Trigger.ATTEMPT_FAILED,
    ])
    def test_terminal_states_are_sticky(self, fsm, terminal):
        s = make_session()
        fsm.apply(s, terminal)
        state, count, finished = s.state, s.completed_count, s.finished_at

        for trigger in Trigger:
            result = fsm.apply(s, trigger)
            assert result.is_err()

        assert s.state is state
        assert s.completed_count == count
        assert s.finished_at == finished

    def test_completed_rejects_further_success(self, fsm):
        s = make_session(target_count=1)
        fsm.apply(s, Trigger.ATTEMPT_SUCCEEDED)

        result = fsm.apply(s, Trigger.ATTEMPT_SUCCEEDED)

        assert result.is_err()
        assert s.completed_count == 1


class TestIntrospection:
    """can_apply / available_triggers."""

    def test_active_accepts_every_trigger(self, fsm):
        s = make_session()
        assert set(fsm.available_triggers(s)) == set(Trigger)
        assert fsm.can_apply(s, Trigger.STOP_REQUESTED)

    def test_terminal_accepts_nothing(self, fsm):
        s = make_session()
        fsm.apply(s, Trigger.STOP_REQUESTED)
        assert fsm.available_triggers(s) == []
        assert not fsm.can_apply(s, Trigger.ATTEMPT_SUCCEEDED)


class TestListeners:
    """Listener notification."""

    def test_listener_receives_events(self, fsm):
        events = []
        fsm.add_listener(events.append)
        s = make_session()

        fsm.apply(s, Trigger.ATTEMPT_SUCCEEDED)
        fsm.apply(s, Trigger.STOP_REQUESTED)

        assert [e.to_state for e in events] == [SessionState.ACTIVE, SessionState.STOPPED]

    def test_listener_failure_does_not_propagate(self, fsm):
        def broken(event):
            raise RuntimeError("listener bug")

        fsm.add_listener(broken)
        s = make_session()

        result = fsm.apply(s, Trigger.STOP_REQUESTED)

        assert result.is_ok()
        assert s.state is SessionState.STOPPED
