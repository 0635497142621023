"""
Unit Tests: Timer Services, Registry and Mailbox

Tests:
    - ManualTimerService ordering and clock movement
    - TimerRegistry handles, replacement and cancellation
    - SessionMailbox ordering, failure isolation and closing
"""

import asyncio

import pytest

from cadence.engine.mailbox import (
    EventType,
    MailboxClosedError,
    SessionEvent,
    SessionMailbox,
)
from cadence.engine.timers import ManualTimerService, TimerKind, TimerRegistry


class TestManualTimerService:
    """Virtual clock."""

    def test_nothing_fires_before_advance(self):
        clock = ManualTimerService()
        fired = []
        clock.call_later(1, lambda: fired.append("a"))
        assert fired == []
        assert clock.pending == 1

    def test_fires_in_deadline_order(self):
        clock = ManualTimerService()
        fired = []
        clock.call_later(2, lambda: fired.append("late"))
        clock.call_later(1, lambda: fired.append("early"))
        clock.call_later(1, lambda: fired.append("early-second"))

        assert clock.advance(2) == 3
        assert fired == ["early", "early-second", "late"]
        assert clock.now() == 2

    def test_clock_is_at_deadline_during_callback(self):
        clock = ManualTimerService()
        seen = []
        clock.call_later(3, lambda: seen.append(clock.now()))
        clock.advance(10)
        assert seen == [3]
        assert clock.now() == 10

    def test_cancelled_timer_does_not_fire(self):
        clock = ManualTimerService()
        fired = []
        timer = clock.call_later(1, lambda: fired.append(1))
        timer.cancel()
        clock.advance(5)
        assert fired == []
        assert clock.next_deadline() is None

    def test_negative_advance_rejected(self):
        with pytest.raises(ValueError):
            ManualTimerService().advance(-1)


class TestTimerRegistry:
    """Opaque-handle bookkeeping."""

    def test_recurring_fires_every_interval(self):
        clock = ManualTimerService()
        registry = TimerRegistry(clock)
        ticks = []
        handle = registry.arm_recurring("s1", TimerKind.RECURRING, 2, lambda: ticks.append(clock.now()))

        clock.advance(7)

        assert ticks == [2, 4, 6]
        assert registry.fire_count(handle) == 3
        assert registry.is_armed("s1", TimerKind.RECURRING)

    def test_once_releases_handle_after_firing(self):
        clock = ManualTimerService()
        registry = TimerRegistry(clock)
        fired = []
        registry.arm_once("s1", TimerKind.SAFETY, 5, lambda: fired.append(1))

        clock.advance(5)

        assert fired == [1]
        assert not registry.is_armed("s1", TimerKind.SAFETY)
        assert len(registry) == 0

    def test_rearming_a_kind_replaces_it(self):
        clock = ManualTimerService()
        registry = TimerRegistry(clock)
        fired = []
        first = registry.arm_once("s1", TimerKind.CLEANUP, 5, lambda: fired.append("first"))
        second = registry.arm_once("s1", TimerKind.CLEANUP, 10, lambda: fired.append("second"))

        clock.advance(20)

        assert first != second
        assert fired == ["second"]

    def test_cancel_stops_recurring(self):
        clock = ManualTimerService()
        registry = TimerRegistry(clock)
        ticks = []
        handle = registry.arm_recurring("s1", TimerKind.RECURRING, 1, lambda: ticks.append(1))
        clock.advance(2)

        assert registry.cancel(handle) is True
        clock.advance(5)

        assert len(ticks) == 2
        assert registry.cancel(handle) is False

    def test_cancel_session_only_touches_that_session(self):
        clock = ManualTimerService()
        registry = TimerRegistry(clock)
        for sid in ("a", "b"):
            registry.arm_recurring(sid, TimerKind.RECURRING, 1, lambda: None)
            registry.arm_once(sid, TimerKind.SAFETY, 10, lambda: None)

        assert registry.cancel_session("a") == 2
        assert registry.handle_for("a", TimerKind.RECURRING) is None
        assert registry.is_armed("b", TimerKind.SAFETY)
        assert len(registry) == 2

    def test_invalid_interval_rejected(self):
        registry = TimerRegistry(ManualTimerService())
        with pytest.raises(ValueError):
            registry.arm_recurring("s1", TimerKind.RECURRING, 0, lambda: None)


class TestSessionMailbox:
    """Serialized event delivery."""

    @pytest.mark.asyncio
    async def test_events_handled_in_order(self):
        seen = []

        async def handler(event):
            await asyncio.sleep(0)
            seen.append(event.message)

        mailbox = SessionMailbox("s1", handler)
        mailbox.start()
        for i in range(5):
            mailbox.post(SessionEvent(EventType.TICK, "s1", message=str(i)))
        await mailbox.join()

        assert seen == ["0", "1", "2", "3", "4"]
        await mailbox.close()

    @pytest.mark.asyncio
    async def test_handler_failure_does_not_stop_consumer(self):
        seen = []

        async def handler(event):
            if event.message == "boom":
                raise RuntimeError("boom")
            seen.append(event.message)

        mailbox = SessionMailbox("s1", handler)
        mailbox.start()
        reply = asyncio.get_running_loop().create_future()
        mailbox.post(SessionEvent(EventType.STOP, "s1", message="boom", reply=reply))
        mailbox.post(SessionEvent(EventType.TICK, "s1", message="after"))
        await mailbox.join()

        assert seen == ["after"]
        with pytest.raises(RuntimeError):
            reply.result()
        await mailbox.close()

    @pytest.mark.asyncio
    async def test_retired_mailbox_rejects_posts(self):
        async def handler(event):
            pass

        mailbox = SessionMailbox("s1", handler)
        mailbox.start()
        mailbox.retire()

        assert mailbox.post(SessionEvent(EventType.TICK, "s1")) is False
        await mailbox.close()

    @pytest.mark.asyncio
    async def test_close_fails_pending_replies(self):
        gate = asyncio.Event()

        async def handler(event):
            await gate.wait()

        mailbox = SessionMailbox("s1", handler)
        mailbox.start()
        first = asyncio.get_running_loop().create_future()
        second = asyncio.get_running_loop().create_future()
        mailbox.post(SessionEvent(EventType.STOP, "s1", reply=first))
        mailbox.post(SessionEvent(EventType.STOP, "s1", reply=second))
        await asyncio.sleep(0)

        await mailbox.close()

        assert isinstance(first.exception(), MailboxClosedError)
        assert isinstance(second.exception(), MailboxClosedError)
        assert mailbox.post(SessionEvent(EventType.TICK, "s1")) is False
