"""
Unit tests for the session state machine, backoff, timers and event channel.
"""

import asyncio

import pytest

from mining_engine.client.backoff import ReconnectPolicy
from mining_engine.client.events import EventChannel, StatsUpdate
from mining_engine.client.states import (
    SessionEvent,
    SessionState,
    can_get_work,
    transition,
)
from mining_engine.client.timers import TimerKind, TimerScheduler
from mining_engine.errors import InvalidTransitionError


class TestTransitions:
    def test_happy_path(self):
        state = SessionState.DISCONNECTED
        for event, expected in [
            (SessionEvent.CONNECT, SessionState.CONNECTING),
            (SessionEvent.CONNECTED, SessionState.IDLE),
            (SessionEvent.WORK_RECEIVED, SessionState.MINING),
            (SessionEvent.SHARE_FOUND, SessionState.SUBMITTING),
            (SessionEvent.SHARE_REJECTED, SessionState.MINING),
            (SessionEvent.SHARE_FOUND, SessionState.SUBMITTING),
            (SessionEvent.SHARE_ACCEPTED, SessionState.IDLE),
        ]:
            state = transition(state, event)
            assert state is expected

    def test_stale_share_returns_to_idle(self):
        assert transition(SessionState.SUBMITTING, SessionEvent.SHARE_STALE) is SessionState.IDLE

    def test_exhausted_work_returns_to_idle(self):
        assert transition(SessionState.MINING, SessionEvent.WORK_EXHAUSTED) is SessionState.IDLE

    def test_failed_connect(self):
        assert (
            transition(SessionState.CONNECTING, SessionEvent.CONNECT_FAILED)
            is SessionState.DISCONNECTED
        )

    @pytest.mark.parametrize("state", list(SessionState))
    def test_disconnect_reachable_from_every_state(self, state):
        assert transition(state, SessionEvent.DISCONNECT) is SessionState.DISCONNECTED
        assert transition(state, SessionEvent.CONNECTION_LOST) is SessionState.DISCONNECTED

    @pytest.mark.parametrize(
        "state,event",
        [
            (SessionState.DISCONNECTED, SessionEvent.WORK_RECEIVED),
            (SessionState.IDLE, SessionEvent.SHARE_FOUND),
            (SessionState.MINING, SessionEvent.SHARE_ACCEPTED),
            (SessionState.IDLE, SessionEvent.CONNECT),
        ],
    )
    def test_invalid_transitions(self, state, event):
        with pytest.raises(InvalidTransitionError):
            transition(state, event)

    def test_get_work_only_when_connected(self):
        assert can_get_work(SessionState.IDLE)
        assert can_get_work(SessionState.MINING)
        assert not can_get_work(SessionState.SUBMITTING)
        assert not can_get_work(SessionState.DISCONNECTED)


class TestReconnectPolicy:
    def test_four_failures_back_off_exponentially(self):
        policy = ReconnectPolicy(1.0, 30.0, max_retries=10)
        delays = []
        for _ in range(4):
            policy.record_failure()
            delays.append(policy.next_delay())
        assert delays == [1.0, 2.0, 4.0, 8.0]

    def test_delay_capped(self):
        policy = ReconnectPolicy(1.0, 30.0, max_retries=20)
        for _ in range(10):
            policy.record_failure()
        assert policy.next_delay() == 30.0

    def test_exhausted_after_budget(self):
        policy = ReconnectPolicy(max_retries=2)
        policy.record_failure()
        assert not policy.exhausted
        policy.record_failure()
        assert policy.exhausted

    def test_reset(self):
        policy = ReconnectPolicy()
        policy.record_failure()
        policy.record_failure()
        policy.reset()
        assert policy.failures == 0
        assert policy.next_delay() == 0.0


class TestTimerScheduler:
    @pytest.mark.asyncio
    async def test_wait_fires(self, clock):
        timers = TimerScheduler(clock.sleep)
        assert await timers.wait(TimerKind.POLL, 5.0) is True
        assert clock.sleeps == [5.0]

    @pytest.mark.asyncio
    async def test_cancel_wakes_waiter(self):
        timers = TimerScheduler()
        waiter = asyncio.create_task(timers.wait(TimerKind.RECONNECT, 60.0))
        await asyncio.sleep(0)
        timers.cancel_all()
        assert await asyncio.wait_for(waiter, timeout=1.0) is False
        assert timers.pending == 0

    @pytest.mark.asyncio
    async def test_old_cancel_does_not_affect_new_timer(self, clock):
        timers = TimerScheduler(clock.sleep)
        await timers.wait(TimerKind.POLL, 1.0)
        timers.cancel_all()
        assert await timers.wait(TimerKind.POLL, 2.0) is True


class TestEventChannel:
    @pytest.mark.asyncio
    async def test_publish_and_get(self):
        channel = EventChannel(max_size=10)
        channel.publish(StatsUpdate({"n": 1}))
        event = await channel.get()
        assert event.stats == {"n": 1}

    def test_drops_oldest_when_full(self):
        channel = EventChannel(max_size=2)
        for i in range(5):
            channel.publish(StatsUpdate({"n": i}))
        assert channel.dropped == 3
        assert [e.stats["n"] for e in channel.drain()] == [3, 4]
        assert len(channel) == 0
