"""Tests for sessions and the session registry."""

import asyncio
import time

import pytest

from voice_relay.core.session import SessionRegistry
from voice_relay.core.turn import Phase
from voice_relay.protocol.errors import MaxSessionsReachedError, SessionNotFoundError
from voice_relay.protocol.messages import SessionEndReason


class TestRegistry:
    """create / get / remove."""

    async def test_create_and_get(self, registry):
        session = await registry.create(owner="conn-1")

        assert session.phase is Phase.IDLE
        assert session.owner == "conn-1"
        assert await registry.get(session.session_id) is session
        assert registry.active_sessions == 1

    async def test_ids_are_unique(self, registry):
        ids = {(await registry.create()).session_id for _ in range(10)}
        assert len(ids) == 10

    async def test_get_unknown(self, registry):
        with pytest.raises(SessionNotFoundError) as exc:
            await registry.get("missing")
        assert exc.value.session_id == "missing"

    async def test_max_sessions(self):
        registry = SessionRegistry(max_sessions=2)
        await registry.create()
        await registry.create()

        with pytest.raises(MaxSessionsReachedError):
            await registry.create()

    async def test_zero_capacity_is_kept(self):
        registry = SessionRegistry(max_sessions=0, idle_timeout_seconds=0)

        assert registry.max_sessions == 0
        assert registry.idle_timeout_seconds == 0
        with pytest.raises(MaxSessionsReachedError):
            await registry.create()

    async def test_remove_twice_is_noop(self, registry):
        session = await registry.create()

        removed = await registry.remove(session.session_id)
        assert removed is session
        assert await registry.remove(session.session_id) is None
        assert registry.active_sessions == 0

    async def test_remove_closes_session(self, registry):
        session = await registry.create()
        session.turn.start_listening()
        session.pending_audio.append(object())

        async def pending():
            await asyncio.sleep(10)

        session.turn_task = asyncio.create_task(pending())
        session.playback_task = asyncio.create_task(pending())
        turn_task, playback_task = session.turn_task, session.playback_task

        await registry.remove(session.session_id, SessionEndReason.DISCONNECTED)
        await asyncio.sleep(0.01)

        assert session.phase is Phase.CLOSED
        assert session.pending_audio == []
        assert turn_task.cancelled()
        assert playback_task.cancelled()
        with pytest.raises(SessionNotFoundError):
            await registry.get(session.session_id)

    async def test_stop_closes_all(self, registry):
        sessions = [await registry.create() for _ in range(3)]

        await registry.stop()

        assert registry.active_sessions == 0
        assert all(s.is_closed for s in sessions)


class TestReaping:
    """Idle sessions are removed after the timeout."""

    async def test_reap_expired(self):
        registry = SessionRegistry(idle_timeout_seconds=30)
        stale = await registry.create()
        fresh = await registry.create()
        stale.last_activity_at = time.monotonic() - 60

        removed = await registry.reap_expired()

        assert removed == [stale.session_id]
        assert stale.is_closed
        assert not fresh.is_closed
        assert registry.active_sessions == 1

    async def test_background_reaper(self):
        registry = SessionRegistry(idle_timeout_seconds=0.05, reap_interval_seconds=0.02)
        session = await registry.create()
        registry.start()
        try:
            await asyncio.sleep(0.2)
            assert session.is_closed
            assert registry.active_sessions == 0
        finally:
            await registry.stop()


class TestRemovalListeners:
    """Listeners hear about every session leaving the registry."""

    async def test_reasons(self):
        registry = SessionRegistry(idle_timeout_seconds=30)
        seen = []
        registry.subscribe_removals(
            lambda session, reason: seen.append((session.session_id, reason))
        )

        removed, stale, remaining = [await registry.create() for _ in range(3)]
        stale.last_activity_at = time.monotonic() - 60

        await registry.remove(removed.session_id)
        await registry.remove(removed.session_id)
        await registry.reap_expired()
        await registry.stop()

        assert seen == [
            (removed.session_id, SessionEndReason.DISCONNECTED),
            (stale.session_id, SessionEndReason.TIMEOUT),
            (remaining.session_id, SessionEndReason.SHUTDOWN),
        ]

    async def test_failing_listener_does_not_block_removal(self, registry):
        def broken(session, reason):
            raise RuntimeError("listener bug")

        seen = []
        registry.subscribe_removals(broken)
        registry.subscribe_removals(lambda session, reason: seen.append(session.session_id))
        session = await registry.create()

        assert await registry.remove(session.session_id) is session
        assert seen == [session.session_id]
        assert session.is_closed

    async def test_unsubscribe(self, registry):
        seen = []

        def listener(session, reason):
            seen.append(session.session_id)

        registry.subscribe_removals(listener)
        registry.unsubscribe_removals(listener)
        registry.unsubscribe_removals(listener)
        session = await registry.create()
        await registry.remove(session.session_id)

        assert seen == []


class TestSession:
    async def test_turn_ids(self, registry):
        session = await registry.create()

        first = session.begin_turn()
        assert session.is_turn_current(first)

        second = session.begin_turn()
        assert not session.is_turn_current(first)
        assert session.is_turn_current(second)

        session.close()
        assert not session.is_turn_current(second)

    async def test_touch(self, registry):
        session = await registry.create()
        session.last_activity_at = time.monotonic() - 50
        assert session.idle_seconds >= 50

        session.touch()
        assert session.idle_seconds < 1

    async def test_metrics(self, registry):
        session = await registry.create()
        session.begin_turn()
        session.turns_completed = 1

        metrics = session.get_metrics()

        assert metrics["session_id"] == session.session_id
        assert metrics["phase"] == "idle"
        assert metrics["turns"] == 1
        assert metrics["turns_completed"] == 1
        assert metrics["turns_interrupted"] == 0
