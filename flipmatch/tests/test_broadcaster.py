"""
Tests for the session broadcaster.

Tests:
- Outbound queue coalescing
- Inbound validation
- Mode selection while a session is running
- Disconnect semantics (reset vs. transient)
- Fatal faults close subscribers
"""

import asyncio

import pytest

from ..api.broadcaster import (
    SessionBroadcaster,
    OutboundQueue,
    CloseRequest,
    NORMAL_CLOSURE,
    INTERNAL_ERROR_CLOSURE,
)
from ..engine_core.state import GameMode, GameState, SessionStatus
from ..engine_core.events import MessageType, OutboundMessage, LINK_ERROR_PREFIX
from ..simulation import SimulatedArm, SimulatedTable
from .conftest import make_components


class FakeConnection:
    """Records what the broadcaster sends."""

    def __init__(self):
        self.sent = []
        self.closed_with = None

    async def send_json(self, data):
        self.sent.append(data)

    async def close(self, code=NORMAL_CLOSURE):
        self.closed_with = code

    def types(self):
        return [m["type"] for m in self.sent]

    def texts(self):
        return [m["payload"] for m in self.sent if m["type"] == "message"]


def frame(n):
    return OutboundMessage(MessageType.FRAME_UPDATE, {"frame": str(n)})


async def drain():
    await asyncio.sleep(0.02)


def slow_factory(arms=None, fail_open=False):
    def factory(mode, config):
        table = SimulatedTable.shuffled(mode, seed=5)
        arm = SimulatedArm(table, delay=0.05, fail_open=fail_open)
        if arms is not None:
            arms.append(arm)
        return make_components(table, arm)
    return factory


@pytest.fixture
def config(fast_config):
    fast_config.tick_interval = 0.01
    return fast_config


class TestOutboundQueue:
    """Tests for per-subscriber coalescing."""

    def test_frames_keep_latest(self):
        queue = OutboundQueue()
        state_message = OutboundMessage(MessageType.GAME_STATE, GameState())

        queue.put(frame(1))
        queue.put(state_message)
        queue.put(frame(2))
        queue.put(frame(3))

        assert queue.get_nowait() is state_message
        assert queue.get_nowait().payload == {"frame": "3"}
        assert queue.get_nowait() is None

    def test_other_types_all_delivered(self):
        queue = OutboundQueue()
        for text in ("a", "b", "c"):
            queue.put(OutboundMessage.info(text))
        queue.put(OutboundMessage(MessageType.CARDS_HIDDEN, [1, 2]))
        queue.put(OutboundMessage.error("boom"))

        assert len(queue) == 5

    def test_overflow_drops_oldest(self):
        queue = OutboundQueue(max_pending=2)
        for text in ("a", "b", "c"):
            queue.put(OutboundMessage.info(text))

        assert [queue.get_nowait().payload for _ in range(2)] == ["b", "c"]
        assert queue.dropped == 1

    def test_close_after_pending(self):
        queue = OutboundQueue()
        queue.put(OutboundMessage.info("bye"))
        queue.put_close(INTERNAL_ERROR_CLOSURE)

        async def read():
            return [await queue.get(), await queue.get()]

        first, second = asyncio.run(read())
        assert first.payload == "bye"
        assert second == CloseRequest(INTERNAL_ERROR_CLOSURE)


class TestInbound:
    """Tests for client messages."""

    def test_connect_prompts_for_mode(self, config):
        async def scenario():
            broadcaster = SessionBroadcaster(config, slow_factory())
            connection = FakeConnection()
            await broadcaster.connect(connection)
            await drain()
            return connection

        connection = asyncio.run(scenario())

        assert connection.texts() == ["Select game version to start."]

    def test_malformed_messages_ignored(self, config):
        async def scenario():
            broadcaster = SessionBroadcaster(config, slow_factory())
            connection = FakeConnection()
            subscriber = await broadcaster.connect(connection)
            for raw in ("not json", '{"mode": "chess"}', '{"colour": "red"}', "[1, 2]"):
                await broadcaster.handle_inbound(subscriber, raw)
            await drain()
            return broadcaster, connection

        broadcaster, connection = asyncio.run(scenario())

        assert broadcaster.manager.current is None
        assert "error" not in connection.types()

    def test_mode_starts_session(self, config):
        async def scenario():
            broadcaster = SessionBroadcaster(config, slow_factory())
            connection = FakeConnection()
            subscriber = await broadcaster.connect(connection)
            await broadcaster.handle_inbound(subscriber, '{"mode": "yolo"}')
            await drain()
            session = broadcaster.manager.current
            await broadcaster.shutdown()
            return session, subscriber, connection

        session, subscriber, connection = asyncio.run(scenario())

        assert session.mode == GameMode.OBJECT
        assert session.owner == subscriber.subscriber_id
        assert subscriber.session_id == session.session_id
        assert "Object game started. Robot is looking for the board..." in connection.texts()
        assert "game_state" in connection.types()


class TestModeWhilePlaying:
    """A mode selection while a session plays never disturbs it."""

    def test_own_subscriber_ignored(self, config):
        async def scenario():
            broadcaster = SessionBroadcaster(config, slow_factory())
            subscriber = await broadcaster.connect(FakeConnection())
            first = await broadcaster.select_mode(subscriber, GameMode.COLOR)
            second = await broadcaster.select_mode(subscriber, GameMode.COLOR)
            await broadcaster.shutdown()
            return first, second

        first, second = asyncio.run(scenario())

        assert first is second

    def test_other_subscriber_told_running(self, config):
        async def scenario():
            broadcaster = SessionBroadcaster(config, slow_factory())
            owner = await broadcaster.connect(FakeConnection())
            other_connection = FakeConnection()
            other = await broadcaster.connect(other_connection)
            session = await broadcaster.select_mode(owner, GameMode.COLOR)
            await broadcaster.handle_inbound(other, '{"mode": "object"}')
            await drain()
            current = broadcaster.manager.current
            await broadcaster.shutdown()
            return session, current, other, other_connection

        session, current, other, other_connection = asyncio.run(scenario())

        assert current is session
        assert current.status == SessionStatus.PLAYING
        assert other.session_id is None
        assert "Game already running." in other_connection.texts()


class TestDisconnect:
    """Disconnect semantics."""

    def test_abrupt_disconnect_keeps_session(self, config):
        async def scenario():
            broadcaster = SessionBroadcaster(config, slow_factory())
            first = await broadcaster.connect(FakeConnection())
            session = await broadcaster.select_mode(first, GameMode.COLOR)
            ack = await broadcaster.disconnect(first, 1006)

            second_connection = FakeConnection()
            second = await broadcaster.connect(second_connection)
            reattached = await broadcaster.select_mode(second, GameMode.COLOR)
            await drain()
            await broadcaster.shutdown()
            return session, ack, reattached, second, second_connection

        session, ack, reattached, second, connection = asyncio.run(scenario())

        assert ack is None
        assert reattached is session
        assert session.owner == second.subscriber_id
        assert "Reattached to the running game." in connection.texts()

    def test_owner_normal_close_resets(self, config):
        arms = []

        async def scenario():
            broadcaster = SessionBroadcaster(config, slow_factory(arms))
            owner = await broadcaster.connect(FakeConnection())
            session = await broadcaster.select_mode(owner, GameMode.COLOR)
            await asyncio.sleep(0.05)
            ack = await broadcaster.disconnect(owner, NORMAL_CLOSURE)
            return broadcaster, session, ack

        broadcaster, session, ack = asyncio.run(scenario())

        assert ack.session_id == session.session_id
        assert ack.released
        assert broadcaster.manager.current is None
        assert arms[0].commands[-1] == ("park", None)

    def test_new_mode_after_abandon_restarts(self, config):
        async def scenario():
            broadcaster = SessionBroadcaster(config, slow_factory())
            first = await broadcaster.connect(FakeConnection())
            old = await broadcaster.select_mode(first, GameMode.COLOR)
            await broadcaster.disconnect(first, 1006)
            second = await broadcaster.connect(FakeConnection())
            new = await broadcaster.select_mode(second, GameMode.OBJECT)
            await broadcaster.shutdown()
            return old, new

        old, new = asyncio.run(scenario())

        assert new.session_id != old.session_id
        assert new.mode == GameMode.OBJECT
        assert old.task.done()


class TestFatalFault:
    """A fatal fault is delivered and then closes subscribers."""

    def test_link_failure_closes_with_1011(self, config):
        async def scenario():
            broadcaster = SessionBroadcaster(config, slow_factory(fail_open=True))
            connection = FakeConnection()
            subscriber = await broadcaster.connect(connection)
            session = await broadcaster.select_mode(subscriber, GameMode.COLOR)
            await session.task
            await drain()
            ack = await broadcaster.disconnect(subscriber, INTERNAL_ERROR_CLOSURE)
            return broadcaster, connection, ack

        broadcaster, connection, ack = asyncio.run(scenario())

        errors = [m["payload"] for m in connection.sent if m["type"] == "error"]
        assert len(errors) == 1
        assert errors[0].startswith(LINK_ERROR_PREFIX)
        assert connection.closed_with == INTERNAL_ERROR_CLOSURE
        assert ack.final_status == SessionStatus.FAILED
        assert broadcaster.manager.current is None
