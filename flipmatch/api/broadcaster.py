"""
Session Broadcaster - Push channel between the engine and browsers.

Responsibilities:
- Track subscriber connections
- Fan engine messages out to every subscriber without blocking the loop
- Route inbound mode selections to the session manager
- Decide what a disconnect means (transient fault vs. intentional reset)

Each subscriber has its own outbound queue and sender task. Publishing
only enqueues. frame_update messages are coalesced (keep latest only);
every other type is delivered in order.
"""

from __future__ import annotations
import asyncio
from collections import deque
from dataclasses import dataclass, field
import itertools
import json
import logging
from typing import Any, Protocol

from pydantic import ValidationError

from ..config import EngineConfig
from ..engine_core.state import GameMode, SessionStatus
from ..engine_core.events import MessageType, OutboundMessage, FATAL_ERROR_PREFIX
from ..engine_core.reducer import game_state_message
from ..session.manager import SessionManager, Session, TeardownAck, ComponentFactory
from .schemas import ModeSelectionCommand, serialize_message

logger = logging.getLogger(__name__)

NORMAL_CLOSURE = 1000
INTERNAL_ERROR_CLOSURE = 1011

COALESCED_TYPES = frozenset({MessageType.FRAME_UPDATE})


class Connection(Protocol):
    """The part of a WebSocket the broadcaster uses."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = NORMAL_CLOSURE) -> None: ...


@dataclass(frozen=True)
class CloseRequest:
    """Queue marker: flush, then close the connection."""
    code: int


class OutboundQueue:
    """
    Per-subscriber message queue.

    Coalesced types keep only their latest message. Other types are
    never coalesced; if a subscriber falls max_pending behind, the
    oldest message is dropped with a warning.
    """

    def __init__(self, max_pending: int = 512):
        self.max_pending = max_pending
        self._items: deque[OutboundMessage | CloseRequest] = deque()
        self._ready = asyncio.Event()
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._items)

    def put(self, message: OutboundMessage) -> None:
        if message.type in COALESCED_TYPES:
            stale = [
                item for item in self._items
                if isinstance(item, OutboundMessage) and item.type == message.type
            ]
            for item in stale:
                self._items.remove(item)
        elif len(self._items) >= self.max_pending:
            self._items.popleft()
            self.dropped += 1
            logger.warning("Subscriber queue full, dropped oldest message (%d total)", self.dropped)
        self._items.append(message)
        self._ready.set()

    def put_close(self, code: int) -> None:
        self._items.append(CloseRequest(code))
        self._ready.set()

    def get_nowait(self) -> OutboundMessage | CloseRequest | None:
        return self._items.popleft() if self._items else None

    async def get(self) -> OutboundMessage | CloseRequest:
        while not self._items:
            self._ready.clear()
            await self._ready.wait()
        return self._items.popleft()


_subscriber_ids = itertools.count(1)


@dataclass(eq=False)
class Subscriber:
    """One connected browser."""
    connection: Connection
    subscriber_id: int = field(default_factory=lambda: next(_subscriber_ids))
    queue: OutboundQueue = field(default_factory=OutboundQueue)
    session_id: str | None = None  # Session this subscriber selected or reattached to
    sender: asyncio.Task | None = None


class SessionBroadcaster:
    """
    Owns the subscribers and the session manager for one board.

    Usage:
        broadcaster = SessionBroadcaster(config)
        subscriber = await broadcaster.connect(websocket)
        await broadcaster.handle_inbound(subscriber, text)
        await broadcaster.disconnect(subscriber, code)
    """

    def __init__(self, config: EngineConfig, component_factory: ComponentFactory | None = None):
        self.config = config
        self.manager = SessionManager(
            config=config,
            publish=self.publish,
            component_factory=component_factory,
            on_finished=self._on_session_finished,
        )
        self._subscribers: list[Subscriber] = []

    @property
    def subscribers(self) -> list[Subscriber]:
        return list(self._subscribers)

    def attached(self, session: Session) -> list[Subscriber]:
        return [s for s in self._subscribers if s.session_id == session.session_id]

    # =========================================================================
    # Outbound
    # =========================================================================

    def publish(self, message: OutboundMessage) -> None:
        """Fan a message out. Never blocks."""
        for subscriber in self._subscribers:
            subscriber.queue.put(message)

    def _send_to(self, subscriber: Subscriber, message: OutboundMessage) -> None:
        subscriber.queue.put(message)

    async def _sender(self, subscriber: Subscriber) -> None:
        try:
            while True:
                item = await subscriber.queue.get()
                if isinstance(item, CloseRequest):
                    await subscriber.connection.close(code=item.code)
                    return
                await subscriber.connection.send_json(serialize_message(item))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.info("Subscriber %d dropped: %s", subscriber.subscriber_id, e)
            self._remove(subscriber)

    # =========================================================================
    # Connections
    # =========================================================================

    async def connect(self, connection: Connection) -> Subscriber:
        """Register an accepted connection and send it the current snapshot."""
        subscriber = Subscriber(connection=connection)
        subscriber.sender = asyncio.create_task(
            self._sender(subscriber), name=f"subscriber-{subscriber.subscriber_id}"
        )
        self._subscribers.append(subscriber)
        logger.info("Subscriber %d connected (%d total)", subscriber.subscriber_id, len(self._subscribers))

        session = self.manager.current
        if session is None:
            self._send_to(subscriber, OutboundMessage.info("Select game version to start."))
        else:
            self._send_to(subscriber, game_state_message(session.state))
        return subscriber

    async def disconnect(self, subscriber: Subscriber, code: int | None = None) -> TeardownAck | None:
        """
        Forget a subscriber.

        A normal close from the session owner is an intentional reset and
        tears the session down. Anything else leaves a running session
        alive so the browser can reattach.
        """
        self._remove(subscriber)
        if subscriber.sender is not None and not subscriber.sender.done():
            subscriber.sender.cancel()

        session = self.manager.current
        if session is None or subscriber.session_id != session.session_id:
            return None

        if session.status.is_terminal:
            if not self.attached(session):
                return await self.manager.teardown("finished")
            return None

        if code == NORMAL_CLOSURE and session.owner == subscriber.subscriber_id:
            logger.info("Owner %d closed normally; resetting session", subscriber.subscriber_id)
            return await self.manager.teardown("owner_closed")

        logger.info("Subscriber %d left (code %s); session %s keeps running",
                    subscriber.subscriber_id, code, session.session_id)
        return None

    def _remove(self, subscriber: Subscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    # =========================================================================
    # Inbound
    # =========================================================================

    async def handle_inbound(self, subscriber: Subscriber, raw: str | dict[str, Any]) -> None:
        """Handle one client message. Malformed messages are logged and ignored."""
        try:
            data = json.loads(raw) if isinstance(raw, str) else raw
            command = ModeSelectionCommand.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Ignoring malformed message from subscriber %d: %s",
                           subscriber.subscriber_id, e)
            return
        await self.select_mode(subscriber, command.mode)

    async def select_mode(self, subscriber: Subscriber, mode: GameMode) -> Session | None:
        """
        Start (or reattach to) a session for mode.

        While a session is playing:
        - its own subscribers re-sending a mode are ignored
        - others are told it is already running, unless nobody is attached,
          in which case the same mode reattaches and a new mode replaces it
        """
        session = self.manager.current
        if session is not None and session.status == SessionStatus.PLAYING:
            if subscriber.session_id == session.session_id:
                self._send_to(subscriber, OutboundMessage.info("Game already running."))
                logger.info("Ignoring mode %s from attached subscriber %d", mode.value, subscriber.subscriber_id)
                return session

            if self.attached(session):
                self._send_to(subscriber, OutboundMessage.info("Game already running."))
                return session

            if mode == session.mode:
                subscriber.session_id = session.session_id
                session.owner = subscriber.subscriber_id
                self._send_to(subscriber, OutboundMessage.info("Reattached to the running game."))
                self._send_to(subscriber, game_state_message(session.state))
                return session

        try:
            session = await self.manager.start(mode, owner=subscriber.subscriber_id)
        except Exception as e:
            logger.exception("Could not start %s session", mode.value)
            self._send_to(subscriber, OutboundMessage.error(f"{FATAL_ERROR_PREFIX}: could not start game: {e}"))
            return None
        subscriber.session_id = session.session_id
        return session

    async def teardown(self, reason: str = "user_ended") -> TeardownAck | None:
        """Explicit teardown request. Returns the acknowledgment."""
        ack = await self.manager.teardown(reason)
        if ack is not None:
            for subscriber in self._subscribers:
                if subscriber.session_id == ack.session_id:
                    subscriber.session_id = None
            self.publish(OutboundMessage.info("Session closed. Select game version to start."))
        return ack

    async def shutdown(self) -> None:
        """Tear down the session and close every connection."""
        await self.manager.teardown("shutdown")
        for subscriber in self.subscribers:
            subscriber.queue.put_close(NORMAL_CLOSURE)

    async def _on_session_finished(self, session: Session) -> None:
        if session.status == SessionStatus.FAILED:
            for subscriber in self.attached(session):
                subscriber.queue.put_close(INTERNAL_ERROR_CLOSURE)
