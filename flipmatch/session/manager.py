"""
Session Manager - Creates and tears down game sessions.

LIFECYCLE:
1. Client selects a mode -> session created, loop task started
2. Loop runs until game over, fatal fault, or teardown
3. Teardown cancels the loop, waits for it, parks the arm,
   and only then acknowledges
4. A new session can only be created after the previous one is
   acknowledged as torn down

There is at most one session at a time: there is one arm and one board.
Sessions are in-memory only.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
import logging
import time
from typing import Any, Awaitable, Callable
import uuid

from ..config import EngineConfig
from ..engine_core.state import GameMode, GameState, SessionStatus
from ..engine_core.events import ModeSelected
from ..bots.policy import MemoryPolicy
from .game_loop import GameLoop, GameComponents, Publisher

logger = logging.getLogger(__name__)

ComponentFactory = Callable[[GameMode, EngineConfig], GameComponents]
FinishedCallback = Callable[["Session"], Awaitable[None]]


def default_components(mode: GameMode, config: EngineConfig) -> GameComponents:
    """
    Build the collaborators for a session.

    Real hardware unless config.simulate is set.
    """
    if config.simulate:
        from ..simulation import (
            SimulatedTable, SimulatedCamera, SimulatedBoardLocator,
            SimulatedClassifier, SimulatedArm,
        )
        table = SimulatedTable.shuffled(mode)
        return GameComponents(
            frame_source=SimulatedCamera(table),
            locator=SimulatedBoardLocator(table),
            classifier=SimulatedClassifier(table, mode),
            arm=SimulatedArm(table, delay=0.3),
            policy=MemoryPolicy(),
        )

    from ..hardware.arm import SerialArmActuator
    from ..vision import CameraFrameSource, ContourBoardLocator, ColorCellClassifier, ObjectCellClassifier

    if mode == GameMode.COLOR:
        classifier = ColorCellClassifier()
    else:
        classifier = ObjectCellClassifier(
            model_path=config.object_model_path,
            confidence=config.object_confidence,
        )
    return GameComponents(
        frame_source=CameraFrameSource(config.camera_index),
        locator=ContourBoardLocator(),
        classifier=classifier,
        arm=SerialArmActuator(
            port=config.serial_port,
            baudrate=config.serial_baudrate,
            timeout=config.arm_timeout,
        ),
        policy=MemoryPolicy(),
    )


@dataclass
class Session:
    """
    One run of the game, from mode selection to game over or abort.

    owner is the subscriber that selected the mode.
    """
    session_id: str
    mode: GameMode
    created_at: float
    loop: GameLoop
    owner: Any = None
    task: asyncio.Task | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def state(self) -> GameState:
        return self.loop.state

    @property
    def status(self) -> SessionStatus:
        return self.loop.state.status

    def is_active(self) -> bool:
        return self.status == SessionStatus.PLAYING


@dataclass(frozen=True)
class TeardownAck:
    """Acknowledges that a session is gone and the arm is released."""
    session_id: str
    reason: str
    final_status: SessionStatus
    released: bool


class SessionManager:
    """
    Owns the single current session.

    Responsibilities:
    - Create the session and start its loop task
    - Tear it down with acknowledgment
    - Report natural completion (game over, fatal fault)
    """

    def __init__(
        self,
        config: EngineConfig,
        publish: Publisher,
        component_factory: ComponentFactory | None = None,
        on_finished: FinishedCallback | None = None,
    ):
        self.config = config
        self.publish = publish
        self.component_factory = component_factory or default_components
        self.on_finished = on_finished
        self._session: Session | None = None
        self._lock = asyncio.Lock()

    @property
    def current(self) -> Session | None:
        return self._session

    async def start(self, mode: GameMode, owner: Any = None) -> Session:
        """
        Create a session for mode and start its loop.

        Any existing session is torn down (and acknowledged) first.
        """
        async with self._lock:
            if self._session is not None:
                await self._teardown_locked("replaced")

            components = self.component_factory(mode, self.config)
            loop = GameLoop(GameState(), components, self.config, self.publish)
            loop.dispatch(ModeSelected(mode))

            session = Session(
                session_id=str(uuid.uuid4()),
                mode=mode,
                created_at=time.time(),
                loop=loop,
                owner=owner,
            )
            session.task = asyncio.create_task(self._run(session), name=f"game-loop-{session.session_id}")
            self._session = session
            logger.info("Session %s started in %s mode", session.session_id, mode.value)
            return session

    async def teardown(self, reason: str = "user_ended") -> TeardownAck | None:
        """Stop the current session. Returns None if there is none."""
        async with self._lock:
            return await self._teardown_locked(reason)

    async def _teardown_locked(self, reason: str) -> TeardownAck | None:
        session, self._session = self._session, None
        if session is None:
            return None

        task = session.task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Session %s torn down (%s), final status %s",
                    session.session_id, reason, session.status.value)
        return TeardownAck(
            session_id=session.session_id,
            reason=reason,
            final_status=session.status,
            released=True,
        )

    async def _run(self, session: Session) -> None:
        await session.loop.run()
        if self.on_finished is not None:
            await self.on_finished(session)
