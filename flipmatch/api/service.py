"""
API Service - Business logic layer between the HTTP surface and the engine.

The service:
1. Owns the broadcaster (and through it the session manager)
2. Builds REST snapshots of the current session
3. Handles explicit teardown with acknowledgment

This layer is framework-agnostic; the FastAPI app only adapts it.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional

from ..config import EngineConfig
from ..session.manager import ComponentFactory
from .broadcaster import SessionBroadcaster
from .schemas import GameStatePayload, SessionSnapshotResponse, TeardownResponse


@dataclass
class GameService:
    """
    Main API service.

    Usage:
        service = GameService(EngineConfig.from_env())
        snapshot = service.snapshot()
        ack = await service.teardown()
    """
    config: EngineConfig = field(default_factory=EngineConfig.from_env)
    component_factory: Optional[ComponentFactory] = None
    broadcaster: SessionBroadcaster = field(init=False)

    def __post_init__(self):
        self.broadcaster = SessionBroadcaster(self.config, self.component_factory)

    def snapshot(self) -> Optional[SessionSnapshotResponse]:
        """The current session, or None if there is none."""
        session = self.broadcaster.manager.current
        if session is None:
            return None
        state = session.state
        return SessionSnapshotResponse(
            session_id=session.session_id,
            mode=session.mode.value,
            status=state.status.value,
            created_at=session.created_at,
            subscribers=len(self.broadcaster.attached(session)),
            pending_flip=state.pending_flip,
            generation=state.generation,
            consecutive_arm_failures=state.consecutive_arm_failures,
            loop_state=session.loop.loop_state.value,
            game_state=GameStatePayload.from_state(state).to_wire(),
        )

    async def teardown(self, reason: str = "user_ended") -> TeardownResponse:
        """End the current session. success is False if none was running."""
        ack = await self.broadcaster.teardown(reason)
        if ack is None:
            return TeardownResponse(success=False)
        return TeardownResponse(
            success=True,
            session_id=ack.session_id,
            final_status=ack.final_status.value,
            released=ack.released,
        )

    async def shutdown(self) -> None:
        await self.broadcaster.shutdown()
