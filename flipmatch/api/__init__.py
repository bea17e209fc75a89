"""
API Module - Browser interface.

Exposes the engine to spectator browsers over a WebSocket push channel.
A browser:
1. Connects and receives the current snapshot
2. Selects a game mode
3. Receives frames, state updates and arm status as the robot plays
4. Closes normally to reset the game, or reconnects to reattach

There is one board and one session at a time.
"""

from .schemas import (
    ErrorCode,
    ModeSelectionCommand,
    CardStateInfo,
    GameStatePayload,
    FrameUpdatePayload,
    ArmStatusPayload,
    PushEnvelope,
    SessionSnapshotResponse,
    TeardownResponse,
    ErrorResponse,
    HealthResponse,
    serialize_message,
    DETECTION_FAILED_LABEL,
)
from .broadcaster import OutboundQueue, Subscriber, SessionBroadcaster
from .service import GameService
from .app import create_app

__all__ = [
    # Wire models
    "ErrorCode",
    "ModeSelectionCommand",
    "CardStateInfo",
    "GameStatePayload",
    "FrameUpdatePayload",
    "ArmStatusPayload",
    "PushEnvelope",
    "SessionSnapshotResponse",
    "TeardownResponse",
    "ErrorResponse",
    "HealthResponse",
    "serialize_message",
    "DETECTION_FAILED_LABEL",
    # Push channel
    "OutboundQueue",
    "Subscriber",
    "SessionBroadcaster",
    # Service
    "GameService",
    "create_app",
]
