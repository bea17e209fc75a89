"""
Session Module - Manages the live game session.

A session represents one play-through of the game:
- Created when a client selects a mode
- Owns the game loop and its hardware
- Torn down with acknowledgment, or ends at game over

Sessions are EPHEMERAL:
- No persistence
- State is rebuilt from the camera every tick
- Only one session exists at a time
"""

from .manager import SessionManager, Session, TeardownAck, default_components
from .game_loop import GameLoop, GameComponents, LoopState

__all__ = [
    "SessionManager",
    "Session",
    "TeardownAck",
    "default_components",
    "GameLoop",
    "GameComponents",
    "LoopState",
]
