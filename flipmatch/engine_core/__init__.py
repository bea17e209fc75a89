"""
Engine Core - Deterministic game state management.

The engine core is the pure part of the orchestrator:
1. Holds the canonical GameState
2. Defines the events the outside world reports
3. Folds events into new state via the reducer
4. Tells the loop what to push and what to command
"""

from .state import (
    GameState,
    GameMode,
    SessionStatus,
    Cell,
    CellVisibility,
    COLOR_PALETTE,
    OBJECT_VOCABULARY,
    IDENTITIES,
)
from .events import (
    MessageType,
    OutboundMessage,
    ArmAction,
    ModeSelected,
    BoardMissed,
    CellObservation,
    CellsObserved,
    ArmCommandCompleted,
    PairCovered,
    HardwareFault,
    CoverPair,
)
from .reducer import Reducer, GameRules, Transition, apply_event

__all__ = [
    "GameState",
    "GameMode",
    "SessionStatus",
    "Cell",
    "CellVisibility",
    "COLOR_PALETTE",
    "OBJECT_VOCABULARY",
    "IDENTITIES",
    "MessageType",
    "OutboundMessage",
    "ArmAction",
    "ModeSelected",
    "BoardMissed",
    "CellObservation",
    "CellsObserved",
    "ArmCommandCompleted",
    "PairCovered",
    "HardwareFault",
    "CoverPair",
    "Reducer",
    "GameRules",
    "Transition",
    "apply_event",
]
