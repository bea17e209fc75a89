"""
Events, outbound messages and commands.

Events are what the outside world tells the engine:
1. Client intents (mode selection)
2. Sensing results (board missed, cells observed)
3. Actuation results (arm command completed, pair covered)
4. Faults (hardware link lost)

All state changes flow through events. The reducer answers each one
with the messages to push to spectators and the commands the loop
must carry out.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .state import GameMode


class MessageType(str, Enum):
    """Push message types sent to spectators."""
    FRAME_UPDATE = "frame_update"
    GAME_STATE = "game_state"
    ARM_STATUS = "arm_status"
    CARDS_HIDDEN = "cards_hidden"
    MESSAGE = "message"
    GAME_OVER = "game_over"
    ERROR = "error"


class ArmAction(Enum):
    FLIP = "flip"
    COVER = "cover"


# Fatal error prefixes; clients treat these as session-ending
FATAL_ERROR_PREFIX = "Critical Game Error"
LINK_ERROR_PREFIX = "Failed to initialize serial port"


@dataclass(frozen=True)
class OutboundMessage:
    """
    A message for spectators.

    The payload of a GAME_STATE message is the GameState snapshot
    itself; the wire layer renders it.
    """
    type: MessageType
    payload: Any = None

    @property
    def is_fatal(self) -> bool:
        return self.type == MessageType.ERROR and isinstance(self.payload, str) and (
            self.payload.startswith(FATAL_ERROR_PREFIX)
            or self.payload.startswith(LINK_ERROR_PREFIX)
        )

    @classmethod
    def info(cls, text: str) -> OutboundMessage:
        return cls(MessageType.MESSAGE, text)

    @classmethod
    def error(cls, text: str) -> OutboundMessage:
        return cls(MessageType.ERROR, text)


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class ModeSelected:
    mode: GameMode


@dataclass(frozen=True)
class BoardMissed:
    """The board could not be located in this tick's frame."""


@dataclass(frozen=True)
class CellObservation:
    """
    Classification of one cell in one tick.

    label=None with failed=False means the card is face down.
    """
    index: int
    label: str | None = None
    confidence: float = 0.0
    failed: bool = False


@dataclass(frozen=True)
class CellsObserved:
    observations: tuple[CellObservation, ...]
    generation: int


@dataclass(frozen=True)
class ArmCommandCompleted:
    action: ArmAction
    cell: int
    success: bool
    generation: int
    detail: str = ""

    @property
    def description(self) -> str:
        return f"{self.action.value} card {self.cell}"


@dataclass(frozen=True)
class PairCovered:
    """Both cells of a mismatched attempt have been covered."""
    cells: tuple[int, int]
    generation: int


@dataclass(frozen=True)
class HardwareFault:
    """Unrecoverable fault; reason is sent verbatim as a fatal error."""
    reason: str


Event = ModeSelected | BoardMissed | CellsObserved | ArmCommandCompleted | PairCovered | HardwareFault


# =============================================================================
# Commands
# =============================================================================

@dataclass(frozen=True)
class CoverPair:
    """Cover both cells of a mismatched attempt after the settle delay."""
    cells: tuple[int, int]
    generation: int
