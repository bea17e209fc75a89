"""
Game State - The canonical state of one memory-matching session.

Design principles:
- Immutable-friendly: all mutations return new state
- Owned by the reducer: nothing else builds a changed state
- Observable: visibility is derived once, not recombined at render time
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from enum import Enum

from ..config import CELL_COUNT, GRID_COLS, PAIR_COUNT


class GameMode(Enum):
    """Which identity space the cards are drawn from."""
    COLOR = "color"
    OBJECT = "object"

    @classmethod
    def parse(cls, value: str) -> GameMode:
        """Parse a client mode string. 'yolo' is the browser's name for object mode."""
        normalized = value.strip().lower()
        if normalized == "yolo":
            return cls.OBJECT
        return cls(normalized)


class SessionStatus(Enum):
    """Lifecycle of a session."""
    AWAITING_MODE = "awaiting_mode"
    PLAYING = "playing"
    GAME_OVER = "game_over"
    FAILED = "failed"  # Fatal hardware fault

    @property
    def is_terminal(self) -> bool:
        return self in {SessionStatus.GAME_OVER, SessionStatus.FAILED}


class CellVisibility(Enum):
    """How a cell should be shown to spectators."""
    HIDDEN = "hidden"
    EXPOSED = "exposed"
    MATCHED = "matched"
    FAILED = "failed"


COLOR_PALETTE = ("red", "yellow", "green", "blue", "orange")
OBJECT_VOCABULARY = ("apple", "cat", "car", "umbrella", "banana", "fire hydrant", "person")

IDENTITIES: dict[GameMode, tuple[str, ...]] = {
    GameMode.COLOR: COLOR_PALETTE,
    GameMode.OBJECT: OBJECT_VOCABULARY,
}


@dataclass(frozen=True)
class Cell:
    """One of the 8 fixed board positions."""
    index: int
    label: str | None = None
    is_matched: bool = False
    is_flipped_before: bool = False
    last_detection_failed: bool = False

    @property
    def row(self) -> int:
        return self.index // GRID_COLS

    @property
    def col(self) -> int:
        return self.index % GRID_COLS

    @property
    def has_usable_label(self) -> bool:
        return self.label is not None and not self.last_detection_failed


@dataclass(frozen=True)
class GameState:
    """
    Complete session state at a point in time.

    current_flipped holds the cells of the attempt in progress (0..2).
    pending_flip is a cell the arm has flipped but that classification
    has not confirmed yet.
    """
    mode: GameMode | None = None
    status: SessionStatus = SessionStatus.AWAITING_MODE
    cells: tuple[Cell, ...] = field(
        default_factory=lambda: tuple(Cell(index=i) for i in range(CELL_COUNT))
    )
    current_flipped: tuple[int, ...] = ()
    pending_flip: int | None = None
    pairs_found: int = 0

    # Attempt token; results carrying an older value are discarded
    generation: int = 0
    consecutive_arm_failures: int = 0

    @classmethod
    def start(cls, mode: GameMode) -> GameState:
        """Fresh playing state for a newly selected mode."""
        return cls(mode=mode, status=SessionStatus.PLAYING)

    @property
    def is_playing(self) -> bool:
        return self.status == SessionStatus.PLAYING

    @property
    def matched_count(self) -> int:
        return sum(1 for c in self.cells if c.is_matched)

    @property
    def is_complete(self) -> bool:
        return self.pairs_found >= PAIR_COUNT

    @property
    def attempt_in_flight(self) -> bool:
        """True while an arm flip is unconfirmed or a pair awaits evaluation."""
        return self.pending_flip is not None or len(self.current_flipped) == 2

    def cell(self, index: int) -> Cell:
        return self.cells[index]

    def visibility(self, index: int) -> CellVisibility:
        cell = self.cells[index]
        if cell.is_matched:
            return CellVisibility.MATCHED
        if cell.last_detection_failed:
            return CellVisibility.FAILED
        if index in self.current_flipped or index == self.pending_flip:
            return CellVisibility.EXPOSED
        return CellVisibility.HIDDEN

    def with_cell(self, cell: Cell) -> GameState:
        """Return new state with one cell replaced."""
        cells = list(self.cells)
        cells[cell.index] = cell
        return replace(self, cells=tuple(cells))

    def _copy_with(self, **kwargs) -> GameState:
        """Create a copy with some fields replaced."""
        return replace(self, **kwargs)
