"""
Simulation - An in-memory table for playing without hardware.

The simulated arm flips cards on the table, the simulated camera
renders the table, and the simulated classifier reads it back. Faults
can be injected per cell to reproduce misdetections and arm failures.

Used by:
- `flipmatch simulate` and `flipmatch serve --simulate`
- The test suite
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
import random

import cv2
import numpy as np

from .config import BOARD_WIDTH, BOARD_HEIGHT, GRID_COLS, GRID_ROWS, PAIR_COUNT
from .engine_core.state import GameMode, IDENTITIES
from .errors import ArmLinkError, ArmCommandError
from .engine_core.events import LINK_ERROR_PREFIX
from .hardware.arm import ArmActuator
from .vision.board import BoardLocator
from .vision.classifier import CellClassifier, Classification
from .vision.frames import FrameSource


# BGR colors for rendering labels
_RENDER_COLORS = {
    "red": (68, 68, 239),
    "yellow": (21, 204, 250),
    "green": (94, 197, 34),
    "blue": (246, 130, 59),
    "orange": (22, 115, 249),
}
_BACK_COLOR = (200, 200, 200)
_OBJECT_COLOR = (255, 255, 255)


@dataclass
class SimulatedTable:
    """
    The physical table: 8 cards, each face up or down.

    failing_cells always misclassify; hidden_board makes the
    camera lose the board.
    """
    layout: tuple[str, ...]
    face_up: set[int] = field(default_factory=set)
    failing_cells: set[int] = field(default_factory=set)
    hidden_board: bool = False

    @classmethod
    def shuffled(cls, mode: GameMode, seed: int | None = None) -> SimulatedTable:
        rng = random.Random(seed)
        labels = rng.sample(IDENTITIES[mode], PAIR_COUNT) * 2
        rng.shuffle(labels)
        return cls(layout=tuple(labels))

    def render_board(self) -> np.ndarray:
        """Draw the rectified board as the camera would see it."""
        board = np.zeros((BOARD_HEIGHT, BOARD_WIDTH, 3), dtype=np.uint8)
        cell_h, cell_w = BOARD_HEIGHT // GRID_ROWS, BOARD_WIDTH // GRID_COLS
        for index, label in enumerate(self.layout):
            row, col = divmod(index, GRID_COLS)
            top_left = (col * cell_w + 6, row * cell_h + 6)
            bottom_right = ((col + 1) * cell_w - 6, (row + 1) * cell_h - 6)
            if index in self.face_up:
                color = _RENDER_COLORS.get(label, _OBJECT_COLOR)
                cv2.rectangle(board, top_left, bottom_right, color, thickness=-1)
                if label not in _RENDER_COLORS:
                    cv2.putText(board, label, (top_left[0] + 4, top_left[1] + cell_h // 2),
                                cv2.FONT_HERSHEY_SIMPLEX, 0.4, (0, 0, 0), 1, cv2.LINE_AA)
            else:
                cv2.rectangle(board, top_left, bottom_right, _BACK_COLOR, thickness=-1)
        return board


class SimulatedCamera(FrameSource):
    """Renders the table centered on a dark frame."""

    def __init__(self, table: SimulatedTable, frame_size: tuple[int, int] = (640, 360)):
        self.table = table
        self.frame_size = frame_size

    def read(self) -> np.ndarray | None:
        width, height = self.frame_size
        frame = np.zeros((height, width, 3), dtype=np.uint8)
        if self.table.hidden_board:
            return frame
        board = self.table.render_board()
        y, x = (height - BOARD_HEIGHT) // 2, (width - BOARD_WIDTH) // 2
        frame[y:y + BOARD_HEIGHT, x:x + BOARD_WIDTH] = board
        return frame


class SimulatedBoardLocator(BoardLocator):
    """Knows where the simulated board is unless it is hidden."""

    def __init__(self, table: SimulatedTable):
        self.table = table

    def locate(self, frame: np.ndarray) -> np.ndarray | None:
        if self.table.hidden_board:
            return None
        return self.table.render_board()


class SimulatedClassifier(CellClassifier):
    """Reads card identities straight off the table."""

    def __init__(self, table: SimulatedTable, mode: GameMode):
        self.table = table
        self.mode = mode

    def classify(self, board: np.ndarray, index: int) -> Classification:
        if index in self.table.failing_cells:
            return Classification.failure("simulated misdetection")
        if index not in self.table.face_up:
            return Classification.face_down()
        return Classification(label=self.table.layout[index], confidence=1.0)


class SimulatedArm(ArmActuator):
    """
    Moves cards on the simulated table.

    failing_commands holds (action, cell) pairs that report failure;
    hanging_commands never complete; fail_open simulates a missing port.
    """

    def __init__(
        self,
        table: SimulatedTable,
        delay: float = 0.0,
        failing_commands: set[tuple[str, int]] | None = None,
        hanging_commands: set[tuple[str, int]] | None = None,
        fail_open: bool = False,
    ):
        self.table = table
        self.delay = delay
        self.failing_commands = failing_commands or set()
        self.hanging_commands = hanging_commands or set()
        self.fail_open = fail_open
        self.commands: list[tuple[str, int | None]] = []
        self.is_open = False

    async def open(self) -> None:
        if self.fail_open:
            raise ArmLinkError(f"{LINK_ERROR_PREFIX} /dev/sim0: simulated missing port")
        self.is_open = True

    async def flip(self, cell: int) -> None:
        await self._move("flip", cell)
        self.table.face_up.add(cell)

    async def cover(self, cell: int) -> None:
        await self._move("cover", cell)
        self.table.face_up.discard(cell)

    async def park(self) -> None:
        self.commands.append(("park", None))

    async def close(self) -> None:
        self.is_open = False

    async def _move(self, action: str, cell: int) -> None:
        self.commands.append((action, cell))
        if (action, cell) in self.hanging_commands:
            await asyncio.Event().wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if (action, cell) in self.failing_commands:
            raise ArmCommandError(f"simulated {action} failure on card {cell}")
