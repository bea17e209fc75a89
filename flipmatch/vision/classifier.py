"""
Cell Classifier - Identifies the card lying in one board cell.

Every classification has one of three outcomes:
- label: the card is face up and identified
- face down: the cell shows a card back (label None, not failed)
- failure: something is visible but could not be identified

Failures are never dropped; the engine shows them per cell.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
from typing import Any

import cv2
import numpy as np

from ..config import GRID_ROWS, GRID_COLS, CELL_COUNT
from ..engine_core.state import GameMode, OBJECT_VOCABULARY
from ..engine_core.events import CellObservation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Classification:
    """Result of classifying one cell."""
    label: str | None = None
    confidence: float = 0.0
    failed: bool = False
    reason: str = ""

    @classmethod
    def face_down(cls) -> Classification:
        return cls()

    @classmethod
    def failure(cls, reason: str) -> Classification:
        return cls(failed=True, reason=reason)

    def to_observation(self, index: int) -> CellObservation:
        return CellObservation(
            index=index,
            label=None if self.failed else self.label,
            confidence=self.confidence,
            failed=self.failed,
        )


def cell_region(board: np.ndarray, index: int, margin: float = 0.15) -> np.ndarray:
    """
    Crop one cell from a rectified board.

    margin trims that fraction from each side to avoid card edges
    and the gaps between cards.
    """
    if not 0 <= index < CELL_COUNT:
        raise IndexError(f"Cell index {index} out of range")
    height, width = board.shape[:2]
    cell_h, cell_w = height // GRID_ROWS, width // GRID_COLS
    row, col = divmod(index, GRID_COLS)
    trim_h, trim_w = int(cell_h * margin), int(cell_w * margin)
    y1, x1 = row * cell_h + trim_h, col * cell_w + trim_w
    y2, x2 = (row + 1) * cell_h - trim_h, (col + 1) * cell_w - trim_w
    return board[y1:y2, x1:x2]


class CellClassifier(ABC):
    """
    Abstract cell classifier.

    Implementations:
    - ColorCellClassifier: HSV hue heuristics (color mode)
    - ObjectCellClassifier: YOLO detections (object mode)
    - SimulatedClassifier: reads the in-memory table
    """

    mode: GameMode

    @abstractmethod
    def classify(self, board: np.ndarray, index: int) -> Classification:
        """Classify a single cell of the rectified board."""

    def classify_all(self, board: np.ndarray) -> list[Classification]:
        """Classify every cell. An exception in one cell fails only that cell."""
        results = []
        for index in range(CELL_COUNT):
            try:
                results.append(self.classify(board, index))
            except Exception as e:
                logger.debug("Classifier raised on cell %d: %s", index, e)
                results.append(Classification.failure(str(e)))
        return results


class ColorCellClassifier(CellClassifier):
    """
    Classifies colored cards by hue.

    Card backs are assumed unsaturated (white or grey): a patch with
    too few saturated pixels is a face-down card. A saturated patch
    whose dominant hue is ambiguous is a failure.
    """

    mode = GameMode.COLOR

    # OpenCV hue is 0-179
    HUE_RANGES: dict[str, list[tuple[int, int]]] = {
        "red": [(0, 7), (170, 179)],
        "orange": [(8, 20)],
        "yellow": [(21, 34)],
        "green": [(35, 85)],
        "blue": [(86, 130)],
    }

    def __init__(
        self,
        min_saturation: int = 80,
        min_value: int = 60,
        min_colored_fraction: float = 0.35,
        min_dominance: float = 0.5,
    ):
        self.min_saturation = min_saturation
        self.min_value = min_value
        self.min_colored_fraction = min_colored_fraction
        self.min_dominance = min_dominance

    def classify(self, board: np.ndarray, index: int) -> Classification:
        patch = cell_region(board, index)
        if patch.size == 0:
            return Classification.failure("empty cell region")

        hsv = cv2.cvtColor(patch, cv2.COLOR_BGR2HSV)
        hue, saturation, value = cv2.split(hsv)
        colored = (saturation >= self.min_saturation) & (value >= self.min_value)
        colored_count = int(colored.sum())

        if colored_count < self.min_colored_fraction * colored.size:
            return Classification.face_down()

        hues = hue[colored]
        scores = {
            label: sum(int(((hues >= low) & (hues <= high)).sum()) for low, high in ranges)
            for label, ranges in self.HUE_RANGES.items()
        }
        label, count = max(scores.items(), key=lambda item: item[1])
        dominance = count / colored_count
        if dominance < self.min_dominance:
            return Classification.failure(f"ambiguous hue (best {label} at {dominance:.0%})")
        return Classification(label=label, confidence=dominance)


class ObjectCellClassifier(CellClassifier):
    """
    Classifies picture cards with an object-detection model.

    Only labels in the object vocabulary count. No detection on a
    blank patch is a face-down card; no detection on a textured patch
    is a failure.
    """

    mode = GameMode.OBJECT

    def __init__(
        self,
        model_path: str = "yolov8n.pt",
        confidence: float = 0.4,
        model: Any = None,
        max_blank_stddev: float = 12.0,
    ):
        if model is None:
            from ultralytics import YOLO
            model = YOLO(model_path)
        self.model = model
        self.confidence = confidence
        self.max_blank_stddev = max_blank_stddev

    def classify(self, board: np.ndarray, index: int) -> Classification:
        patch = cell_region(board, index, margin=0.05)
        if patch.size == 0:
            return Classification.failure("empty cell region")

        best_label, best_conf = None, 0.0
        for result in self.model.predict(patch, conf=self.confidence, verbose=False):
            for box in result.boxes:
                name = result.names[int(box.cls[0])]
                conf = float(box.conf[0])
                if name in OBJECT_VOCABULARY and conf > best_conf:
                    best_label, best_conf = name, conf

        if best_label is not None:
            return Classification(label=best_label, confidence=best_conf)

        gray = cv2.cvtColor(patch, cv2.COLOR_BGR2GRAY)
        if float(gray.std()) <= self.max_blank_stddev:
            return Classification.face_down()
        return Classification.failure("no known object detected")
