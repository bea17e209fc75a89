"""
Board Locator - Finds the physical board and rectifies it.

The rectified board always has the canonical size
(BOARD_WIDTH x BOARD_HEIGHT) so cell geometry is fixed.
"""

from __future__ import annotations
from abc import ABC, abstractmethod

import cv2
import numpy as np

from ..config import BOARD_WIDTH, BOARD_HEIGHT


class BoardLocator(ABC):
    """
    Abstract board locator.

    Implementations:
    - ContourBoardLocator: largest quadrilateral in the frame
    - StaticBoardLocator: fixed result, for tests and simulation
    """

    @abstractmethod
    def locate(self, frame: np.ndarray) -> np.ndarray | None:
        """Return the rectified board, or None if no board is visible."""


def order_corners(points: np.ndarray) -> np.ndarray:
    """Order 4 points as top-left, top-right, bottom-right, bottom-left."""
    points = points.reshape(4, 2).astype(np.float32)
    sums = points.sum(axis=1)
    diffs = np.diff(points, axis=1).ravel()
    return np.array([
        points[np.argmin(sums)],
        points[np.argmin(diffs)],
        points[np.argmax(sums)],
        points[np.argmax(diffs)],
    ], dtype=np.float32)


def warp_board(
    frame: np.ndarray,
    corners: np.ndarray,
    size: tuple[int, int] = (BOARD_WIDTH, BOARD_HEIGHT),
) -> np.ndarray:
    """Perspective-warp the quadrilateral to the canonical board size."""
    width, height = size
    target = np.array(
        [[0, 0], [width - 1, 0], [width - 1, height - 1], [0, height - 1]],
        dtype=np.float32,
    )
    matrix = cv2.getPerspectiveTransform(order_corners(corners), target)
    return cv2.warpPerspective(frame, matrix, (width, height))


class ContourBoardLocator(BoardLocator):
    """
    Locates the board as the largest 4-cornered contour.

    The board must cover at least min_area_ratio of the frame.
    """

    def __init__(
        self,
        size: tuple[int, int] = (BOARD_WIDTH, BOARD_HEIGHT),
        min_area_ratio: float = 0.1,
        canny_thresholds: tuple[int, int] = (50, 150),
    ):
        self.size = size
        self.min_area_ratio = min_area_ratio
        self.canny_thresholds = canny_thresholds

    def locate(self, frame: np.ndarray) -> np.ndarray | None:
        if frame is None or frame.size == 0:
            return None

        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        blurred = cv2.GaussianBlur(gray, (5, 5), 0)
        edges = cv2.Canny(blurred, *self.canny_thresholds)
        edges = cv2.dilate(edges, None, iterations=1)
        contours, _ = cv2.findContours(edges, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        min_area = frame.shape[0] * frame.shape[1] * self.min_area_ratio
        for contour in sorted(contours, key=cv2.contourArea, reverse=True):
            if cv2.contourArea(contour) < min_area:
                break
            perimeter = cv2.arcLength(contour, True)
            approx = cv2.approxPolyDP(contour, 0.02 * perimeter, True)
            if len(approx) == 4:
                return warp_board(frame, approx, self.size)
        return None


class StaticBoardLocator(BoardLocator):
    """Always finds (or never finds) the board."""

    def __init__(self, board: np.ndarray | None = None, found: bool = True):
        self.board = board if board is not None else np.zeros(
            (BOARD_HEIGHT, BOARD_WIDTH, 3), dtype=np.uint8
        )
        self.found = found

    def locate(self, frame: np.ndarray) -> np.ndarray | None:
        return self.board.copy() if self.found else None
