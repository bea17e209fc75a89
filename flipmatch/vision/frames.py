"""
Frame sources and frame encoding.

A FrameSource supplies raw BGR frames on demand. The game loop reads
one frame per sampling tick and pushes it to spectators as base64 JPEG.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
import base64
import logging

import cv2
import numpy as np

from ..errors import FrameSourceError

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """Abstract camera."""

    def open(self) -> None:
        """Acquire the device. Called once before the first read."""

    @abstractmethod
    def read(self) -> np.ndarray | None:
        """Return the latest frame, or None if none is available."""

    def close(self) -> None:
        """Release the device."""


class CameraFrameSource(FrameSource):
    """OpenCV VideoCapture camera."""

    def __init__(self, camera_index: int = 0):
        self.camera_index = camera_index
        self._capture: cv2.VideoCapture | None = None

    def open(self) -> None:
        capture = cv2.VideoCapture(self.camera_index)
        if not capture.isOpened():
            capture.release()
            raise FrameSourceError(f"Cannot open camera {self.camera_index}")
        self._capture = capture
        logger.info("Camera %d opened", self.camera_index)

    def read(self) -> np.ndarray | None:
        if self._capture is None:
            return None
        ok, frame = self._capture.read()
        if not ok:
            logger.debug("Camera %d returned no frame", self.camera_index)
            return None
        return frame

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
            self._capture = None


class StaticFrameSource(FrameSource):
    """Returns the same frame every read. For tests."""

    def __init__(self, frame: np.ndarray | None = None):
        self.frame = frame if frame is not None else np.zeros((240, 320, 3), dtype=np.uint8)

    def read(self) -> np.ndarray | None:
        return self.frame.copy()


def encode_frame(frame: np.ndarray | None, quality: int = 70) -> str | None:
    """Encode a BGR frame as base64 JPEG for the push channel."""
    if frame is None:
        return None
    ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        logger.warning("JPEG encoding failed for frame of shape %s", frame.shape)
        return None
    return base64.b64encode(buffer.tobytes()).decode("ascii")
