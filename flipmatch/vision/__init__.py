"""
Vision Layer - Camera-based state input.

Architecture:
    Frame -> BoardLocator -> rectified board -> CellClassifier -> CellObservation

The vision layer is NON-AUTHORITATIVE:
- It reports what it sees, tick by tick
- The reducer folds observations into canonical state
- Failures are reported, never hidden
"""

from .frames import FrameSource, CameraFrameSource, StaticFrameSource, encode_frame
from .board import BoardLocator, ContourBoardLocator, StaticBoardLocator, warp_board, order_corners
from .classifier import (
    Classification,
    CellClassifier,
    ColorCellClassifier,
    ObjectCellClassifier,
    cell_region,
)

__all__ = [
    "FrameSource",
    "CameraFrameSource",
    "StaticFrameSource",
    "encode_frame",
    "BoardLocator",
    "ContourBoardLocator",
    "StaticBoardLocator",
    "warp_board",
    "order_corners",
    "Classification",
    "CellClassifier",
    "ColorCellClassifier",
    "ObjectCellClassifier",
    "cell_region",
]
