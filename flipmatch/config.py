"""
Engine configuration.

Geometry constants are shared by the board locator, the cell classifier
and the arm calibration; changing them requires updating all three.

Runtime tunables come from the environment (FLIPMATCH_* variables) so a
deployment can adjust timing and hardware without code changes.
"""

from __future__ import annotations
from dataclasses import dataclass, field
import os

# Canonical rectified board size (width x height)
BOARD_WIDTH = 400
BOARD_HEIGHT = 200

GRID_ROWS = 2
GRID_COLS = 4
CELL_COUNT = GRID_ROWS * GRID_COLS
PAIR_COUNT = CELL_COUNT // 2


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class EngineConfig:
    """Tunables for one game session."""
    # Sampling
    tick_interval: float = 0.1  # seconds between sampling ticks
    camera_index: int = 0
    jpeg_quality: int = 70

    # Turn timing
    settle_delay: float = 1.5  # seconds a mismatched pair stays visible

    # Arm
    arm_timeout: float = 10.0
    max_consecutive_arm_failures: int = 3
    serial_port: str = "/dev/ttyUSB0"
    serial_baudrate: int = 115200

    # Object mode
    object_model_path: str = "yolov8n.pt"
    object_confidence: float = 0.4

    # Run against the in-memory table instead of real hardware
    simulate: bool = False

    # HTTP
    allowed_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> EngineConfig:
        """Build a config from FLIPMATCH_* environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            tick_interval=float(env.get("FLIPMATCH_TICK_INTERVAL", defaults.tick_interval)),
            camera_index=int(env.get("FLIPMATCH_CAMERA_INDEX", defaults.camera_index)),
            jpeg_quality=int(env.get("FLIPMATCH_JPEG_QUALITY", defaults.jpeg_quality)),
            settle_delay=float(env.get("FLIPMATCH_SETTLE_DELAY", defaults.settle_delay)),
            arm_timeout=float(env.get("FLIPMATCH_ARM_TIMEOUT", defaults.arm_timeout)),
            max_consecutive_arm_failures=int(
                env.get("FLIPMATCH_MAX_ARM_FAILURES", defaults.max_consecutive_arm_failures)
            ),
            serial_port=env.get("FLIPMATCH_SERIAL_PORT", defaults.serial_port),
            serial_baudrate=int(env.get("FLIPMATCH_SERIAL_BAUDRATE", defaults.serial_baudrate)),
            object_model_path=env.get("FLIPMATCH_OBJECT_MODEL", defaults.object_model_path),
            object_confidence=float(
                env.get("FLIPMATCH_OBJECT_CONFIDENCE", defaults.object_confidence)
            ),
            simulate=_env_bool(env.get("FLIPMATCH_SIMULATE"), defaults.simulate),
            allowed_origins=env.get("ALLOWED_ORIGINS", "*").split(","),
        )
