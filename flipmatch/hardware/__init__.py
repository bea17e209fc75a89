"""
Hardware Layer - The robot arm.

The arm is driven, never trusted: every command reports success or
failure, and the engine decides what a failure means.
"""

from .arm import ArmActuator, SerialArmActuator

__all__ = [
    "ArmActuator",
    "SerialArmActuator",
]
