"""
Exception hierarchy.

Expected sensing failures are return values (no board, failed
classification); exceptions are reserved for faults the loop must
classify: a lost hardware link, a failed arm command, a dead camera.
"""


class FlipmatchError(Exception):
    """Base class for engine errors."""


class ArmLinkError(FlipmatchError):
    """The arm controller link is unavailable. Fatal for the session."""


class ArmCommandError(FlipmatchError):
    """A single arm command failed. Counts toward the failure threshold."""


class FrameSourceError(FlipmatchError):
    """The camera could not be opened."""
