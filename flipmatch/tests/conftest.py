"""
Pytest fixtures for Flipmatch tests.
"""

import pytest

from ..config import EngineConfig
from ..engine_core.state import GameMode, GameState
from ..engine_core.events import (
    ArmAction,
    ArmCommandCompleted,
    CellObservation,
    CellsObserved,
)
from ..engine_core.reducer import Reducer, GameRules
from ..session.game_loop import GameComponents
from ..simulation import (
    SimulatedTable,
    SimulatedCamera,
    SimulatedBoardLocator,
    SimulatedClassifier,
    SimulatedArm,
)

# Cells 0&5, 1&4, 2&7, 3&6 are pairs
COLOR_LAYOUT = ("red", "blue", "green", "yellow", "blue", "red", "yellow", "green")


def observe(state: GameState, labels: dict[int, str] | None = None, failed=()) -> CellsObserved:
    """Observations for one tick: labelled cells face up, failed cells failed, rest face down."""
    labels = labels or {}
    observations = tuple(
        CellObservation(index=i, label=labels.get(i), failed=i in failed, confidence=1.0)
        for i in range(8)
    )
    return CellsObserved(observations=observations, generation=state.generation)


def flipped(state: GameState, cell: int, success: bool = True) -> ArmCommandCompleted:
    return ArmCommandCompleted(
        action=ArmAction.FLIP, cell=cell, success=success, generation=state.generation,
    )


def covered(state: GameState, cell: int, success: bool = True) -> ArmCommandCompleted:
    return ArmCommandCompleted(
        action=ArmAction.COVER, cell=cell, success=success, generation=state.generation,
    )


@pytest.fixture
def reducer() -> Reducer:
    return Reducer(rules=GameRules(max_consecutive_arm_failures=3))


@pytest.fixture
def playing_state() -> GameState:
    """Fresh color game, nothing seen yet."""
    return GameState.start(GameMode.COLOR)


@pytest.fixture
def fast_config() -> EngineConfig:
    """Config with no waiting, for driving loops in tests."""
    return EngineConfig(tick_interval=0.0, settle_delay=0.0, arm_timeout=0.5, jpeg_quality=30)


@pytest.fixture
def table() -> SimulatedTable:
    return SimulatedTable(layout=COLOR_LAYOUT)


def make_components(table: SimulatedTable, arm: SimulatedArm | None = None) -> GameComponents:
    return GameComponents(
        frame_source=SimulatedCamera(table),
        locator=SimulatedBoardLocator(table),
        classifier=SimulatedClassifier(table, GameMode.COLOR),
        arm=arm or SimulatedArm(table),
    )


@pytest.fixture
def components(table) -> GameComponents:
    return make_components(table)
