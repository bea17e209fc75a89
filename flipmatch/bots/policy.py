"""
Flip Policy - Decides which card the robot exposes next.

A FlipPolicy takes the game state and returns a decision.
It never sees the physical table: it only knows what the
engine has observed so far.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
import random
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..engine_core.state import GameState


@dataclass(frozen=True)
class FlipDecision:
    """
    A decision made by a policy.

    Contains:
    - The cell to flip
    - Explanation (for UI/debugging)
    """
    cell: int
    explanation: str = ""


def legal_flips(state: GameState) -> list[int]:
    """
    Cells the arm may flip right now.

    Empty while the session is not playing or an attempt is in flight.
    """
    if not state.is_playing or state.attempt_in_flight:
        return []
    return [
        c.index for c in state.cells
        if not c.is_matched and c.index not in state.current_flipped
    ]


class FlipPolicy(ABC):
    """
    Abstract base class for flip policies.

    Implementations range from random play to perfect memory.
    """

    @abstractmethod
    def select_flip(self, state: GameState) -> FlipDecision | None:
        """
        Select the next cell to flip.

        Returns None when no flip is legal.
        """

    def get_name(self) -> str:
        return self.__class__.__name__


class MemoryPolicy(FlipPolicy):
    """
    Plays from memory.

    Nothing exposed: flip one card of a known pair, else an unseen card.
    One exposed: flip its known partner, else an unseen card, else anything.
    Ties break on the lowest index so play is deterministic.
    """

    def select_flip(self, state: GameState) -> FlipDecision | None:
        candidates = legal_flips(state)
        if not candidates:
            return None

        known = {
            i: state.cell(i).label for i in candidates
            if state.cell(i).has_usable_label
        }
        unseen = [i for i in candidates if not state.cell(i).is_flipped_before]

        if state.current_flipped:
            exposed = state.cell(state.current_flipped[0])
            for index, label in known.items():
                if label == exposed.label:
                    return FlipDecision(index, f"partner of card {exposed.index} ({label})")
        else:
            seen: dict[str, int] = {}
            for index, label in known.items():
                if label in seen:
                    return FlipDecision(seen[label], f"known pair {seen[label]} & {index} ({label})")
                seen[label] = index

        if unseen:
            return FlipDecision(unseen[0], "explore unseen card")
        return FlipDecision(candidates[0], "no better option")


class RandomPolicy(FlipPolicy):
    """
    Random policy - selects a legal cell uniformly at random.

    Used for:
    - Testing
    - An easy opponent
    """

    def __init__(self, seed: int | None = None):
        self.rng = random.Random(seed)

    def select_flip(self, state: GameState) -> FlipDecision | None:
        candidates = legal_flips(state)
        if not candidates:
            return None
        return FlipDecision(self.rng.choice(candidates), "selected randomly")
