"""
Reducer - Applies events to game state.

The reducer is the single point of state mutation.
All state changes must go through apply_event().

Design principles:
- Pure function: (state, event) -> Transition(state, messages, commands)
- Stale results (wrong generation) are discarded, never folded in
- Terminal states accept nothing that would mutate them
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
import logging

from ..config import PAIR_COUNT
from .state import GameState, GameMode, SessionStatus, Cell
from .events import (
    Event,
    ModeSelected,
    BoardMissed,
    CellsObserved,
    CellObservation,
    ArmCommandCompleted,
    ArmAction,
    PairCovered,
    HardwareFault,
    CoverPair,
    MessageType,
    OutboundMessage,
    FATAL_ERROR_PREFIX,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GameRules:
    """Limits the reducer enforces."""
    max_consecutive_arm_failures: int = 3
    pair_count: int = PAIR_COUNT


@dataclass
class Transition:
    """Result of applying one event."""
    state: GameState
    messages: list[OutboundMessage] = field(default_factory=list)
    commands: list[CoverPair] = field(default_factory=list)

    @property
    def message_types(self) -> list[MessageType]:
        return [m.type for m in self.messages]


def game_state_message(state: GameState) -> OutboundMessage:
    return OutboundMessage(MessageType.GAME_STATE, state)


@dataclass
class Reducer:
    """
    Reducer applies events to game state.

    Stateless - all state is in GameState.
    Rules provide the limits.
    """
    rules: GameRules = field(default_factory=GameRules)

    def apply(self, state: GameState, event: Event) -> Transition:
        handler = self._get_handler(event)
        if handler is None:
            logger.warning("No handler for event %r", event)
            return Transition(state)
        return handler(state, event)

    def _get_handler(self, event: Event):
        handlers = {
            ModeSelected: self._handle_mode_selected,
            BoardMissed: self._handle_board_missed,
            CellsObserved: self._handle_cells_observed,
            ArmCommandCompleted: self._handle_arm_completed,
            PairCovered: self._handle_pair_covered,
            HardwareFault: self._handle_hardware_fault,
        }
        return handlers.get(type(event))

    # =========================================================================
    # Handlers
    # =========================================================================

    def _handle_mode_selected(self, state: GameState, event: ModeSelected) -> Transition:
        if state.status != SessionStatus.AWAITING_MODE:
            logger.info("Ignoring mode selection %s: session is %s", event.mode.value, state.status.value)
            text = (
                "Game already running."
                if state.is_playing
                else "This game has ended. Start a new game to play again."
            )
            return Transition(state, [OutboundMessage.info(text)])

        new_state = GameState.start(event.mode)
        label = "Color" if event.mode == GameMode.COLOR else "Object"
        return Transition(
            new_state,
            [
                OutboundMessage.info(f"{label} game started. Robot is looking for the board..."),
                game_state_message(new_state),
            ],
        )

    def _handle_board_missed(self, state: GameState, event: BoardMissed) -> Transition:
        return Transition(state)

    def _handle_cells_observed(self, state: GameState, event: CellsObserved) -> Transition:
        if not state.is_playing:
            return Transition(state)
        if event.generation != state.generation:
            logger.debug("Discarding observations for generation %d (current %d)",
                         event.generation, state.generation)
            return Transition(state)

        new_state = state
        for observation in event.observations:
            new_state = new_state.with_cell(_fold_observation(new_state.cell(observation.index), observation))

        pending = new_state.pending_flip
        if pending is not None and new_state.cell(pending).has_usable_label:
            exposed = new_state.current_flipped + (pending,)
            new_state = new_state._copy_with(current_flipped=exposed, pending_flip=None)
            if len(exposed) == 2:
                return self._evaluate_pair(new_state)

        return Transition(new_state, [game_state_message(new_state)])

    def _evaluate_pair(self, state: GameState) -> Transition:
        """Evaluate the attempt as soon as its second cell is exposed."""
        first, second = (state.cell(i) for i in state.current_flipped)

        if first.has_usable_label and second.has_usable_label and first.label == second.label:
            pairs_found = state.pairs_found + 1
            new_state = (
                state.with_cell(_copy_cell(first, is_matched=True))
                .with_cell(_copy_cell(second, is_matched=True))
                ._copy_with(
                    current_flipped=(),
                    pairs_found=pairs_found,
                    generation=state.generation + 1,
                )
            )
            messages = [
                OutboundMessage.info(f"Match! Cards {first.index} & {second.index} are both {first.label}."),
            ]
            if pairs_found >= self.rules.pair_count:
                new_state = new_state._copy_with(status=SessionStatus.GAME_OVER)
                messages.append(game_state_message(new_state))
                messages.append(OutboundMessage(
                    MessageType.GAME_OVER,
                    f"All {pairs_found} pairs found!",
                ))
            else:
                messages.append(game_state_message(new_state))
            return Transition(new_state, messages)

        pair = (first.index, second.index)
        return Transition(
            state,
            [
                OutboundMessage.info(f"No match: {first.label} vs {second.label}."),
                game_state_message(state),
            ],
            [CoverPair(cells=pair, generation=state.generation)],
        )

    def _handle_arm_completed(self, state: GameState, event: ArmCommandCompleted) -> Transition:
        if not state.is_playing:
            return Transition(state)
        if event.generation != state.generation:
            logger.debug("Discarding stale arm result %s (generation %d, current %d)",
                         event.description, event.generation, state.generation)
            return Transition(state)

        status = OutboundMessage(
            MessageType.ARM_STATUS,
            {"action": event.description, "success": event.success},
        )

        if not event.success:
            return self._arm_failure(state, event, status)

        new_state = state._copy_with(consecutive_arm_failures=0)
        if event.action == ArmAction.COVER:
            return Transition(new_state, [status])

        rejection = _flip_rejection(new_state, event.cell)
        if rejection:
            logger.warning("Rejected flip of card %d: %s", event.cell, rejection)
            return Transition(new_state, [status, OutboundMessage.info(f"Flip rejected: {rejection}")])

        new_state = new_state._copy_with(pending_flip=event.cell)
        return Transition(new_state, [status, game_state_message(new_state)])

    def _arm_failure(
        self,
        state: GameState,
        event: ArmCommandCompleted,
        status: OutboundMessage,
    ) -> Transition:
        failures = state.consecutive_arm_failures + 1
        detail = f": {event.detail}" if event.detail else ""
        messages = [status, OutboundMessage.error(f"Arm failed to {event.description}{detail}")]

        if failures >= self.rules.max_consecutive_arm_failures:
            new_state = state._copy_with(
                consecutive_arm_failures=failures,
                status=SessionStatus.FAILED,
                pending_flip=None,
            )
            messages.append(OutboundMessage.error(
                f"{FATAL_ERROR_PREFIX}: arm failed {failures} consecutive commands"
            ))
            return Transition(new_state, messages)

        return Transition(state._copy_with(consecutive_arm_failures=failures), messages)

    def _handle_pair_covered(self, state: GameState, event: PairCovered) -> Transition:
        if not state.is_playing or event.generation != state.generation:
            return Transition(state)
        if set(event.cells) != set(state.current_flipped):
            logger.warning("Covered cells %s do not match exposed %s", event.cells, state.current_flipped)
            return Transition(state)

        new_state = state._copy_with(current_flipped=(), generation=state.generation + 1)
        return Transition(
            new_state,
            [
                OutboundMessage(MessageType.CARDS_HIDDEN, list(event.cells)),
                game_state_message(new_state),
            ],
        )

    def _handle_hardware_fault(self, state: GameState, event: HardwareFault) -> Transition:
        if state.status.is_terminal:
            return Transition(state)
        new_state = state._copy_with(status=SessionStatus.FAILED, pending_flip=None)
        return Transition(new_state, [OutboundMessage.error(event.reason)])


def _copy_cell(cell: Cell, **kwargs) -> Cell:
    return replace(cell, **kwargs)


def _fold_observation(cell: Cell, observation: CellObservation) -> Cell:
    if observation.failed:
        return _copy_cell(cell, last_detection_failed=True)
    if observation.label is None:
        # Face down: detection worked, nothing to learn
        return _copy_cell(cell, last_detection_failed=False)
    if cell.is_matched:
        return _copy_cell(cell, last_detection_failed=False)
    return _copy_cell(
        cell,
        label=observation.label,
        is_flipped_before=True,
        last_detection_failed=False,
    )


def _flip_rejection(state: GameState, index: int) -> str | None:
    if len(state.current_flipped) >= 2:
        return "two cards are already exposed"
    if state.pending_flip is not None:
        return f"card {state.pending_flip} is still being confirmed"
    if state.cell(index).is_matched:
        return f"card {index} is already matched"
    if index in state.current_flipped:
        return f"card {index} is already exposed"
    return None


def apply_event(state: GameState, event: Event, rules: GameRules | None = None) -> Transition:
    """
    Convenience function to apply an event.

    Usage:
        transition = apply_event(state, ModeSelected(GameMode.COLOR))
        state = transition.state
    """
    reducer = Reducer(rules=rules or GameRules())
    return reducer.apply(state, event)
