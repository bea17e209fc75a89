"""
Game Loop - The camera-driven sampling and decision loop.

The loop, once per tick:
1. Read a frame and locate the board
2. Push the frame to spectators
3. Classify all 8 cells and fold the observations into state
4. Carry out commands from the reducer (cover a mismatched pair)
5. If no attempt is in flight, ask the policy for the next flip
6. Repeat until the game is over, failed, or cancelled

The loop is the only writer of the session state. Vision work runs
in worker threads; its results are folded in here.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Callable

import numpy as np

from ..config import EngineConfig
from ..errors import ArmLinkError, ArmCommandError
from ..engine_core.state import GameState
from ..engine_core.events import (
    Event,
    MessageType,
    OutboundMessage,
    ArmAction,
    BoardMissed,
    CellsObserved,
    ArmCommandCompleted,
    PairCovered,
    HardwareFault,
    CoverPair,
    FATAL_ERROR_PREFIX,
    LINK_ERROR_PREFIX,
)
from ..engine_core.reducer import Reducer, GameRules, Transition
from ..bots.policy import FlipPolicy, MemoryPolicy
from ..hardware.arm import ArmActuator
from ..vision.board import BoardLocator
from ..vision.classifier import CellClassifier
from ..vision.frames import FrameSource, encode_frame

logger = logging.getLogger(__name__)

Publisher = Callable[[OutboundMessage], None]


class LoopState(Enum):
    """What the loop is doing right now."""
    IDLE = "idle"
    SAMPLING = "sampling"
    ACTUATING = "actuating"
    SETTLING = "settling"
    FINISHED = "finished"


@dataclass
class GameComponents:
    """The external collaborators one session drives."""
    frame_source: FrameSource
    locator: BoardLocator
    classifier: CellClassifier
    arm: ArmActuator
    policy: FlipPolicy = field(default_factory=MemoryPolicy)


def fatal_reason(error: Exception) -> str:
    """Error text that clients recognize as session-ending."""
    text = str(error)
    if text.startswith(LINK_ERROR_PREFIX) or text.startswith(FATAL_ERROR_PREFIX):
        return text
    return f"{FATAL_ERROR_PREFIX}: {text or error.__class__.__name__}"


class GameLoop:
    """
    The main game loop driver.

    Usage:
        loop = GameLoop(GameState(), components, config, publish)
        loop.dispatch(ModeSelected(GameMode.COLOR))
        await loop.run()
    """

    def __init__(
        self,
        state: GameState,
        components: GameComponents,
        config: EngineConfig,
        publish: Publisher,
    ):
        self.state = state
        self.components = components
        self.config = config
        self.publish = publish
        self.reducer = Reducer(
            rules=GameRules(max_consecutive_arm_failures=config.max_consecutive_arm_failures)
        )
        self.loop_state = LoopState.IDLE
        self.ticks = 0
        self._cover: CoverPair | None = None  # Mismatch being put face down
        self._face_up: tuple[int, ...] = ()  # Cells of that pair not yet covered

    def dispatch(self, event: Event) -> Transition:
        """Fold an event into state and publish what it produced."""
        transition = self.reducer.apply(self.state, event)
        self.state = transition.state
        for message in transition.messages:
            self.publish(message)
        return transition

    async def run(self) -> GameState:
        """Run until the session leaves the playing state or is cancelled."""
        try:
            await self._start()
            while self.state.is_playing:
                await self.tick()
                if self.state.is_playing:
                    await asyncio.sleep(self.config.tick_interval)
        except asyncio.CancelledError:
            logger.info("Game loop cancelled after %d ticks", self.ticks)
            raise
        except ArmLinkError as e:
            logger.error("Arm link failure: %s", e)
            self.dispatch(HardwareFault(fatal_reason(e)))
        except Exception as e:
            logger.exception("Game loop crashed")
            self.dispatch(HardwareFault(fatal_reason(e)))
        finally:
            self.loop_state = LoopState.FINISHED
            await self._release()
        logger.info("Game loop finished: %s after %d ticks", self.state.status.value, self.ticks)
        return self.state

    async def tick(self) -> None:
        """One sampling tick."""
        self.ticks += 1
        self.loop_state = LoopState.SAMPLING

        try:
            frame = await asyncio.to_thread(self.components.frame_source.read)
        except Exception as e:
            logger.debug("Frame read raised on tick %d: %s", self.ticks, e)
            frame = None
        if frame is None:
            logger.debug("No frame on tick %d", self.ticks)
            return

        board, encoded_frame, encoded_board = await asyncio.to_thread(self._sense, frame)
        payload = {"frame": encoded_frame}
        if encoded_board is not None:
            payload["transformed_frame"] = encoded_board
        self.publish(OutboundMessage(MessageType.FRAME_UPDATE, payload))

        if board is None:
            self.dispatch(BoardMissed())
            return

        generation = self.state.generation
        classifications = await asyncio.to_thread(self.components.classifier.classify_all, board)
        transition = self.dispatch(CellsObserved(
            observations=tuple(c.to_observation(i) for i, c in enumerate(classifications)),
            generation=generation,
        ))

        for command in transition.commands:
            if isinstance(command, CoverPair):
                self.loop_state = LoopState.SETTLING
                await asyncio.sleep(self.config.settle_delay)
                self._cover, self._face_up = command, command.cells

        if self._cover is not None:
            await self._cover_pair()

        if self.state.is_playing:
            await self._next_flip()

    def _sense(self, frame: np.ndarray) -> tuple[np.ndarray | None, str | None, str | None]:
        """Locate the board and encode both images. Runs in a worker thread."""
        try:
            board = self.components.locator.locate(frame)
        except Exception as e:
            logger.debug("Board locator raised: %s", e)
            board = None
        quality = self.config.jpeg_quality
        return board, encode_frame(frame, quality), encode_frame(board, quality)

    async def _next_flip(self) -> None:
        decision = self.components.policy.select_flip(self.state)
        if decision is None:
            return
        logger.info("Flipping card %d: %s", decision.cell, decision.explanation)
        await self._command(ArmAction.FLIP, decision.cell, self.state.generation)

    async def _cover_pair(self) -> None:
        """
        Cover whatever is still face up of the pending mismatch.

        The pair is only hidden once every cover has succeeded. Failed
        covers are retried on the next tick; the arm failure threshold
        ends the game if they keep failing.
        """
        command = self._cover
        if command.generation != self.state.generation:
            logger.debug("Dropping cover for stale generation %d", command.generation)
            self._cover, self._face_up = None, ()
            return

        still_up = []
        for cell in self._face_up:
            if not self.state.is_playing:
                return
            if not await self._command(ArmAction.COVER, cell, command.generation):
                still_up.append(cell)
        self._face_up = tuple(still_up)

        if still_up:
            logger.info("Cards %s still face up; retrying cover next tick", still_up)
            return
        self._cover = None
        if self.state.is_playing:
            self.dispatch(PairCovered(cells=command.cells, generation=command.generation))

    async def _command(self, action: ArmAction, cell: int, generation: int) -> bool:
        """Issue one arm command and fold its outcome. ArmLinkError propagates."""
        self.loop_state = LoopState.ACTUATING
        arm = self.components.arm
        move = arm.flip if action == ArmAction.FLIP else arm.cover
        success, detail = True, ""
        try:
            await asyncio.wait_for(move(cell), timeout=self.config.arm_timeout)
        except asyncio.TimeoutError:
            success, detail = False, f"no response within {self.config.arm_timeout:g}s"
        except ArmCommandError as e:
            success, detail = False, str(e)

        if not success:
            logger.warning("Arm %s card %d failed: %s", action.value, cell, detail)
        self.dispatch(ArmCommandCompleted(
            action=action,
            cell=cell,
            success=success,
            generation=generation,
            detail=detail,
        ))
        return success

    async def _start(self) -> None:
        await asyncio.to_thread(self.components.frame_source.open)
        await self.components.arm.open()
        self.publish(OutboundMessage.info("Hardware ready. Game on!"))

    async def _release(self) -> None:
        """Park the arm and release devices. Never raises."""
        arm = self.components.arm
        try:
            await asyncio.wait_for(arm.park(), timeout=self.config.arm_timeout)
        except (asyncio.TimeoutError, ArmCommandError, ArmLinkError) as e:
            logger.warning("Could not park arm: %s", e)
        try:
            await arm.close()
        except ArmLinkError as e:
            logger.warning("Could not close arm link: %s", e)
        try:
            await asyncio.to_thread(self.components.frame_source.close)
        except Exception as e:
            logger.warning("Could not close frame source: %s", e)
