"""
Arm Actuator - Flips and covers physical cards.

Commands are async and either complete or raise:
- ArmCommandError: this command failed, the link is fine
- ArmLinkError: the link itself is gone (fatal)

Serial wire format, one line per command:
    F<cell>   flip the card at <cell> face up
    C<cell>   cover (turn face down) the card at <cell>
    H         park the arm at its idle pose
The controller answers each line with "OK" or "ERR <reason>".
"""

from __future__ import annotations
from abc import ABC, abstractmethod
import asyncio
import functools
import logging
from typing import Any, Callable

import serial

from ..errors import ArmLinkError, ArmCommandError
from ..engine_core.events import LINK_ERROR_PREFIX

logger = logging.getLogger(__name__)


class ArmActuator(ABC):
    """
    Abstract arm.

    Implementations:
    - SerialArmActuator: real controller over a serial port
    - SimulatedArm: in-memory table (flipmatch.simulation)
    """

    async def open(self) -> None:
        """Connect to the arm. Raises ArmLinkError if unavailable."""

    @abstractmethod
    async def flip(self, cell: int) -> None:
        """Turn the card at cell face up."""

    @abstractmethod
    async def cover(self, cell: int) -> None:
        """Turn the card at cell face down."""

    async def park(self) -> None:
        """Move to the safe idle pose."""

    async def close(self) -> None:
        """Release the link."""


class SerialArmActuator(ArmActuator):
    """Arm controller on a serial port."""

    def __init__(
        self,
        port: str,
        baudrate: int = 115200,
        timeout: float = 10.0,
        serial_factory: Callable[..., Any] | None = None,
    ):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self._serial_factory = serial_factory or serial.Serial
        self._link = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._link is not None

    async def open(self) -> None:
        try:
            self._link = await asyncio.to_thread(
                self._serial_factory, self.port, self.baudrate, timeout=self.timeout
            )
        except (serial.SerialException, OSError) as e:
            raise ArmLinkError(f"{LINK_ERROR_PREFIX} {self.port}: {e}") from e
        logger.info("Arm link open on %s at %d baud", self.port, self.baudrate)

    async def flip(self, cell: int) -> None:
        await self._send(f"F{cell}")

    async def cover(self, cell: int) -> None:
        await self._send(f"C{cell}")

    async def park(self) -> None:
        if self.is_open:
            await self._send("H")

    async def close(self) -> None:
        link, self._link = self._link, None
        if link is not None:
            await asyncio.to_thread(link.close)
            logger.info("Arm link on %s closed", self.port)

    async def _send(self, command: str) -> None:
        link = self._link
        if link is None:
            raise ArmLinkError(f"Arm link on {self.port} is not open")

        # The port stays locked until the worker thread returns, even when
        # the caller stops waiting (timeout or cancellation).
        await self._lock.acquire()
        exchange = asyncio.ensure_future(asyncio.to_thread(self._exchange, link, command))
        exchange.add_done_callback(functools.partial(self._exchange_done, command))
        try:
            reply = await asyncio.shield(exchange)
        except (serial.SerialException, OSError) as e:
            raise ArmLinkError(f"Arm link on {self.port} lost: {e}") from e
        if reply != "OK":
            raise ArmCommandError(f"{command} -> {reply or 'no reply'}")

    def _exchange(self, link: Any, command: str) -> str:
        link.reset_input_buffer()
        link.write(f"{command}\n".encode("ascii"))
        link.flush()
        return link.readline().decode("ascii", errors="replace").strip()

    def _exchange_done(self, command: str, exchange: asyncio.Future) -> None:
        self._lock.release()
        if exchange.cancelled():
            return
        error = exchange.exception()
        if error is not None:
            logger.debug("%s on %s raised: %s", command, self.port, error)
        else:
            logger.debug("%s on %s -> %s", command, self.port, exchange.result())
