"""
Tests for the serial arm actuator and configuration.
"""

import asyncio
import threading
import time

import pytest
import serial

from ..config import EngineConfig
from ..errors import ArmLinkError, ArmCommandError
from ..engine_core.events import LINK_ERROR_PREFIX
from ..hardware import SerialArmActuator


class FakeSerial:
    """In-memory serial port answering each line from a script."""

    def __init__(self, port, baudrate, timeout=None, replies=None):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.replies = list(replies or [])
        self.written = []
        self.closed = False

    def reset_input_buffer(self):
        pass

    def write(self, data):
        self.written.append(data)

    def flush(self):
        pass

    def readline(self):
        if not self.replies:
            return b""
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def close(self):
        self.closed = True


def fake_factory(replies):
    ports = []

    def factory(port, baudrate, timeout=None):
        link = FakeSerial(port, baudrate, timeout, replies)
        ports.append(link)
        return link
    return factory, ports


class TestSerialArm:
    """Tests for the line protocol."""

    def test_commands_on_the_wire(self):
        factory, ports = fake_factory([b"OK\n", b"OK\r\n", b"OK\n"])
        arm = SerialArmActuator("/dev/ttyTEST", serial_factory=factory)

        async def scenario():
            await arm.open()
            await arm.flip(3)
            await arm.cover(3)
            await arm.park()
            await arm.close()

        asyncio.run(scenario())

        assert ports[0].written == [b"F3\n", b"C3\n", b"H\n"]
        assert ports[0].closed
        assert not arm.is_open

    def test_error_reply_raises_command_error(self):
        factory, _ = fake_factory([b"ERR jammed\n"])
        arm = SerialArmActuator("/dev/ttyTEST", serial_factory=factory)

        async def scenario():
            await arm.open()
            await arm.flip(0)

        with pytest.raises(ArmCommandError, match="jammed"):
            asyncio.run(scenario())

    def test_no_reply_raises_command_error(self):
        factory, _ = fake_factory([])
        arm = SerialArmActuator("/dev/ttyTEST", serial_factory=factory)

        async def scenario():
            await arm.open()
            await arm.cover(1)

        with pytest.raises(ArmCommandError, match="no reply"):
            asyncio.run(scenario())

    def test_missing_port_is_link_error(self):
        def factory(port, baudrate, timeout=None):
            raise serial.SerialException("could not open port")

        arm = SerialArmActuator("/dev/ttyGONE", serial_factory=factory)

        with pytest.raises(ArmLinkError) as info:
            asyncio.run(arm.open())
        assert str(info.value).startswith(f"{LINK_ERROR_PREFIX} /dev/ttyGONE")

    def test_lost_link_mid_game(self):
        factory, _ = fake_factory([serial.SerialException("device disconnected")])
        arm = SerialArmActuator("/dev/ttyTEST", serial_factory=factory)

        async def scenario():
            await arm.open()
            await arm.flip(2)

        with pytest.raises(ArmLinkError):
            asyncio.run(scenario())

    def test_park_without_link_is_noop(self):
        arm = SerialArmActuator("/dev/ttyTEST", serial_factory=fake_factory([])[0])

        asyncio.run(arm.park())

    def test_timed_out_exchange_blocks_next_command(self):
        class SlowSerial(FakeSerial):
            active = 0
            max_active = 0
            guard = threading.Lock()

            def write(self, data):
                with self.guard:
                    SlowSerial.active += 1
                    SlowSerial.max_active = max(SlowSerial.max_active, SlowSerial.active)
                super().write(data)

            def readline(self):
                time.sleep(0.3)
                with self.guard:
                    SlowSerial.active -= 1
                return super().readline()

        ports = []

        def factory(port, baudrate, timeout=None):
            link = SlowSerial(port, baudrate, timeout, [b"OK\n", b"OK\n"])
            ports.append(link)
            return link

        arm = SerialArmActuator("/dev/ttyTEST", serial_factory=factory)

        async def scenario():
            await arm.open()
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(arm.flip(0), timeout=0.05)
            await arm.cover(0)

        asyncio.run(scenario())

        assert SlowSerial.max_active == 1
        assert ports[0].written == [b"F0\n", b"C0\n"]
        assert ports[0].replies == []


class TestEngineConfig:
    """Tests for environment configuration."""

    def test_defaults(self):
        config = EngineConfig.from_env({})

        assert config.settle_delay == 1.5
        assert config.max_consecutive_arm_failures == 3
        assert config.allowed_origins == ["*"]
        assert not config.simulate

    def test_overrides(self):
        config = EngineConfig.from_env({
            "FLIPMATCH_SETTLE_DELAY": "0.5",
            "FLIPMATCH_MAX_ARM_FAILURES": "5",
            "FLIPMATCH_SERIAL_PORT": "/dev/ttyACM1",
            "FLIPMATCH_SIMULATE": "yes",
            "ALLOWED_ORIGINS": "http://a,http://b",
        })

        assert config.settle_delay == 0.5
        assert config.max_consecutive_arm_failures == 5
        assert config.serial_port == "/dev/ttyACM1"
        assert config.simulate
        assert config.allowed_origins == ["http://a", "http://b"]
