"""Serial port connection for Improv Serial devices.

Wraps a pyserial port and exposes the ``async read``/``async write`` pair
the session reads from and writes to. Blocking pyserial calls run in a
worker thread so the event loop stays responsive.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import serial

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 115200
READ_TIMEOUT_S = 0.1


@dataclass
class SerialConfig:
    """Port settings used by :class:`SerialConnection`."""

    port: str
    baudrate: int = DEFAULT_BAUDRATE
    read_timeout: float = READ_TIMEOUT_S


class SerialConnection:
    """Manages the serial connection to an Improv device.

    Usage::

        conn = SerialConnection(SerialConfig(port="/dev/ttyUSB0"))
        conn.open()
        session = ImprovSerialSession(conn, conn)
        ...
        await session.close()
        conn.close()
    """

    def __init__(self, config: SerialConfig) -> None:
        self._config = config
        self._serial: serial.Serial | None = None

    @property
    def config(self) -> SerialConfig:
        return self._config

    @property
    def connected(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self) -> None:
        """Open the serial port.

        Raises:
            ConnectionError: If the port cannot be opened.
        """
        if self.connected:
            return
        try:
            self._serial = serial.Serial(
                port=self._config.port,
                baudrate=self._config.baudrate,
                timeout=self._config.read_timeout,
            )
        except serial.SerialException as e:
            raise ConnectionError(
                f"Could not open serial port {self._config.port} "
                f"at {self._config.baudrate} baud. "
                f"Ensure the device is connected and you have permissions. "
                f"Last error: {e}"
            ) from e
        logger.info("Opened %s at %d baud", self._config.port, self._config.baudrate)

    def close(self) -> None:
        """Close the serial port."""
        if self._serial is None:
            return
        try:
            self._serial.close()
        except serial.SerialException as e:
            logger.warning("Error closing port: %s", e)
        finally:
            self._serial = None
            logger.info("Disconnected")

    def read_blocking(self, size: int) -> bytes:
        """Read up to ``size`` bytes, returning ``b""`` on read timeout.

        Raises:
            ConnectionError: If the port is closed or the read fails.
        """
        port = self._serial
        if port is None or not port.is_open:
            raise ConnectionError("Not connected to device")
        try:
            waiting = port.in_waiting
            return port.read(min(size, waiting) if waiting else 1)
        except serial.SerialException as e:
            raise ConnectionError(f"Serial read failed: {e}") from e

    async def read(self, size: int) -> bytes:
        """Wait for at least one byte.

        Returns ``b""`` once the port has been closed, which ends the
        session's read loop.
        """
        while self.connected:
            data = await asyncio.to_thread(self.read_blocking, size)
            if data:
                return data
        return b""

    async def write(self, data: bytes) -> None:
        """Write ``data`` and wait until it has been sent.

        Raises:
            ConnectionError: If not connected or the write fails.
        """
        port = self._serial
        if port is None or not port.is_open:
            raise ConnectionError("Not connected to device")
        try:
            await asyncio.to_thread(self._write_all, port, data)
        except serial.SerialException as e:
            raise ConnectionError(f"Serial write failed: {e}") from e

    @staticmethod
    def _write_all(port: serial.Serial, data: bytes) -> None:
        port.write(data)
        port.flush()
