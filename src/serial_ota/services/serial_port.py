"""pyserial-backed duplex byte stream."""

import asyncio
import logging
from typing import Optional

import serial

from serial_ota.errors import TransportOpenError
from serial_ota.models.config import FlowControlEnum, ParityEnum, SerialConfig

_PARITY = {
    ParityEnum.NONE: serial.PARITY_NONE,
    ParityEnum.EVEN: serial.PARITY_EVEN,
    ParityEnum.ODD: serial.PARITY_ODD,
}
_STOPBITS = {1: serial.STOPBITS_ONE, 2: serial.STOPBITS_TWO}
_BYTESIZE = {7: serial.SEVENBITS, 8: serial.EIGHTBITS}


class SerialByteStream:
    """Async read/write primitives over a pyserial port.

    Blocking pyserial calls run in worker threads. Reads block for at most
    ``read_timeout`` and return ``b""`` when nothing arrived, so a cancelled
    reader never holds the port longer than one read slice.

    Any object with the same coroutine methods (``open``, ``read``, ``write``,
    ``flush``, ``close``) plus ``cancel_read`` can stand in for this class.
    """

    def __init__(self, config: SerialConfig):
        self.logger = logging.getLogger("serial_ota.serial_port")
        self.config = config
        self._serial: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    async def open(self) -> None:
        """Claim and configure the port.

        Raises:
            TransportOpenError: If no port is configured or pyserial fails
        """
        if not self.config.port:
            raise TransportOpenError("No serial port configured")

        self.logger.info(
            f"Opening {self.config.port} at {self.config.baudrate} baud "
            f"({self.config.bytesize}{self.config.parity.value[0].upper()}"
            f"{self.config.stopbits}, flow={self.config.flow_control.value})"
        )
        try:
            self._serial = await asyncio.to_thread(
                serial.Serial,
                port=self.config.port,
                baudrate=self.config.baudrate,
                bytesize=_BYTESIZE[self.config.bytesize],
                parity=_PARITY[self.config.parity],
                stopbits=_STOPBITS[self.config.stopbits],
                timeout=self.config.read_timeout,
                write_timeout=self.config.write_timeout,
                rtscts=self.config.flow_control == FlowControlEnum.HARDWARE,
                xonxoff=self.config.flow_control == FlowControlEnum.SOFTWARE,
            )
        except (serial.SerialException, ValueError) as e:
            raise TransportOpenError(f"Failed to open {self.config.port}: {e}") from e

    async def read(self) -> bytes:
        """Return whatever bytes are available, or ``b""`` after a read slice."""
        port = self._require_port()
        return await asyncio.to_thread(self._read_available, port)

    @staticmethod
    def _read_available(port: serial.Serial) -> bytes:
        return port.read(port.in_waiting or 1)

    async def write(self, data: bytes) -> None:
        port = self._require_port()
        await asyncio.to_thread(port.write, data)

    async def flush(self) -> None:
        port = self._require_port()
        await asyncio.to_thread(port.flush)

    def cancel_read(self) -> None:
        """Interrupt a blocking read where the platform supports it."""
        if self._serial is not None and hasattr(self._serial, "cancel_read"):
            self._serial.cancel_read()

    async def close(self) -> None:
        port, self._serial = self._serial, None
        if port is not None and port.is_open:
            await asyncio.to_thread(port.close)
            self.logger.info(f"Closed {self.config.port}")

    def _require_port(self) -> serial.Serial:
        if self._serial is None or not self._serial.is_open:
            raise serial.SerialException("Port is not open")
        return self._serial
