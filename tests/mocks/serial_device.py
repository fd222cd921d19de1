"""Scripted in-memory serial device speaking the OK/ERROR/PROGRESS protocol."""

import asyncio
import base64
import json
import logging
from typing import Callable, Optional

logger = logging.getLogger("mock-serial-device")


def ok(**payload) -> str:
    return "OK:" + json.dumps({"success": True, **payload})


def error(**payload) -> str:
    return "ERROR:" + json.dumps({"success": False, **payload})


def progress(**payload) -> str:
    return "PROGRESS:" + json.dumps(payload)


class DeviceBehavior:
    """Decides how the mock device answers each command.

    Attributes:
        mode: current_mode reported by GET_INFO
        update_active: update_active reported by GET_STATUS
        start_state: state returned by START_UPDATE
        start_success: whether START_UPDATE succeeds
        finish_success: whether FINISH_UPDATE succeeds
        chunk_failures: chunk index -> number of times to reject it
        silent: commands that get no answer at all
        silent_once: commands that get no answer the next time only
        on_chunk: hook(index) returning replacement reply lines, or None
    """

    def __init__(
        self,
        mode: str = "Update Mode",
        update_active: bool = False,
        start_state: str = "RECEIVING",
        start_success: bool = True,
        finish_success: bool = True,
        chunk_failures: Optional[dict[int, int]] = None,
        silent: Optional[set[str]] = None,
        on_chunk: Optional[Callable[[int], Optional[list[str]]]] = None,
    ):
        self.mode = mode
        self.update_active = update_active
        self.start_state = start_state
        self.start_success = start_success
        self.finish_success = finish_success
        self.chunk_failures = dict(chunk_failures or {})
        self.silent = set(silent or ())
        self.silent_once: set[str] = set()
        self.on_chunk = on_chunk
        self.received: list[bytes] = []
        self.chunk_attempts: list[int] = []

    @property
    def next_chunk_index(self) -> int:
        return len(self.received)

    def image(self) -> bytes:
        return b"".join(self.received)

    def __call__(self, command: str, data: str) -> list[str]:
        if command in self.silent:
            return []
        if command in self.silent_once:
            self.silent_once.discard(command)
            return []

        if command == "GET_INFO":
            return [ok(current_mode=self.mode, firmware_version="1.2.3", mcu="ESP32-S3")]
        if command == "GET_STATUS":
            return [ok(update_active=self.update_active)]
        if command == "ABORT_UPDATE":
            self.update_active = False
            self.received.clear()
            return [ok(message="Update aborted")]
        if command == "START_UPDATE":
            if not self.start_success:
                return [error(message="Not enough space")]
            self.update_active = True
            return [ok(state=self.start_state)]
        if command == "SEND_CHUNK":
            return self._chunk(data)
        if command == "FINISH_UPDATE":
            if not self.finish_success:
                return [error(message="Image verification failed")]
            self.update_active = False
            return [ok(message="Update complete", completed=True)]
        return [ok(command=command)]

    def _chunk(self, data: str) -> list[str]:
        index = self.next_chunk_index
        self.chunk_attempts.append(index)
        if self.on_chunk is not None:
            replies = self.on_chunk(index)
            if replies is not None:
                return replies
        if self.chunk_failures.get(index, 0) > 0:
            self.chunk_failures[index] -= 1
            return [error(message="CRC mismatch")]
        self.received.append(base64.b64decode(data))
        return [ok(received=len(self.received))]


class MockSerialDevice:
    """Byte stream double for SerialTransport.

    Usable directly as the transport's ``stream_factory``. Replies are queued
    as raw bytes, optionally split into ``fragment_size`` pieces to exercise
    line reassembly.
    """

    def __init__(
        self,
        behavior: Optional[DeviceBehavior] = None,
        fragment_size: Optional[int] = None,
        fail_open: bool = False,
        fail_write: bool = False,
    ):
        self.behavior = behavior or DeviceBehavior()
        self.fragment_size = fragment_size
        self.fail_open = fail_open
        self.fail_write = fail_write
        self.config = None
        self.writes: list[bytes] = []
        self.commands: list[tuple[str, str]] = []
        self.open_count = 0
        self.close_count = 0
        self._queue: asyncio.Queue = asyncio.Queue()

    def __call__(self, config):
        self.config = config
        return self

    @property
    def is_open(self) -> bool:
        return self.open_count > self.close_count

    def command_names(self) -> list[str]:
        return [name for name, _ in self.commands]

    def count(self, command: str) -> int:
        return self.command_names().count(command)

    async def open(self) -> None:
        if self.fail_open:
            raise OSError("Port is busy")
        self._queue = asyncio.Queue()
        self.open_count += 1

    async def read(self) -> bytes:
        item = await self._queue.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def write(self, data: bytes) -> None:
        if self.fail_write:
            raise OSError("Write timeout")
        self.writes.append(data)
        line = data.decode("utf-8").rstrip("\n")
        name, _, payload = line.partition(":")
        self.commands.append((name, payload))
        for reply in self.behavior(name, payload):
            self.push_line(reply)

    async def flush(self) -> None:
        pass

    def cancel_read(self) -> None:
        self._queue.put_nowait(b"")

    async def close(self) -> None:
        self.close_count += 1

    def unplug(self) -> None:
        """Make the pending read fail as if the cable was pulled."""
        self._queue.put_nowait(OSError("device reports readiness to read but returned no data"))

    def push_line(self, line: str) -> None:
        self.push(line.encode("utf-8") + b"\n")

    def push(self, data: bytes) -> None:
        size = self.fragment_size or len(data)
        for start in range(0, len(data), size):
            self._queue.put_nowait(data[start:start + size])
