"""Command/response transport over a line-delimited serial stream."""

import asyncio
import logging
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from serial_ota.errors import (
    CommandInFlightError,
    InvalidResponseError,
    ParseError,
    TransportError,
    TransportNotConnectedError,
    TransportOpenError,
    TransportReadError,
    TransportTimeoutError,
    TransportWriteError,
)
from serial_ota.models.command import Command, CommandEnum
from serial_ota.models.config import SerialConfig, TransportSettings
from serial_ota.models.response import DeviceResponse, ProgressEvent
from serial_ota.services.serial_port import SerialByteStream
from serial_ota.utils.framing import Frame, LineBuffer, classify_line

ProgressHandler = Callable[[ProgressEvent], None]
ConnectionLostHandler = Callable[[TransportError], None]
StreamFactory = Callable[[SerialConfig], Any]


class PendingCommand:
    """The single in-flight request awaiting a non-progress frame."""

    def __init__(self, command: CommandEnum, future: asyncio.Future, deadline: float):
        self.command = command
        self.future = future
        self.deadline = deadline

    def resolve(self, payload: dict) -> None:
        if not self.future.done():
            self.future.set_result(payload)


class SerialTransport:
    """Frames commands and correlates each one with the next response line.

    The wire format has no request id, so at most one command may be pending
    at a time; ``send`` raises CommandInFlightError otherwise. ``PROGRESS:``
    frames bypass the pending slot and go to the progress handler.
    """

    def __init__(
        self,
        settings: Optional[TransportSettings] = None,
        stream_factory: StreamFactory = SerialByteStream,
    ):
        """Initialize transport.

        Args:
            settings: Timeouts and retry policy (defaults if None)
            stream_factory: Builds the byte stream from a SerialConfig
        """
        self.logger = logging.getLogger("serial_ota.transport")
        self.settings = settings or TransportSettings()
        self.stream_factory = stream_factory
        self._stream = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: Optional[PendingCommand] = None
        self._progress_handler: Optional[ProgressHandler] = None
        self._connection_lost_handler: Optional[ConnectionLostHandler] = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @property
    def pending_command(self) -> Optional[CommandEnum]:
        return self._pending.command if self._pending else None

    def set_progress_handler(self, handler: Optional[ProgressHandler]) -> None:
        self._progress_handler = handler

    def set_connection_lost_handler(self, handler: Optional[ConnectionLostHandler]) -> None:
        """Called once if the read loop dies while the transport is open."""
        self._connection_lost_handler = handler

    async def open(self, config: SerialConfig) -> None:
        """Open the byte stream and start the read loop.

        Raises:
            TransportOpenError: If the stream cannot be claimed or configured
        """
        if self.is_open:
            raise TransportOpenError("Transport is already open")

        stream = self.stream_factory(config)
        try:
            await stream.open()
        except TransportOpenError:
            raise
        except Exception as e:
            raise TransportOpenError(f"Failed to open serial stream: {e}") from e

        self._stream = stream
        self._reader_task = asyncio.create_task(
            self._listen(stream), name="serial-ota-reader"
        )
        self.logger.info("Transport open, listening for frames")

    async def send(
        self,
        command: Union[CommandEnum, str],
        data: str = "",
        timeout: Optional[float] = None,
    ) -> DeviceResponse:
        """Send one command and wait for its response.

        Args:
            command: Opcode to send
            data: Optional payload appended after ``:``
            timeout: Deadline in seconds (per-command default if None)

        Returns:
            DeviceResponse; ``success`` may be False for ``ERROR:`` frames

        Raises:
            TransportNotConnectedError: If the transport is closed
            CommandInFlightError: If another command is still pending
            TransportWriteError: If writing the frame fails
            TransportTimeoutError: If no response arrives in time
            InvalidResponseError: If the payload lacks ``success``
        """
        frame = Command(name=command, data=data)
        command = frame.name
        stream = self._stream
        if stream is None:
            raise TransportNotConnectedError()
        if self._pending is not None:
            raise CommandInFlightError(self._pending.command.value, command.value)

        timeout_s = timeout if timeout is not None else self.settings.timeout_for(command)
        loop = asyncio.get_running_loop()
        pending = PendingCommand(command, loop.create_future(), loop.time() + timeout_s)
        self._pending = pending

        try:
            try:
                await stream.write(frame.encode())
            except Exception as e:
                self.logger.error(f"Write failed for {command.value}: {e}")
                raise TransportWriteError(f"Write failed: {e}") from e

            try:
                payload = await asyncio.wait_for(
                    pending.future, max(pending.deadline - loop.time(), 0)
                )
            except asyncio.TimeoutError:
                self.logger.error(f"Command timeout ({timeout_s}s): {command.value}")
                raise TransportTimeoutError(command.value, timeout_s) from None
        finally:
            if self._pending is pending:
                self._pending = None

        if "success" not in payload:
            self.logger.error(f"Invalid response for {command.value}: {payload}")
            raise InvalidResponseError(command.value)
        try:
            return DeviceResponse.model_validate(payload)
        except ValidationError as e:
            self.logger.error(f"Invalid response for {command.value}: {e}")
            raise InvalidResponseError(command.value) from e

    async def send_with_retry(
        self,
        command: Union[CommandEnum, str],
        data: str = "",
        max_attempts: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> DeviceResponse:
        """Call ``send`` up to ``max_attempts`` times with a short backoff.

        Only exceptions trigger a retry; an unsuccessful DeviceResponse is
        returned as-is. The last attempt's error propagates unchanged.
        """
        command = CommandEnum(command)
        attempts = max_attempts or self.settings.max_retries

        for attempt in range(1, attempts + 1):
            try:
                if command == CommandEnum.SEND_CHUNK:
                    self.logger.debug(f"Sending chunk (attempt {attempt})")
                else:
                    self.logger.debug(f"Sending command: {command.value} (attempt {attempt})")
                return await self.send(command, data, timeout)
            except TransportNotConnectedError:
                raise
            except TransportError as e:
                self.logger.warning(f"Command {command.value} attempt {attempt} failed: {e}")
                if attempt == attempts:
                    raise
                await asyncio.sleep(self.settings.retry_delay_for(command))

        # Unreachable: the final attempt either returns or raises
        raise TransportError(f"Max retries exceeded for {command.value}")

    async def close(self) -> None:
        """Stop reading and release the stream.

        Idempotent, never raises. A pending command is dropped without being
        resolved; its caller will see its own timeout or cancellation.
        """
        stream, self._stream = self._stream, None
        task, self._reader_task = self._reader_task, None
        if stream is None and task is None:
            return

        self._pending = None

        if stream is not None:
            try:
                stream.cancel_read()
            except Exception as e:
                self.logger.warning(f"Reader cancel failed: {e}")

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                self.logger.warning(f"Reader task ended with error: {e}")

        if stream is not None:
            try:
                await stream.flush()
            except Exception as e:
                self.logger.warning(f"Writer flush failed: {e}")

            await asyncio.sleep(self.settings.close_settle_delay)

            try:
                await stream.close()
            except Exception as e:
                self.logger.warning(f"Serial port close failed: {e}")

        self.logger.info("Transport closed")

    async def _listen(self, stream) -> None:
        """Read loop: reassemble lines and dispatch frames until closed."""
        buffer = LineBuffer()
        try:
            while self._stream is stream:
                data = await stream.read()
                if not data:
                    continue
                for line in buffer.feed(data):
                    self._handle_line(line)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Serial reading error: {e}", exc_info=True)
            if self._stream is stream:
                await self._connection_lost(stream, TransportReadError(f"Serial read failed: {e}"))

    async def _connection_lost(self, stream, error: TransportError) -> None:
        """Mark the transport closed and fail the waiter instead of letting it time out."""
        self._stream = None
        pending, self._pending = self._pending, None
        if pending is not None and not pending.future.done():
            pending.future.set_exception(error)

        try:
            await stream.close()
        except Exception as e:
            self.logger.warning(f"Serial port close failed: {e}")

        if self._connection_lost_handler is not None:
            try:
                self._connection_lost_handler(error)
            except Exception as e:
                self.logger.error(f"Connection lost handler failed: {e}", exc_info=True)

    def _handle_line(self, line: str) -> None:
        self.logger.debug(f"Received: {line}")
        try:
            frame = classify_line(line)
        except ParseError as e:
            self.logger.error(str(e))
            return

        if frame is None:
            return
        if frame.is_progress:
            self._dispatch_progress(frame)
            return

        pending, self._pending = self._pending, None
        if pending is None:
            self.logger.warning(f"Received response but no pending command: {frame.payload}")
            return
        pending.resolve(frame.payload)

    def _dispatch_progress(self, frame: Frame) -> None:
        try:
            event = ProgressEvent.model_validate(frame.payload)
        except ValidationError as e:
            self.logger.warning(f"Invalid progress frame {frame.payload}: {e}")
            event = self._core_progress(frame.payload)
            if event is None:
                return

        if self._progress_handler is None:
            self.logger.debug(f"Progress frame with no handler: {frame.payload}")
            return
        try:
            self._progress_handler(event)
        except Exception as e:
            self.logger.error(f"Progress handler failed: {e}", exc_info=True)

    def _core_progress(self, payload: dict) -> Optional[ProgressEvent]:
        """Keep completed/success/message when other fields are malformed."""
        core = {k: payload[k] for k in ("success", "completed") if k in payload}
        if payload.get("message") is not None:
            core["message"] = str(payload["message"])
        try:
            return ProgressEvent.model_validate(core)
        except ValidationError as e:
            self.logger.error(f"Dropping progress frame {payload}: {e}")
            return None
