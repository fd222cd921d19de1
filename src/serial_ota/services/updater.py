"""Update orchestration: status reconciliation, chunked transfer, finalize."""

import asyncio
import base64
import logging
from pathlib import Path
from typing import Optional, Union

from serial_ota.errors import (
    ChunkRejectedError,
    FinalizeError,
    ProtocolStateMismatchError,
    StartUpdateError,
    TooManyConsecutiveErrorsError,
    TransportError,
    TransportNotConnectedError,
    UpdateInProgressError,
    UpdaterError,
)
from serial_ota.models.command import CommandEnum, UpdateType
from serial_ota.models.config import TransferSettings
from serial_ota.models.response import ProgressEvent
from serial_ota.models.session import TransferSession
from serial_ota.models.status import StatusType, UpdateStage
from serial_ota.services.connection import DeviceConnection
from serial_ota.utils.files import format_bytes, read_firmware


class UpdateOrchestrator:
    """Drives one end-to-end update over a DeviceConnection.

    Commands are issued strictly one at a time. An unsolicited ``PROGRESS:``
    frame with ``completed=true`` ends the attempt immediately, even in the
    middle of the chunk loop.
    """

    def __init__(
        self,
        connection: DeviceConnection,
        settings: Optional[TransferSettings] = None,
    ):
        """Initialize orchestrator.

        Args:
            connection: Connected (or connectable) device link
            settings: Transfer tuning (connection.config.transfer if None)
        """
        self.logger = logging.getLogger("serial_ota.updater")
        self.connection = connection
        self.transport = connection.transport
        self.status = connection.status
        self.settings = settings or connection.config.transfer

        self._session: Optional[TransferSession] = None
        self._update_task: Optional[asyncio.Task] = None
        self._remote_completion: Optional[asyncio.Future] = None
        self._aborted = False
        self._abort_finished: Optional[asyncio.Event] = None
        self._close_task: Optional[asyncio.Task] = None

        self.transport.set_progress_handler(self._handle_progress_event)

    @property
    def session(self) -> Optional[TransferSession]:
        return self._session

    @property
    def update_in_progress(self) -> bool:
        return self._update_task is not None

    async def start_update_from_file(
        self, path: Union[str, Path], update_type: Union[UpdateType, str]
    ) -> UpdateStage:
        """Read an image from disk and run ``start_update`` with it."""
        try:
            firmware = await read_firmware(path)
        except (OSError, ValueError) as e:
            self.logger.error(f"Failed to read image {path}: {e}")
            self.status.update_status(f"Failed to read file: {e}", StatusType.ERROR)
            return UpdateStage.FAILED
        return await self.start_update(firmware, update_type)

    async def start_update(
        self, firmware: bytes, update_type: Union[UpdateType, str]
    ) -> UpdateStage:
        """Run one update attempt to completion.

        Args:
            firmware: Raw image bytes
            update_type: ``firmware`` or ``filesystem``

        Returns:
            Terminal stage: SUCCEEDED, FAILED or ABORTED

        Raises:
            UpdateInProgressError: If an update is already running
            ValueError: If the image is empty or the update type is unknown
        """
        if self._update_task is not None:
            raise UpdateInProgressError("An update is already in progress")
        update_type = UpdateType(update_type)
        if not firmware:
            raise ValueError("Firmware image is empty")

        if not self.connection.is_connected:
            error = TransportNotConnectedError()
            self.status.update_status(f"Update failed: {error}", StatusType.ERROR, error.code)
            return UpdateStage.FAILED

        if self._close_task is not None and not self._close_task.done():
            self._close_task.cancel()

        loop = asyncio.get_running_loop()
        self._remote_completion = loop.create_future()
        self._abort_finished = asyncio.Event()
        self._aborted = False
        self._session = TransferSession(
            file_size=len(firmware),
            update_type=update_type,
            chunk_size=self.settings.chunk_size,
        )
        self.status.update_status("", StatusType.NONE)

        body = asyncio.create_task(
            self._run_update(firmware, self._session), name="serial-ota-update"
        )
        self._update_task = body
        completion = self._remote_completion

        try:
            await asyncio.wait({body, completion}, return_when=asyncio.FIRST_COMPLETED)

            if self._aborted:
                await self._abort_finished.wait()
                return UpdateStage.ABORTED

            if not body.done():
                event = completion.result()
                self.logger.info(f"Device signalled completion: success={event.success}")
                body.cancel()
                await asyncio.gather(body, return_exceptions=True)
                if self._aborted:
                    await self._abort_finished.wait()
                    return UpdateStage.ABORTED
                if event.success:
                    self._complete_success("Update completed successfully! Device will restart.")
                    return UpdateStage.SUCCEEDED
                await self._fail(UpdaterError(event.message or "Update failed"))
                return UpdateStage.FAILED

            if body.cancelled():
                # Cancelled without abort_update(): treat as a failure
                await self._fail(UpdaterError("Update cancelled"))
                return UpdateStage.FAILED

            error = body.exception()
            if error is not None:
                await self._fail(error)
                return UpdateStage.FAILED

            self._complete_success("Update completed! Device will restart automatically.")
            return UpdateStage.SUCCEEDED
        finally:
            if not body.done():
                body.cancel()
                await asyncio.gather(body, return_exceptions=True)
            self._update_task = None
            self._remote_completion = None
            self._session = None

    async def abort_update(self) -> None:
        """User-initiated abort.

        Cancels the running attempt (freeing the pending command), sends
        ABORT_UPDATE best-effort, and returns to a state that accepts a new
        ``start_update`` whether or not the device acknowledged.
        """
        task = self._update_task
        if task is None:
            self.logger.warning("Abort requested but no update is in progress")
            return
        if task.done():
            # Transfer already ended; start_update is finishing its own cleanup
            self.logger.warning("Abort requested but the update is already finishing")
            return

        self.logger.info("Aborting update")
        self._aborted = True
        finished = self._abort_finished
        try:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            await self._send_abort_best_effort()
            self.status.set_update_stage(UpdateStage.ABORTED)
            self.status.reset_progress()
            self.status.update_status("Update aborted", StatusType.WARNING)
        finally:
            if finished is not None:
                finished.set()

    async def _run_update(self, firmware: bytes, session: TransferSession) -> None:
        self.logger.info(
            f"Starting update: {session.file_size} bytes, type: {session.update_type.value}"
        )
        await self._check_device_status()
        await self._reset_device_state()
        await self._start_transfer(session)

        self.status.update_progress(5, "Preparing image...")
        self.logger.info(
            f"Image: {session.file_size} bytes in {session.total_chunks} chunks "
            f"of {session.chunk_size} bytes each"
        )
        self.status.update_progress(10, "Starting upload...")
        await self._transfer_chunks(firmware, session)

        elapsed = max(session.elapsed(), 1e-6)
        self.logger.info(
            f"Transfer completed: {format_bytes(session.file_size)} in {elapsed:.2f}s "
            f"({format_bytes(session.file_size / elapsed)}/s)"
        )
        await self._finalize()

    async def _check_device_status(self) -> None:
        """Abort a stale device-side session. Failures are non-fatal."""
        self.status.set_update_stage(UpdateStage.CHECKING_STATUS)
        self.status.update_progress(0, "Checking device status...")
        try:
            response = await self.transport.send(CommandEnum.GET_STATUS)
            if response.update_active:
                self.logger.info("Device has an active update session, aborting it")
                await self.transport.send(CommandEnum.ABORT_UPDATE)
                await asyncio.sleep(self.settings.status_settle_delay)
        except TransportError as e:
            self.logger.warning(f"Failed to get status: {e}")

    async def _reset_device_state(self) -> None:
        """Unconditional ABORT_UPDATE for a known base state. Non-fatal."""
        self.status.set_update_stage(UpdateStage.RESETTING_STATE)
        self.status.update_progress(1, "Resetting device state...")
        try:
            await self.transport.send(CommandEnum.ABORT_UPDATE)
            await asyncio.sleep(self.settings.reset_settle_delay)
        except TransportError as e:
            self.logger.warning(f"Abort command failed: {e}")

    async def _start_transfer(self, session: TransferSession) -> None:
        self.status.set_update_stage(UpdateStage.STARTING)
        self.status.update_progress(3, "Starting new update...")

        response = await self.transport.send_with_retry(
            CommandEnum.START_UPDATE,
            session.start_payload,
            max_attempts=self.settings.start_attempts,
        )
        if not response.success:
            raise StartUpdateError(response.message or "START_UPDATE command failed")
        if response.state != self.settings.ready_state:
            raise ProtocolStateMismatchError(self.settings.ready_state, response.state)

    async def _transfer_chunks(self, firmware: bytes, session: TransferSession) -> None:
        self.status.set_update_stage(UpdateStage.TRANSFERRING)
        total = session.total_chunks

        for index in range(total):
            start, end = session.chunk_bounds(index)
            payload = base64.b64encode(firmware[start:end]).decode("ascii")

            if index % self.settings.progress_interval == 0 or index == total - 1:
                percent = session.transfer_percent(index)
                self.status.update_progress(
                    percent, f"Uploading: {round(percent)}% Do not disconnect device."
                )

            await self._send_chunk(index, payload, session)
            session.current_chunk = index + 1
            session.bytes_transferred = end

            if index < total - 1 and self.settings.inter_chunk_delay:
                await asyncio.sleep(self.settings.inter_chunk_delay)

    async def _send_chunk(self, index: int, payload: str, session: TransferSession) -> None:
        """Send one chunk, retrying the same index until it succeeds.

        Raises:
            TooManyConsecutiveErrorsError: On reaching the consecutive-error ceiling
        """
        while True:
            try:
                response = await self.transport.send(CommandEnum.SEND_CHUNK, payload)
                if not response.success:
                    raise ChunkRejectedError(index, response.message)
            except (TransportError, ChunkRejectedError) as e:
                if not self.transport.is_open:
                    raise
                session.consecutive_errors += 1
                self.logger.error(
                    f"Chunk {index + 1} failed ({session.consecutive_errors} consecutive errors): {e}"
                )
                if session.consecutive_errors >= self.settings.max_consecutive_errors:
                    raise TooManyConsecutiveErrorsError(session.consecutive_errors, str(e)) from e
                await asyncio.sleep(self.transport.settings.retry_delay_for(CommandEnum.SEND_CHUNK))
                continue

            session.consecutive_errors = 0
            return

    async def _finalize(self) -> None:
        self.status.set_update_stage(UpdateStage.FINALIZING)
        self.status.update_progress(95, "Finalizing update...")
        response = await self.transport.send_with_retry(CommandEnum.FINISH_UPDATE)
        if not response.success:
            raise FinalizeError(response.message or "Failed to finish update")

    def _complete_success(self, message: str) -> None:
        self.status.set_update_stage(UpdateStage.SUCCEEDED)
        self.status.update_progress(100, "Update completed successfully!")
        self.status.update_status(message, StatusType.SUCCESS)
        self._close_task = asyncio.create_task(
            self._disconnect_after_grace(), name="serial-ota-close"
        )

    async def _disconnect_after_grace(self) -> None:
        """Let the device begin its restart, then drop the link."""
        await asyncio.sleep(self.settings.completion_grace_delay)
        try:
            await self.connection.disconnect()
            self.status.update_status(
                "Update completed successfully. Device is restarting. "
                "You can reconnect when ready.",
                StatusType.SUCCESS,
            )
        except Exception as e:
            self.logger.warning(f"Failed to disconnect after successful update: {e}")

    async def _fail(self, error: BaseException) -> None:
        """Single cleanup path for every fatal error."""
        self.logger.error(f"Update failed: {error}")
        await self._send_abort_best_effort()
        code = getattr(error, "code", None)
        self.status.set_update_stage(UpdateStage.FAILED)
        self.status.update_status(f"Update failed: {error}", StatusType.ERROR, code)

    async def _send_abort_best_effort(self) -> None:
        try:
            await self.transport.send(CommandEnum.ABORT_UPDATE)
        except (TransportError, RuntimeError) as e:
            self.logger.warning(f"Failed to abort update after error: {e}")

    def _handle_progress_event(self, event: ProgressEvent) -> None:
        """Out-of-band progress from the read loop. Only records; never sends."""
        if event.progress is not None:
            self.status.update_progress(event.progress, event.message or "")

        if not event.completed:
            return

        completion = self._remote_completion
        if completion is not None and not completion.done():
            completion.set_result(event)
        elif event.success:
            self.status.update_status(
                "Update completed successfully! Device will restart.", StatusType.SUCCESS
            )
        else:
            self.status.update_status(event.message or "Update failed", StatusType.ERROR)
