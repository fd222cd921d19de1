"""Device connection lifecycle and update-mode validation."""

import asyncio
import logging
from typing import Optional

from pydantic import ValidationError

from serial_ota.errors import (
    DeviceWrongModeError,
    TransportError,
    TransportNotConnectedError,
    TransportOpenError,
)
from serial_ota.models.command import CommandEnum
from serial_ota.models.config import UpdaterConfig
from serial_ota.models.response import DeviceInfo, DeviceResponse
from serial_ota.models.status import ConnectionState, StatusType
from serial_ota.services.status_tracker import StatusTracker
from serial_ota.services.transport import SerialTransport


class DeviceConnection:
    """Opens the transport and admits only devices in update mode."""

    def __init__(
        self,
        config: Optional[UpdaterConfig] = None,
        status: Optional[StatusTracker] = None,
        transport: Optional[SerialTransport] = None,
    ):
        """Initialize connection.

        Args:
            config: Root configuration (defaults if None)
            status: Shared StatusTracker (new instance if None)
            transport: SerialTransport (built from config.transport if None)
        """
        self.logger = logging.getLogger("serial_ota.connection")
        self.config = config or UpdaterConfig()
        self.status = status or StatusTracker()
        self.transport = transport or SerialTransport(settings=self.config.transport)
        self.transport.set_connection_lost_handler(self._handle_connection_lost)

    @property
    def is_connected(self) -> bool:
        return (
            self.status.connection_state == ConnectionState.CONNECTED
            and self.transport.is_open
        )

    async def connect(self) -> bool:
        """Open the serial link and validate the device mode.

        Returns:
            True if the device is connected in update mode, False otherwise
            (the reason is reported through the connection status)
        """
        self.status.connection_status("", StatusType.NONE)

        if self.transport.is_open or self.status.connection_state != ConnectionState.DISCONNECTED:
            self.logger.info("Cleaning up existing connection before reconnecting")
            await self.disconnect()
            await asyncio.sleep(self.config.transfer.reconnect_delay)

        self.status.set_connection_state(ConnectionState.CONNECTING)
        try:
            await self.transport.open(self.config.serial)
        except TransportOpenError as e:
            self.logger.error(f"Connection failed: {e}")
            await self.disconnect()
            self.status.connection_status(f"Connection failed: {e}", StatusType.ERROR, e.code)
            return False

        self.status.set_connection_state(ConnectionState.MODE_VALIDATING)
        self.status.connection_status("Checking device mode...", StatusType.INFO)

        try:
            response = await self.transport.send(
                CommandEnum.GET_INFO, timeout=self.config.transport.connect_timeout
            )
        except TransportError as e:
            self.logger.warning(f"Failed to get device info: {e}")
            await self.disconnect()
            self.status.connection_status(
                "Unable to communicate with device. Please ensure device is in "
                "Update Mode and try again.",
                StatusType.ERROR,
                e.code,
            )
            return False

        if not response.success:
            self.logger.warning(f"GET_INFO rejected: {response.message}")
            await self.disconnect()
            self.status.connection_status(
                "Could not verify device mode. Please ensure device is in "
                "Update Mode and try again.",
                StatusType.ERROR,
            )
            return False

        try:
            info = DeviceInfo.model_validate(response.model_dump())
        except ValidationError as e:
            self.logger.error(f"Malformed device info: {e}")
            await self.disconnect()
            self.status.connection_status("Device returned malformed info", StatusType.ERROR)
            return False

        expected_mode = self.config.transfer.expected_mode
        if info.current_mode != expected_mode:
            error = DeviceWrongModeError(info.current_mode, expected_mode)
            self.logger.warning(f"Device in wrong mode: {info.current_mode}")
            await self.disconnect()
            self.status.connection_status(str(error), StatusType.WARNING, error.code)
            return False

        self.status.set_device_info(info)
        self.status.set_connection_state(ConnectionState.CONNECTED)
        self.status.connection_status(
            f"Device connected successfully in {expected_mode}", StatusType.SUCCESS
        )
        self.logger.info(
            f"Connected: mode={info.current_mode}, firmware={info.firmware_version}"
        )
        return True

    async def disconnect(self) -> bool:
        """Close the transport and return to ``disconnected``. Never raises."""
        await self.transport.close()
        if self.status.device_info is not None:
            self.status.set_device_info(None)
        self.status.set_connection_state(ConnectionState.DISCONNECTED)
        return True

    def _handle_connection_lost(self, error: TransportError) -> None:
        """Read loop died (device unplugged): reflect it without waiting for a timeout."""
        self.logger.error(f"Connection lost: {error}")
        if self.status.device_info is not None:
            self.status.set_device_info(None)
        self.status.set_connection_state(ConnectionState.DISCONNECTED)
        self.status.connection_status(
            f"Device disconnected: {error}", StatusType.ERROR, error.code
        )

    async def execute(self, command: CommandEnum, data: str = "") -> DeviceResponse:
        """Issue a single command on a validated connection.

        Raises:
            TransportNotConnectedError: If not connected in update mode
            TransportError: If the command fails after retries
        """
        if not self.is_connected:
            raise TransportNotConnectedError()
        return await self.transport.send_with_retry(command, data)

    async def get_device_info(self) -> DeviceInfo:
        response = await self.execute(CommandEnum.GET_INFO)
        info = DeviceInfo.model_validate(response.model_dump())
        if info.success:
            self.status.set_device_info(info)
        return info

    async def get_status(self) -> DeviceResponse:
        return await self.execute(CommandEnum.GET_STATUS)

    async def get_partition_info(self) -> DeviceResponse:
        return await self.execute(CommandEnum.GET_PARTITION_INFO)

    async def get_storage_info(self) -> DeviceResponse:
        return await self.execute(CommandEnum.GET_STORAGE_INFO)

    async def validate_firmware(self) -> DeviceResponse:
        return await self.execute(CommandEnum.VALIDATE_FIRMWARE)

    async def restart_device(self) -> DeviceResponse:
        """Ask the device to reboot, then drop the link it is about to lose."""
        response = await self.execute(CommandEnum.RESTART)
        if response.success:
            await self.disconnect()
            self.status.connection_status(
                "Device is restarting. You can reconnect when ready.", StatusType.INFO
            )
        return response

    async def rollback(self) -> DeviceResponse:
        return await self.execute(CommandEnum.ROLLBACK)
