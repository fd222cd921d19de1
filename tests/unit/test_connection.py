"""Unit tests for DeviceConnection."""

import asyncio

import pytest

from serial_ota.errors import TransportNotConnectedError
from serial_ota.models.config import UpdaterConfig
from serial_ota.models.status import ConnectionState, EventKind, StatusType
from serial_ota.services.connection import DeviceConnection
from serial_ota.services.status_tracker import StatusTracker
from serial_ota.services.transport import SerialTransport
from mocks.serial_device import DeviceBehavior, MockSerialDevice


def make_connection(config: UpdaterConfig, device: MockSerialDevice) -> DeviceConnection:
    transport = SerialTransport(settings=config.transport, stream_factory=device)
    return DeviceConnection(config=config, status=StatusTracker(), transport=transport)


@pytest.mark.unit
class TestDeviceConnection:
    """Test connect/disconnect and mode validation."""

    @pytest.mark.asyncio
    async def test_connect_in_update_mode(self, fast_config, device):
        connection = make_connection(fast_config, device)

        assert await connection.connect() is True
        try:
            status = connection.status.get_status()
            assert status.connection_state == ConnectionState.CONNECTED
            assert status.connection_status.type == StatusType.SUCCESS
            assert status.device_info.current_mode == "Update Mode"
            assert status.device_info.firmware_version == "1.2.3"
            assert status.device_info.model_extra["mcu"] == "ESP32-S3"
            assert connection.is_connected
        finally:
            await connection.disconnect()

    @pytest.mark.asyncio
    async def test_wrong_mode_disconnects(self, fast_config):
        device = MockSerialDevice(DeviceBehavior(mode="Normal Mode"))
        connection = make_connection(fast_config, device)

        assert await connection.connect() is False

        status = connection.status.get_status()
        assert status.connection_state == ConnectionState.DISCONNECTED
        assert status.connection_status.code == "DEVICE_WRONG_MODE"
        assert status.connection_status.type == StatusType.WARNING
        assert "Normal Mode" in status.connection_status.message
        assert status.device_info is None
        assert device.close_count == 1
        assert "START_UPDATE" not in device.command_names()

    @pytest.mark.asyncio
    async def test_get_info_timeout_disconnects(self, fast_config):
        device = MockSerialDevice(DeviceBehavior(silent={"GET_INFO"}))
        connection = make_connection(fast_config, device)

        assert await connection.connect() is False

        status = connection.status.get_status()
        assert status.connection_state == ConnectionState.DISCONNECTED
        assert status.connection_status.type == StatusType.ERROR
        assert status.connection_status.code == "TIMEOUT"
        assert not connection.transport.is_open

    @pytest.mark.asyncio
    async def test_get_info_rejected_disconnects(self, fast_config):
        class RejectingBehavior(DeviceBehavior):
            def __call__(self, command, data):
                if command == "GET_INFO":
                    return ['ERROR:{"message":"locked"}']
                return super().__call__(command, data)

        device = MockSerialDevice(RejectingBehavior())
        connection = make_connection(fast_config, device)

        assert await connection.connect() is False
        assert connection.status.connection_state == ConnectionState.DISCONNECTED
        assert "Could not verify device mode" in connection.status.get_status().connection_status.message

    @pytest.mark.asyncio
    async def test_open_failure_reports_error(self, fast_config):
        device = MockSerialDevice(fail_open=True)
        connection = make_connection(fast_config, device)

        assert await connection.connect() is False

        status = connection.status.get_status()
        assert status.connection_state == ConnectionState.DISCONNECTED
        assert status.connection_status.code == "OPEN_FAILED"
        assert status.connection_status.message.startswith("Connection failed:")

    @pytest.mark.asyncio
    async def test_connection_state_transitions(self, fast_config, device):
        connection = make_connection(fast_config, device)
        states = []

        def record(event):
            if event.kind == EventKind.STATE:
                states.append(event.snapshot.connection_state)

        connection.status.subscribe(record)

        await connection.connect()
        await connection.disconnect()

        assert states == [
            ConnectionState.CONNECTING,
            ConnectionState.MODE_VALIDATING,
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
        ]

    @pytest.mark.asyncio
    async def test_reconnect_closes_existing_link(self, fast_config, device):
        connection = make_connection(fast_config, device)

        await connection.connect()
        assert await connection.connect() is True
        try:
            assert device.open_count == 2
            assert device.close_count == 1
        finally:
            await connection.disconnect()

    @pytest.mark.asyncio
    async def test_disconnect_is_safe_when_closed(self, fast_config, device):
        connection = make_connection(fast_config, device)

        assert await connection.disconnect() is True
        assert connection.status.connection_state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method,command",
        [
            ("get_status", "GET_STATUS"),
            ("get_partition_info", "GET_PARTITION_INFO"),
            ("get_storage_info", "GET_STORAGE_INFO"),
            ("validate_firmware", "VALIDATE_FIRMWARE"),
            ("rollback", "ROLLBACK"),
        ],
    )
    async def test_auxiliary_commands(self, fast_config, device, method, command):
        connection = make_connection(fast_config, device)
        await connection.connect()
        try:
            response = await getattr(connection, method)()

            assert response.success is True
            assert device.command_names()[-1] == command
        finally:
            await connection.disconnect()

    @pytest.mark.asyncio
    async def test_get_device_info_refreshes_status(self, fast_config, device, behavior):
        connection = make_connection(fast_config, device)
        await connection.connect()
        try:
            behavior.mode = "Update Mode"
            info = await connection.get_device_info()

            assert info.current_mode == "Update Mode"
            assert connection.status.device_info.firmware_version == "1.2.3"
        finally:
            await connection.disconnect()

    @pytest.mark.asyncio
    async def test_restart_device_disconnects(self, fast_config, device):
        connection = make_connection(fast_config, device)
        await connection.connect()

        response = await connection.restart_device()

        assert response.success is True
        assert device.command_names()[-1] == "RESTART"
        assert connection.status.connection_state == ConnectionState.DISCONNECTED
        assert not connection.transport.is_open

    @pytest.mark.asyncio
    async def test_execute_requires_connection(self, fast_config, device):
        connection = make_connection(fast_config, device)

        with pytest.raises(TransportNotConnectedError):
            await connection.get_storage_info()

    @pytest.mark.asyncio
    async def test_unplugged_device_disconnects_immediately(self, fast_config, device):
        connection = make_connection(fast_config, device)
        await connection.connect()

        device.unplug()
        await asyncio.sleep(0.01)

        status = connection.status.get_status()
        assert connection.is_connected is False
        assert status.connection_state == ConnectionState.DISCONNECTED
        assert status.connection_status.type == StatusType.ERROR
        assert status.connection_status.code == "READ_FAILED"
        assert status.device_info is None

        with pytest.raises(TransportNotConnectedError):
            await connection.get_status()

        assert await connection.connect() is True
        await connection.disconnect()
