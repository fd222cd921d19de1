"""Unit tests for configuration models."""

import json

import pytest
from pydantic import ValidationError

from serial_ota.models.command import CommandEnum
from serial_ota.models.config import (
    FlowControlEnum,
    ParityEnum,
    SerialConfig,
    TransferSettings,
    TransportSettings,
    UpdaterConfig,
    load_config,
)


@pytest.mark.unit
class TestConfigModels:
    """Test defaults and validation."""

    def test_defaults(self):
        config = UpdaterConfig()

        assert config.serial.port is None
        assert config.serial.baudrate == 921600
        assert config.serial.bytesize == 8
        assert config.serial.stopbits == 1
        assert config.serial.parity == ParityEnum.NONE
        assert config.serial.flow_control == FlowControlEnum.NONE

        assert config.transport.command_timeout == 5.0
        assert config.transport.chunk_timeout == 10.0
        assert config.transport.connect_timeout == 10.0
        assert config.transport.connect_timeout > config.transport.command_timeout
        assert config.transport.chunk_timeout > config.transport.command_timeout
        assert config.transport.max_retries == 2

        assert config.transfer.chunk_size == 1024
        assert config.transfer.max_consecutive_errors == 3
        assert config.transfer.progress_interval == 50
        assert config.transfer.expected_mode == "Update Mode"
        assert config.transfer.ready_state == "RECEIVING"

    @pytest.mark.parametrize(
        "kwargs",
        [{"baudrate": 0}, {"bytesize": 5}, {"stopbits": 3}, {"parity": "mark"}],
    )
    def test_invalid_serial_settings_rejected(self, kwargs):
        with pytest.raises(ValidationError):
            SerialConfig(**kwargs)

    def test_invalid_transfer_settings_rejected(self):
        with pytest.raises(ValidationError):
            TransferSettings(chunk_size=0)
        with pytest.raises(ValidationError):
            TransportSettings(max_retries=0)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"command_timeout": 5, "connect_timeout": 2},
            {"command_timeout": 5, "chunk_timeout": 2},
        ],
    )
    def test_timeouts_shorter_than_command_timeout_rejected(self, kwargs):
        with pytest.raises(ValidationError):
            TransportSettings(**kwargs)

    def test_per_command_timeout(self):
        settings = TransportSettings(command_timeout=1, chunk_timeout=3)

        assert settings.timeout_for(CommandEnum.SEND_CHUNK) == 3
        assert settings.timeout_for(CommandEnum.START_UPDATE) == 1

    def test_load_config_partial_file(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(
            json.dumps(
                {
                    "serial": {"port": "/dev/ttyUSB0", "baudrate": 115200},
                    "transfer": {"chunk_size": 512},
                }
            )
        )

        config = load_config(config_file)

        assert config.serial.port == "/dev/ttyUSB0"
        assert config.serial.baudrate == 115200
        assert config.transfer.chunk_size == 512
        assert config.transport.command_timeout == 5.0

    def test_load_config_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.json")

    def test_load_config_invalid_value(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"transfer": {"chunk_size": -1}}))

        with pytest.raises(ValidationError):
            load_config(config_file)
