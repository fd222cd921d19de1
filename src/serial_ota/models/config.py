"""Configuration models.

Every timing, sizing and retry value is tunable; the defaults match the
canonical 921600 8N1 deployment.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator

from serial_ota.models.command import CommandEnum

logger = logging.getLogger("serial_ota.config")


class ParityEnum(str, Enum):
    NONE = "none"
    EVEN = "even"
    ODD = "odd"


class FlowControlEnum(str, Enum):
    NONE = "none"
    HARDWARE = "hardware"
    SOFTWARE = "software"


class SerialConfig(BaseModel):
    """Line settings for the serial stream."""

    port: Optional[str] = Field(None, description="Device path, e.g. /dev/ttyUSB0 or COM3")
    baudrate: int = Field(default=921600, gt=0)
    bytesize: Literal[7, 8] = 8
    stopbits: Literal[1, 2] = 1
    parity: ParityEnum = ParityEnum.NONE
    flow_control: FlowControlEnum = FlowControlEnum.NONE
    read_timeout: float = Field(
        default=0.1, gt=0, description="Blocking read slice; bounds close() latency"
    )
    write_timeout: Optional[float] = Field(default=5.0, gt=0)


class TransportSettings(BaseModel):
    """Command timeouts and retry policy (seconds)."""

    command_timeout: float = Field(default=5.0, gt=0)
    chunk_timeout: float = Field(
        default=10.0, gt=0, description="SEND_CHUNK may wait on a flash write"
    )
    connect_timeout: float = Field(
        default=10.0, gt=0, description="First GET_INFO after open; device may still be booting"
    )
    max_retries: int = Field(default=2, ge=1, description="Attempts per send_with_retry")
    command_retry_delay: float = Field(default=0.05, ge=0)
    chunk_retry_delay: float = Field(default=0.1, ge=0)
    close_settle_delay: float = Field(default=0.1, ge=0)

    @model_validator(mode="after")
    def timeouts_ordered(self) -> "TransportSettings":
        if self.connect_timeout < self.command_timeout:
            raise ValueError(
                f"connect_timeout ({self.connect_timeout}) < command_timeout ({self.command_timeout})"
            )
        if self.chunk_timeout < self.command_timeout:
            raise ValueError(
                f"chunk_timeout ({self.chunk_timeout}) < command_timeout ({self.command_timeout})"
            )
        return self

    def timeout_for(self, command: CommandEnum) -> float:
        if command == CommandEnum.SEND_CHUNK:
            return self.chunk_timeout
        return self.command_timeout

    def retry_delay_for(self, command: CommandEnum) -> float:
        if command == CommandEnum.SEND_CHUNK:
            return self.chunk_retry_delay
        return self.command_retry_delay


class TransferSettings(BaseModel):
    """Chunked-transfer and session tuning."""

    chunk_size: int = Field(default=1024, gt=0, description="Bytes per SEND_CHUNK")
    max_consecutive_errors: int = Field(default=3, ge=1)
    progress_interval: int = Field(
        default=50, ge=1, description="Report progress every N chunks"
    )
    inter_chunk_delay: float = Field(default=0.001, ge=0)
    start_attempts: int = Field(default=2, ge=1)
    status_settle_delay: float = Field(default=1.0, ge=0)
    reset_settle_delay: float = Field(default=0.5, ge=0)
    completion_grace_delay: float = Field(
        default=2.0, ge=0, description="Wait before closing after success"
    )
    reconnect_delay: float = Field(default=1.0, ge=0)
    expected_mode: str = Field(default="Update Mode")
    ready_state: str = Field(default="RECEIVING")


class UpdaterConfig(BaseModel):
    """Root configuration."""

    serial: SerialConfig = Field(default_factory=SerialConfig)
    transport: TransportSettings = Field(default_factory=TransportSettings)
    transfer: TransferSettings = Field(default_factory=TransferSettings)


def load_config(path: Union[str, Path]) -> UpdaterConfig:
    """Load an UpdaterConfig from a JSON file.

    Args:
        path: JSON file; missing sections fall back to defaults

    Returns:
        Validated UpdaterConfig

    Raises:
        FileNotFoundError: If the file does not exist
        pydantic.ValidationError: If a value is out of range
    """
    config_path = Path(path)
    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    config = UpdaterConfig(**data)
    logger.info(
        f"Loaded config from {config_path}: port={config.serial.port}, "
        f"baudrate={config.serial.baudrate}, chunk_size={config.transfer.chunk_size}"
    )
    return config
