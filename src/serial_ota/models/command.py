"""Command opcodes and outgoing frame model."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CommandEnum(str, Enum):
    """Opcodes understood by the device's update firmware."""

    GET_INFO = "GET_INFO"
    GET_STATUS = "GET_STATUS"
    START_UPDATE = "START_UPDATE"
    SEND_CHUNK = "SEND_CHUNK"
    FINISH_UPDATE = "FINISH_UPDATE"
    ABORT_UPDATE = "ABORT_UPDATE"
    RESTART = "RESTART"
    ROLLBACK = "ROLLBACK"
    GET_PARTITION_INFO = "GET_PARTITION_INFO"
    GET_STORAGE_INFO = "GET_STORAGE_INFO"
    VALIDATE_FIRMWARE = "VALIDATE_FIRMWARE"


class UpdateType(str, Enum):
    """Target partition of an update."""

    FIRMWARE = "firmware"
    FILESYSTEM = "filesystem"


class Command(BaseModel):
    """One outgoing request.

    Encodes to ``NAME\\n`` or ``NAME:DATA\\n``.
    """

    model_config = ConfigDict(frozen=True)

    name: CommandEnum = Field(..., description="Opcode")
    data: str = Field(default="", description="Opaque payload, empty for none")

    @field_validator("data")
    @classmethod
    def single_line_payload(cls, v: str) -> str:
        """A newline in the payload would split the frame."""
        if "\n" in v or "\r" in v:
            raise ValueError("Command data must not contain line breaks")
        return v

    def to_line(self) -> str:
        if self.data:
            return f"{self.name.value}:{self.data}\n"
        return f"{self.name.value}\n"

    def encode(self) -> bytes:
        return self.to_line().encode("utf-8")
