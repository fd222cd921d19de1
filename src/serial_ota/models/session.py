"""Per-attempt transfer state."""

import math
import time

from pydantic import BaseModel, ConfigDict, Field, model_validator

from serial_ota.models.command import UpdateType


class TransferSession(BaseModel):
    """Ephemeral state for one update attempt.

    Created when an update starts and discarded when it ends; never persisted.
    """

    model_config = ConfigDict(validate_assignment=True)

    file_size: int = Field(..., gt=0, description="Image size in bytes")
    update_type: UpdateType = Field(..., description="firmware or filesystem")
    chunk_size: int = Field(..., gt=0, description="Bytes per SEND_CHUNK")
    current_chunk: int = Field(default=0, ge=0, description="Next chunk index to send")
    bytes_transferred: int = Field(default=0, ge=0)
    consecutive_errors: int = Field(default=0, ge=0)
    started_at: float = Field(default_factory=time.monotonic)

    @model_validator(mode="after")
    def transferred_within_size(self) -> "TransferSession":
        if self.bytes_transferred > self.file_size:
            raise ValueError(
                f"bytes_transferred ({self.bytes_transferred}) > file_size ({self.file_size})"
            )
        return self

    @property
    def total_chunks(self) -> int:
        return math.ceil(self.file_size / self.chunk_size)

    @property
    def start_payload(self) -> str:
        """START_UPDATE data: ``<fileSizeBytes>,<updateType>``."""
        return f"{self.file_size},{self.update_type.value}"

    def chunk_bounds(self, index: int) -> tuple[int, int]:
        start = index * self.chunk_size
        return start, min(start + self.chunk_size, self.file_size)

    def transfer_percent(self, index: int) -> float:
        """Map a chunk index onto the 10-90% band of the progress bar."""
        return 10 + (index / self.total_chunks) * 80

    def elapsed(self) -> float:
        return time.monotonic() - self.started_at
