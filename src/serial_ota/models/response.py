"""Pydantic models for decoded device frames."""

import math
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DeviceResponse(BaseModel):
    """Payload of an ``OK:`` or ``ERROR:`` frame.

    Unknown fields (device info, counters) are preserved as extras.
    """

    model_config = ConfigDict(extra="allow")

    success: bool = Field(..., description="Whether the device accepted the command")
    message: Optional[str] = Field(None, description="Human-readable detail")
    state: Optional[str] = Field(
        None, description="Device state token, e.g. RECEIVING"
    )
    completed: Optional[bool] = Field(None, description="Update finished flag")
    update_active: Optional[bool] = Field(
        None, description="Device has an update session open"
    )


class DeviceInfo(DeviceResponse):
    """GET_INFO response.

    Hardware details (``mcu``, ``flash_available``, ``free_heap``) vary by
    firmware revision and are kept as extras.
    """

    current_mode: Optional[str] = Field(None, description="Operating mode name")
    firmware_version: Optional[str] = Field(None, description="Running firmware version")


class ProgressEvent(BaseModel):
    """Payload of an unsolicited ``PROGRESS:`` frame."""

    model_config = ConfigDict(extra="allow")

    success: Optional[bool] = None
    completed: bool = Field(default=False, description="Device finished the update")
    progress: Optional[float] = Field(None, description="Device-side percent complete")
    message: Optional[str] = None

    @field_validator("progress", mode="before")
    @classmethod
    def numeric_progress(cls, v):
        """Unparseable percentages are dropped, not the frame."""
        if v is None or isinstance(v, bool):
            return None
        try:
            value = float(v)
        except (TypeError, ValueError):
            return None
        return value if math.isfinite(value) else None
