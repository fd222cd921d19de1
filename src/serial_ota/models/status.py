"""Status enums and observer event models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from serial_ota.models.response import DeviceInfo


class ConnectionState(str, Enum):
    """Serial link lifecycle.

    disconnected → connecting → modeValidating → connected → disconnected
                        ↓              ↓
                   disconnected ←──────┘  (open failure / wrong mode)
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    MODE_VALIDATING = "modeValidating"
    CONNECTED = "connected"


class UpdateStage(str, Enum):
    """Stages of one update attempt.

    idle → checkingStatus → resettingState → starting → transferring → finalizing → succeeded
                                                ↓             ↓             ↓
                                        failed / aborted ←──────────────────┘
    """

    IDLE = "idle"
    CHECKING_STATUS = "checkingStatus"
    RESETTING_STATE = "resettingState"
    STARTING = "starting"
    TRANSFERRING = "transferring"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_active(self) -> bool:
        return self in _ACTIVE_STAGES

    @property
    def is_terminal(self) -> bool:
        return self in (UpdateStage.SUCCEEDED, UpdateStage.FAILED, UpdateStage.ABORTED)


_ACTIVE_STAGES = frozenset(
    {
        UpdateStage.CHECKING_STATUS,
        UpdateStage.RESETTING_STATE,
        UpdateStage.STARTING,
        UpdateStage.TRANSFERRING,
        UpdateStage.FINALIZING,
    }
)


class StatusType(str, Enum):
    """Severity of a user-facing status message."""

    NONE = ""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class StatusMessage(BaseModel):
    """User-facing message for the connection or update panel."""

    message: str = Field(default="", description="Human-readable text")
    type: StatusType = Field(default=StatusType.NONE, description="Severity")
    code: Optional[str] = Field(
        None, description="Error code when the message reports a failure"
    )


class ProgressData(BaseModel):
    """Progress bar state."""

    percent: float = Field(default=0, ge=0, le=100, description="Percent complete")
    message: str = Field(default="Ready to upload", description="Progress caption")
    visible: bool = Field(default=False, description="Whether progress is shown")


class StatusSnapshot(BaseModel):
    """Copy of the full status handed to observers."""

    connection_state: ConnectionState
    update_stage: UpdateStage
    connection_status: StatusMessage
    update_status: StatusMessage
    progress: ProgressData
    device_info: Optional[DeviceInfo] = None

    @property
    def is_connected(self) -> bool:
        return self.connection_state == ConnectionState.CONNECTED

    @property
    def update_in_progress(self) -> bool:
        return self.update_stage.is_active


class EventKind(str, Enum):
    """What changed in a StatusEvent."""

    CONNECTION_STATUS = "connectionStatus"
    UPDATE_STATUS = "updateStatus"
    PROGRESS = "progress"
    STATE = "state"
    DEVICE_INFO = "deviceInfo"


class StatusEvent(BaseModel):
    """Notification delivered to status observers."""

    kind: EventKind
    snapshot: StatusSnapshot


class ReportPayload(BaseModel):
    """JSON body POSTed by ReportService."""

    connection_state: ConnectionState
    stage: UpdateStage
    progress: int = Field(..., ge=0, le=100, description="Percentage completion")
    message: str = Field(..., description="Most recent update status message")
    error: Optional[str] = Field(
        None, description="Error code and message if stage == failed"
    )
