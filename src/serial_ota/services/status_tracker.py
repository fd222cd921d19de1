"""Owned connection/update status with observer fan-out."""

import logging
from typing import Callable, Optional

from serial_ota.models.response import DeviceInfo
from serial_ota.models.status import (
    ConnectionState,
    EventKind,
    ProgressData,
    StatusEvent,
    StatusMessage,
    StatusSnapshot,
    StatusType,
    UpdateStage,
)

StatusListener = Callable[[StatusEvent], None]


class StatusTracker:
    """Holds connection state, update stage, status messages and progress.

    One instance is shared by a DeviceConnection and its UpdateOrchestrator.
    Listeners receive StatusEvent objects built from deep copies, so nothing
    they do can mutate the tracker.
    """

    def __init__(self):
        self.logger = logging.getLogger("serial_ota.status")
        self._listeners: list[StatusListener] = []
        self._connection_state = ConnectionState.DISCONNECTED
        self._update_stage = UpdateStage.IDLE
        self._connection_status = StatusMessage()
        self._update_status = StatusMessage()
        self._progress = ProgressData()
        self._device_info: Optional[DeviceInfo] = None

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection_state

    @property
    def update_stage(self) -> UpdateStage:
        return self._update_stage

    @property
    def device_info(self) -> Optional[DeviceInfo]:
        return self._device_info

    def get_status(self) -> StatusSnapshot:
        return StatusSnapshot(
            connection_state=self._connection_state,
            update_stage=self._update_stage,
            connection_status=self._connection_status.model_copy(),
            update_status=self._update_status.model_copy(),
            progress=self._progress.model_copy(),
            device_info=self._device_info.model_copy(deep=True) if self._device_info else None,
        )

    def set_connection_state(self, state: ConnectionState) -> None:
        if state == self._connection_state:
            return
        self.logger.debug(f"Connection state: {self._connection_state.value} -> {state.value}")
        self._connection_state = state
        self._emit(EventKind.STATE)

    def set_update_stage(self, stage: UpdateStage) -> None:
        if stage == self._update_stage:
            return
        self.logger.debug(f"Update stage: {self._update_stage.value} -> {stage.value}")
        self._update_stage = stage
        self._emit(EventKind.STATE)

    def set_device_info(self, info: Optional[DeviceInfo]) -> None:
        self._device_info = info
        self._emit(EventKind.DEVICE_INFO)

    def connection_status(
        self,
        message: str,
        type: StatusType = StatusType.INFO,
        code: Optional[str] = None,
    ) -> None:
        self._connection_status = StatusMessage(message=message, type=type, code=code)
        self._emit(EventKind.CONNECTION_STATUS)

    def update_status(
        self,
        message: str,
        type: StatusType = StatusType.INFO,
        code: Optional[str] = None,
    ) -> None:
        self._update_status = StatusMessage(message=message, type=type, code=code)
        self._emit(EventKind.UPDATE_STATUS)

    def update_progress(self, percent: float, message: str = "") -> None:
        percent = max(0.0, min(100.0, float(percent)))
        self._progress = ProgressData(
            percent=percent,
            message=message or f"{round(percent)}%",
            visible=True,
        )
        self._emit(EventKind.PROGRESS)

    def reset_progress(self) -> None:
        self._progress = ProgressData()
        self._emit(EventKind.PROGRESS)

    def _emit(self, kind: EventKind) -> None:
        if not self._listeners:
            return
        event = StatusEvent(kind=kind, snapshot=self.get_status())
        for listener in list(self._listeners):
            try:
                listener(event.model_copy(deep=True))
            except Exception as e:
                self.logger.error(f"Status listener failed: {e}", exc_info=True)
