"""Forwards update status to an HTTP endpoint."""

import asyncio
import logging
from typing import Optional

import httpx

from serial_ota.models.status import (
    EventKind,
    ReportPayload,
    StatusEvent,
    StatusSnapshot,
    StatusType,
)


class ReportService:
    """Posts status snapshots to a monitoring endpoint.

    Subscribe ``on_status_event`` to a StatusTracker to report every update
    status and progress change. Failures are logged, never raised, so a
    monitoring outage cannot stall a transfer.
    """

    def __init__(self, report_url: str = "http://localhost:9080/api/v1.0/ota/report"):
        """Initialize report service.

        Args:
            report_url: Endpoint receiving ReportPayload JSON
        """
        self.logger = logging.getLogger("serial_ota.reporter")
        self.report_url = report_url
        self._tasks: set[asyncio.Task] = set()

    @staticmethod
    def build_payload(snapshot: StatusSnapshot) -> ReportPayload:
        update_status = snapshot.update_status
        error = None
        if update_status.type == StatusType.ERROR:
            prefix = f"{update_status.code}: " if update_status.code else ""
            error = f"{prefix}{update_status.message}"
        return ReportPayload(
            connection_state=snapshot.connection_state,
            stage=snapshot.update_stage,
            progress=int(snapshot.progress.percent),
            message=update_status.message or snapshot.progress.message,
            error=error,
        )

    async def report(self, snapshot: StatusSnapshot) -> None:
        """Send one snapshot.

        Note:
            Failures are logged but not raised to avoid blocking the update
        """
        payload = self.build_payload(snapshot)
        self.logger.debug(
            f"Reporting: stage={payload.stage.value}, progress={payload.progress}%"
        )

        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.post(
                    self.report_url,
                    json=payload.model_dump(mode="json"),
                )
                response.raise_for_status()
                self.logger.debug("Report sent successfully")

        except httpx.HTTPError as e:
            self.logger.warning(f"Failed to report status: {e}. Continuing update...")
        except Exception as e:
            self.logger.error(f"Unexpected error reporting status: {e}", exc_info=True)

    def on_status_event(self, event: StatusEvent) -> None:
        """StatusTracker listener; schedules a report without blocking."""
        if event.kind not in (EventKind.UPDATE_STATUS, EventKind.PROGRESS, EventKind.STATE):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.debug("No running event loop, skipping report")
            return
        task = loop.create_task(self.report(event.snapshot))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for scheduled reports to finish."""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)
