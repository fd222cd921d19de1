"""Wiring for a serial OTA session."""

import logging
from pathlib import Path
from typing import Optional, Union

from serial_ota.models.config import UpdaterConfig, load_config
from serial_ota.services.connection import DeviceConnection
from serial_ota.services.reporter import ReportService
from serial_ota.services.status_tracker import StatusTracker
from serial_ota.services.updater import UpdateOrchestrator
from serial_ota.utils.logging import setup_logger


def create_updater(
    config: Optional[Union[UpdaterConfig, str, Path]] = None,
    report_url: Optional[str] = None,
    log_file: Optional[str] = "./logs/serial_ota.log",
    level: int = logging.INFO,
) -> UpdateOrchestrator:
    """Build a StatusTracker, DeviceConnection and UpdateOrchestrator.

    Args:
        config: UpdaterConfig, path to a JSON config file, or None for defaults
        report_url: If set, status changes are POSTed there
        log_file: Rotating log file, or None for console only
        level: Logging level

    Returns:
        Orchestrator; call ``orchestrator.connection.connect()`` before updating
    """
    logger = setup_logger("serial_ota", log_file, level=level)

    if config is None:
        config = UpdaterConfig()
    elif not isinstance(config, UpdaterConfig):
        config = load_config(config)

    status = StatusTracker()
    if report_url:
        reporter = ReportService(report_url)
        status.subscribe(reporter.on_status_event)
        logger.info(f"Reporting status to {report_url}")

    connection = DeviceConnection(config=config, status=status)
    orchestrator = UpdateOrchestrator(connection)
    logger.info(
        f"Updater ready: port={config.serial.port}, baudrate={config.serial.baudrate}, "
        f"chunk_size={config.transfer.chunk_size}"
    )
    return orchestrator
