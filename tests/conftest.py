"""Global pytest fixtures and configuration."""

import sys
from pathlib import Path

import pytest

# Add src and tests to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from serial_ota.models.config import (  # noqa: E402
    SerialConfig,
    TransferSettings,
    TransportSettings,
    UpdaterConfig,
)
from mocks.serial_device import DeviceBehavior, MockSerialDevice  # noqa: E402


@pytest.fixture
def fast_config():
    """UpdaterConfig with short timeouts and no settle delays."""
    return UpdaterConfig(
        serial=SerialConfig(port="/dev/ttyTEST0"),
        transport=TransportSettings(
            command_timeout=0.2,
            chunk_timeout=0.2,
            connect_timeout=0.2,
            max_retries=2,
            command_retry_delay=0,
            chunk_retry_delay=0,
            close_settle_delay=0,
        ),
        transfer=TransferSettings(
            chunk_size=256,
            max_consecutive_errors=3,
            progress_interval=50,
            inter_chunk_delay=0,
            status_settle_delay=0,
            reset_settle_delay=0,
            completion_grace_delay=0.01,
            reconnect_delay=0,
        ),
    )


@pytest.fixture
def behavior():
    """Default well-behaved device in Update Mode."""
    return DeviceBehavior()


@pytest.fixture
def device(behavior):
    """Mock serial device driven by ``behavior``."""
    return MockSerialDevice(behavior)
