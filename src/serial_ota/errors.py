"""Exception hierarchy for serial OTA updates.

Every error carries a short ``code`` which status messages and reports use
as a prefix (e.g. ``TIMEOUT: Command timeout: GET_INFO``).
"""

from typing import Optional


class UpdaterError(Exception):
    """Base class for all updater errors."""

    code = "UPDATER_ERROR"

    def __str__(self) -> str:
        return super().__str__() or self.code


class TransportError(UpdaterError):
    """Failure in the serial transport layer."""

    code = "TRANSPORT_ERROR"


class TransportOpenError(TransportError):
    """Serial stream could not be claimed or configured."""

    code = "OPEN_FAILED"


class TransportNotConnectedError(TransportError):
    """Command issued while the transport is closed."""

    code = "NOT_CONNECTED"

    def __init__(self, message: str = "Not connected to device"):
        super().__init__(message)


class TransportWriteError(TransportError):
    """Writing a command frame to the stream failed."""

    code = "WRITE_FAILED"


class TransportReadError(TransportError):
    """The read loop lost the stream (e.g. device unplugged)."""

    code = "READ_FAILED"


class TransportTimeoutError(TransportError):
    """No response arrived before the command deadline."""

    code = "TIMEOUT"

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"Command timeout: {command}")


class InvalidResponseError(TransportError):
    """Response payload is missing the required ``success`` field."""

    code = "INVALID_RESPONSE"

    def __init__(self, command: str):
        self.command = command
        super().__init__(f"Invalid response for {command}")


class ParseError(UpdaterError):
    """A classified line carried malformed JSON."""

    code = "PARSE_ERROR"

    def __init__(self, line: str, reason: str):
        self.line = line
        super().__init__(f"Failed to parse frame {line!r}: {reason}")


class DeviceWrongModeError(UpdaterError):
    """Device is not in the update-capable mode."""

    code = "DEVICE_WRONG_MODE"

    def __init__(self, mode: Optional[str], expected: str):
        self.mode = mode
        self.expected = expected
        super().__init__(
            f"Device is in {mode}. Please switch to {expected} and connect again."
        )


class StartUpdateError(UpdaterError):
    """START_UPDATE was rejected by the device."""

    code = "START_FAILED"


class ProtocolStateMismatchError(UpdaterError):
    """Device reported an unexpected state after START_UPDATE."""

    code = "STATE_MISMATCH"

    def __init__(self, expected: str, actual: Optional[str]):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected {expected} state, got: {actual}")


class ChunkRejectedError(UpdaterError):
    """Device answered a SEND_CHUNK with ``success: false``."""

    code = "CHUNK_REJECTED"

    def __init__(self, index: int, message: Optional[str] = None):
        self.index = index
        super().__init__(message or f"Chunk {index + 1} rejected by device")


class TooManyConsecutiveErrorsError(UpdaterError):
    """Chunk transfer hit the consecutive-error ceiling."""

    code = "TOO_MANY_ERRORS"

    def __init__(self, count: int, last_error: str):
        self.count = count
        self.last_error = last_error
        super().__init__(
            f"Too many consecutive errors ({count}). Last error: {last_error}"
        )


class FinalizeError(UpdaterError):
    """FINISH_UPDATE was rejected by the device."""

    code = "FINALIZE_FAILED"


class UpdateInProgressError(UpdaterError):
    """An update is already running on this connection."""

    code = "UPDATE_IN_PROGRESS"


class CommandInFlightError(RuntimeError):
    """A command was sent while another one is still pending.

    The wire protocol has no correlation id, so this is a caller bug rather
    than a recoverable device condition.
    """

    code = "COMMAND_IN_FLIGHT"

    def __init__(self, pending: str, attempted: str):
        self.pending = pending
        self.attempted = attempted
        super().__init__(
            f"Cannot send {attempted}: {pending} is still awaiting a response"
        )
