"""Line reassembly and frame classification for the serial protocol."""

import codecs
import json
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from serial_ota.errors import ParseError

OK_PREFIX = "OK:"
ERROR_PREFIX = "ERROR:"
PROGRESS_PREFIX = "PROGRESS:"


class FrameKind(str, Enum):
    OK = "ok"
    ERROR = "error"
    PROGRESS = "progress"


class Frame(BaseModel):
    """A classified protocol line with its decoded JSON payload."""

    kind: FrameKind
    payload: dict

    @property
    def is_progress(self) -> bool:
        return self.kind == FrameKind.PROGRESS


class LineBuffer:
    """Reassembles newline-delimited text from arbitrarily split byte reads.

    The trailing partial line (and any partial UTF-8 sequence) is kept until
    the next ``feed``, so the output does not depend on read boundaries.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, data: bytes) -> list[str]:
        """Add bytes and return every completed, trimmed, non-empty line."""
        self._pending += self._decoder.decode(data)
        *complete, self._pending = self._pending.split("\n")
        return [line.strip() for line in complete if line.strip()]

    @property
    def partial(self) -> str:
        return self._pending

    def reset(self) -> None:
        self._decoder.reset()
        self._pending = ""


def classify_line(line: str) -> Optional[Frame]:
    """Classify one trimmed line by prefix.

    Args:
        line: Complete protocol line without the trailing newline

    Returns:
        Frame for OK/ERROR/PROGRESS lines, None for anything else (device logging)

    Raises:
        ParseError: If a prefixed line does not carry a JSON object
    """
    if line.startswith(OK_PREFIX):
        kind, body = FrameKind.OK, line[len(OK_PREFIX):]
    elif line.startswith(ERROR_PREFIX):
        kind, body = FrameKind.ERROR, line[len(ERROR_PREFIX):]
    elif line.startswith(PROGRESS_PREFIX):
        kind, body = FrameKind.PROGRESS, line[len(PROGRESS_PREFIX):]
    else:
        return None

    try:
        payload = json.loads(body)
    except json.JSONDecodeError as e:
        raise ParseError(line, str(e)) from e
    if not isinstance(payload, dict):
        raise ParseError(line, f"expected JSON object, got {type(payload).__name__}")

    # Prefix wins over payload
    if kind == FrameKind.ERROR:
        payload["success"] = False

    return Frame(kind=kind, payload=payload)
