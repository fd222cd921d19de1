"""Image loading and size formatting helpers."""

import logging
from pathlib import Path
from typing import Union

import aiofiles

logger = logging.getLogger("serial_ota.files")

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")


def format_bytes(num_bytes: float) -> str:
    """Render a byte count as e.g. ``1.5 KB``."""
    if num_bytes <= 0:
        return "0 Bytes"
    exponent = 0
    while num_bytes >= 1024 ** (exponent + 1) and exponent < len(_SIZE_UNITS) - 1:
        exponent += 1
    value = round(num_bytes / 1024**exponent, 2)
    return f"{value:g} {_SIZE_UNITS[exponent]}"


async def read_firmware(path: Union[str, Path]) -> bytes:
    """Read an update image into memory.

    Raises:
        FileNotFoundError: If the image does not exist
        ValueError: If the image is empty
    """
    image_path = Path(path)
    async with aiofiles.open(image_path, "rb") as f:
        data = await f.read()
    if not data:
        raise ValueError(f"Image is empty: {image_path}")
    logger.info(f"Read image {image_path.name}: {format_bytes(len(data))}")
    return data
