"""File helpers shared by the watermark and compression workflows."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from .errors import UnsupportedFormatError
from .imaging import SUPPORTED_INPUT_FORMATS, sniff_format

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Common file extensions we explicitly allow when validating paths.
SUPPORTED_IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".avif", ".bmp"}

DEFAULT_MAX_INPUT_BYTES = 10 * 1024 * 1024


def read_image_bytes(path: PathLike, *, max_bytes: Optional[int] = None) -> bytes:
    """Read an encoded image from disk.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is empty or larger than ``max_bytes``.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Image not found: {path}")
    if path.suffix.lower() not in SUPPORTED_IMAGE_EXTENSIONS:
        logger.warning("Attempting to load image with uncommon extension: %s", path.suffix)
    size = path.stat().st_size
    if size == 0:
        raise ValueError(f"Image file is empty: {path}")
    if max_bytes and size > max_bytes:
        raise ValueError(f"Image {path} is {size} bytes, above the {max_bytes} byte limit.")
    data = path.read_bytes()
    logger.debug("Read %s bytes from %s", len(data), path)
    return data


def check_source_format(data: bytes) -> str:
    """Return the sniffed format of ``data`` or raise if it is not an accepted input."""
    fmt = sniff_format(data)
    if fmt is None or fmt not in SUPPORTED_INPUT_FORMATS:
        raise UnsupportedFormatError(
            str(fmt), "Only JPEG, PNG, WebP, AVIF and BMP inputs are supported."
        )
    return fmt


def write_bytes(path: PathLike, data: bytes) -> Path:
    """Persist encoded bytes, creating parent directories if needed."""
    path = Path(path)
    if not data:
        raise ValueError("Cannot save empty image data.")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    logger.debug("Saved %s bytes to %s", len(data), path)
    return path


__all__ = [
    "DEFAULT_MAX_INPUT_BYTES",
    "SUPPORTED_IMAGE_EXTENSIONS",
    "read_image_bytes",
    "check_source_format",
    "write_bytes",
]
