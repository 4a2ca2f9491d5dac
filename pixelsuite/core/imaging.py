"""Pixel buffers and the OpenCV-backed decode/encode collaborator."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import cv2
import numpy as np

from .errors import DecodeError, EncodeError, UnsupportedFormatError

logger = logging.getLogger(__name__)

JPEG = "jpeg"
PNG = "png"
WEBP = "webp"
AVIF = "avif"
BMP = "bmp"

FORMAT_EXTENSIONS = {
    JPEG: ".jpg",
    PNG: ".png",
    WEBP: ".webp",
    AVIF: ".avif",
    BMP: ".bmp",
}

LOSSY_FORMATS = frozenset({JPEG, WEBP, AVIF})
ALPHA_FORMATS = frozenset({PNG, WEBP, AVIF})

# Inputs accepted by the file-level helpers.
SUPPORTED_INPUT_FORMATS = frozenset({JPEG, PNG, WEBP, AVIF, BMP})

_FORMAT_ALIASES = {
    "jpg": JPEG,
    "jpeg": JPEG,
    "image/jpeg": JPEG,
    "png": PNG,
    "image/png": PNG,
    "webp": WEBP,
    "image/webp": WEBP,
    "avif": AVIF,
    "image/avif": AVIF,
    "bmp": BMP,
    "image/bmp": BMP,
}

# Formats that auto mode re-targets when the source itself cannot be written back.
_AUTO_FALLBACK = {BMP: PNG}


def normalize_format(fmt: str) -> str:
    """Map a format name, extension or MIME type onto a canonical format key."""
    key = str(fmt).strip().lower().lstrip(".")
    try:
        return _FORMAT_ALIASES[key]
    except KeyError:
        raise UnsupportedFormatError(str(fmt)) from None


def is_lossy(fmt: str) -> bool:
    return fmt in LOSSY_FORMATS


def resolve_output_format(source_format: Optional[str], requested: str) -> str:
    """Pick the output format for a request, following the source in auto mode."""
    if requested != "auto":
        return normalize_format(requested)
    if source_format in _AUTO_FALLBACK:
        return _AUTO_FALLBACK[source_format]
    return source_format or JPEG


def sniff_format(data: bytes) -> Optional[str]:
    """Identify an encoded image from its leading magic bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return PNG
    if data.startswith(b"\xff\xd8\xff"):
        return JPEG
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return WEBP
    if data[4:8] == b"ftyp" and data[8:12] in (b"avif", b"avis"):
        return AVIF
    if data.startswith(b"BM"):
        return BMP
    return None


@dataclass
class PixelBuffer:
    """Row-major RGBA image, 8 bits per channel, top-left origin."""

    pixels: np.ndarray

    def __post_init__(self) -> None:
        pixels = self.pixels
        if not isinstance(pixels, np.ndarray) or pixels.dtype != np.uint8:
            raise ValueError("PixelBuffer requires a uint8 numpy array.")
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise ValueError(f"Expected an (height, width, 4) array, got shape {pixels.shape}.")
        if pixels.shape[0] < 1 or pixels.shape[1] < 1:
            raise ValueError("PixelBuffer dimensions must be at least 1x1.")
        self.pixels = np.ascontiguousarray(pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.pixels.copy())

    def tobytes(self) -> bytes:
        return self.pixels.tobytes()

    @classmethod
    def from_bytes(cls, data: bytes, width: int, height: int) -> "PixelBuffer":
        if width < 1 or height < 1:
            raise ValueError("PixelBuffer dimensions must be at least 1x1.")
        expected = width * height * 4
        if len(data) != expected:
            raise ValueError(f"Expected {expected} bytes for {width}x{height} RGBA, got {len(data)}.")
        array = np.frombuffer(data, dtype=np.uint8).reshape(height, width, 4).copy()
        return cls(array)


def _to_rgba(image: np.ndarray) -> np.ndarray:
    if image.dtype == np.uint16:
        image = (image >> 8).astype(np.uint8)
    elif image.dtype != np.uint8:
        raise DecodeError(f"Unsupported sample type: {image.dtype}")

    if image.ndim == 3 and image.shape[2] == 1:
        image = image[:, :, 0]
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    channels = image.shape[2]
    if channels == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
    raise DecodeError(f"Unsupported channel count: {channels}")


class OpenCVImaging:
    """Decode/encode collaborator backed by ``cv2.imdecode``/``cv2.imencode``."""

    def __init__(self, png_compression: int = 9) -> None:
        if not 0 <= png_compression <= 9:
            raise ValueError("png_compression must be between 0 and 9.")
        self.png_compression = png_compression
        self._writers: Dict[str, bool] = {}

    def supports(self, fmt: str) -> bool:
        """Return True when the OpenCV build can write ``fmt``."""
        try:
            fmt = normalize_format(fmt)
        except UnsupportedFormatError:
            return False
        if fmt not in self._writers:
            available = bool(cv2.haveImageWriter("output" + FORMAT_EXTENSIONS[fmt]))
            if fmt == AVIF and not hasattr(cv2, "IMWRITE_AVIF_QUALITY"):
                available = False
            self._writers[fmt] = available
            logger.debug("Encoder available for %s: %s", fmt, available)
        return self._writers[fmt]

    def decode(self, data: bytes) -> PixelBuffer:
        """Decode compressed image bytes into an RGBA pixel buffer."""
        if not data:
            raise DecodeError("Cannot decode empty image data.")
        raw = np.frombuffer(data, dtype=np.uint8)
        try:
            image = cv2.imdecode(raw, cv2.IMREAD_UNCHANGED)
        except cv2.error as exc:
            raise DecodeError(f"OpenCV failed to decode image: {exc}") from exc
        if image is None or image.size == 0:
            raise DecodeError("Unable to decode image data.")
        buffer = PixelBuffer(_to_rgba(image))
        logger.debug("Decoded %s bytes into %sx%s pixels", len(data), buffer.width, buffer.height)
        return buffer

    def encode(self, buffer: PixelBuffer, fmt: str, quality: Optional[float] = None) -> bytes:
        """Encode ``buffer`` as ``fmt``; ``quality`` in (0, 1] only affects lossy formats."""
        fmt = normalize_format(fmt)
        if not self.supports(fmt):
            raise UnsupportedFormatError(fmt, f"OpenCV cannot write {fmt} images in this build.")

        params = self._encode_params(fmt, quality)
        keep_alpha = fmt in ALPHA_FORMATS and bool((buffer.pixels[:, :, 3] < 255).any())
        code = cv2.COLOR_RGBA2BGRA if keep_alpha else cv2.COLOR_RGBA2BGR
        image = cv2.cvtColor(buffer.pixels, code)
        try:
            ok, encoded = cv2.imencode(FORMAT_EXTENSIONS[fmt], image, params)
        except cv2.error as exc:
            raise EncodeError(f"OpenCV failed to encode {fmt}: {exc}") from exc
        if not ok:
            raise EncodeError(f"OpenCV could not encode image as {fmt}.")
        return encoded.tobytes()

    def _encode_params(self, fmt: str, quality: Optional[float]) -> list:
        if fmt == PNG:
            return [cv2.IMWRITE_PNG_COMPRESSION, self.png_compression]
        if fmt not in LOSSY_FORMATS or quality is None:
            return []
        level = int(round(min(max(quality, 0.01), 1.0) * 100))
        level = max(1, min(100, level))
        if fmt == JPEG:
            return [cv2.IMWRITE_JPEG_QUALITY, level]
        if fmt == WEBP:
            return [cv2.IMWRITE_WEBP_QUALITY, level]
        return [cv2.IMWRITE_AVIF_QUALITY, level]


__all__ = [
    "JPEG",
    "PNG",
    "WEBP",
    "AVIF",
    "BMP",
    "FORMAT_EXTENSIONS",
    "LOSSY_FORMATS",
    "ALPHA_FORMATS",
    "SUPPORTED_INPUT_FORMATS",
    "PixelBuffer",
    "OpenCVImaging",
    "normalize_format",
    "is_lossy",
    "resolve_output_format",
    "sniff_format",
]
