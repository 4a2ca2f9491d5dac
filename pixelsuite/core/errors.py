"""Exception types raised by the pixel engines."""

from __future__ import annotations

from typing import Optional


class PixelSuiteError(Exception):
    """Base class for every error raised by :mod:`pixelsuite`."""


class AssetLoadError(PixelSuiteError):
    """The opacity-mask reference bitmap could not be read or decoded."""


class DecodeError(PixelSuiteError):
    """The imaging backend rejected the supplied image bytes."""


class EncodeError(PixelSuiteError):
    """The imaging backend failed to produce an encoded image."""


class UnsupportedFormatError(PixelSuiteError):
    """A format was requested that the imaging backend cannot handle."""

    def __init__(self, fmt: str, message: Optional[str] = None) -> None:
        self.format = fmt
        super().__init__(message or f"Unsupported image format: {fmt}")


class NoCandidateError(PixelSuiteError):
    """Automatic format selection produced no encodable candidate."""


__all__ = [
    "PixelSuiteError",
    "AssetLoadError",
    "DecodeError",
    "EncodeError",
    "UnsupportedFormatError",
    "NoCandidateError",
]
