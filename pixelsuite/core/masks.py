"""Opacity masks for the known corner watermark, loaded once per size."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Union

import cv2
import numpy as np

from .errors import AssetLoadError, DecodeError
from .imaging import OpenCVImaging

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
MaskLoader = Callable[[int], bytes]

MASK_SIDES = (48, 96)
DEFAULT_ASSET_DIR = Path(__file__).resolve().parent.parent / "assets"
DEFAULT_ASSET_FILES = {48: "bg_48.png", 96: "bg_96.png"}


@dataclass(frozen=True)
class OpacityMask:
    """Square grid of blend opacities in [0, 1], indexed ``alpha[row, col]``."""

    side: int
    alpha: np.ndarray


def derive_opacity(pixels: np.ndarray, side: int) -> np.ndarray:
    """Compute ``max(R, G, B) / 255`` of an RGBA reference rendered at ``side`` x ``side``."""
    if pixels.shape[:2] != (side, side):
        pixels = cv2.resize(pixels, (side, side), interpolation=cv2.INTER_LINEAR)
    alpha = pixels[:, :, :3].max(axis=2).astype(np.float32) / np.float32(255.0)
    alpha.setflags(write=False)
    return alpha


def directory_loader(
    asset_dir: Optional[PathLike] = None,
    filenames: Optional[Mapping[int, str]] = None,
) -> MaskLoader:
    """Build a loader that reads reference bitmaps from ``asset_dir``."""
    base = Path(asset_dir).expanduser() if asset_dir else DEFAULT_ASSET_DIR
    names = {int(side): str(name) for side, name in (filenames or DEFAULT_ASSET_FILES).items()}

    def _load(side: int) -> bytes:
        if side not in names:
            raise AssetLoadError(f"No reference asset configured for {side}px masks.")
        path = base / names[side]
        try:
            return path.read_bytes()
        except OSError as exc:
            raise AssetLoadError(f"Unable to read opacity reference {path}: {exc}") from exc

    return _load


class OpacityMaskCache:
    """Compute-once cache of :class:`OpacityMask` objects keyed by side length.

    The first request for a side decodes its reference bitmap; concurrent
    callers for the same side wait on a per-side lock instead of decoding again.
    Nothing is ever evicted.
    """

    def __init__(self, loader: Optional[MaskLoader] = None, *, imaging: Optional[OpenCVImaging] = None) -> None:
        self.loader = loader or directory_loader()
        self.imaging = imaging or OpenCVImaging()
        self._masks: Dict[int, OpacityMask] = {}
        self._locks: Dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def _slot_lock(self, side: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(side)
            if lock is None:
                lock = self._locks[side] = threading.Lock()
            return lock

    def get_mask(self, side: int) -> OpacityMask:
        if side not in MASK_SIDES:
            raise ValueError(f"Unsupported mask side: {side} (expected one of {MASK_SIDES}).")
        mask = self._masks.get(side)
        if mask is not None:
            return mask
        with self._slot_lock(side):
            mask = self._masks.get(side)
            if mask is None:
                mask = self._build(side)
                self._masks[side] = mask
        return mask

    def _build(self, side: int) -> OpacityMask:
        data = self.loader(side)
        try:
            buffer = self.imaging.decode(data)
        except DecodeError as exc:
            raise AssetLoadError(f"Opacity reference for {side}px could not be decoded: {exc}") from exc
        mask = OpacityMask(side=side, alpha=derive_opacity(buffer.pixels, side))
        logger.debug("Loaded %spx opacity mask (peak opacity %.3f)", side, float(mask.alpha.max()))
        return mask

    def __contains__(self, side: object) -> bool:
        return side in self._masks

    @classmethod
    def from_config(
        cls, config: Mapping[str, Any], *, imaging: Optional[OpenCVImaging] = None
    ) -> "OpacityMaskCache":
        settings = dict(config.get("watermark", {}) or {})
        assets = settings.get("assets") or DEFAULT_ASSET_FILES
        return cls(directory_loader(settings.get("asset_dir"), assets), imaging=imaging)


__all__ = [
    "MASK_SIDES",
    "DEFAULT_ASSET_DIR",
    "DEFAULT_ASSET_FILES",
    "OpacityMask",
    "OpacityMaskCache",
    "derive_opacity",
    "directory_loader",
]
