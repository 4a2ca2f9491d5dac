"""Reverse the alpha blend of a known corner watermark.

The watermark is a white logo composited as ``result = a * 255 + (1 - a) * original``
with a per-pixel opacity ``a`` taken from a reference mask. Given the mask, the
original pixel is recovered as ``(result - a * 255) / (1 - a)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple, Union

import numpy as np

from . import utils
from .imaging import PNG, OpenCVImaging, PixelBuffer
from .masks import OpacityMaskCache

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

LARGE_IMAGE_THRESHOLD = 1024
MARGINS = {48: 32, 96: 64}
ALPHA_THRESHOLD = 0.002
MAX_ALPHA = 0.99
LOGO_VALUE = 255.0


@dataclass(frozen=True)
class WatermarkPlacement:
    side: int
    margin: int
    origin_x: int
    origin_y: int


def classify_watermark(width: int, height: int) -> Tuple[int, int]:
    """Return ``(side, margin)`` of the watermark expected on a ``width`` x ``height`` image.

    Both dimensions must exceed 1024 for the large variant.
    """
    if width > LARGE_IMAGE_THRESHOLD and height > LARGE_IMAGE_THRESHOLD:
        return 96, MARGINS[96]
    return 48, MARGINS[48]


def placement_for(width: int, height: int, forced_side: Optional[int] = None) -> WatermarkPlacement:
    """Locate the bottom-right watermark patch, optionally forcing its size."""
    if forced_side is not None:
        if forced_side not in MARGINS:
            raise ValueError(f"forced_side must be one of {sorted(MARGINS)}, got {forced_side}.")
        side, margin = forced_side, MARGINS[forced_side]
    else:
        side, margin = classify_watermark(width, height)
    return WatermarkPlacement(
        side=side,
        margin=margin,
        origin_x=width - margin - side,
        origin_y=height - margin - side,
    )


def remove_watermark(
    buffer: PixelBuffer,
    mask_cache: OpacityMaskCache,
    forced_side: Optional[int] = None,
) -> PixelBuffer:
    """Undo the watermark blend in place and return ``buffer``.

    Mask cells falling outside the image, or with opacity below
    ``ALPHA_THRESHOLD``, leave their pixel untouched. The alpha channel is
    never modified.
    """
    height, width = buffer.height, buffer.width
    placement = placement_for(width, height, forced_side)
    mask = mask_cache.get_mask(placement.side)

    x0 = max(placement.origin_x, 0)
    y0 = max(placement.origin_y, 0)
    x1 = min(placement.origin_x + placement.side, width)
    y1 = min(placement.origin_y + placement.side, height)
    if x0 >= x1 or y0 >= y1:
        logger.debug("Watermark patch %s lies outside %sx%s image", placement, width, height)
        return buffer

    alpha = mask.alpha[
        y0 - placement.origin_y : y1 - placement.origin_y,
        x0 - placement.origin_x : x1 - placement.origin_x,
    ].astype(np.float64)
    affected = alpha >= ALPHA_THRESHOLD
    if not affected.any():
        return buffer

    alpha = np.minimum(alpha, MAX_ALPHA)[:, :, np.newaxis]
    region = buffer.pixels[y0:y1, x0:x1, :3]
    restored = (region.astype(np.float64) - alpha * LOGO_VALUE) / (1.0 - alpha)
    # Round half up, then clamp into the byte range.
    restored = np.clip(np.floor(restored + 0.5), 0, 255).astype(np.uint8)
    region[affected] = restored[affected]

    logger.debug(
        "Reversed %spx watermark at (%s, %s); %s pixels restored",
        placement.side,
        placement.origin_x,
        placement.origin_y,
        int(affected.sum()),
    )
    return buffer


class ImageWatermarkRemover:
    """High-level helper for removing the corner watermark from still images."""

    def __init__(
        self,
        mask_cache: Optional[OpacityMaskCache] = None,
        *,
        imaging: Optional[OpenCVImaging] = None,
        forced_side: Optional[int] = None,
    ) -> None:
        if forced_side is not None and forced_side not in MARGINS:
            raise ValueError(f"Unsupported watermark size: {forced_side}")
        self.imaging = imaging or OpenCVImaging()
        self.mask_cache = mask_cache or OpacityMaskCache(imaging=self.imaging)
        self.forced_side = forced_side
        logger.debug("Initialized ImageWatermarkRemover (forced_side=%s)", self.forced_side)

    def detect(self, width: int, height: int) -> WatermarkPlacement:
        return placement_for(width, height, self.forced_side)

    def remove_watermark(self, buffer: PixelBuffer, *, forced_side: Optional[int] = None) -> PixelBuffer:
        """Restore ``buffer`` in place using the cached opacity mask."""
        side = forced_side if forced_side is not None else self.forced_side
        return remove_watermark(buffer, self.mask_cache, side)

    def process_file(
        self,
        input_path: PathLike,
        output_path: PathLike,
        *,
        forced_side: Optional[int] = None,
    ) -> Tuple[Path, WatermarkPlacement]:
        """Remove the watermark from an image file and store the result as PNG."""
        data = utils.read_image_bytes(input_path, max_bytes=utils.DEFAULT_MAX_INPUT_BYTES)
        utils.check_source_format(data)
        buffer = self.imaging.decode(data)
        logger.info("Processing image %s (%sx%s)", input_path, buffer.width, buffer.height)
        side = forced_side if forced_side is not None else self.forced_side
        placement = placement_for(buffer.width, buffer.height, side)
        self.remove_watermark(buffer, forced_side=placement.side)
        output = utils.write_bytes(output_path, self.imaging.encode(buffer, PNG))
        return output, placement

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        mask_cache: Optional[OpacityMaskCache] = None,
        imaging: Optional[OpenCVImaging] = None,
    ) -> "ImageWatermarkRemover":
        settings = dict(config.get("watermark", {}) or {})
        imaging = imaging or OpenCVImaging()
        forced = settings.get("force_size")
        return cls(
            mask_cache or OpacityMaskCache.from_config(config, imaging=imaging),
            imaging=imaging,
            forced_side=int(forced) if forced else None,
        )


__all__ = [
    "ALPHA_THRESHOLD",
    "MAX_ALPHA",
    "WatermarkPlacement",
    "classify_watermark",
    "placement_for",
    "remove_watermark",
    "ImageWatermarkRemover",
]
