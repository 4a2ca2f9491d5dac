"""Median-cut color quantization for RGBA pixel buffers.

Colors are handled as packed 24-bit ``0xRRGGBB`` integers and compared by
squared Euclidean distance in plain RGB. Fully transparent pixels are ignored
both when sampling and when remapping.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from .imaging import PixelBuffer

logger = logging.getLogger(__name__)

_SHIFTS = (16, 8, 0)
_REMAP_CHUNK = 4096


def pack_rgb(rgb: np.ndarray) -> np.ndarray:
    """Pack an ``(N, >=3)`` uint8 array into ``0xRRGGBB`` integers."""
    rgb = rgb.astype(np.int32)
    return (rgb[:, 0] << 16) | (rgb[:, 1] << 8) | rgb[:, 2]


def unpack_rgb(colors: np.ndarray) -> np.ndarray:
    colors = np.asarray(colors, dtype=np.int32)
    return np.stack([(colors >> shift) & 0xFF for shift in _SHIFTS], axis=1)


@dataclass
class ColorBox:
    """A subset of sampled colors with its per-channel bounds."""

    colors: np.ndarray
    minimum: Tuple[int, int, int]
    maximum: Tuple[int, int, int]

    @classmethod
    def from_colors(cls, colors: np.ndarray) -> "ColorBox":
        rgb = unpack_rgb(colors)
        lo = rgb.min(axis=0)
        hi = rgb.max(axis=0)
        return cls(
            colors=colors,
            minimum=(int(lo[0]), int(lo[1]), int(lo[2])),
            maximum=(int(hi[0]), int(hi[1]), int(hi[2])),
        )

    @property
    def ranges(self) -> Tuple[int, int, int]:
        return tuple(hi - lo for lo, hi in zip(self.minimum, self.maximum))  # type: ignore[return-value]

    @property
    def span(self) -> int:
        return max(self.ranges)

    def longest_channel(self) -> int:
        """Index of the widest channel; ties prefer red, then green."""
        ranges = self.ranges
        return ranges.index(max(ranges))

    def split(self) -> Optional[Tuple["ColorBox", "ColorBox"]]:
        """Split at the median along the longest channel, or None if not splittable."""
        if self.colors.size < 2 or self.span == 0:
            return None
        shift = _SHIFTS[self.longest_channel()]
        values = (self.colors >> shift) & 0xFF
        ordered = self.colors[np.argsort(values, kind="stable")]
        mid = ordered.size // 2
        left, right = ordered[:mid], ordered[mid:]
        if left.size == 0 or right.size == 0:
            return None
        return ColorBox.from_colors(left), ColorBox.from_colors(right)

    def mean_color(self) -> int:
        mean = unpack_rgb(self.colors).mean(axis=0)
        r, g, b = (int(np.floor(channel + 0.5)) for channel in mean)
        return (r << 16) | (g << 8) | b


def sample_colors(buffer: PixelBuffer, sample_size: int) -> np.ndarray:
    """Collect packed colors at a fixed stride, skipping fully transparent pixels.

    Repeated colors are kept so that frequent colors weigh more in the palette.
    """
    if sample_size < 1:
        raise ValueError("sample_size must be a positive integer.")
    flat = buffer.pixels.reshape(-1, 4)
    stride = max(1, flat.shape[0] // sample_size)
    picked = flat[::stride]
    return pack_rgb(picked[picked[:, 3] != 0])


def build_palette(colors: np.ndarray, max_colors: int) -> np.ndarray:
    """Reduce ``colors`` to at most ``max_colors`` distinct packed colors by median cut."""
    if max_colors < 1:
        raise ValueError("max_colors must be a positive integer.")
    colors = np.asarray(colors, dtype=np.int32).ravel()
    if colors.size == 0:
        return np.empty(0, dtype=np.int32)

    boxes: List[ColorBox] = [ColorBox.from_colors(colors)]
    retired: List[bool] = [False]
    while len(boxes) < max_colors:
        active = [index for index, done in enumerate(retired) if not done]
        if not active:
            break
        index = max(active, key=lambda i: boxes[i].span)
        halves = boxes[index].split()
        if halves is None:
            retired[index] = True
            continue
        boxes[index] = halves[0]
        boxes.append(halves[1])
        retired.append(False)

    palette = np.array([box.mean_color() for box in boxes], dtype=np.int32)
    _, first_seen = np.unique(palette, return_index=True)
    return palette[np.sort(first_seen)]


def nearest_palette_colors(colors: np.ndarray, palette: np.ndarray) -> np.ndarray:
    """Map each packed color to its closest palette entry; ties go to the earlier entry."""
    if palette.size == 0:
        raise ValueError("Cannot map colors onto an empty palette.")
    source = unpack_rgb(colors)
    targets = unpack_rgb(palette)
    nearest = np.empty(source.shape[0], dtype=np.int32)
    for start in range(0, source.shape[0], _REMAP_CHUNK):
        chunk = source[start : start + _REMAP_CHUNK]
        distances = ((chunk[:, np.newaxis, :] - targets[np.newaxis, :, :]) ** 2).sum(axis=2)
        nearest[start : start + chunk.shape[0]] = palette[distances.argmin(axis=1)]
    return nearest


def remap_to_palette(buffer: PixelBuffer, palette: np.ndarray) -> PixelBuffer:
    """Replace every visible pixel with its nearest palette color, in place."""
    flat = buffer.pixels.reshape(-1, 4)
    visible = flat[:, 3] != 0
    if not visible.any() or palette.size == 0:
        return buffer
    unique, inverse = np.unique(pack_rgb(flat[visible]), return_inverse=True)
    mapped = nearest_palette_colors(unique, palette)[inverse.ravel()]
    flat[visible, :3] = unpack_rgb(mapped).astype(np.uint8)
    return buffer


def quantize(buffer: PixelBuffer, max_colors: int, sample_size: int) -> PixelBuffer:
    """Reduce ``buffer`` to at most ``max_colors`` visible colors, in place.

    Images that already use ``max_colors`` or fewer distinct visible colors
    are returned untouched, which also makes the operation idempotent.
    """
    if max_colors < 1:
        raise ValueError("max_colors must be a positive integer.")
    flat = buffer.pixels.reshape(-1, 4)
    visible = flat[:, 3] != 0
    if not visible.any():
        return buffer

    unique, inverse = np.unique(pack_rgb(flat[visible]), return_inverse=True)
    if unique.size <= max_colors:
        logger.debug("Image already uses %s colors (limit %s); skipping quantization", unique.size, max_colors)
        return buffer

    palette = build_palette(sample_colors(buffer, sample_size), max_colors)
    if palette.size == 0:
        return buffer
    mapped = nearest_palette_colors(unique, palette)[inverse.ravel()]
    flat[visible, :3] = unpack_rgb(mapped).astype(np.uint8)
    logger.debug(
        "Quantized %s distinct colors down to a %s-color palette", unique.size, palette.size
    )
    return buffer


__all__ = [
    "ColorBox",
    "pack_rgb",
    "unpack_rgb",
    "sample_colors",
    "build_palette",
    "nearest_palette_colors",
    "remap_to_palette",
    "quantize",
]
