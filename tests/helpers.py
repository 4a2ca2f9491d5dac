from __future__ import annotations

from pathlib import Path
from typing import Dict

import cv2
import numpy as np

from pixelsuite.core.imaging import PixelBuffer

PEAK_OPACITY = 0.45


def gradient_rgba(width: int, height: int, *, alpha: int = 255) -> np.ndarray:
    """Create a smooth RGBA gradient with a constant alpha channel."""
    xs = np.linspace(20, 230, width, dtype=np.float32)
    ys = np.linspace(40, 200, height, dtype=np.float32)
    red = np.tile(xs, (height, 1))
    green = np.tile(ys[:, None], (1, width))
    blue = (red + green) / 2.0
    pixels = np.dstack([red, green, blue, np.full((height, width), alpha, np.float32)])
    return np.round(pixels).astype(np.uint8)


def gradient_buffer(width: int, height: int, *, alpha: int = 255) -> PixelBuffer:
    return PixelBuffer(gradient_rgba(width, height, alpha=alpha))


def reference_levels(side: int) -> np.ndarray:
    """Gray levels of a synthetic logo on black: a radial falloff with a zero border."""
    rows, cols = np.mgrid[0:side, 0:side].astype(np.float64)
    center = (side - 1) / 2.0
    distance = np.hypot(rows - center, cols - center)
    opacity = PEAK_OPACITY * np.clip(1.0 - distance / (side * 0.4), 0.0, 1.0)
    return np.round(opacity * 255).astype(np.uint8)


def reference_png(side: int) -> bytes:
    ok, encoded = cv2.imencode(".png", reference_levels(side))
    assert ok
    return encoded.tobytes()


def write_reference_assets(directory: Path) -> Dict[int, Path]:
    directory.mkdir(parents=True, exist_ok=True)
    paths = {}
    for side in (48, 96):
        path = directory / f"bg_{side}.png"
        path.write_bytes(reference_png(side))
        paths[side] = path
    return paths


def expected_alpha(side: int) -> np.ndarray:
    return reference_levels(side).astype(np.float32) / np.float32(255.0)


def apply_watermark(pixels: np.ndarray, side: int, origin_x: int, origin_y: int) -> np.ndarray:
    """Composite the synthetic white logo onto ``pixels`` the way the watermark is applied."""
    out = pixels.copy()
    alpha = expected_alpha(side).astype(np.float64)
    height, width = pixels.shape[:2]
    for row in range(side):
        for col in range(side):
            x, y = origin_x + col, origin_y + row
            if not (0 <= x < width and 0 <= y < height):
                continue
            a = alpha[row, col]
            blended = a * 255.0 + (1.0 - a) * pixels[y, x, :3].astype(np.float64)
            out[y, x, :3] = np.clip(np.floor(blended + 0.5), 0, 255).astype(np.uint8)
    return out


def encode_png(pixels: np.ndarray) -> bytes:
    ok, encoded = cv2.imencode(".png", cv2.cvtColor(pixels, cv2.COLOR_RGBA2BGRA))
    assert ok
    return encoded.tobytes()


def decode_rgba(data: bytes) -> np.ndarray:
    image = cv2.imdecode(np.frombuffer(data, np.uint8), cv2.IMREAD_UNCHANGED)
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
    if image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
    return cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)


def noisy_rgba(width: int, height: int, *, seed: int = 7) -> np.ndarray:
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
    pixels[:, :, 3] = 255
    return pixels


def count_colors(pixels: np.ndarray) -> int:
    visible = pixels.reshape(-1, 4)
    visible = visible[visible[:, 3] != 0]
    return int(np.unique(visible[:, :3], axis=0).shape[0])
