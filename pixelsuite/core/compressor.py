"""Adaptive re-encoding: resize, optionally quantize, keep the smallest encoding."""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from . import utils
from .errors import NoCandidateError, UnsupportedFormatError
from .imaging import (
    ALPHA_FORMATS,
    AVIF,
    FORMAT_EXTENSIONS,
    JPEG,
    PNG,
    WEBP,
    OpenCVImaging,
    PixelBuffer,
    is_lossy,
    normalize_format,
    resolve_output_format,
    sniff_format,
)
from .quantizer import pack_rgb, quantize

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
Color = Union[str, Sequence[int]]

AUTO = "auto"
MIN_QUANTIZE_COLORS = 8
ANALYSIS_MAX_PIXELS = 65536
FALLBACK_NOTE = "Encoded output was not smaller than the source; kept the original image."


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass
class QuantizeOptions:
    enabled: bool = True
    max_colors: int = 256
    max_pixels_eligible: int = 2_000_000
    sample_size: int = 120_000

    def __post_init__(self) -> None:
        if self.max_colors < 1:
            raise ValueError("quantize.max_colors must be a positive integer.")
        if self.sample_size < 1:
            raise ValueError("quantize.sample_size must be a positive integer.")

    @property
    def color_limit(self) -> int:
        return max(MIN_QUANTIZE_COLORS, _round_half_up(self.max_colors))


@dataclass
class CompressionOptions:
    format: str = AUTO
    quality: float = 0.82
    max_width: int = 0
    max_height: int = 0
    background_color: Color = "#ffffff"
    quantize: QuantizeOptions = field(default_factory=QuantizeOptions)
    keep_original_if_smaller: bool = True
    max_workers: int = 1

    def __post_init__(self) -> None:
        if str(self.format).lower() == AUTO:
            self.format = AUTO
        else:
            self.format = normalize_format(self.format)
        if not 0 < self.quality <= 1:
            raise ValueError(f"quality must be in (0, 1], got {self.quality}.")
        if self.max_width < 0 or self.max_height < 0:
            raise ValueError("max_width and max_height must not be negative.")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1.")
        parse_color(self.background_color)

    @classmethod
    def from_mapping(cls, settings: Mapping[str, Any]) -> "CompressionOptions":
        quantize_settings = dict(settings.get("quantize", {}) or {})
        return cls(
            format=str(settings.get("format", AUTO)),
            quality=float(settings.get("quality", 0.82)),
            max_width=int(settings.get("max_width") or 0),
            max_height=int(settings.get("max_height") or 0),
            background_color=settings.get("background_color", "#ffffff"),
            quantize=QuantizeOptions(
                enabled=bool(quantize_settings.get("enabled", True)),
                max_colors=int(quantize_settings.get("max_colors", 256)),
                max_pixels_eligible=int(quantize_settings.get("max_pixels_eligible", 2_000_000)),
                sample_size=int(quantize_settings.get("sample_size", 120_000)),
            ),
            keep_original_if_smaller=bool(settings.get("keep_original_if_smaller", True)),
            max_workers=int(settings.get("max_workers", 1)),
        )


@dataclass(frozen=True)
class CompressionCandidate:
    format: str
    quantized: bool = False

    @property
    def render_key(self) -> str:
        """Name of the intermediate buffer this candidate is encoded from."""
        if self.format not in ALPHA_FORMATS:
            return "background"
        return "quantized" if self.quantized else "base"


@dataclass
class CompressionResult:
    data: bytes
    format: str
    original_width: int
    original_height: int
    output_width: int
    output_height: int
    used_original_fallback: bool = False
    note: Optional[str] = None
    candidate: Optional[CompressionCandidate] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class ImageAnalysis:
    has_alpha: bool
    unique_colors: int


def parse_color(color: Color) -> Tuple[int, int, int]:
    """Parse ``#rgb``/``#rrggbb`` strings or RGB sequences into an RGB tuple."""
    if isinstance(color, str):
        value = color.strip().lstrip("#")
        if len(value) == 3:
            value = "".join(ch * 2 for ch in value)
        if len(value) != 6:
            raise ValueError(f"Invalid background color: {color!r}")
        try:
            return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)
        except ValueError:
            raise ValueError(f"Invalid background color: {color!r}") from None
    channels = tuple(int(c) for c in color)
    if len(channels) != 3 or any(not 0 <= c <= 255 for c in channels):
        raise ValueError(f"Invalid background color: {color!r}")
    return channels  # type: ignore[return-value]


def resolve_target_size(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Scale down to fit within the limits, never up. A limit of 0 means unbounded."""
    width_limit = max_width if max_width > 0 else width
    height_limit = max_height if max_height > 0 else height
    ratio = min(width_limit / width, height_limit / height, 1.0)
    return max(1, _round_half_up(width * ratio)), max(1, _round_half_up(height * ratio))


def _resize_pixels(pixels: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """Area-resample RGBA pixels with premultiplied alpha.

    Fully transparent pixels contribute no color to their neighbours.
    """
    alpha = pixels[:, :, 3]
    if (alpha == 255).all():
        return cv2.resize(pixels, size, interpolation=cv2.INTER_AREA)
    weights = alpha.astype(np.float32) / np.float32(255.0)
    premultiplied = np.empty(pixels.shape, dtype=np.float32)
    premultiplied[:, :, :3] = pixels[:, :, :3].astype(np.float32) * weights[:, :, np.newaxis]
    premultiplied[:, :, 3] = alpha
    resized = cv2.resize(premultiplied, size, interpolation=cv2.INTER_AREA)
    out_alpha = resized[:, :, 3:4]
    rgb = np.zeros(resized.shape[:2] + (3,), dtype=np.float32)
    np.divide(resized[:, :, :3] * np.float32(255.0), out_alpha, out=rgb, where=out_alpha > 0)
    out = np.empty(resized.shape, dtype=np.uint8)
    out[:, :, :3] = np.clip(np.floor(rgb + 0.5), 0, 255).astype(np.uint8)
    out[:, :, 3] = np.clip(np.floor(out_alpha[:, :, 0] + 0.5), 0, 255).astype(np.uint8)
    return out


def resize_buffer(buffer: PixelBuffer, width: int, height: int) -> PixelBuffer:
    if (width, height) == (buffer.width, buffer.height):
        return buffer
    return PixelBuffer(_resize_pixels(buffer.pixels, (width, height)))


def analyze_pixels(
    buffer: PixelBuffer, color_limit: int, max_pixels: int = ANALYSIS_MAX_PIXELS
) -> ImageAnalysis:
    """Detect transparency and estimate the color count on a downsampled copy.

    The count is capped at ``color_limit + 1``: anything above the limit is
    only ever compared against it, so the exact figure is irrelevant. Because
    it is taken on a downsample, the estimate is a heuristic.
    """
    pixels = buffer.pixels
    total = buffer.pixel_count
    if total > max_pixels:
        scale = math.sqrt(max_pixels / total)
        size = (
            max(1, _round_half_up(buffer.width * scale)),
            max(1, _round_half_up(buffer.height * scale)),
        )
        pixels = _resize_pixels(pixels, size)
    flat = pixels.reshape(-1, 4)
    limit = max(1, int(color_limit))
    has_alpha = bool((flat[:, 3] < 255).any())
    unique_colors = min(int(np.unique(pack_rgb(flat)).size), limit + 1)
    return ImageAnalysis(has_alpha=has_alpha, unique_colors=unique_colors)


def fill_background(buffer: PixelBuffer, color: Color) -> PixelBuffer:
    """Composite ``buffer`` over an opaque background color (source-over)."""
    background = np.array(parse_color(color), dtype=np.float32)
    alpha = buffer.pixels[:, :, 3:4].astype(np.float32) / np.float32(255.0)
    rgb = buffer.pixels[:, :, :3].astype(np.float32)
    blended = rgb * alpha + background * (1.0 - alpha)
    out = np.empty_like(buffer.pixels)
    out[:, :, :3] = np.clip(np.floor(blended + 0.5), 0, 255).astype(np.uint8)
    out[:, :, 3] = 255
    return PixelBuffer(out)


def build_candidates(
    source_format: Optional[str],
    has_alpha: bool,
    can_quantize: bool,
    supports: Callable[[str], bool],
) -> List[CompressionCandidate]:
    """List the encodings auto mode tries, in priority order."""
    candidates: List[CompressionCandidate] = []

    def add(fmt: str, quantized: bool = False) -> None:
        candidate = CompressionCandidate(fmt, quantized)
        if candidate in candidates or not supports(fmt):
            return
        candidates.append(candidate)

    fallback = PNG if has_alpha else JPEG
    resolved = resolve_output_format(source_format, AUTO)
    if not supports(resolved):
        resolved = fallback
    base = PNG if has_alpha and resolved not in ALPHA_FORMATS else resolved

    add(base)
    if base == PNG and can_quantize:
        add(PNG, True)
    if has_alpha:
        add(WEBP)
        add(AVIF)
        if base != PNG:
            add(PNG)
            if can_quantize:
                add(PNG, True)
    else:
        add(JPEG)
        add(WEBP)
        add(AVIF)
    return candidates


class ImageCompressor:
    """Re-encode images into the smallest acceptable representation."""

    def __init__(
        self,
        options: Optional[CompressionOptions] = None,
        *,
        imaging: Optional[OpenCVImaging] = None,
        max_input_bytes: Optional[int] = utils.DEFAULT_MAX_INPUT_BYTES,
    ) -> None:
        self.options = options or CompressionOptions()
        self.imaging = imaging or OpenCVImaging()
        self.max_input_bytes = max_input_bytes
        logger.debug(
            "Initialized ImageCompressor (format=%s, quality=%s, max=%sx%s)",
            self.options.format,
            self.options.quality,
            self.options.max_width,
            self.options.max_height,
        )

    def compress(self, data: bytes, options: Optional[CompressionOptions] = None) -> CompressionResult:
        """Compress encoded image bytes."""
        buffer = self.imaging.decode(data)
        return self._run(buffer, options or self.options, data, sniff_format(data))

    def compress_pixels(
        self,
        buffer: PixelBuffer,
        options: Optional[CompressionOptions] = None,
        *,
        source_format: Optional[str] = None,
    ) -> CompressionResult:
        """Compress an already decoded buffer; no original bytes are available to fall back on."""
        return self._run(buffer, options or self.options, None, source_format)

    def _run(
        self,
        buffer: PixelBuffer,
        options: CompressionOptions,
        source: Optional[bytes],
        source_format: Optional[str],
    ) -> CompressionResult:
        width, height = buffer.width, buffer.height
        out_width, out_height = resolve_target_size(width, height, options.max_width, options.max_height)
        base = resize_buffer(buffer, out_width, out_height)
        quant = options.quantize
        limit = quant.color_limit

        auto = options.format == AUTO
        target = None if auto else resolve_output_format(source_format, options.format)
        if target is not None and not self.imaging.supports(target):
            raise UnsupportedFormatError(target, f"Output format {target} is not supported by the encoder.")

        analysis = None
        if auto or (quant.enabled and target == PNG):
            analysis = analyze_pixels(base, limit * 2)
        has_alpha = analysis.has_alpha if analysis else source_format in ALPHA_FORMATS
        can_quantize = (
            quant.enabled
            and out_width * out_height <= quant.max_pixels_eligible
            and analysis is not None
            and analysis.unique_colors <= limit * 2
        )

        if target is not None:
            candidates = [CompressionCandidate(target, can_quantize and target == PNG)]
        else:
            candidates = build_candidates(source_format, has_alpha, can_quantize, self.imaging.supports)
        if not candidates:
            raise NoCandidateError("No output format is available for automatic compression.")
        logger.debug(
            "Compressing %sx%s -> %sx%s (alpha=%s, quantize=%s): %s",
            width,
            height,
            out_width,
            out_height,
            has_alpha,
            can_quantize,
            ", ".join(f"{c.format}{'+q' if c.quantized else ''}" for c in candidates),
        )

        renders: Dict[str, PixelBuffer] = {}
        jobs = [(self._render(base, c, options, renders), c) for c in candidates]
        encoded = self._encode_all(jobs, options)

        best_index = 0
        for index, (candidate, data) in enumerate(zip(candidates, encoded)):
            logger.debug("Candidate %s (quantized=%s): %s bytes", candidate.format, candidate.quantized, len(data))
            if len(data) < len(encoded[best_index]):
                best_index = index
        best, best_data = candidates[best_index], encoded[best_index]

        if (
            auto
            and options.keep_original_if_smaller
            and (out_width, out_height) == (width, height)
            and source
            and source_format is not None
            and len(best_data) >= len(source)
        ):
            logger.info(
                "Best candidate %s (%s bytes) is not smaller than the source (%s bytes); keeping original",
                best.format,
                len(best_data),
                len(source),
            )
            return CompressionResult(
                data=source,
                format=source_format,
                original_width=width,
                original_height=height,
                output_width=out_width,
                output_height=out_height,
                used_original_fallback=True,
                note=FALLBACK_NOTE,
            )

        logger.info("Selected %s%s at %s bytes", best.format, " (quantized)" if best.quantized else "", len(best_data))
        return CompressionResult(
            data=best_data,
            format=best.format,
            original_width=width,
            original_height=height,
            output_width=out_width,
            output_height=out_height,
            candidate=best,
        )

    def _render(
        self,
        base: PixelBuffer,
        candidate: CompressionCandidate,
        options: CompressionOptions,
        renders: Dict[str, PixelBuffer],
    ) -> PixelBuffer:
        key = candidate.render_key
        if key not in renders:
            if key == "background":
                renders[key] = fill_background(base, options.background_color)
            elif key == "quantized":
                renders[key] = quantize(base.copy(), options.quantize.color_limit, options.quantize.sample_size)
            else:
                renders[key] = base
        return renders[key]

    def _encode(self, buffer: PixelBuffer, candidate: CompressionCandidate, quality: float) -> bytes:
        return self.imaging.encode(buffer, candidate.format, quality if is_lossy(candidate.format) else None)

    def _encode_all(
        self, jobs: List[Tuple[PixelBuffer, CompressionCandidate]], options: CompressionOptions
    ) -> List[bytes]:
        if options.max_workers <= 1 or len(jobs) <= 1:
            return [self._encode(buffer, candidate, options.quality) for buffer, candidate in jobs]
        with ThreadPoolExecutor(max_workers=options.max_workers) as executor:
            futures = [
                executor.submit(self._encode, buffer, candidate, options.quality)
                for buffer, candidate in jobs
            ]
            return [future.result() for future in futures]

    def process_file(
        self,
        input_path: PathLike,
        output_path: PathLike,
        *,
        options: Optional[CompressionOptions] = None,
    ) -> Tuple[Path, CompressionResult]:
        """Compress an image file; the output suffix follows the chosen format."""
        data = utils.read_image_bytes(input_path, max_bytes=self.max_input_bytes)
        utils.check_source_format(data)
        logger.info("Compressing image %s (%s bytes)", input_path, len(data))
        result = self.compress(data, options)
        target = Path(output_path).with_suffix(FORMAT_EXTENSIONS[result.format])
        utils.write_bytes(target, result.data)
        return target, result

    @classmethod
    def from_config(
        cls, config: Mapping[str, Any], *, imaging: Optional[OpenCVImaging] = None
    ) -> "ImageCompressor":
        settings = dict(config.get("compression", {}) or {})
        max_bytes = settings.get("max_input_bytes", utils.DEFAULT_MAX_INPUT_BYTES)
        return cls(
            CompressionOptions.from_mapping(settings),
            imaging=imaging,
            max_input_bytes=int(max_bytes) if max_bytes else None,
        )


def compress_image(
    data: bytes,
    options: Optional[CompressionOptions] = None,
    *,
    imaging: Optional[OpenCVImaging] = None,
) -> CompressionResult:
    """Compress encoded image bytes with a one-off :class:`ImageCompressor`."""
    return ImageCompressor(options, imaging=imaging).compress(data)


__all__ = [
    "AUTO",
    "MIN_QUANTIZE_COLORS",
    "ANALYSIS_MAX_PIXELS",
    "QuantizeOptions",
    "CompressionOptions",
    "CompressionCandidate",
    "CompressionResult",
    "ImageAnalysis",
    "ImageCompressor",
    "analyze_pixels",
    "build_candidates",
    "compress_image",
    "fill_background",
    "parse_color",
    "resize_buffer",
    "resolve_target_size",
]
