"""Command-line interface for pixelsuite."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import yaml

from pixelsuite.config import DEFAULT_CONFIG_PATH, load_config
from pixelsuite.core import (
    BatchItem,
    BatchProcessor,
    BatchResult,
    ImageCompressor,
    ImageWatermarkRemover,
    OpenCVImaging,
    utils,
)
from pixelsuite.core.batch_manager import JOB_KINDS
from pixelsuite.core.image_remover import placement_for
from pixelsuite.core.logger import setup_logging

logger = logging.getLogger(__name__)


def _positive_int(value: str) -> int:
    try:
        ivalue = int(value)
    except ValueError as exc:  # pragma: no cover - argparse failure path
        raise argparse.ArgumentTypeError(f"Expected integer, received '{value}'") from exc
    if ivalue <= 0:
        raise argparse.ArgumentTypeError("Value must be a positive integer.")
    return ivalue


def _dimension(value: str) -> int:
    try:
        ivalue = int(value)
    except ValueError as exc:  # pragma: no cover - argparse failure path
        raise argparse.ArgumentTypeError(f"Expected integer, received '{value}'") from exc
    if ivalue < 0:
        raise argparse.ArgumentTypeError("Dimension limits must be 0 (unbounded) or positive.")
    return ivalue


def _quality(value: str) -> float:
    try:
        fvalue = float(value)
    except ValueError as exc:  # pragma: no cover - argparse failure path
        raise argparse.ArgumentTypeError(f"Expected a number, received '{value}'") from exc
    # Accept both 0.82 and 82.
    if fvalue > 1:
        fvalue /= 100.0
    if not 0 < fvalue <= 1:
        raise argparse.ArgumentTypeError("Quality must be in (0, 1] or (0, 100].")
    return fvalue


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pixelsuite",
        description="Remove the corner watermark from images and re-encode images compactly.",
    )
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help=f"Path to configuration YAML (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--log-level", help="Override logging level (e.g. INFO, DEBUG).")
    parser.add_argument("--log-file", help="Override log file path.")

    subparsers = parser.add_subparsers(dest="command", required=True)

    watermark_parser = subparsers.add_parser("watermark", help="Reverse the corner watermark of an image.")
    watermark_parser.add_argument("-i", "--input", required=True, help="Path to the watermarked image.")
    watermark_parser.add_argument("-o", "--output", required=True, help="Path for the restored PNG.")
    watermark_parser.add_argument(
        "--force-size", type=int, choices=[48, 96], help="Skip size detection and use this watermark size."
    )
    watermark_parser.add_argument("--asset-dir", help="Directory holding the opacity reference bitmaps.")

    detect_parser = subparsers.add_parser("detect", help="Print the watermark placement expected for an image.")
    detect_parser.add_argument("-i", "--input", required=True, help="Path to the image.")
    detect_parser.add_argument("--force-size", type=int, choices=[48, 96], help="Report this size instead.")

    compress_parser = subparsers.add_parser("compress", help="Re-encode an image into its smallest form.")
    compress_parser.add_argument("-i", "--input", required=True, help="Path to the source image.")
    compress_parser.add_argument(
        "-o", "--output", required=True, help="Output path; the suffix is replaced by the chosen format's."
    )
    compress_parser.add_argument("--format", choices=["auto", "jpeg", "png", "webp", "avif"], help="Output format.")
    compress_parser.add_argument("--quality", type=_quality, help="Lossy quality, 0-1 or 1-100.")
    compress_parser.add_argument("--max-width", type=_dimension, help="Maximum output width (0 = unbounded).")
    compress_parser.add_argument("--max-height", type=_dimension, help="Maximum output height (0 = unbounded).")
    compress_parser.add_argument("--colors", type=_positive_int, help="Palette size for quantized PNG output.")
    compress_parser.add_argument("--quantize", action=argparse.BooleanOptionalAction, default=None)
    compress_parser.add_argument("--background", help="Background color for formats without alpha, e.g. #ffffff.")
    compress_parser.add_argument("--keep-original", action=argparse.BooleanOptionalAction, default=None)

    batch_parser = subparsers.add_parser("batch", help="Process a batch manifest describing multiple jobs.")
    batch_parser.add_argument(
        "-m",
        "--manifest",
        required=True,
        help="Path to a YAML or JSON manifest describing batch jobs.",
    )
    batch_parser.add_argument(
        "--max-workers",
        type=_positive_int,
        help="Override maximum concurrent workers in batch processor.",
    )
    batch_parser.add_argument(
        "--halt-on-error",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Stop processing remaining items after the first failure.",
    )
    batch_parser.add_argument("--progress", action=argparse.BooleanOptionalAction, default=None)

    return parser


def _apply_logging_overrides(overrides: Dict[str, Any], args: argparse.Namespace) -> None:
    if args.log_level:
        overrides.setdefault("logging", {})["level"] = args.log_level.upper()
    if args.log_file:
        file_overrides = overrides.setdefault("logging", {}).setdefault("file", {})
        file_overrides["enabled"] = True
        file_overrides["filename"] = args.log_file


def _apply_watermark_overrides(overrides: Dict[str, Any], args: argparse.Namespace) -> None:
    if args.command != "watermark":
        return
    watermark = overrides.setdefault("watermark", {})
    if args.asset_dir:
        watermark["asset_dir"] = args.asset_dir
    if args.force_size is not None:
        watermark["force_size"] = args.force_size


def _apply_compression_overrides(overrides: Dict[str, Any], args: argparse.Namespace) -> None:
    if args.command != "compress":
        return
    compression = overrides.setdefault("compression", {})
    quantize = compression.setdefault("quantize", {})
    for attr, key in (
        ("format", "format"),
        ("quality", "quality"),
        ("max_width", "max_width"),
        ("max_height", "max_height"),
        ("background", "background_color"),
        ("keep_original", "keep_original_if_smaller"),
    ):
        value = getattr(args, attr)
        if value is not None:
            compression[key] = value
    if args.colors is not None:
        quantize["max_colors"] = args.colors
    if args.quantize is not None:
        quantize["enabled"] = args.quantize


def _apply_batch_overrides(overrides: Dict[str, Any], args: argparse.Namespace) -> None:
    if args.command != "batch":
        return
    batch_overrides = overrides.setdefault("batch", {})
    if args.max_workers is not None:
        batch_overrides["max_workers"] = args.max_workers
    if args.halt_on_error is not None:
        batch_overrides["halt_on_error"] = args.halt_on_error
    if args.progress is not None:
        batch_overrides["progress"] = args.progress


def _configure_logging(config: Dict[str, Any]) -> None:
    setup_logging(config.get("logging", {}), force=True)


def _load_manifest(path: Path) -> Iterable[Dict[str, Any]]:
    content = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        data = yaml.safe_load(content)
    else:
        data = json.loads(content)
    if not isinstance(data, list):
        raise ValueError("Batch manifest must be a list of job entries.")
    return data


def _prepare_batch_items(entries: Iterable[Dict[str, Any]]) -> List[BatchItem]:
    items: List[BatchItem] = []
    for entry in entries:
        kind = entry.get("type")
        if kind not in JOB_KINDS:
            raise ValueError(f"Batch entry 'type' must be one of {JOB_KINDS}, got {kind!r}.")
        input_path = entry.get("input")
        output_path = entry.get("output")
        if not input_path or not output_path:
            raise ValueError("Batch entry must include 'input' and 'output' fields.")
        force_size = entry.get("force_size")
        items.append(
            BatchItem(
                kind=kind,
                input_path=input_path,
                output_path=output_path,
                force_size=int(force_size) if force_size else None,
                options=entry.get("options"),
            )
        )
    return items


def _run_watermark(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    remover = ImageWatermarkRemover.from_config(config)
    output, placement = remover.process_file(Path(args.input), Path(args.output))
    logger.info(
        "Image restored: %s (%spx watermark, margin %spx)", output, placement.side, placement.margin
    )
    return 0


def _run_detect(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    buffer = OpenCVImaging().decode(utils.read_image_bytes(args.input))
    placement = placement_for(buffer.width, buffer.height, args.force_size)
    report = {
        "width": buffer.width,
        "height": buffer.height,
        "side": placement.side,
        "margin": placement.margin,
        "x": placement.origin_x,
        "y": placement.origin_y,
    }
    print(json.dumps(report))
    return 0


def _run_compress(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    compressor = ImageCompressor.from_config(config)
    output, result = compressor.process_file(Path(args.input), Path(args.output))
    if result.used_original_fallback:
        logger.info("%s (%s)", result.note, output)
    else:
        logger.info(
            "Compressed to %s: %s bytes as %s, %sx%s",
            output,
            result.size,
            result.format,
            result.output_width,
            result.output_height,
        )
    return 0


def _summarize_batch(results: List[BatchResult]) -> int:
    success = sum(1 for r in results if r.success)
    failures = [r for r in results if not r.success]
    logger.info("Batch complete. Successes: %s | Failures: %s", success, len(failures))
    for result in failures:
        logger.error("Failed %s job for %s: %s", result.kind, result.input_path, result.error)
    return 0 if not failures else 1


def _run_batch(args: argparse.Namespace, config: Dict[str, Any]) -> int:
    manifest_path = Path(args.manifest)
    items = _prepare_batch_items(_load_manifest(manifest_path))
    logger.info("Processing %s batch item(s) defined in %s", len(items), manifest_path)
    processor = BatchProcessor(config=config)
    return _summarize_batch(processor.process(items))


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    overrides: Dict[str, Any] = {}
    _apply_logging_overrides(overrides, args)
    _apply_watermark_overrides(overrides, args)
    _apply_compression_overrides(overrides, args)
    _apply_batch_overrides(overrides, args)

    config = load_config(args.config, overrides=overrides or None)
    _configure_logging(config)

    try:
        if args.command == "watermark":
            return _run_watermark(args, config)
        if args.command == "detect":
            return _run_detect(args, config)
        if args.command == "compress":
            return _run_compress(args, config)
        if args.command == "batch":
            return _run_batch(args, config)
        parser.error(f"Unknown command: {args.command}")  # pragma: no cover
    except Exception as exc:  # pragma: no cover - command failure path
        logger.exception("Command failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
