"""Batch processing of watermark-removal and compression jobs."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from tqdm import tqdm

from .compressor import CompressionOptions, ImageCompressor
from .image_remover import ImageWatermarkRemover

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
JOB_KINDS = ("watermark", "compress")


@dataclass
class BatchItem:
    kind: str
    input_path: PathLike
    output_path: PathLike
    force_size: Optional[int] = None
    options: Optional[Dict[str, Any]] = None


@dataclass
class BatchResult:
    success: bool
    kind: str
    input_path: Path
    output_path: Optional[Path] = None
    output_format: Optional[str] = None
    output_bytes: Optional[int] = None
    note: Optional[str] = None
    error: Optional[str] = None


class BatchProcessor:
    """Run a list of jobs, optionally on a thread pool, keeping input order."""

    def __init__(
        self,
        watermark_remover: Optional[ImageWatermarkRemover] = None,
        compressor: Optional[ImageCompressor] = None,
        *,
        config: Optional[Mapping[str, Any]] = None,
    ) -> None:
        config_map = dict(config or {})
        batch_settings = dict(config_map.get("batch", {}) or {})
        self.halt_on_error = bool(batch_settings.get("halt_on_error", False))
        self.max_workers = int(batch_settings.get("max_workers", 1))
        self.show_progress = bool(batch_settings.get("progress", False))
        self.compression_settings = dict(config_map.get("compression", {}) or {})

        if watermark_remover is None:
            watermark_remover = ImageWatermarkRemover.from_config(config_map)
        self.watermark_remover = watermark_remover

        if compressor is None:
            compressor = ImageCompressor.from_config(config_map, imaging=self.watermark_remover.imaging)
        self.compressor = compressor

    def _compression_options(self, overrides: Optional[Dict[str, Any]]) -> Optional[CompressionOptions]:
        if not overrides:
            return None
        settings = dict(self.compression_settings)
        quantize = dict(settings.get("quantize", {}) or {})
        quantize.update(overrides.get("quantize", {}) or {})
        settings.update({k: v for k, v in overrides.items() if k != "quantize"})
        settings["quantize"] = quantize
        return CompressionOptions.from_mapping(settings)

    def _execute_item(self, item: BatchItem) -> BatchResult:
        input_path = Path(item.input_path)
        kind = item.kind.lower()
        logger.info("Batch processing %s job for %s", kind, input_path)
        try:
            if kind == "watermark":
                output_path, placement = self.watermark_remover.process_file(
                    input_path, item.output_path, forced_side=item.force_size
                )
                return BatchResult(
                    success=True,
                    kind=kind,
                    input_path=input_path,
                    output_path=output_path,
                    output_format="png",
                    output_bytes=output_path.stat().st_size,
                    note=f"{placement.side}px watermark at ({placement.origin_x}, {placement.origin_y})",
                )
            if kind == "compress":
                output_path, result = self.compressor.process_file(
                    input_path, item.output_path, options=self._compression_options(item.options)
                )
                return BatchResult(
                    success=True,
                    kind=kind,
                    input_path=input_path,
                    output_path=output_path,
                    output_format=result.format,
                    output_bytes=result.size,
                    note=result.note,
                )
            raise ValueError(f"Unsupported job type: {item.kind}")
        except Exception as exc:
            logger.exception("Failed to process %s: %s", input_path, exc)
            return BatchResult(success=False, kind=kind, input_path=input_path, error=str(exc))

    def process(self, items: Iterable[BatchItem]) -> List[BatchResult]:
        item_list = list(items)
        if not item_list:
            return []

        if self.max_workers <= 1 or self.halt_on_error:
            results: List[BatchResult] = []
            for item in tqdm(item_list, desc="pixelsuite-batch", disable=not self.show_progress):
                result = self._execute_item(item)
                results.append(result)
                if self.halt_on_error and not result.success:
                    break
            return results

        indexed: Dict[int, BatchResult] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_index = {
                executor.submit(self._execute_item, item): index for index, item in enumerate(item_list)
            }
            progress = tqdm(total=len(item_list), desc="pixelsuite-batch", disable=not self.show_progress)
            for future in as_completed(future_to_index):
                indexed[future_to_index[future]] = future.result()
                progress.update(1)
            progress.close()
        return [indexed[index] for index in sorted(indexed)]


__all__ = ["JOB_KINDS", "BatchItem", "BatchResult", "BatchProcessor"]
