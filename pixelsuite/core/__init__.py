"""Core pixel engines: watermark reversal, color quantization and compression."""

from . import utils
from .batch_manager import BatchItem, BatchProcessor, BatchResult
from .compressor import (
    CompressionCandidate,
    CompressionOptions,
    CompressionResult,
    ImageCompressor,
    QuantizeOptions,
    compress_image,
)
from .errors import (
    AssetLoadError,
    DecodeError,
    EncodeError,
    NoCandidateError,
    PixelSuiteError,
    UnsupportedFormatError,
)
from .image_remover import ImageWatermarkRemover, WatermarkPlacement, classify_watermark, remove_watermark
from .imaging import OpenCVImaging, PixelBuffer
from .masks import OpacityMask, OpacityMaskCache
from .quantizer import quantize

__all__ = [
    "ImageWatermarkRemover",
    "ImageCompressor",
    "BatchProcessor",
    "BatchItem",
    "BatchResult",
    "CompressionCandidate",
    "CompressionOptions",
    "CompressionResult",
    "QuantizeOptions",
    "OpacityMask",
    "OpacityMaskCache",
    "OpenCVImaging",
    "PixelBuffer",
    "WatermarkPlacement",
    "classify_watermark",
    "remove_watermark",
    "compress_image",
    "quantize",
    "PixelSuiteError",
    "AssetLoadError",
    "DecodeError",
    "EncodeError",
    "UnsupportedFormatError",
    "NoCandidateError",
    "utils",
]
