import tempfile
import threading
import time
import unittest
from pathlib import Path

import numpy as np

from pixelsuite.core.errors import AssetLoadError
from pixelsuite.core.image_remover import (
    ImageWatermarkRemover,
    classify_watermark,
    placement_for,
    remove_watermark,
)
from pixelsuite.core.imaging import PixelBuffer
from pixelsuite.core.masks import OpacityMaskCache, directory_loader
from .helpers import (
    apply_watermark,
    decode_rgba,
    encode_png,
    expected_alpha,
    gradient_rgba,
    reference_png,
    write_reference_assets,
)


def _memory_cache() -> OpacityMaskCache:
    return OpacityMaskCache(reference_png)


class TestClassifyWatermark(unittest.TestCase):
    def test_large_images_use_96px_variant(self) -> None:
        self.assertEqual(classify_watermark(1025, 1025), (96, 64))
        self.assertEqual(classify_watermark(4000, 3000), (96, 64))

    def test_both_dimensions_must_exceed_threshold(self) -> None:
        self.assertEqual(classify_watermark(1024, 2000), (48, 32))
        self.assertEqual(classify_watermark(2000, 1024), (48, 32))
        self.assertEqual(classify_watermark(1024, 1024), (48, 32))
        self.assertEqual(classify_watermark(10, 10), (48, 32))

    def test_placement_is_bottom_right_anchored(self) -> None:
        placement = placement_for(800, 600)
        self.assertEqual((placement.side, placement.margin), (48, 32))
        self.assertEqual((placement.origin_x, placement.origin_y), (800 - 32 - 48, 600 - 32 - 48))

    def test_forced_side_overrides_classification(self) -> None:
        placement = placement_for(200, 200, forced_side=96)
        self.assertEqual((placement.side, placement.margin), (96, 64))
        self.assertEqual(placement.origin_x, 200 - 64 - 96)
        with self.assertRaises(ValueError):
            placement_for(200, 200, forced_side=64)


class TestOpacityMaskCache(unittest.TestCase):
    def test_mask_is_max_channel_over_255(self) -> None:
        mask = _memory_cache().get_mask(48)
        self.assertEqual(mask.alpha.shape, (48, 48))
        np.testing.assert_allclose(mask.alpha, expected_alpha(48))
        self.assertFalse(mask.alpha.flags.writeable)

    def test_each_side_is_loaded_once(self) -> None:
        calls = []

        def loader(side: int) -> bytes:
            calls.append(side)
            time.sleep(0.05)
            return reference_png(side)

        cache = OpacityMaskCache(loader)
        results = []
        threads = [threading.Thread(target=lambda: results.append(cache.get_mask(96))) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(calls, [96])
        self.assertTrue(all(result is results[0] for result in results))
        self.assertIs(cache.get_mask(96), results[0])
        self.assertIn(96, cache)
        self.assertNotIn(48, cache)

    def test_missing_asset_raises_asset_load_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            cache = OpacityMaskCache(directory_loader(tmp_dir))
            with self.assertRaises(AssetLoadError):
                cache.get_mask(48)

    def test_undecodable_asset_raises_asset_load_error(self) -> None:
        cache = OpacityMaskCache(lambda side: b"definitely not a png")
        with self.assertRaises(AssetLoadError):
            cache.get_mask(48)

    def test_unknown_side_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            _memory_cache().get_mask(64)


class TestRemoveWatermark(unittest.TestCase):
    def _roundtrip(self, width: int, height: int, forced_side=None) -> None:
        original = gradient_rgba(width, height)
        placement = placement_for(width, height, forced_side)
        watermarked = apply_watermark(original, placement.side, placement.origin_x, placement.origin_y)
        self.assertFalse(np.array_equal(watermarked, original))

        buffer = PixelBuffer(watermarked.copy())
        result = remove_watermark(buffer, _memory_cache(), forced_side)

        self.assertIs(result, buffer)
        diff = np.abs(result.pixels.astype(np.int16) - original.astype(np.int16))
        self.assertLessEqual(int(diff.max()), 1)

        outside = np.ones((height, width), dtype=bool)
        y0, x0 = max(placement.origin_y, 0), max(placement.origin_x, 0)
        outside[y0 : placement.origin_y + placement.side, x0 : placement.origin_x + placement.side] = False
        self.assertTrue(np.array_equal(result.pixels[outside], watermarked[outside]))

    def test_small_image_is_restored_within_rounding(self) -> None:
        self._roundtrip(320, 240)

    def test_large_image_uses_96px_mask(self) -> None:
        self._roundtrip(1100, 1030)

    def test_forced_size_on_small_image(self) -> None:
        self._roundtrip(400, 300, forced_side=96)

    def test_partially_cropped_patch(self) -> None:
        self._roundtrip(70, 60)

    def test_patch_outside_image_leaves_buffer_unchanged(self) -> None:
        pixels = gradient_rgba(20, 40)
        pixels[:, :, 3] = 0
        buffer = PixelBuffer(pixels.copy())
        remove_watermark(buffer, _memory_cache(), forced_side=48)
        self.assertTrue(np.array_equal(buffer.pixels, pixels))

    def test_alpha_channel_is_untouched(self) -> None:
        original = gradient_rgba(200, 150, alpha=180)
        placement = placement_for(200, 150)
        watermarked = apply_watermark(original, placement.side, placement.origin_x, placement.origin_y)
        buffer = PixelBuffer(watermarked.copy())
        remove_watermark(buffer, _memory_cache())
        self.assertTrue(np.array_equal(buffer.pixels[:, :, 3], watermarked[:, :, 3]))

    def test_saturated_pixels_are_clamped(self) -> None:
        pixels = np.zeros((120, 120, 4), dtype=np.uint8)
        pixels[:, :, 3] = 255
        buffer = PixelBuffer(pixels)
        remove_watermark(buffer, _memory_cache())
        self.assertEqual(int(buffer.pixels[:, :, :3].max()), 0)

        white = PixelBuffer(np.full((120, 120, 4), 255, dtype=np.uint8))
        remove_watermark(white, _memory_cache())
        self.assertEqual(int(white.pixels.min()), 255)


class TestImageWatermarkRemover(unittest.TestCase):
    def test_process_file_writes_restored_png(self) -> None:
        original = gradient_rgba(300, 200)
        placement = placement_for(300, 200)
        watermarked = apply_watermark(original, placement.side, placement.origin_x, placement.origin_y)

        with tempfile.TemporaryDirectory() as tmp_dir_name:
            tmp_dir = Path(tmp_dir_name)
            write_reference_assets(tmp_dir / "assets")
            input_path = tmp_dir / "watermarked.png"
            input_path.write_bytes(encode_png(watermarked))

            remover = ImageWatermarkRemover.from_config({"watermark": {"asset_dir": str(tmp_dir / "assets")}})
            output, used = remover.process_file(input_path, tmp_dir / "out" / "restored.png")

            self.assertTrue(output.exists(), "Output image was not written.")
            self.assertEqual(used, placement)
            restored = decode_rgba(output.read_bytes())
            diff = np.abs(restored.astype(np.int16) - original.astype(np.int16))
            self.assertLessEqual(int(diff.max()), 1)

    def test_configured_force_size_applies_to_detection(self) -> None:
        remover = ImageWatermarkRemover(_memory_cache(), forced_side=96)
        self.assertEqual(remover.detect(300, 300).side, 96)
        with self.assertRaises(ValueError):
            ImageWatermarkRemover(_memory_cache(), forced_side=50)


if __name__ == "__main__":
    unittest.main()
