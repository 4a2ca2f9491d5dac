import unittest

import numpy as np

from pixelsuite.core.imaging import PixelBuffer
from pixelsuite.core.quantizer import (
    ColorBox,
    build_palette,
    nearest_palette_colors,
    pack_rgb,
    quantize,
    remap_to_palette,
    sample_colors,
)
from .helpers import count_colors, gradient_rgba, noisy_rgba


class TestBuildPalette(unittest.TestCase):
    def test_palette_is_bounded_and_distinct(self) -> None:
        colors = pack_rgb(noisy_rgba(64, 64).reshape(-1, 4))
        for limit in (2, 7, 32, 256):
            palette = build_palette(colors, limit)
            self.assertLessEqual(palette.size, limit)
            self.assertEqual(np.unique(palette).size, palette.size)

    def test_two_clusters_resolve_to_their_means(self) -> None:
        colors = np.array([0x000000] * 10 + [0x0A0A0A] * 10 + [0xFFFFFF] * 10 + [0xF0F0F0] * 10)
        palette = build_palette(colors, 2)
        self.assertEqual(sorted(palette.tolist()), [0x050505, 0xF8F8F8])

    def test_splitting_stops_when_no_box_can_split(self) -> None:
        colors = np.array([0x123456] * 50 + [0x654321] * 3)
        palette = build_palette(colors, 16)
        self.assertEqual(sorted(palette.tolist()), [0x123456, 0x654321])

    def test_empty_sample_gives_empty_palette(self) -> None:
        self.assertEqual(build_palette(np.array([], dtype=np.int32), 8).size, 0)

    def test_rejects_non_positive_limit(self) -> None:
        with self.assertRaises(ValueError):
            build_palette(np.array([1, 2, 3]), 0)


class TestColorBox(unittest.TestCase):
    def test_bounds_and_longest_channel(self) -> None:
        box = ColorBox.from_colors(np.array([0x102030, 0x104030, 0x10F031]))
        self.assertEqual(box.minimum, (0x10, 0x20, 0x30))
        self.assertEqual(box.maximum, (0x10, 0xF0, 0x31))
        self.assertEqual(box.longest_channel(), 1)

    def test_split_sorts_along_longest_channel(self) -> None:
        box = ColorBox.from_colors(np.array([0x00F000, 0x001000, 0x00A000, 0x005000]))
        left, right = box.split()
        self.assertEqual(left.colors.tolist(), [0x001000, 0x005000])
        self.assertEqual(right.colors.tolist(), [0x00A000, 0x00F000])

    def test_single_color_box_does_not_split(self) -> None:
        self.assertIsNone(ColorBox.from_colors(np.array([0xABCDEF])).split())
        self.assertIsNone(ColorBox.from_colors(np.array([0xABCDEF] * 4)).split())


class TestQuantize(unittest.TestCase):
    def test_reduces_color_count(self) -> None:
        buffer = PixelBuffer(noisy_rgba(80, 60))
        quantize(buffer, 16, 2000)
        self.assertLessEqual(count_colors(buffer.pixels), 16)

    def test_quantize_is_idempotent(self) -> None:
        buffer = PixelBuffer(noisy_rgba(50, 50, seed=3))
        quantize(buffer, 32, 500)
        first = buffer.pixels.copy()
        quantize(buffer, 32, 500)
        self.assertTrue(np.array_equal(buffer.pixels, first))

    def test_transparent_pixels_are_left_alone(self) -> None:
        pixels = noisy_rgba(40, 40)
        pixels[:10, :, 3] = 0
        hidden = pixels[:10].copy()
        buffer = PixelBuffer(pixels)
        quantize(buffer, 8, 400)
        self.assertTrue(np.array_equal(buffer.pixels[:10], hidden))
        self.assertLessEqual(count_colors(buffer.pixels), 8)

    def test_images_within_limit_are_unchanged(self) -> None:
        pixels = np.zeros((10, 10, 4), dtype=np.uint8)
        pixels[:, :5] = (255, 0, 0, 255)
        pixels[:, 5:] = (0, 0, 255, 255)
        buffer = PixelBuffer(pixels.copy())
        quantize(buffer, 8, 100)
        self.assertTrue(np.array_equal(buffer.pixels, pixels))

    def test_fully_transparent_image_is_unchanged(self) -> None:
        pixels = noisy_rgba(16, 16)
        pixels[:, :, 3] = 0
        buffer = PixelBuffer(pixels.copy())
        quantize(buffer, 8, 100)
        self.assertTrue(np.array_equal(buffer.pixels, pixels))

    def test_gradient_keeps_alpha_and_shape(self) -> None:
        buffer = PixelBuffer(gradient_rgba(120, 90, alpha=200))
        quantize(buffer, 16, 5000)
        self.assertEqual(buffer.pixels.shape, (90, 120, 4))
        self.assertTrue((buffer.pixels[:, :, 3] == 200).all())
        self.assertLessEqual(count_colors(buffer.pixels), 16)


class TestSamplingAndRemap(unittest.TestCase):
    def test_sample_uses_stride_and_skips_transparent(self) -> None:
        pixels = noisy_rgba(10, 10)
        pixels[0, 0, 3] = 0
        colors = sample_colors(PixelBuffer(pixels), 25)
        # stride 4 visits 25 pixels, the first of which is transparent
        self.assertEqual(colors.size, 24)

    def test_nearest_prefers_first_on_ties(self) -> None:
        palette = np.array([0x000000, 0x020202], dtype=np.int32)
        self.assertEqual(nearest_palette_colors(np.array([0x010101]), palette).tolist(), [0x000000])

    def test_remap_snaps_to_palette(self) -> None:
        pixels = np.zeros((2, 2, 4), dtype=np.uint8)
        pixels[..., 3] = 255
        pixels[0, 0, :3] = (250, 5, 5)
        pixels[1, 1, :3] = (5, 5, 240)
        buffer = PixelBuffer(pixels)
        remap_to_palette(buffer, np.array([0xFF0000, 0x0000FF, 0x000000], dtype=np.int32))
        self.assertEqual(buffer.pixels[0, 0, :3].tolist(), [255, 0, 0])
        self.assertEqual(buffer.pixels[1, 1, :3].tolist(), [0, 0, 255])
        self.assertEqual(buffer.pixels[0, 1, :3].tolist(), [0, 0, 0])


if __name__ == "__main__":
    unittest.main()
