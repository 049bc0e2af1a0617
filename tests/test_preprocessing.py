"""Tests for image decoding and resizing."""

import numpy as np
import pytest

from visual_matcher.exceptions import DecodeError
from visual_matcher.preprocessing import (
    decode_image, detect_format, load_rgb, normalize_image, resize_cover, resize_plain,
)

from conftest import encode_pil, encode_png


class TestDecodeImage:

    def test_png_roundtrip_pixels(self, red_square_image, red_square_png):
        decoded = decode_image(red_square_png)
        assert decoded.shape == (200, 200, 3)
        assert decoded.dtype == np.uint8
        assert np.array_equal(decoded, red_square_image)

    def test_alpha_channel_dropped(self, red_square_image):
        rgba_png = encode_pil(red_square_image, "PNG", mode="RGBA")
        decoded = decode_image(rgba_png)
        assert decoded.shape == (200, 200, 3)

    def test_grayscale_becomes_rgb(self, red_square_image):
        gray_png = encode_pil(red_square_image, "PNG", mode="L")
        decoded = decode_image(gray_png)
        assert decoded.shape == (200, 200, 3)
        assert np.array_equal(decoded[:, :, 0], decoded[:, :, 1])

    def test_garbage_raises(self):
        with pytest.raises(DecodeError):
            decode_image(b"definitely not an image")

    def test_empty_raises(self):
        with pytest.raises(DecodeError):
            decode_image(b"")

    def test_detect_format(self, red_square_image, red_square_png):
        assert detect_format(red_square_png) == "PNG"
        assert detect_format(encode_pil(red_square_image, "JPEG")) == "JPEG"


class TestResize:

    def test_cover_output_square(self):
        wide = np.zeros((200, 300, 3), dtype=np.uint8)
        assert resize_cover(wide, 224).shape == (224, 224, 3)

    def test_cover_crops_instead_of_letterboxing(self):
        wide = np.zeros((200, 300, 3), dtype=np.uint8)
        wide[:, :] = [0, 200, 0]
        wide[:, :40] = [0, 0, 255]
        wide[:, 260:] = [0, 0, 255]

        out = resize_cover(wide, 224)

        # Edge strips are cropped away; borders show the center color
        assert np.all(out[:, 0] == [0, 200, 0])
        assert np.all(out[:, -1] == [0, 200, 0])

    def test_cover_upscales_small_images(self):
        tiny = np.full((10, 20, 3), 90, dtype=np.uint8)
        out = resize_cover(tiny, 224)
        assert out.shape == (224, 224, 3)
        assert np.all(out == 90)

    def test_plain_ignores_aspect_ratio(self):
        tall = np.zeros((300, 50, 3), dtype=np.uint8)
        assert resize_plain(tall, (100, 100)).shape == (100, 100, 3)

    def test_load_rgb_cover(self, red_square_png):
        assert load_rgb(red_square_png, 224).shape == (224, 224, 3)

    def test_normalize_float_image(self):
        img = np.ones((5, 5, 3), dtype=np.float32)
        out = normalize_image(img)
        assert out.dtype == np.uint8
        assert np.all(out == 255)

    def test_normalize_drops_alpha(self):
        img = np.zeros((5, 5, 4), dtype=np.uint8)
        assert normalize_image(img).shape == (5, 5, 3)
