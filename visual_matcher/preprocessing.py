"""
Image preprocessing pipeline for visual matching.

Handles decoding raw bytes into RGB pixel grids, alpha removal, and the
two resize modes used downstream:
    - cover: scale to fill the target square, then center-crop (backbone input)
    - plain: direct resize ignoring aspect ratio (color histogram input)
"""

import io
import logging
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from .exceptions import DecodeError

logger = logging.getLogger(__name__)

# Formats accepted from remote URLs (Pillow format names)
ALLOWED_FORMATS = frozenset({"JPEG", "PNG", "WEBP", "GIF", "TIFF"})


def open_image(image_bytes: bytes) -> Image.Image:
    """
    Open and fully load an image from raw bytes.

    Raises:
        DecodeError: If the bytes are empty or not a decodable raster image.
    """
    if not image_bytes:
        raise DecodeError("Empty image buffer")
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Could not decode image: {e}") from e
    return image


def detect_format(image_bytes: bytes) -> str:
    """Return the decoded container format name (e.g. 'JPEG', 'PNG')."""
    image = open_image(image_bytes)
    return image.format or ""


def decode_image(image_bytes: bytes) -> np.ndarray:
    """
    Decode image bytes into an RGB uint8 array, dropping any alpha channel.

    Palette, grayscale and CMYK images are converted to RGB. Alpha is
    discarded without compositing against a background.

    Returns:
        Array of shape (H, W, 3), dtype uint8.
    """
    image = open_image(image_bytes)
    try:
        rgb = image.convert("RGB")
    except (OSError, ValueError) as e:
        raise DecodeError(f"Could not convert image to RGB: {e}") from e
    return normalize_image(np.asarray(rgb))


def normalize_image(image_np: np.ndarray) -> np.ndarray:
    """Ensure image is contiguous uint8 RGB with exactly 3 channels."""
    if image_np.dtype != np.uint8:
        if image_np.max() <= 1.0:
            image_np = (image_np * 255).astype(np.uint8)
        else:
            image_np = image_np.astype(np.uint8)
    if image_np.ndim == 2:
        image_np = cv2.cvtColor(image_np, cv2.COLOR_GRAY2RGB)
    elif image_np.shape[2] == 4:
        image_np = image_np[:, :, :3]
    return np.ascontiguousarray(image_np)


def resize_cover(image_np: np.ndarray, size: int) -> np.ndarray:
    """
    Resize to a size x size square using a cover fit.

    The shorter side is scaled to ``size`` (preserving aspect ratio) and
    the overflow on the longer side is cropped equally from both ends.
    No letterboxing.
    """
    h, w = image_np.shape[:2]
    scale = max(size / w, size / h)
    new_w = max(size, int(round(w * scale)))
    new_h = max(size, int(round(h * scale)))

    interpolation = cv2.INTER_AREA if scale < 1.0 else cv2.INTER_LINEAR
    resized = cv2.resize(image_np, (new_w, new_h), interpolation=interpolation)

    x1 = (new_w - size) // 2
    y1 = (new_h - size) // 2
    return resized[y1:y1 + size, x1:x1 + size]


def resize_plain(image_np: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """Resize to (width, height) without preserving aspect ratio."""
    h, w = image_np.shape[:2]
    interpolation = cv2.INTER_AREA if size[0] < w or size[1] < h else cv2.INTER_LINEAR
    return cv2.resize(image_np, size, interpolation=interpolation)


def load_rgb(image_bytes: bytes, size: int, cover: bool = True) -> np.ndarray:
    """Decode and resize in one step. Returns (size, size, 3) uint8."""
    image_np = decode_image(image_bytes)
    if cover:
        return resize_cover(image_np, size)
    return resize_plain(image_np, (size, size))
