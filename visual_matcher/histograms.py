"""
RGB color histogram extraction.

Produces a per-channel 256-bucket intensity distribution from a downsized
copy of the image. Only coarse color distribution matters here, so the
image is resized directly to 100x100 (no crop, aspect ratio ignored).

The histogram is a soft signal: decode failures return None instead of
raising, and the scorer treats a missing histogram as zero color similarity.
"""

import logging
from typing import Optional

import cv2
import numpy as np

from .exceptions import DecodeError
from .models import ColorHistogram, HISTOGRAM_BINS, freeze
from .preprocessing import decode_image, normalize_image, resize_plain

logger = logging.getLogger(__name__)

HISTOGRAM_SIZE = (100, 100)


def histogram_from_array(image_np: np.ndarray) -> ColorHistogram:
    """
    Compute the normalized per-channel histogram of an RGB image.

    Args:
        image_np: RGB uint8 image of any size (resized to 100x100 first).

    Returns:
        ColorHistogram whose channels each sum to 1.0.
    """
    image_np = normalize_image(image_np)
    small = resize_plain(image_np, HISTOGRAM_SIZE)
    h, w = small.shape[:2]
    total_pixels = float(w * h)

    channels = []
    for c in range(3):
        hist = cv2.calcHist([small], [c], None, [HISTOGRAM_BINS], [0, 256])
        channels.append(freeze(hist.flatten().astype(np.float64) / total_pixels))

    return ColorHistogram(*channels)


def extract_color_histogram(image_bytes: bytes) -> Optional[ColorHistogram]:
    """
    Extract a color histogram from raw image bytes.

    Returns:
        ColorHistogram, or None if the image cannot be decoded.
    """
    try:
        return histogram_from_array(decode_image(image_bytes))
    except (DecodeError, cv2.error) as e:
        logger.error(f"Color histogram extraction failed: {e}")
        return None
