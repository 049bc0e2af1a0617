"""Shared test fixtures for visual matcher tests."""

import io

import cv2
import httpx
import numpy as np
import pytest
from PIL import Image
from torch import nn

from visual_matcher.embedder import Backbone, FeatureExtractor
from visual_matcher.fetcher import ImageFetcher


def encode_png(image_np: np.ndarray) -> bytes:
    """Encode an RGB uint8 array as PNG bytes."""
    ok, buf = cv2.imencode(".png", cv2.cvtColor(image_np, cv2.COLOR_RGB2BGR))
    assert ok
    return buf.tobytes()


def encode_pil(image_np: np.ndarray, fmt: str, mode: str = None) -> bytes:
    image = Image.fromarray(image_np)
    if mode:
        image = image.convert(mode)
    buf = io.BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


def tiny_model() -> nn.Module:
    """Deterministic stand-in backbone: 4x4 average pool per channel -> 48d."""
    return nn.Sequential(nn.AdaptiveAvgPool2d(4), nn.Flatten())


def mock_fetcher(images: dict, calls: list = None) -> ImageFetcher:
    """
    ImageFetcher backed by an in-memory URL -> bytes map.

    Unknown URLs fail as an unresolvable host. Requested URLs are appended
    to ``calls`` when given.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if calls is not None:
            calls.append(url)
        if url not in images:
            raise httpx.ConnectError("[Errno -2] Name or service not known", request=request)
        return httpx.Response(200, content=images[url])

    return ImageFetcher(transport=httpx.MockTransport(handler))


@pytest.fixture
def red_square_image():
    """Generate a 200x200 red square on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[40:160, 40:160] = [200, 30, 30]
    return img


@pytest.fixture
def blue_circle_image():
    """Generate a 200x200 blue circle on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    cv2.circle(img, (100, 100), 60, (30, 30, 200), -1)
    return img


@pytest.fixture
def noise_image():
    """Generate a 200x200 random noise image."""
    rng = np.random.RandomState(42)
    return rng.randint(0, 255, (200, 200, 3), dtype=np.uint8)


@pytest.fixture
def red_square_png(red_square_image):
    return encode_png(red_square_image)


@pytest.fixture
def blue_circle_png(blue_circle_image):
    return encode_png(blue_circle_image)


@pytest.fixture
def backbone():
    handle = Backbone(model_factory=tiny_model, device="cpu")
    handle.init()
    yield handle
    handle.dispose()


@pytest.fixture
def extractor(backbone):
    return FeatureExtractor(backbone)
