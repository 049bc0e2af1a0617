"""
Deep feature extraction with a pretrained image-classification backbone.

The backbone is an expensive, process-wide resource with an explicit
lifecycle:
    init()     load weights, run one dummy forward pass (warm-up)
    dispose()  release the module and any cached device memory
    is_ready   True between a successful init() and dispose()

FeatureExtractor turns raw image bytes into a fixed-length float32 vector:
    1. Decode, drop alpha, cover-resize to 224x224
    2. Scale pixels to [0, 1] by dividing by 255
    3. Forward pass as a single-item batch, no gradients
    4. Flatten the output activations
"""

import os
import gc
import logging
import threading
from typing import Callable, Optional

import numpy as np
import torch
from torch import nn

from .exceptions import ModelError
from .models import as_feature_vector
from .preprocessing import load_rgb

logger = logging.getLogger(__name__)

INPUT_SIZE = 224

DEFAULT_DEVICE = os.environ.get(
    "BACKBONE_DEVICE", "cuda" if torch.cuda.is_available() else "cpu"
)


def mobilenet_backbone() -> nn.Module:
    """
    MobileNetV3-Small pretrained on ImageNet, final classifier layer removed.

    Output is the 1024-d penultimate activation.
    """
    from torchvision.models import mobilenet_v3_small, MobileNet_V3_Small_Weights

    model = mobilenet_v3_small(weights=MobileNet_V3_Small_Weights.IMAGENET1K_V1)
    model.classifier = nn.Sequential(*list(model.classifier.children())[:-1])
    return model


class Backbone:
    """Owned handle around the pretrained network."""

    def __init__(self,
                 model_factory: Optional[Callable[[], nn.Module]] = None,
                 device: str = None):
        self.model_factory = model_factory or mobilenet_backbone
        self.device = torch.device(device or DEFAULT_DEVICE)
        self.output_dim: Optional[int] = None
        self._model: Optional[nn.Module] = None
        self._lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self._model is not None

    def init(self) -> None:
        """Load weights and warm up. No-op if already initialized."""
        if self.is_ready:
            return

        with self._lock:
            if self._model is not None:
                return

            logger.info(f"Loading backbone on {self.device}")
            try:
                model = self.model_factory().to(self.device)
                model.eval()

                dummy = torch.zeros(1, 3, INPUT_SIZE, INPUT_SIZE, device=self.device)
                with torch.inference_mode():
                    warmup = model(dummy)
                self.output_dim = int(warmup.reshape(-1).shape[0])
                del dummy, warmup
            except Exception as e:
                logger.error(f"Failed to initialize backbone: {e}")
                raise ModelError(f"Failed to initialize backbone: {e}") from e

            self._model = model
            logger.info(f"Backbone ready: {self.output_dim}d output")

    def dispose(self) -> None:
        """Release the network. The handle can be re-initialized afterwards."""
        with self._lock:
            if self._model is None:
                return
            self._model = None
            self.output_dim = None
            gc.collect()
            if self.device.type == "cuda":
                torch.cuda.empty_cache()
            logger.info("Backbone disposed")

    def forward(self, batch: torch.Tensor) -> torch.Tensor:
        """
        Run inference on a (N, 3, 224, 224) float batch.

        Raises:
            ModelError: If the backbone is not initialized or inference fails.
        """
        model = self._model
        if model is None:
            raise ModelError("Backbone is not initialized")
        try:
            with torch.inference_mode():
                return model(batch.to(self.device))
        except RuntimeError as e:
            raise ModelError(f"Inference failed: {e}") from e


class FeatureExtractor:
    """Stateless transform from image bytes to a FeatureVector."""

    def __init__(self, backbone: Backbone):
        self.backbone = backbone

    def extract(self, image_bytes: bytes) -> np.ndarray:
        """
        Extract a deep feature vector from raw image bytes.

        Raises:
            DecodeError: If the bytes are not a decodable raster image.
            ModelError: If the backbone is not ready or inference fails.

        Returns:
            Read-only float32 vector of backbone output length.
        """
        if not self.backbone.is_ready:
            raise ModelError("Backbone is not initialized")

        pixels = load_rgb(image_bytes, INPUT_SIZE, cover=True)

        batch = None
        output = None
        try:
            # HWC uint8 -> 1xCxHxW float in [0, 1]
            batch = torch.from_numpy(pixels).permute(2, 0, 1).float().div(255.0).unsqueeze(0)
            output = self.backbone.forward(batch)
            return as_feature_vector(output.detach().cpu().reshape(-1).numpy())
        finally:
            del batch, output, pixels
