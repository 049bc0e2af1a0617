"""
Typed records for products, cached features and search results.

Products and feature entries are persisted as JSON blobs in the key-value
store. All (de)serialization happens here so the rest of the package only
handles typed values.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional

import numpy as np

HISTOGRAM_BINS = 256


class ColorHistogram(NamedTuple):
    """Per-channel intensity distribution; each channel sums to 1.0."""

    red: np.ndarray
    green: np.ndarray
    blue: np.ndarray

    def to_dict(self) -> Dict[str, List[float]]:
        return {"r": self.red.tolist(), "g": self.green.tolist(), "b": self.blue.tolist()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ColorHistogram":
        if not isinstance(data, dict):
            raise ValueError("Histogram must be an object with 'r', 'g' and 'b' channels")
        channels = []
        for key in ("r", "g", "b"):
            values = data.get(key)
            if not isinstance(values, list) or len(values) != HISTOGRAM_BINS:
                raise ValueError(f"Histogram channel '{key}' must have {HISTOGRAM_BINS} buckets")
            try:
                channels.append(freeze(np.asarray(values, dtype=np.float64)))
            except TypeError as e:
                raise ValueError(f"Histogram channel '{key}' must contain only numbers: {e}") from e
        return cls(*channels)


def freeze(array: np.ndarray) -> np.ndarray:
    """Mark an array read-only and return it."""
    array.setflags(write=False)
    return array


def as_feature_vector(values) -> np.ndarray:
    """Convert any 1-D numeric sequence into a read-only float32 vector."""
    vector = np.array(values, dtype=np.float32).reshape(-1)
    return freeze(vector)


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    category: str
    image_url: str
    price: float = 0.0
    description: str = ""
    created_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "price": self.price,
            "description": self.description,
            "imageUrl": self.image_url,
        }
        if self.created_at:
            data["createdAt"] = self.created_at
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        try:
            return cls(
                id=str(data["id"]),
                name=data.get("name", ""),
                category=data.get("category", ""),
                image_url=data.get("imageUrl") or data["image_url"],
                price=data.get("price", 0.0),
                description=data.get("description", ""),
                created_at=data.get("createdAt"),
            )
        except KeyError as e:
            raise ValueError(f"Product record missing field {e}") from e


def dump_products(products: List[Product]) -> str:
    return json.dumps([p.to_dict() for p in products])


def load_products(blob: Optional[str]) -> List[Product]:
    if not blob:
        return []
    records = json.loads(blob)
    if not isinstance(records, list):
        raise ValueError("Product catalog must be a JSON array")
    return [Product.from_dict(r) for r in records]


@dataclass(frozen=True, eq=False)
class FeatureEntry:
    """Cached features for one product. Never invalidated once stored."""

    features: np.ndarray
    histogram: Optional[ColorHistogram] = None

    @property
    def dim(self) -> int:
        return int(self.features.shape[0])

    def dumps(self) -> str:
        data = {"features": self.features.tolist()}
        if self.histogram is not None:
            data["histogram"] = self.histogram.to_dict()
        return json.dumps(data)

    @classmethod
    def loads(cls, blob: str) -> "FeatureEntry":
        """
        Parse a stored entry.

        Accepts either ``{"features": [...], "histogram": {...}}`` or a
        bare JSON array of floats (features only).
        """
        data = json.loads(blob)
        if isinstance(data, list):
            data = {"features": data}
        if not isinstance(data, dict) or not isinstance(data.get("features"), list):
            raise ValueError("Feature entry must be an array or an object with 'features'")

        histogram = None
        if data.get("histogram") is not None:
            histogram = ColorHistogram.from_dict(data["histogram"])
        try:
            features = as_feature_vector(data["features"])
        except TypeError as e:
            raise ValueError(f"Feature vector must contain only numbers: {e}") from e
        return cls(features=features, histogram=histogram)


@dataclass(frozen=True)
class SearchResult:
    product: Product
    similarity: float
    match_percentage: int
    score: float = field(default=0.0, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        data = self.product.to_dict()
        data["similarity"] = self.similarity
        data["matchPercentage"] = self.match_percentage
        return data

