"""
Visual product matcher engine.

Owns the long-lived resources (backbone, HTTP client, store) and exposes
the inbound entry points used by the transport layer:

    extract_features(bytes)          -> FeatureVector
    extract_features_from_url(url)   -> FeatureVector
    find_similar_products(vector)    -> ranked SearchResults

Errors from the caller's own query image propagate with a user-facing
message (``exc.user_message``). Errors from individual catalog products
are absorbed by the index.
"""

import os
import asyncio
import logging
from typing import List, Optional

import numpy as np

from .catalog import ProductCatalog
from .embedder import Backbone, FeatureExtractor
from .exceptions import FetchError, VisualMatcherError
from .fetcher import ImageFetcher
from .histograms import extract_color_histogram
from .index import DEFAULT_MIN_SIMILARITY, ProductIndex
from .models import ColorHistogram, SearchResult
from .store import KeyValueStore, RedisStore

logger = logging.getLogger(__name__)

SEARCH_COLOR_BLEND = os.environ.get("SEARCH_COLOR_BLEND", "0").lower() in ("1", "true", "yes")


class SearchEngine:
    """
    Visual product search engine.

    Usage:
        async with SearchEngine() as engine:
            results = await engine.search_by_url("https://...")
    """

    def __init__(self,
                 store: KeyValueStore = None,
                 catalog: ProductCatalog = None,
                 fetcher: ImageFetcher = None,
                 backbone: Backbone = None,
                 with_color: bool = None,
                 max_concurrency: int = None):
        """
        Args:
            store: Key-value store. Defaults to Redis at REDIS_URL.
            catalog: Product catalog. Defaults to one over ``store``.
            fetcher: Image downloader. Defaults to a new httpx client.
            backbone: Feature backbone handle. Defaults to MobileNetV3-Small.
            with_color: Blend color histograms into scores
                (default from SEARCH_COLOR_BLEND).
            max_concurrency: Products resolved in parallel per search.
        """
        self.store = store or RedisStore()
        self.catalog = catalog or ProductCatalog(self.store)
        self.fetcher = fetcher or ImageFetcher()
        self.backbone = backbone or Backbone()
        self.extractor = FeatureExtractor(self.backbone)
        self.with_color = SEARCH_COLOR_BLEND if with_color is None else with_color
        self.index = ProductIndex(
            self.catalog, self.store, self.extractor, self.fetcher,
            with_color=self.with_color, max_concurrency=max_concurrency,
        )

    async def start(self) -> None:
        """Check the store connection and load the backbone."""
        await self.store.ping()
        await asyncio.to_thread(self.backbone.init)
        logger.info("Search engine ready")

    async def close(self) -> None:
        self.backbone.dispose()
        await self.fetcher.aclose()
        await self.store.aclose()

    async def __aenter__(self) -> "SearchEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def extract_features(self, image_bytes: bytes) -> np.ndarray:
        """
        Query vector from uploaded image bytes.

        Raises:
            DecodeError, ModelError.
        """
        return await asyncio.to_thread(self.extractor.extract, image_bytes)

    async def extract_features_from_url(self, image_url: str) -> np.ndarray:
        """
        Query vector from a remote image.

        Raises:
            FetchError subclasses, DecodeError, UnsupportedFormatError, ModelError.
        """
        image_bytes = await self._fetch_query(image_url)
        return await self.extract_features(image_bytes)

    async def find_similar_products(self,
                                    query_vector,
                                    min_similarity: float = DEFAULT_MIN_SIMILARITY,
                                    query_histogram: Optional[ColorHistogram] = None
                                    ) -> List[SearchResult]:
        return await self.index.find_similar(
            query_vector, min_similarity=min_similarity, query_histogram=query_histogram
        )

    async def search_by_image(self, image_bytes: bytes,
                              min_similarity: float = DEFAULT_MIN_SIMILARITY
                              ) -> List[SearchResult]:
        """Extract the query features from bytes and rank the catalog."""
        query_vector = await self.extract_features(image_bytes)
        query_histogram = None
        if self.with_color:
            query_histogram = await asyncio.to_thread(extract_color_histogram, image_bytes)
        return await self.find_similar_products(query_vector, min_similarity, query_histogram)

    async def search_by_url(self, image_url: str,
                            min_similarity: float = DEFAULT_MIN_SIMILARITY
                            ) -> List[SearchResult]:
        image_bytes = await self._fetch_query(image_url)
        return await self.search_by_image(image_bytes, min_similarity)

    async def _fetch_query(self, image_url: str) -> bytes:
        try:
            return await self.fetcher.fetch(image_url)
        except VisualMatcherError as e:
            logger.error(f"Error processing image from URL {image_url}: {e}")
            raise
        except Exception as e:
            logger.error(f"Error processing image from URL {image_url}: {e}")
            raise FetchError(f"Failed to process image: {e}") from e
