"""
Product feature cache and ranked similarity search.

For every query the whole catalog is scanned:
    1. Look up each product's cached FeatureEntry in the store
    2. On a miss, fetch the product image, extract features, persist them
    3. Score every resolved product against the query
    4. Keep scores >= min_similarity, sort descending, return the top 20

A product whose image can't be fetched or processed is logged and skipped;
it never fails the search. Cached entries are never invalidated, so a
changed product image keeps its old vector until the entry is deleted.

Concurrent searches that miss the same product both compute and store it.
The computation is deterministic, so the second write is harmless.
"""

import os
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .catalog import ProductCatalog
from .embedder import FeatureExtractor
from .exceptions import DimensionMismatchError, StoreError
from .fetcher import ImageFetcher
from .histograms import extract_color_histogram
from .models import ColorHistogram, FeatureEntry, Product, SearchResult
from .scoring import blend, color_similarity, cosine_scores, rank_results, to_result
from .store import KeyValueStore

logger = logging.getLogger(__name__)

FEATURES_PREFIX = "features:"
MAX_RESULTS = 20
DEFAULT_MIN_SIMILARITY = 0.1
SEARCH_MAX_CONCURRENCY = int(os.environ.get("SEARCH_MAX_CONCURRENCY", "4"))


def features_key(product_id: str) -> str:
    return f"{FEATURES_PREFIX}{product_id}"


@dataclass
class ProductOutcome:
    """Result of resolving one product's features: an entry or an error."""

    product: Product
    entry: Optional[FeatureEntry] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.entry is not None


class ProductIndex:
    def __init__(self,
                 catalog: ProductCatalog,
                 store: KeyValueStore,
                 extractor: FeatureExtractor,
                 fetcher: ImageFetcher,
                 with_color: bool = False,
                 max_concurrency: int = None):
        """
        Args:
            catalog: Source of the product corpus.
            store: Persistent map holding cached feature entries.
            extractor: Feature extractor with an initialized backbone.
            fetcher: Downloader for product images.
            with_color: Also compute and cache color histograms on a miss.
            max_concurrency: Products resolved in parallel (1 = sequential).
        """
        self.catalog = catalog
        self.store = store
        self.extractor = extractor
        self.fetcher = fetcher
        self.with_color = with_color
        self.max_concurrency = max(1, max_concurrency or SEARCH_MAX_CONCURRENCY)

    async def get_features(self, product_id: str) -> Optional[FeatureEntry]:
        """Read a cached entry. Read errors and bad payloads count as a miss."""
        try:
            blob = await self.store.get(features_key(product_id))
        except StoreError as e:
            logger.error(f"Error getting features for product {product_id}: {e}")
            return None
        if blob is None:
            return None
        try:
            return FeatureEntry.loads(blob)
        except ValueError as e:
            logger.warning(f"Discarding unreadable features for product {product_id}: {e}")
            return None

    async def store_features(self, product_id: str, entry: FeatureEntry) -> bool:
        """Persist an entry. Failures are logged, never raised."""
        try:
            await self.store.set(features_key(product_id), entry.dumps())
            return True
        except StoreError as e:
            logger.error(f"Error storing features for product {product_id}: {e}")
            return False

    async def compute_features(self, product: Product) -> FeatureEntry:
        """
        Fetch a product image and extract its features.

        Raises:
            FetchError, DecodeError, UnsupportedFormatError, ModelError.
        """
        image_bytes = await self.fetcher.fetch(product.image_url)
        features = await asyncio.to_thread(self.extractor.extract, image_bytes)
        histogram = None
        if self.with_color:
            histogram = await asyncio.to_thread(extract_color_histogram, image_bytes)
        return FeatureEntry(features=features, histogram=histogram)

    async def resolve(self, product: Product) -> ProductOutcome:
        """Cached entry, or compute and persist one. Never raises."""
        entry = await self.get_features(product.id)
        if entry is not None:
            logger.debug(f"Feature cache hit: {product.id}")
            return ProductOutcome(product, entry=entry)

        logger.info(f"Extracting features for product: {product.name}")
        try:
            entry = await self.compute_features(product)
        except Exception as e:
            return ProductOutcome(product, error=e)

        await self.store_features(product.id, entry)
        return ProductOutcome(product, entry=entry)

    async def resolve_all(self, products: List[Product]) -> List[ProductOutcome]:
        """Resolve every product with bounded concurrency, in corpus order."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(product: Product) -> ProductOutcome:
            async with semaphore:
                return await self.resolve(product)

        return list(await asyncio.gather(*(_bounded(p) for p in products)))

    async def find_similar(self,
                           query_vector,
                           min_similarity: float = DEFAULT_MIN_SIMILARITY,
                           query_histogram: Optional[ColorHistogram] = None
                           ) -> List[SearchResult]:
        """
        Rank catalog products by similarity to a query vector.

        Args:
            query_vector: FeatureVector of the query image.
            min_similarity: Products scoring below this are dropped.
            query_histogram: When given, scores blend 80% feature cosine
                with 20% color similarity (0 for products without a
                cached histogram).

        Returns:
            At most 20 SearchResults, highest similarity first.
        """
        query = np.asarray(query_vector, dtype=np.float32).reshape(-1)
        products = await self.catalog.get_all_products()
        if not products:
            return []

        outcomes = await self.resolve_all(products)

        resolved = []
        for outcome in outcomes:
            if outcome.ok and outcome.entry.dim != query.shape[0]:
                outcome.error = DimensionMismatchError(
                    f"Query dimension {query.shape[0]} doesn't match "
                    f"cached dimension {outcome.entry.dim}"
                )
                outcome.entry = None
            if outcome.ok:
                resolved.append(outcome)
            else:
                logger.warning(
                    f"Skipping product {outcome.product.id}: {outcome.error}"
                )

        if not resolved:
            logger.info("Found 0 similar products")
            return []

        matrix = np.vstack([o.entry.features for o in resolved])
        scores = cosine_scores(query, matrix)

        results = []
        for outcome, feature_sim in zip(resolved, scores):
            score = float(feature_sim)
            if query_histogram is not None:
                score = blend(score, color_similarity(query_histogram, outcome.entry.histogram))
            if score >= min_similarity:
                results.append(to_result(outcome.product, score))

        results = rank_results(results)[:MAX_RESULTS]

        logger.info(
            f"Search complete: {len(products)} products, "
            f"{len(outcomes) - len(resolved)} skipped -> {len(results)} results"
        )
        return results

    async def clear_features(self, products: List[Product]) -> None:
        for product in products:
            await self.store.delete(features_key(product.id))
