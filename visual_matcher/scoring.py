"""
Similarity scoring for visual matching.

Two signals feed the final score:
    - cosine similarity between backbone feature vectors
    - color similarity: mean of per-channel cosines between RGB histograms

The blend is fixed at 80% features / 20% color. A missing histogram on
either side contributes 0 to the color term; the 0.2 weight still applies.
"""

import logging
import math
from typing import List, Optional

import faiss
import numpy as np

from .exceptions import DimensionMismatchError
from .models import ColorHistogram, SearchResult

logger = logging.getLogger(__name__)

FEATURE_WEIGHT = 0.8
COLOR_WEIGHT = 0.2


def cosine_similarity(vector_a, vector_b) -> float:
    """
    Cosine of the angle between two vectors.

    Returns 0.0 if either vector is None or has zero norm.

    Raises:
        DimensionMismatchError: If the vectors have different lengths.
    """
    if vector_a is None or vector_b is None:
        return 0.0

    a = np.asarray(vector_a, dtype=np.float64).reshape(-1)
    b = np.asarray(vector_b, dtype=np.float64).reshape(-1)
    if a.shape[0] != b.shape[0]:
        raise DimensionMismatchError(
            f"Vector length {a.shape[0]} doesn't match {b.shape[0]}"
        )

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


def color_similarity(histogram_a: Optional[ColorHistogram],
                     histogram_b: Optional[ColorHistogram]) -> float:
    """Unweighted mean of the red, green and blue channel cosines."""
    if histogram_a is None or histogram_b is None:
        return 0.0
    sims = [cosine_similarity(a, b) for a, b in zip(histogram_a, histogram_b)]
    return sum(sims) / 3


def combined_similarity(features_a, features_b,
                        histogram_a: Optional[ColorHistogram] = None,
                        histogram_b: Optional[ColorHistogram] = None) -> float:
    """Blend feature and color similarity: 0.8 * features + 0.2 * color."""
    feature_sim = cosine_similarity(features_a, features_b)
    return blend(feature_sim, color_similarity(histogram_a, histogram_b))


def blend(feature_sim: float, color_sim: float) -> float:
    return FEATURE_WEIGHT * feature_sim + COLOR_WEIGHT * color_sim


def cosine_scores(query: np.ndarray, vectors: np.ndarray) -> np.ndarray:
    """
    Cosine similarity of a query against every row of a matrix.

    Exact brute-force inner-product scan over L2-normalized vectors with a
    FAISS flat index. Zero-norm rows (and a zero-norm query) score 0.

    Args:
        query: 1-D float vector of length d.
        vectors: (n, d) matrix of candidate vectors.

    Returns:
        Float array of n scores, in row order.

    Raises:
        DimensionMismatchError: If the query length doesn't match d.
    """
    query = np.array(query, dtype=np.float32).reshape(1, -1)
    vectors = np.array(vectors, dtype=np.float32)

    if vectors.size == 0:
        return np.zeros(0, dtype=np.float32)
    if vectors.ndim != 2 or query.shape[1] != vectors.shape[1]:
        raise DimensionMismatchError(
            f"Query dimension {query.shape[1]} doesn't match "
            f"index dimension {vectors.shape[-1]}"
        )

    # normalize_L2 leaves zero rows untouched, so they score 0
    faiss.normalize_L2(query)
    faiss.normalize_L2(vectors)

    index = faiss.IndexFlatIP(vectors.shape[1])
    index.add(vectors)
    distances, indices = index.search(query, index.ntotal)

    scores = np.zeros(index.ntotal, dtype=np.float32)
    scores[indices[0]] = distances[0]
    return np.clip(scores, -1.0, 1.0)


def round_similarity(score: float) -> float:
    """Round half-up to 2 decimals."""
    return math.floor(score * 100 + 0.5) / 100


def match_percentage(score: float) -> int:
    """Similarity as an integer percentage, rounded half-up."""
    return int(math.floor(score * 100 + 0.5))


def to_result(product, score: float) -> SearchResult:
    return SearchResult(
        product=product,
        similarity=round_similarity(score),
        match_percentage=match_percentage(score),
        score=float(score),
    )


def rank_results(results: List[SearchResult]) -> List[SearchResult]:
    """
    Sort search results by raw score, highest first.

    The sort is stable: equal scores keep corpus order.
    """
    return sorted(results, key=lambda r: -r.score)
