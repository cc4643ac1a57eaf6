"""
Cosine similarity and exhaustive top-K search.

No index structure: every candidate is compared on every query, which is
fine while the item collection stays in the low thousands.
"""

import logging
import math
import time
from typing import Iterable

from lorekit.types import Item, SearchResult

logger = logging.getLogger(__name__)


class DimensionMismatchError(ValueError):
    """Query and candidate vectors have different lengths."""


class EmptyVectorError(ValueError):
    """A zero-length vector was passed to a similarity computation."""


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """
    Cosine of the angle between two vectors, in [-1, 1].

    Zero-norm vectors have no direction; their similarity is 0.
    """
    if len(a) != len(b):
        raise DimensionMismatchError(f"Vector dimension mismatch: {len(a)} vs {len(b)}")
    if not a:
        raise EmptyVectorError("Cannot calculate similarity of empty vectors")

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    denominator = math.sqrt(norm_a) * math.sqrt(norm_b)
    if denominator == 0:
        return 0.0
    return dot / denominator


def find_top_k(
    query_vector: list[float],
    candidates: Iterable[tuple[Item, list[float]]],
    k: int,
    threshold: float,
) -> list[SearchResult]:
    """
    Return at most k results whose similarity to the query is >= threshold,
    highest first.

    Negative cosine values are clamped to 0.0 so that every SearchResult
    carries a similarity in [0, 1]; boost arithmetic downstream relies on it.
    """
    if not query_vector:
        raise EmptyVectorError("Query vector is empty")

    start = time.perf_counter()
    scored = []
    compared = 0
    for item, vector in candidates:
        compared += 1
        similarity = cosine_similarity(query_vector, vector)
        if similarity < threshold:
            continue
        scored.append(SearchResult(item=item, similarity=max(similarity, 0.0)))

    scored.sort(key=lambda r: r.similarity, reverse=True)
    results = scored[:max(k, 0)]

    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.debug(
        "Similarity: %d results in %.1fms (compared %d items)",
        len(results), elapsed_ms, compared,
    )
    return results
