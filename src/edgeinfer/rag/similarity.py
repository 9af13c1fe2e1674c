"""Cosine similarity and brute-force ranking."""
from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Dot product over the product of norms; 0.0 when either norm is zero."""

    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    if left.shape != right.shape:
        raise ValueError(f"Vector dimensions differ: {left.shape} vs {right.shape}")
    denominator = float(np.linalg.norm(left)) * float(np.linalg.norm(right))
    if denominator == 0.0:
        return 0.0
    return float(np.dot(left, right) / denominator)


def rank_by_similarity(
    query_vector: Sequence[float],
    items: Sequence[T],
    embedding_of: Callable[[T], Optional[Sequence[float]]],
    top_k: int,
) -> List[Tuple[T, float]]:
    """Score every item against the query and keep the ``top_k`` best.

    Items without an embedding, or with one of a different dimension, are
    skipped.
    """

    dimension = len(query_vector)
    scored: List[Tuple[T, float]] = []
    skipped = 0
    for item in items:
        embedding = embedding_of(item)
        if not embedding:
            continue
        if len(embedding) != dimension:
            skipped += 1
            continue
        scored.append((item, cosine_similarity(query_vector, embedding)))
    if skipped:
        LOGGER.warning("Skipped %s chunks whose embedding dimension differs from %s", skipped, dimension)
    scored.sort(key=lambda pair: pair[1], reverse=True)
    return scored[: max(top_k, 0)]


__all__ = ["cosine_similarity", "rank_by_similarity"]
