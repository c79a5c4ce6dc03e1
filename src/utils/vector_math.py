"""Vector operations on embedding vectors.

All functions are pure. Vectors are plain sequences of floats; results are
new lists and inputs are never modified.
"""

import math
from typing import List, Sequence

from utils.errors import (
    DimensionMismatchError,
    InvalidDimensionsError,
    ZeroVectorError,
)


DEFAULT_DIMENSIONS = 1536

Embedding = List[float]


def _check_same_length(a: Sequence[float], b: Sequence[float]) -> None:
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))


def dot_product(a: Sequence[float], b: Sequence[float]) -> float:
    """Sum of pairwise products. Raises DimensionMismatchError on unequal lengths."""
    _check_same_length(a, b)
    return math.fsum(x * y for x, y in zip(a, b))


def magnitude(v: Sequence[float]) -> float:
    """Euclidean norm of a vector."""
    return math.sqrt(math.fsum(x * x for x in v))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine of the angle between two vectors.

    The result lies in [-1, 1] and is not clamped. Embeddings from a single
    provider usually land in [0, 1], but callers must not rely on a floor of 0.
    A zero-magnitude operand has no direction and scores 0.0.

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    _check_same_length(a, b)

    mag_a = magnitude(a)
    mag_b = magnitude(b)
    if mag_a == 0 or mag_b == 0:
        return 0.0

    return dot_product(a, b) / (mag_a * mag_b)


def normalize_vector(v: Sequence[float]) -> Embedding:
    """
    Scale a vector to unit length.

    A vector that is already unit length comes back with identical components.

    Raises:
        ZeroVectorError: If the vector has zero magnitude
    """
    mag = magnitude(v)

    if mag == 0:
        raise ZeroVectorError("Cannot normalize zero vector")

    if mag == 1.0:
        return list(v)

    return [x / mag for x in v]


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Straight-line distance. Raises DimensionMismatchError on unequal lengths."""
    _check_same_length(a, b)
    return math.sqrt(math.fsum((x - y) ** 2 for x, y in zip(a, b)))


def validate_dimensions(v: Sequence[float], expected: int = DEFAULT_DIMENSIONS) -> bool:
    """
    Check a vector has the expected number of components.

    Returns:
        True when the length matches

    Raises:
        InvalidDimensionsError: Naming both the expected and actual count
    """
    if len(v) != expected:
        raise InvalidDimensionsError(expected, len(v))
    return True
