"""Utilities module for the research retrieval core."""

from utils.errors import (
    ResearchRetrievalError,
    ValidationError,
    EmptyInputError,
    InputTooLongError,
    DimensionMismatchError,
    InvalidDimensionsError,
    ZeroVectorError,
    NegativeWeightError,
    WeightSumError,
    ConfigurationError,
    EmbeddingError,
    StorageError,
    RetrievalError,
    NotFoundError
)
from utils.logging import setup_logging, StructuredLogger
from utils.vector_math import (
    DEFAULT_DIMENSIONS,
    dot_product,
    magnitude,
    cosine_similarity,
    normalize_vector,
    euclidean_distance,
    validate_dimensions
)

__all__ = [
    "ResearchRetrievalError",
    "ValidationError",
    "EmptyInputError",
    "InputTooLongError",
    "DimensionMismatchError",
    "InvalidDimensionsError",
    "ZeroVectorError",
    "NegativeWeightError",
    "WeightSumError",
    "ConfigurationError",
    "EmbeddingError",
    "StorageError",
    "RetrievalError",
    "NotFoundError",
    "setup_logging",
    "StructuredLogger",
    "DEFAULT_DIMENSIONS",
    "dot_product",
    "magnitude",
    "cosine_similarity",
    "normalize_vector",
    "euclidean_distance",
    "validate_dimensions",
]
