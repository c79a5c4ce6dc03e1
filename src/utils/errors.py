"""Custom exception classes for the research retrieval core."""


class ResearchRetrievalError(Exception):
    """Base exception for all research retrieval errors."""
    pass


class ValidationError(ResearchRetrievalError):
    """Raised when input validation fails. Never retried."""
    pass


class EmptyInputError(ValidationError):
    """Raised when text to embed is empty or whitespace only."""
    pass


class InputTooLongError(ValidationError):
    """Raised when text to embed exceeds the provider's safe input length."""

    def __init__(self, length: int, max_length: int):
        super().__init__(
            f"Text exceeds max length of {max_length} characters (got {length})"
        )
        self.length = length
        self.max_length = max_length


class DimensionMismatchError(ValidationError):
    """Raised when two vectors being compared have different lengths."""

    def __init__(self, left: int, right: int):
        super().__init__(f"Vector dimension mismatch: {left} vs {right}")
        self.left = left
        self.right = right


class InvalidDimensionsError(ValidationError):
    """Raised when a vector does not have the expected number of dimensions."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Expected {expected} dimensions, got {actual}")
        self.expected = expected
        self.actual = actual


class ZeroVectorError(ValidationError):
    """Raised when normalizing a vector of magnitude zero."""
    pass


class NegativeWeightError(ValidationError):
    """Raised when a hybrid search weight is negative."""
    pass


class WeightSumError(ValidationError):
    """Raised when hybrid search weights do not sum to 1.0."""
    pass


class ConfigurationError(ResearchRetrievalError):
    """Raised when configuration or credentials are invalid."""
    pass


class EmbeddingError(ResearchRetrievalError):
    """Raised when embedding generation fails."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class StorageError(ResearchRetrievalError):
    """Raised when storage operations fail."""
    pass


class RetrievalError(ResearchRetrievalError):
    """Raised when retrieval operations fail."""
    pass


class NotFoundError(ResearchRetrievalError):
    """Raised when a requested resource is not found."""
    pass
