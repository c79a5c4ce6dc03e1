"""Hybrid semantic + keyword scoring."""

from typing import Optional

from storage.models import HybridSearchWeights, ScoredMatch
from utils.errors import NegativeWeightError, WeightSumError


WEIGHT_SUM_TOLERANCE = 1e-6

_DEFAULT_SEMANTIC = 0.7
_DEFAULT_KEYWORD = 0.3


def get_default_weights() -> HybridSearchWeights:
    """Return the default weights (semantic 0.7, keyword 0.3)."""
    return HybridSearchWeights(semantic=_DEFAULT_SEMANTIC, keyword=_DEFAULT_KEYWORD)


def validate_weights(weights: HybridSearchWeights) -> bool:
    """
    Check weights are non-negative and sum to 1.0.

    Returns:
        True when the weights are usable

    Raises:
        NegativeWeightError: If either weight is below zero
        WeightSumError: If the weights do not sum to 1.0 within tolerance
    """
    if weights.semantic < 0 or weights.keyword < 0:
        raise NegativeWeightError(
            f"Weights cannot be negative (semantic: {weights.semantic}, "
            f"keyword: {weights.keyword})"
        )

    total = weights.semantic + weights.keyword
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise WeightSumError(
            f"Weights must sum to 1.0, got {total:.4f} "
            f"(semantic: {weights.semantic}, keyword: {weights.keyword})"
        )

    return True


def calculate_hybrid_score(
    semantic_score: Optional[float],
    keyword_score: Optional[float],
    weights: Optional[HybridSearchWeights] = None
) -> ScoredMatch:
    """
    Combine a semantic and a keyword score into one ranking value.

    Weights are validated before anything else. With both scores present the
    result is the weighted sum. A score found by only one lane is returned as
    is, without weighting. With neither present the score is 0.

    Args:
        semantic_score: Vector similarity, or None if the semantic lane missed
        keyword_score: Lexical match score, or None if the keyword lane missed
        weights: Component weights (defaults to 0.7 / 0.3)

    Returns:
        ScoredMatch carrying the inputs and the final score
    """
    if weights is None:
        weights = get_default_weights()
    validate_weights(weights)

    if semantic_score is None and keyword_score is None:
        final_score = 0.0
    elif semantic_score is None:
        final_score = keyword_score
    elif keyword_score is None:
        final_score = semantic_score
    else:
        final_score = weights.semantic * semantic_score + weights.keyword * keyword_score

    return ScoredMatch(
        final_score=final_score,
        semantic_score=semantic_score,
        keyword_score=keyword_score,
        weights=weights
    )


def keyword_score(query: str, text: str) -> Optional[float]:
    """
    Fraction of distinct query terms that occur in the text (case-insensitive).

    Returns None when no term occurs, so a match the keyword lane did not find
    is scored on semantics alone.
    """
    terms = {term for term in query.lower().split() if term}
    if not terms:
        return None

    haystack = text.lower()
    hits = sum(1 for term in terms if term in haystack)
    if hits == 0:
        return None

    return hits / len(terms)
