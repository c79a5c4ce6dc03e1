"""Connection discovery between documents by summary-embedding similarity."""

import logging
import math
from typing import List, Optional

from storage.embedding_store import EmbeddingStore
from storage.models import CONNECTION_TYPES, ConnectionCandidate, SourceEmbedding
from utils.errors import ValidationError
from utils.vector_math import cosine_similarity


logger = logging.getLogger("research-retrieval.connections")


def _percent(value: float) -> int:
    """Round a [0, 1] fraction to a whole percentage, halves rounding up."""
    return int(math.floor(value * 100 + 0.5))


def discover_similar_sources(
    source_id: str,
    candidate_pool: List[SourceEmbedding],
    threshold: float = 0.7,
    limit: int = 10
) -> List[ConnectionCandidate]:
    """
    Find documents whose embedding is close to the given document's.

    Args:
        source_id: Document to find connections for
        candidate_pool: Documents to compare against (may include source_id)
        threshold: Minimum cosine similarity to keep a candidate
        limit: Maximum candidates returned

    Returns:
        Candidates ordered by strength descending; empty when source_id has
        no embedding in the pool
    """
    source = next(
        (c for c in candidate_pool if c.source_id == source_id and c.embedding),
        None
    )
    if source is None:
        logger.debug(f"No embedding for source {source_id}, nothing to discover")
        return []

    candidates = []
    for other in candidate_pool:
        if other.source_id == source_id or not other.embedding:
            continue

        similarity = cosine_similarity(source.embedding, other.embedding)
        if similarity < threshold:
            continue

        candidates.append(ConnectionCandidate(
            source_id=other.source_id,
            strength=min(1.0, max(0.0, similarity)),
            evidence=f"{_percent(similarity)}% semantic similarity based on content analysis"
        ))

    candidates.sort(key=lambda c: c.strength, reverse=True)
    return candidates[:limit]


def generate_connection_evidence(
    connection_type: str,
    strength: float,
    details: Optional[str] = None
) -> str:
    """Human-readable evidence text for a connection."""
    if connection_type == "similar":
        return f"{_percent(strength)}% semantic similarity. {details or ''}".strip()
    if connection_type == "contradicts":
        return details or "Sources present conflicting viewpoints"
    if connection_type == "cites":
        return details or "Citation relationship detected"
    if connection_type == "extends":
        return details or "This source builds upon or extends the other"
    if connection_type == "refutes":
        return details or "This source challenges or refutes the other"
    return "Related sources"


def score_connection_strength(
    connection_type: str,
    semantic_similarity: Optional[float] = None,
    has_shared_concepts: bool = False,
    citation_relationship: bool = False
) -> float:
    """
    Score a connection in [0, 1] from its type and supporting signals.

    Citations are definitive (1.0), contradictions 0.8, extends/refutes 0.6.
    Similar connections use the semantic similarity, or 0.5 without one.
    Shared concepts add 0.1 and a citation relationship adds 0.2, capped at 1.0.
    """
    if connection_type not in CONNECTION_TYPES:
        raise ValidationError(
            f"Invalid connection type: {connection_type!r}. "
            f"Must be one of: {', '.join(CONNECTION_TYPES)}"
        )

    if connection_type == "similar":
        score = semantic_similarity or 0.5
    elif connection_type == "cites":
        score = 1.0
    elif connection_type == "contradicts":
        score = 0.8
    else:
        score = 0.6

    if has_shared_concepts:
        score = min(1.0, score + 0.1)
    if citation_relationship:
        score = min(1.0, score + 0.2)

    return score


class ConnectionService:
    """Discovers and records "similar" connections for one owner's documents."""

    def __init__(self, store: EmbeddingStore):
        self.store = store

    def discover_connections(
        self,
        source_id: str,
        user_id: str,
        threshold: float = 0.7,
        limit: int = 10
    ) -> List[ConnectionCandidate]:
        """
        Discover and persist new similar-document connections.

        Args:
            source_id: Document to connect from
            user_id: Owner whose documents form the candidate pool
            threshold: Minimum cosine similarity
            limit: Maximum candidates considered

        Returns:
            Newly discovered connections (already-stored ones are left out)
        """
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError(f"threshold must be between 0 and 1, got {threshold}")
        if limit < 1:
            raise ValidationError(f"limit must be at least 1, got {limit}")

        pool = self.store.fetch_source_embeddings(user_id)
        candidates = discover_similar_sources(source_id, pool, threshold, limit)
        if not candidates:
            logger.info(f"No connections discovered: source_id={source_id}")
            return []

        existing = self.store.fetch_connected_source_ids(
            source_id, "similar", [c.source_id for c in candidates]
        )
        new_candidates = [c for c in candidates if c.source_id not in existing]

        if new_candidates:
            self.store.insert_connections(source_id, new_candidates, connection_type="similar")

        logger.info(
            f"Connections discovered: source_id={source_id}, pool={len(pool)}, "
            f"matched={len(candidates)}, new={len(new_candidates)}"
        )
        return new_candidates
