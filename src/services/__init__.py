"""Services module for the research retrieval core."""

from services.embedding_service import EmbeddingService
from services.chunking_service import ChunkingService
from services.backfill_service import BackfillService
from services.retrieval_service import RetrievalService, highlight_query, group_by_source
from services.connection_service import (
    ConnectionService,
    discover_similar_sources,
    generate_connection_evidence,
    score_connection_strength
)
from services.hybrid_scoring import (
    calculate_hybrid_score,
    validate_weights,
    get_default_weights,
    keyword_score
)

__all__ = [
    "EmbeddingService",
    "ChunkingService",
    "BackfillService",
    "RetrievalService",
    "highlight_query",
    "group_by_source",
    "ConnectionService",
    "discover_similar_sources",
    "generate_connection_evidence",
    "score_connection_strength",
    "calculate_hybrid_score",
    "validate_weights",
    "get_default_weights",
    "keyword_score",
]
