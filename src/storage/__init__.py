"""Storage module for the research retrieval core."""

from storage.postgres_client import PostgresClient
from storage.embedding_store import EmbeddingStore, vector_literal
from storage.models import (
    EmbeddingRecord,
    EmbeddingResult,
    BatchEmbeddingItem,
    BatchEmbeddingResult,
    BackfillConfig,
    BackfillResult,
    ChunkBackfillResult,
    HybridSearchWeights,
    ScoredMatch,
    SummaryRecord,
    SourceContent,
    ContentChunk,
    SourceEmbedding,
    ChunkMatch,
    SummaryMatch,
    SearchRequest,
    ChunkSearchResult,
    GroupedSearchResults,
    EnhancedSearchResponse,
    ConnectionCandidate
)

__all__ = [
    "PostgresClient",
    "EmbeddingStore",
    "vector_literal",
    "EmbeddingRecord",
    "EmbeddingResult",
    "BatchEmbeddingItem",
    "BatchEmbeddingResult",
    "BackfillConfig",
    "BackfillResult",
    "ChunkBackfillResult",
    "HybridSearchWeights",
    "ScoredMatch",
    "SummaryRecord",
    "SourceContent",
    "ContentChunk",
    "SourceEmbedding",
    "ChunkMatch",
    "SummaryMatch",
    "SearchRequest",
    "ChunkSearchResult",
    "GroupedSearchResults",
    "EnhancedSearchResponse",
    "ConnectionCandidate",
]
