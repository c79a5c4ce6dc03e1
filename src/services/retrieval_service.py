"""Chunk-level search with highlighting, grouping by document and ranking."""

import logging
import re
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from services.embedding_service import EmbeddingService
from services.hybrid_scoring import calculate_hybrid_score, keyword_score
from storage.embedding_store import EmbeddingStore
from storage.models import (
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_SEARCH_THRESHOLD,
    SEARCH_MODES,
    ChunkMatch,
    ChunkSearchResult,
    ContentChunk,
    EmbeddingRecord,
    EnhancedSearchResponse,
    GroupedSearchResults,
    HybridSearchWeights,
    SearchRequest,
    SourceRecord,
    SummaryMatch,
    SummaryRecord,
)
from utils.errors import RetrievalError, StorageError, ValidationError
from utils.vector_math import validate_dimensions


logger = logging.getLogger("research-retrieval.retrieval")

HIGHLIGHT_MAX_LENGTH = 300
HIGHLIGHT_BEFORE = 100
HIGHLIGHT_AFTER = 200
ELLIPSIS = "..."
MARK_OPEN = "<mark>"
MARK_CLOSE = "</mark>"


def highlight_query(content: str, query: str) -> str:
    """
    Wrap every query term found in content in <mark> tags.

    Terms are the whitespace-separated words of the query, matched
    case-insensitively as literal text. Highlighted text longer than 300
    characters is cut to a window around the first highlight, with "..."
    marking each cut side. Text without any highlight is returned whole.
    """
    terms = sorted({t for t in query.lower().split() if t}, key=len, reverse=True)
    if not terms:
        return content

    pattern = re.compile("|".join(re.escape(t) for t in terms), re.IGNORECASE)
    highlighted = pattern.sub(lambda m: f"{MARK_OPEN}{m.group(0)}{MARK_CLOSE}", content)

    mark_index = highlighted.find(MARK_OPEN)
    if mark_index == -1 or len(highlighted) <= HIGHLIGHT_MAX_LENGTH:
        return highlighted

    start = max(0, mark_index - HIGHLIGHT_BEFORE)
    end = min(len(highlighted), mark_index + HIGHLIGHT_AFTER)

    window = highlighted[start:end]
    if start > 0:
        window = ELLIPSIS + window
    if end < len(highlighted):
        window = window + ELLIPSIS
    return window


def group_by_source(results: Sequence[ChunkSearchResult]) -> List[GroupedSearchResults]:
    """
    Bucket results by parent document, keeping first-seen order.

    Each group's best_score is the highest relevance_score among its results
    and total_matches the number of results in the bucket.
    """
    groups: Dict[str, GroupedSearchResults] = {}

    for result in results:
        source_id = result.source.id
        group = groups.get(source_id)
        if group is None:
            groups[source_id] = GroupedSearchResults(
                source=result.source,
                summary=None,
                chunks=[result],
                best_score=result.relevance_score,
                total_matches=1
            )
            continue

        group.chunks.append(result)
        group.total_matches += 1
        group.best_score = max(group.best_score, result.relevance_score)

    return list(groups.values())


def _group_limit(mode: str, limit: int) -> int:
    if mode == "hybrid":
        return max(1, limit // 2)
    return limit


class RetrievalService:
    """Search over content chunks or document summaries."""

    def __init__(
        self,
        embedding_service: EmbeddingService,
        store: EmbeddingStore,
        weights: Optional[HybridSearchWeights] = None,
        max_limit: int = 50,
        default_limit: int = DEFAULT_SEARCH_LIMIT,
        default_threshold: float = DEFAULT_SEARCH_THRESHOLD
    ):
        """
        Initialize retrieval service.

        Args:
            embedding_service: Embedding service for query embeddings
            store: Nearest-neighbor search over chunks and summaries
            weights: Hybrid scoring weights (defaults to 0.7 / 0.3)
            max_limit: Largest accepted result limit
            default_limit: Limit used when a request leaves it unset
            default_threshold: Threshold used when a request leaves it unset
        """
        self.embedding_service = embedding_service
        self.store = store
        self.weights = weights
        self.max_limit = max_limit
        self.default_limit = default_limit
        self.default_threshold = default_threshold

    def search(self, request: SearchRequest, user_id: Optional[str] = None) -> EnhancedSearchResponse:
        """
        Validate a search request, embed its query and run the search.

        A request without a limit or threshold gets the service defaults.

        Raises:
            ValidationError: Invalid request (checked before any provider call)
            EmbeddingError: Query embedding failed
            RetrievalError: Store search failed
        """
        request = self._apply_defaults(request)
        self._validate_request(request)

        query_embedding = self.embedding_service.generate_embedding(
            EmbeddingRecord(text=request.query, type="query", normalize=True)
        ).vector

        return self.search_with_embedding(
            query=request.query,
            mode=request.mode,
            limit=request.limit,
            threshold=request.threshold,
            query_embedding=query_embedding,
            user_id=user_id,
            collection_id=request.collection_id
        )

    def search_with_embedding(
        self,
        query: str,
        mode: str,
        limit: int,
        threshold: float,
        query_embedding: List[float],
        user_id: Optional[str] = None,
        collection_id: Optional[str] = None
    ) -> EnhancedSearchResponse:
        """
        Search with a precomputed query embedding.

        Chunk and hybrid modes over-fetch 2 * limit chunk matches, since
        grouping collapses several chunks of one document. Groups are ranked
        by best_score (ties keep the store's order); hybrid mode keeps the top
        limit // 2 groups, other modes the top limit. The kept groups' results
        are flattened and truncated to limit.

        Args:
            query: Raw query text (used for highlighting and keyword scoring)
            mode: "chunks", "summaries" or "hybrid"
            limit: Maximum flattened results
            threshold: Minimum similarity passed to the store
            query_embedding: Query vector, sized to the embedding service's dimensions
            user_id: Restrict to one owner's documents
            collection_id: Restrict to one collection

        Returns:
            EnhancedSearchResponse with ranked results and their groups

        Raises:
            ValidationError: Unknown mode, or a query vector of the wrong length
            RetrievalError: Store search failed
        """
        if mode not in SEARCH_MODES:
            raise ValidationError(
                f"Invalid search mode: {mode!r}. Must be one of: {', '.join(SEARCH_MODES)}"
            )
        validate_dimensions(query_embedding, self.embedding_service.dimensions)

        summaries: Dict[str, SummaryRecord] = {}

        try:
            if mode == "summaries":
                summary_matches = self.store.match_summaries(
                    query_embedding, threshold, limit, user_id, collection_id
                )
                results = []
                for match in summary_matches:
                    results.append(self._summary_result(match, query))
                    summaries.setdefault(match.source_id, _summary_record(match))
            else:
                chunk_matches = self.store.match_content_chunks(
                    query_embedding, threshold, limit * 2, user_id, collection_id
                )
                results = [self._chunk_result(match, query) for match in chunk_matches]
        except StorageError as e:
            logger.error(f"Search failed: mode={mode}, error={e}")
            raise RetrievalError(f"Search failed: {e}") from e

        if mode == "hybrid":
            self._apply_hybrid_scores(results, query)

        grouped = group_by_source(results)
        for group in grouped:
            group.summary = summaries.get(group.source.id)

        grouped.sort(key=lambda g: g.best_score, reverse=True)
        kept = grouped[:_group_limit(mode, limit)]

        flat = [result for group in kept for result in group.chunks][:limit]

        logger.info(
            f"Search complete: mode={mode}, matches={len(results)}, "
            f"groups={len(grouped)}, kept_groups={len(kept)}, returned={len(flat)}"
        )

        return EnhancedSearchResponse(
            results=flat,
            total=len(flat),
            search_mode=mode,
            grouped_by_source=kept
        )

    def _apply_defaults(self, request: SearchRequest) -> SearchRequest:
        changes = {}
        if request.limit is None:
            changes["limit"] = self.default_limit
        if request.threshold is None:
            changes["threshold"] = self.default_threshold
        return replace(request, **changes) if changes else request

    def _validate_request(self, request: SearchRequest) -> None:
        if not request.query or not request.query.strip():
            raise ValidationError("Query cannot be empty")
        if request.mode not in SEARCH_MODES:
            raise ValidationError(
                f"Invalid search mode: {request.mode!r}. "
                f"Must be one of: {', '.join(SEARCH_MODES)}"
            )
        if not 1 <= request.limit <= self.max_limit:
            raise ValidationError(
                f"limit must be between 1 and {self.max_limit}, got {request.limit}"
            )
        if not 0.0 <= request.threshold <= 1.0:
            raise ValidationError(
                f"threshold must be between 0 and 1, got {request.threshold}"
            )

    def _apply_hybrid_scores(self, results: List[ChunkSearchResult], query: str) -> None:
        """Re-score results with the hybrid scorer and stably re-sort them."""
        for result in results:
            scored = calculate_hybrid_score(
                result.relevance_score,
                keyword_score(query, result.chunk.content),
                self.weights
            )
            result.relevance_score = scored.final_score
        results.sort(key=lambda r: r.relevance_score, reverse=True)

    @staticmethod
    def _chunk_result(match: ChunkMatch, query: str) -> ChunkSearchResult:
        return ChunkSearchResult(
            chunk=ContentChunk(
                id=match.chunk_id,
                source_id=match.source_id,
                chunk_index=match.chunk_index,
                content=match.content,
                metadata=match.metadata
            ),
            source=SourceRecord(
                id=match.source_id,
                title=match.source_title,
                user_id=match.user_id,
                content_type=match.source_content_type,
                url=match.source_url,
                created_at=match.source_created_at
            ),
            relevance_score=match.similarity,
            highlighted_content=highlight_query(match.content, query)
        )

    @staticmethod
    def _summary_result(match: SummaryMatch, query: str) -> ChunkSearchResult:
        return ChunkSearchResult(
            chunk=ContentChunk(
                id=match.summary_id,
                source_id=match.source_id,
                chunk_index=0,
                content=match.summary_text,
                metadata={"type": "summary", "key_topics": list(match.key_topics)}
            ),
            source=SourceRecord(
                id=match.source_id,
                title=match.title,
                user_id=match.user_id,
                content_type=match.content_type,
                url=match.url,
                created_at=match.created_at
            ),
            relevance_score=match.similarity,
            highlighted_content=highlight_query(match.summary_text, query)
        )


def _summary_record(match: SummaryMatch) -> SummaryRecord:
    return SummaryRecord(
        id=match.summary_id,
        source_id=match.source_id,
        summary_text=match.summary_text,
        key_topics=list(match.key_topics),
        user_id=match.user_id
    )
