"""Data models for the research retrieval core."""

import json
from dataclasses import dataclass, field
from typing import Optional, List, Any, Dict, Tuple

from utils.errors import StorageError


EMBEDDING_TYPES = ("summary", "query")
SEARCH_MODES = ("chunks", "summaries", "hybrid")
DEFAULT_SEARCH_LIMIT = 20
DEFAULT_SEARCH_THRESHOLD = 0.7
CONNECTION_TYPES = ("similar", "contradicts", "cites", "extends", "refutes")


# ============================================================================
# Embedding Client
# ============================================================================

@dataclass(frozen=True)
class EmbeddingRecord:
    """Request to generate one embedding."""
    text: str
    type: str = "summary"
    normalize: bool = True


@dataclass(frozen=True)
class EmbeddingResult:
    """Result of a single embedding generation."""
    vector: List[float]
    model: str
    tokens: int
    dimensions: int


@dataclass(frozen=True)
class ProviderEmbedding:
    """Parsed embedding provider response."""
    vector: List[float]
    tokens: int
    model: str


@dataclass(frozen=True)
class BatchEmbeddingItem:
    """Outcome for one text of a batch: either an embedding or an error."""
    index: int
    embedding: Optional[List[float]] = None
    error: Optional[str] = None
    tokens: int = 0

    @classmethod
    def success(cls, index: int, result: EmbeddingResult) -> "BatchEmbeddingItem":
        return cls(index=index, embedding=result.vector, tokens=result.tokens)

    @classmethod
    def failure(cls, index: int, reason: str) -> "BatchEmbeddingItem":
        return cls(index=index, error=reason)

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class BatchEmbeddingResult:
    """Result of a batch embedding request."""
    results: List[BatchEmbeddingItem]
    successful: int
    failed: int
    total_tokens: int


# ============================================================================
# Backfill Service
# ============================================================================

@dataclass(frozen=True)
class BackfillConfig:
    """Options for one backfill run."""
    batch_size: int = 10
    dry_run: bool = False
    skip_existing: bool = True
    max_retries: int = 3
    user_id: Optional[str] = None
    timeout_seconds: Optional[float] = None


@dataclass(frozen=True)
class BackfillFailure:
    """A record whose embedding could not be generated or stored."""
    record_id: str
    error: str


@dataclass(frozen=True)
class BackfillResult:
    """Final report of a backfill run."""
    processed: int
    failed: int
    skipped: int
    duration_ms: int
    failures: Tuple[BackfillFailure, ...] = ()
    cancelled: bool = False


@dataclass(frozen=True)
class ChunkBackfillResult:
    """Final report of a chunk creation run."""
    sources_processed: int
    chunks_created: int
    chunks_embedded: int
    failed: int
    duration_ms: int
    failures: Tuple[BackfillFailure, ...] = ()


@dataclass
class BackfillProgress:
    """Counters accumulated while a backfill run is in flight."""
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    scanned: int = 0
    scan_cycles: int = 0
    cancelled: bool = False
    failures: List[BackfillFailure] = field(default_factory=list)

    def record_failure(self, record_id: str, error: str) -> None:
        self.failed += 1
        self.failures.append(BackfillFailure(record_id=record_id, error=error))

    def to_result(self, duration_ms: int) -> BackfillResult:
        return BackfillResult(
            processed=self.processed,
            failed=self.failed,
            skipped=self.skipped,
            duration_ms=max(0, duration_ms),
            failures=tuple(self.failures),
            cancelled=self.cancelled
        )


# ============================================================================
# Hybrid Scoring
# ============================================================================

@dataclass(frozen=True)
class HybridSearchWeights:
    """Weights for combining semantic and keyword scores."""
    semantic: float = 0.7
    keyword: float = 0.3


@dataclass(frozen=True)
class ScoredMatch:
    """Combined score of one match."""
    final_score: float
    semantic_score: Optional[float]
    keyword_score: Optional[float]
    weights: HybridSearchWeights


# ============================================================================
# Documents, summaries and chunks
# ============================================================================

@dataclass
class SourceRecord:
    """A stored document (research source)."""
    id: str
    title: str = ""
    user_id: Optional[str] = None
    content_type: Optional[str] = None
    url: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class SourceContent:
    """A document's full text, the input to chunk creation."""
    id: str
    content: str
    content_type: Optional[str] = None
    user_id: Optional[str] = None


@dataclass
class SummaryRecord:
    """Document-level summary, the unit the summary backfill embeds."""
    id: str
    source_id: str
    summary_text: str
    key_topics: List[str] = field(default_factory=list)
    embedding: Optional[List[float]] = None
    user_id: Optional[str] = None

    def embedding_text(self) -> str:
        """Summary text followed by its topics, space separated."""
        return " ".join([self.summary_text or "", *self.key_topics]).strip()


@dataclass
class ContentChunk:
    """A contiguous, non-overlapping span of a document's text."""
    id: str
    source_id: str
    chunk_index: int
    content: str
    embedding: Optional[List[float]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SourceEmbedding:
    """Candidate pool entry for connection discovery."""
    source_id: str
    embedding: Optional[List[float]]
    title: str = ""


# ============================================================================
# Nearest-neighbor rows (parsed at the store boundary)
# ============================================================================

def parse_vector(value: Any) -> Optional[List[float]]:
    """Parse a pgvector value ('[0.1,0.2]' text or a sequence) into floats."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not (text.startswith("[") and text.endswith("]")):
            raise StorageError(f"Malformed vector literal: {text[:40]!r}")
        body = text[1:-1].strip()
        if not body:
            return []
        try:
            return [float(x) for x in body.split(",")]
        except ValueError as e:
            raise StorageError(f"Malformed vector literal: {e}") from e
    return [float(x) for x in value]


def _parse_metadata(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError as e:
            raise StorageError(f"Malformed chunk metadata: {e}") from e
        if not isinstance(parsed, dict):
            raise StorageError(f"Chunk metadata is not an object: {value[:40]!r}")
        return parsed
    return dict(value)


def _require(row: Dict[str, Any], *keys: str) -> None:
    missing = [key for key in keys if row.get(key) is None]
    if missing:
        raise StorageError(f"Store row missing required fields: {', '.join(missing)}")


@dataclass(frozen=True)
class ChunkMatch:
    """One row of the match_content_chunks nearest-neighbor query."""
    chunk_id: str
    source_id: str
    chunk_index: int
    content: str
    similarity: float
    metadata: Dict[str, Any]
    source_title: str
    user_id: Optional[str] = None
    source_content_type: Optional[str] = None
    source_url: Optional[str] = None
    source_created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ChunkMatch":
        _require(row, "chunk_id", "source_id", "chunk_content")
        return cls(
            chunk_id=str(row["chunk_id"]),
            source_id=str(row["source_id"]),
            chunk_index=int(row.get("chunk_index") or 0),
            content=row["chunk_content"],
            similarity=float(row.get("similarity") or 0.0),
            metadata=_parse_metadata(row.get("chunk_metadata")),
            source_title=row.get("source_title") or "",
            user_id=_optional_str(row.get("user_id")),
            source_content_type=row.get("source_content_type"),
            source_url=row.get("source_url"),
            source_created_at=_optional_str(row.get("source_created_at"))
        )


@dataclass(frozen=True)
class SummaryMatch:
    """One row of the match_summaries nearest-neighbor query."""
    summary_id: str
    source_id: str
    summary_text: str
    similarity: float
    title: str
    key_topics: List[str] = field(default_factory=list)
    user_id: Optional[str] = None
    content_type: Optional[str] = None
    url: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SummaryMatch":
        _require(row, "summary_id", "source_id", "summary_text")
        return cls(
            summary_id=str(row["summary_id"]),
            source_id=str(row["source_id"]),
            summary_text=row["summary_text"],
            similarity=float(row.get("similarity") or 0.0),
            title=row.get("title") or "",
            key_topics=list(row.get("key_topics") or []),
            user_id=_optional_str(row.get("user_id")),
            content_type=row.get("content_type"),
            url=row.get("url"),
            created_at=_optional_str(row.get("created_at"))
        )


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


# ============================================================================
# Search
# ============================================================================

@dataclass(frozen=True)
class SearchRequest:
    """Caller-facing chunk search request. Unset limit and threshold take the service defaults."""
    query: str
    mode: str = "hybrid"
    limit: Optional[int] = None
    threshold: Optional[float] = None
    collection_id: Optional[str] = None


@dataclass
class ChunkSearchResult:
    """A single highlighted match."""
    chunk: ContentChunk
    source: SourceRecord
    relevance_score: float
    highlighted_content: str


@dataclass
class GroupedSearchResults:
    """All matches sharing one parent document."""
    source: SourceRecord
    summary: Optional[SummaryRecord]
    chunks: List[ChunkSearchResult]
    best_score: float
    total_matches: int


@dataclass
class EnhancedSearchResponse:
    """Search response returned to the HTTP layer."""
    results: List[ChunkSearchResult]
    total: int
    search_mode: str
    grouped_by_source: List[GroupedSearchResults]


# ============================================================================
# Connections
# ============================================================================

@dataclass(frozen=True)
class ConnectionCandidate:
    """A discovered connection to another document."""
    source_id: str
    strength: float
    evidence: str
