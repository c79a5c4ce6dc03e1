"""
Postgres + pgvector persistence for embeddings.

Covers the narrow store interface the retrieval core needs: scanning records
that lack an embedding, writing vectors back, counting coverage, nearest
neighbor search over chunks and summaries, and source connections.

Expected schema (owned outside this package):
    sources(id, user_id, title, content_type, url, created_at, original_content)
    summaries(id, source_id, summary_text, key_topics text[], embedding vector)
    content_chunks(id, source_id, chunk_index, content, embedding vector, metadata jsonb)
    collection_sources(collection_id, source_id)
    source_connections(source_a_id, source_b_id, connection_type, strength,
                       evidence, auto_generated)
and the SQL functions match_content_chunks / match_summaries taking
(query_embedding, match_threshold, match_count, p_user_id, p_collection_id).
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Set

import psycopg2
from psycopg2.extras import Json

from storage.models import (
    ChunkMatch,
    ConnectionCandidate,
    ContentChunk,
    SourceContent,
    SourceEmbedding,
    SummaryMatch,
    SummaryRecord,
    parse_vector,
)
from storage.postgres_client import PostgresClient
from utils.errors import NotFoundError, StorageError


logger = logging.getLogger("research-retrieval.store")


def vector_literal(vector: Sequence[float]) -> str:
    """Format a vector as a pgvector text literal."""
    return "[" + ",".join(repr(float(x)) for x in vector) + "]"


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except psycopg2.Error as e:
        logger.error(f"Store operation failed: operation={operation}, error={e}")
        raise StorageError(f"Failed to {operation}: {e}") from e


class EmbeddingStore:
    """Embedding persistence and nearest-neighbor queries over Postgres."""

    def __init__(self, pg_client: PostgresClient):
        self.pg_client = pg_client

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def fetch_summaries_for_embedding(
        self,
        limit: int,
        after_id: Optional[str] = None,
        user_id: Optional[str] = None,
        only_missing: bool = True
    ) -> List[SummaryRecord]:
        """
        Scan summaries in id order, starting after after_id.

        Args:
            limit: Maximum rows to return
            after_id: Keyset cursor (last id of the previous scan)
            user_id: Restrict to one owner's sources
            only_missing: Only summaries whose embedding is null

        Returns:
            Summary records without their embeddings
        """
        query = """
            SELECT s.id, s.source_id, s.summary_text, s.key_topics, src.user_id
            FROM summaries s
            JOIN sources src ON src.id = s.source_id
            WHERE (%s IS NULL OR s.id > %s)
              AND (%s IS NULL OR src.user_id = %s)
              AND (NOT %s OR s.embedding IS NULL)
            ORDER BY s.id
            LIMIT %s
        """
        with _storage_errors("scan summaries"):
            rows = self.pg_client.fetch_all(
                query, (after_id, after_id, user_id, user_id, only_missing, limit)
            )

        return [
            SummaryRecord(
                id=str(row["id"]),
                source_id=str(row["source_id"]),
                summary_text=row.get("summary_text") or "",
                key_topics=list(row.get("key_topics") or []),
                user_id=None if row.get("user_id") is None else str(row["user_id"])
            )
            for row in rows
        ]

    def count_summaries(self, with_embedding: bool, user_id: Optional[str] = None) -> int:
        """Count summaries whose embedding is (or is not) null."""
        condition = "s.embedding IS NOT NULL" if with_embedding else "s.embedding IS NULL"
        query = f"""
            SELECT COUNT(*) AS total
            FROM summaries s
            JOIN sources src ON src.id = s.source_id
            WHERE {condition}
              AND (%s IS NULL OR src.user_id = %s)
        """
        with _storage_errors("count summaries"):
            return int(self.pg_client.fetch_val(query, (user_id, user_id)) or 0)

    def store_summary_embedding(self, summary_id: str, vector: Sequence[float]) -> None:
        """
        Write an embedding onto a summary.

        Raises:
            NotFoundError: If no summary has this id
            StorageError: If the write fails
        """
        with _storage_errors("store summary embedding"):
            updated = self.pg_client.execute(
                "UPDATE summaries SET embedding = %s::vector WHERE id = %s",
                (vector_literal(vector), summary_id)
            )
        if updated == 0:
            raise NotFoundError(f"Summary {summary_id} not found")

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def fetch_chunks_for_embedding(
        self,
        limit: int,
        after_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> List[ContentChunk]:
        """Scan chunks with a null embedding in id order, starting after after_id."""
        query = """
            SELECT c.id, c.source_id, c.chunk_index, c.content, c.metadata
            FROM content_chunks c
            JOIN sources src ON src.id = c.source_id
            WHERE c.embedding IS NULL
              AND (%s IS NULL OR c.id > %s)
              AND (%s IS NULL OR src.user_id = %s)
            ORDER BY c.id
            LIMIT %s
        """
        with _storage_errors("scan chunks"):
            rows = self.pg_client.fetch_all(
                query, (after_id, after_id, user_id, user_id, limit)
            )

        return [
            ContentChunk(
                id=str(row["id"]),
                source_id=str(row["source_id"]),
                chunk_index=int(row["chunk_index"]),
                content=row.get("content") or "",
                metadata=dict(row.get("metadata") or {})
            )
            for row in rows
        ]

    def count_chunks(self, with_embedding: bool, user_id: Optional[str] = None) -> int:
        """Count chunks whose embedding is (or is not) null."""
        condition = "c.embedding IS NOT NULL" if with_embedding else "c.embedding IS NULL"
        query = f"""
            SELECT COUNT(*) AS total
            FROM content_chunks c
            JOIN sources src ON src.id = c.source_id
            WHERE {condition}
              AND (%s IS NULL OR src.user_id = %s)
        """
        with _storage_errors("count chunks"):
            return int(self.pg_client.fetch_val(query, (user_id, user_id)) or 0)

    def fetch_sources_without_chunks(
        self,
        limit: int,
        after_id: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> List[SourceContent]:
        """Scan text sources that have no chunks yet, in id order after after_id."""
        query = """
            SELECT src.id, src.original_content, src.content_type, src.user_id
            FROM sources src
            WHERE NOT EXISTS (
                SELECT 1 FROM content_chunks c WHERE c.source_id = src.id
            )
              AND src.original_content IS NOT NULL
              AND src.content_type IS DISTINCT FROM 'image'
              AND (%s IS NULL OR src.id::text > %s)
              AND (%s IS NULL OR src.user_id = %s)
            ORDER BY src.id::text
            LIMIT %s
        """
        with _storage_errors("scan unchunked sources"):
            rows = self.pg_client.fetch_all(
                query, (after_id, after_id, user_id, user_id, limit)
            )

        return [
            SourceContent(
                id=str(row["id"]),
                content=row.get("original_content") or "",
                content_type=row.get("content_type"),
                user_id=None if row.get("user_id") is None else str(row["user_id"])
            )
            for row in rows
        ]

    def insert_chunks(self, chunks: Sequence[ContentChunk]) -> int:
        """
        Insert a document's chunks in one transaction, with or without embeddings.

        Returns:
            Rows written
        """
        if not chunks:
            return 0

        query = """
            INSERT INTO content_chunks (id, source_id, chunk_index, content, embedding, metadata)
            VALUES (%s, %s, %s, %s, %s::vector, %s)
        """
        params = [
            (
                chunk.id,
                chunk.source_id,
                chunk.chunk_index,
                chunk.content,
                None if chunk.embedding is None else vector_literal(chunk.embedding),
                Json(chunk.metadata)
            )
            for chunk in chunks
        ]
        with _storage_errors("insert chunks"):
            return self.pg_client.execute_many(query, params)

    def store_chunk_embedding(self, chunk_id: str, vector: Sequence[float]) -> None:
        """
        Write an embedding onto a chunk.

        Raises:
            NotFoundError: If no chunk has this id
            StorageError: If the write fails
        """
        with _storage_errors("store chunk embedding"):
            updated = self.pg_client.execute(
                "UPDATE content_chunks SET embedding = %s::vector WHERE id = %s",
                (vector_literal(vector), chunk_id)
            )
        if updated == 0:
            raise NotFoundError(f"Chunk {chunk_id} not found")

    # ------------------------------------------------------------------
    # Nearest-neighbor search
    # ------------------------------------------------------------------

    def match_content_chunks(
        self,
        query_embedding: Sequence[float],
        threshold: float,
        match_count: int,
        user_id: Optional[str] = None,
        collection_id: Optional[str] = None
    ) -> List[ChunkMatch]:
        """Chunks at or above the similarity threshold, most similar first."""
        query = """
            SELECT * FROM match_content_chunks(
                %s::vector, %s, %s, %s, %s
            )
        """
        with _storage_errors("match content chunks"):
            rows = self.pg_client.fetch_all(
                query,
                (vector_literal(query_embedding), threshold, match_count, user_id, collection_id)
            )
        return [ChunkMatch.from_row(row) for row in rows]

    def match_summaries(
        self,
        query_embedding: Sequence[float],
        threshold: float,
        match_count: int,
        user_id: Optional[str] = None,
        collection_id: Optional[str] = None
    ) -> List[SummaryMatch]:
        """Summaries at or above the similarity threshold, most similar first."""
        query = """
            SELECT * FROM match_summaries(
                %s::vector, %s, %s, %s, %s
            )
        """
        with _storage_errors("match summaries"):
            rows = self.pg_client.fetch_all(
                query,
                (vector_literal(query_embedding), threshold, match_count, user_id, collection_id)
            )
        return [SummaryMatch.from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def fetch_source_embeddings(self, user_id: str) -> List[SourceEmbedding]:
        """All of an owner's sources with their first summary's embedding (or None)."""
        query = """
            SELECT DISTINCT ON (src.id)
                src.id AS source_id, src.title, s.embedding::text AS embedding
            FROM sources src
            LEFT JOIN summaries s ON s.source_id = src.id
            WHERE src.user_id = %s
            ORDER BY src.id, s.embedding IS NULL, s.id
        """
        with _storage_errors("fetch source embeddings"):
            rows = self.pg_client.fetch_all(query, (user_id,))

        return [
            SourceEmbedding(
                source_id=str(row["source_id"]),
                title=row.get("title") or "",
                embedding=parse_vector(row.get("embedding"))
            )
            for row in rows
        ]

    def fetch_connected_source_ids(
        self,
        source_id: str,
        connection_type: str,
        candidate_ids: List[str]
    ) -> Set[str]:
        """Subset of candidate_ids already connected from source_id with this type."""
        if not candidate_ids:
            return set()

        query = """
            SELECT source_b_id
            FROM source_connections
            WHERE source_a_id = %s
              AND connection_type = %s
              AND source_b_id::text = ANY(%s)
        """
        with _storage_errors("fetch connections"):
            rows = self.pg_client.fetch_all(
                query, (source_id, connection_type, list(candidate_ids))
            )
        return {str(row["source_b_id"]) for row in rows}

    def insert_connections(
        self,
        source_id: str,
        connections: List[ConnectionCandidate],
        connection_type: str = "similar"
    ) -> int:
        """Insert auto-generated connections from source_id. Returns rows written."""
        query = """
            INSERT INTO source_connections
                (source_a_id, source_b_id, connection_type, strength, evidence, auto_generated)
            VALUES (%s, %s, %s, %s, %s, TRUE)
        """
        params = [
            (source_id, c.source_id, connection_type, c.strength, c.evidence)
            for c in connections
        ]
        with _storage_errors("insert connections"):
            return self.pg_client.execute_many(query, params)
