"""Backfill of missing embeddings and chunks for stored documents.

A run scans the store in keyset order, embeds each record one at a time and
writes the vector back. Records are processed sequentially to stay inside the
provider's per-caller rate limit. A record that fails is reported in the
result and never aborts the rest of the run.

Chunk creation follows the same scan loop over documents that have no
chunks yet, splitting each one and storing its chunks in one write.
"""

import logging
import time
from dataclasses import replace
from typing import Callable, List, Optional, Sequence

from services.chunking_service import ChunkingService
from services.embedding_service import EmbeddingService
from storage.embedding_store import EmbeddingStore
from storage.models import (
    BackfillConfig,
    BackfillFailure,
    BackfillProgress,
    BackfillResult,
    ChunkBackfillResult,
    ContentChunk,
    EmbeddingRecord,
    SourceContent,
    SummaryRecord,
)
from utils.errors import ConfigurationError, ResearchRetrievalError, ValidationError
from utils.logging import StructuredLogger


logger = logging.getLogger("research-retrieval.backfill")
events = StructuredLogger(logger)

MAX_BATCH_SIZE = 100
DEFAULT_CHUNK_BATCH_SIZE = 50


class BackfillService:
    """Keeps summary and chunk embeddings in step with the stored corpus."""

    def __init__(
        self,
        store: EmbeddingStore,
        embedding_service: EmbeddingService,
        max_batch_size: int = MAX_BATCH_SIZE,
        default_batch_size: int = 10,
        clock: Callable[[], float] = time.monotonic,
        chunking_service: Optional[ChunkingService] = None
    ):
        """
        Initialize backfill service.

        Args:
            store: Persistence for summaries and chunks
            embedding_service: Embedding client used for every record
            max_batch_size: Hard cap on records per scan
            default_batch_size: Batch size used when no config is passed
            clock: Monotonic clock (seconds) used for durations and deadlines
            chunking_service: Splitter used to create chunks for unchunked sources
        """
        self.store = store
        self.embedding_service = embedding_service
        self.max_batch_size = max_batch_size
        self.default_batch_size = default_batch_size
        self.clock = clock
        self.chunking_service = chunking_service

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def backfill_embeddings(self, config: Optional[BackfillConfig] = None) -> BackfillResult:
        """
        Embed every summary in scope that lacks an embedding.

        Scans batch_size records at a time until a scan comes back empty. In
        a dry run nothing is embedded or written; records that would be
        processed are reported as processed.

        Args:
            config: Run options (defaults: batch_size=10, skip_existing=True,
                max_retries=3)

        Returns:
            BackfillResult for the whole run
        """
        if config is None:
            config = BackfillConfig(batch_size=self.default_batch_size)
        config = self._resolve_config(config)
        started = self.clock()
        deadline = None
        if config.timeout_seconds is not None:
            deadline = started + config.timeout_seconds

        progress = BackfillProgress()
        if config.skip_existing:
            progress.skipped = self.store.count_summaries(
                with_embedding=True, user_id=config.user_id
            )

        logger.info(
            f"Summary backfill started: batch_size={config.batch_size}, "
            f"dry_run={config.dry_run}, skip_existing={config.skip_existing}, "
            f"user_id={config.user_id}"
        )

        cursor: Optional[str] = None
        while not progress.cancelled:
            records = self.store.fetch_summaries_for_embedding(
                limit=config.batch_size,
                after_id=cursor,
                user_id=config.user_id,
                only_missing=config.skip_existing
            )
            if not records:
                break

            progress.scan_cycles += 1
            progress.scanned += len(records)
            cursor = records[-1].id

            self._process_records(
                records,
                progress,
                config,
                deadline,
                derive_text=SummaryRecord.embedding_text,
                persist=self.store.store_summary_embedding
            )

        return self._finish("summary", progress, started)

    def get_pending_count(self, user_id: Optional[str] = None) -> int:
        """Number of summaries with a null embedding."""
        return self.store.count_summaries(with_embedding=False, user_id=user_id)

    def get_completed_count(self, user_id: Optional[str] = None) -> int:
        """Number of summaries with an embedding."""
        return self.store.count_summaries(with_embedding=True, user_id=user_id)

    def process_batch(self, size: int, user_id: Optional[str] = None) -> int:
        """
        Run one scan-and-process cycle over up to size unembedded summaries.

        Returns:
            Number of summaries embedded and stored
        """
        config = self._resolve_config(BackfillConfig(batch_size=size, user_id=user_id))
        records = self.store.fetch_summaries_for_embedding(
            limit=config.batch_size,
            user_id=config.user_id,
            only_missing=True
        )

        progress = BackfillProgress(scanned=len(records), scan_cycles=1)
        self._process_records(
            records,
            progress,
            config,
            None,
            derive_text=SummaryRecord.embedding_text,
            persist=self.store.store_summary_embedding
        )

        logger.info(
            f"Processed batch: scanned={len(records)}, "
            f"processed={progress.processed}, failed={progress.failed}"
        )
        return progress.processed

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def backfill_chunk_embeddings(
        self,
        batch_size: int = DEFAULT_CHUNK_BATCH_SIZE,
        user_id: Optional[str] = None,
        dry_run: bool = False
    ) -> BackfillResult:
        """
        Embed every content chunk that lacks an embedding.

        Same loop and failure isolation as backfill_embeddings, applied to
        chunk content.
        """
        config = self._resolve_config(
            BackfillConfig(batch_size=batch_size, user_id=user_id, dry_run=dry_run)
        )
        started = self.clock()
        progress = BackfillProgress(
            skipped=self.store.count_chunks(with_embedding=True, user_id=user_id)
        )

        cursor: Optional[str] = None
        while True:
            chunks = self.store.fetch_chunks_for_embedding(
                limit=config.batch_size, after_id=cursor, user_id=config.user_id
            )
            if not chunks:
                break

            progress.scan_cycles += 1
            progress.scanned += len(chunks)
            cursor = chunks[-1].id

            self._process_records(
                chunks,
                progress,
                config,
                None,
                derive_text=_chunk_text,
                persist=self.store.store_chunk_embedding
            )

        return self._finish("chunk", progress, started)

    def create_source_chunks(
        self,
        source: SourceContent,
        dry_run: bool = False,
        max_retries: Optional[int] = None
    ) -> List[ContentChunk]:
        """
        Split one document into chunks, embed them and store them together.

        A chunk whose embedding fails is stored without one, so a later
        backfill_chunk_embeddings run can pick it up. Documents that fit in a
        single piece produce no chunks.

        Returns:
            The chunks written (or that would be written, in a dry run)

        Raises:
            ConfigurationError: No chunking service was configured
            StorageError: The chunks could not be inserted
        """
        chunks = self._require_chunking().chunk_text(source.content, source.id)
        if not chunks or dry_run:
            return chunks

        for chunk in chunks:
            try:
                chunk.embedding = self.embedding_service.generate_embedding(
                    EmbeddingRecord(text=chunk.content, type="summary", normalize=True),
                    max_retries=max_retries
                ).vector
            except ResearchRetrievalError as e:
                logger.warning(f"Storing chunk {chunk.id} without embedding: {e}")

        self.store.insert_chunks(chunks)
        return chunks

    def backfill_chunks(
        self,
        batch_size: int = 10,
        user_id: Optional[str] = None,
        dry_run: bool = False
    ) -> ChunkBackfillResult:
        """
        Create chunks for every text document that has none yet.

        Documents are scanned in keyset order; a document that fails is
        reported and the run moves on.
        """
        self._require_chunking()
        config = self._resolve_config(
            BackfillConfig(batch_size=batch_size, user_id=user_id, dry_run=dry_run)
        )
        started = self.clock()

        sources_processed = 0
        chunks_created = 0
        chunks_embedded = 0
        failures: List[BackfillFailure] = []

        cursor: Optional[str] = None
        while True:
            sources = self.store.fetch_sources_without_chunks(
                limit=config.batch_size, after_id=cursor, user_id=config.user_id
            )
            if not sources:
                break
            cursor = sources[-1].id

            for source in sources:
                try:
                    chunks = self.create_source_chunks(
                        source, dry_run=config.dry_run, max_retries=config.max_retries
                    )
                except ResearchRetrievalError as e:
                    logger.warning(f"Failed to chunk source {source.id}: {e}")
                    failures.append(BackfillFailure(record_id=source.id, error=str(e)))
                    continue

                if not chunks:
                    continue
                sources_processed += 1
                chunks_created += len(chunks)
                chunks_embedded += sum(1 for c in chunks if c.embedding is not None)

        result = ChunkBackfillResult(
            sources_processed=sources_processed,
            chunks_created=chunks_created,
            chunks_embedded=chunks_embedded,
            failed=len(failures),
            duration_ms=max(0, int((self.clock() - started) * 1000)),
            failures=tuple(failures)
        )
        events.info(
            "Chunk creation finished",
            kind="chunk_creation",
            sources_processed=result.sources_processed,
            chunks_created=result.chunks_created,
            chunks_embedded=result.chunks_embedded,
            failed=result.failed,
            dry_run=config.dry_run,
            duration_ms=result.duration_ms
        )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_chunking(self) -> ChunkingService:
        if self.chunking_service is None:
            raise ConfigurationError("Chunk creation requires a chunking service")
        return self.chunking_service

    def _resolve_config(self, config: BackfillConfig) -> BackfillConfig:
        if config.batch_size < 1:
            raise ValidationError(f"batch_size must be at least 1, got {config.batch_size}")
        if config.max_retries < 0:
            raise ValidationError(f"max_retries must be >= 0, got {config.max_retries}")

        if config.batch_size > self.max_batch_size:
            logger.warning(
                f"batch_size {config.batch_size} exceeds cap, using {self.max_batch_size}"
            )
            config = replace(config, batch_size=self.max_batch_size)

        return config

    def _process_records(
        self,
        records: Sequence,
        progress: BackfillProgress,
        config: BackfillConfig,
        deadline: Optional[float],
        derive_text: Callable[..., str],
        persist: Callable[[str, List[float]], None]
    ) -> None:
        """Embed and persist records one by one, recording each outcome."""
        if config.dry_run:
            progress.processed += len(records)
            return

        for record in records:
            time_budget = None
            if deadline is not None:
                now = self.clock()
                if now >= deadline:
                    events.warning(
                        "Backfill deadline reached, stopping",
                        processed=progress.processed,
                        failed=progress.failed,
                        next_record=record.id
                    )
                    progress.cancelled = True
                    return
                time_budget = deadline - now

            try:
                result = self.embedding_service.generate_embedding(
                    EmbeddingRecord(text=derive_text(record), type="summary", normalize=True),
                    max_retries=config.max_retries,
                    time_budget=time_budget
                )
                persist(record.id, result.vector)
                progress.processed += 1
            except ResearchRetrievalError as e:
                logger.warning(f"Failed to backfill record {record.id}: {e}")
                progress.record_failure(record.id, str(e))

    def _finish(self, kind: str, progress: BackfillProgress, started: float) -> BackfillResult:
        duration_ms = int((self.clock() - started) * 1000)
        result = progress.to_result(duration_ms)

        events.info(
            f"{kind.capitalize()} backfill finished",
            kind=kind,
            processed=result.processed,
            failed=result.failed,
            skipped=result.skipped,
            scanned=progress.scanned,
            scan_cycles=progress.scan_cycles,
            cancelled=result.cancelled,
            duration_ms=result.duration_ms
        )
        return result


def _chunk_text(chunk: ContentChunk) -> str:
    return chunk.content
