"""Wiring of the retrieval core services from one Config."""

import logging
from dataclasses import dataclass

from config import Config
from services.backfill_service import BackfillService
from services.chunking_service import ChunkingService
from services.connection_service import ConnectionService
from services.embedding_service import EmbeddingService
from services.retrieval_service import RetrievalService
from storage.embedding_store import EmbeddingStore
from storage.models import HybridSearchWeights
from storage.postgres_client import PostgresClient
from utils.logging import setup_logging


logger = logging.getLogger("research-retrieval.bootstrap")


@dataclass
class Services:
    """Every service of the retrieval core, sharing one pool and one provider client."""
    config: Config
    pg_client: PostgresClient
    store: EmbeddingStore
    embedding_service: EmbeddingService
    chunking_service: ChunkingService
    backfill_service: BackfillService
    retrieval_service: RetrievalService
    connection_service: ConnectionService

    def close(self) -> None:
        self.pg_client.close()


def build_services(config: Config, check_health: bool = True) -> Services:
    """
    Connect the Postgres pool and build every service from config.

    Args:
        config: Validated configuration
        check_health: Fail fast when the database or provider is unhealthy

    Returns:
        Services bundle (call close() to release the pool)

    Raises:
        RuntimeError: If a health check fails
    """
    setup_logging(config.log_level)

    logger.info(
        f"Building services: model={config.openai_embed_model} "
        f"({config.openai_embed_dims} dims), pool={config.postgres_pool_min}-"
        f"{config.postgres_pool_max}"
    )

    embedding_service = EmbeddingService(
        api_key=config.openai_api_key,
        model=config.openai_embed_model,
        dimensions=config.openai_embed_dims,
        timeout=config.openai_timeout,
        max_retries=config.openai_max_retries,
        max_input_chars=config.embed_max_input_chars,
        retry_base_delay=config.retry_base_delay_ms / 1000,
        retry_max_jitter=config.retry_max_jitter_ms / 1000,
        retry_max_delay=config.retry_max_delay_ms / 1000
    )

    pg_client = PostgresClient(
        dsn=config.database_dsn,
        min_pool_size=config.postgres_pool_min,
        max_pool_size=config.postgres_pool_max
    )
    pg_client.connect()

    if check_health:
        pg_health = pg_client.health_check()
        if pg_health["status"] != "healthy":
            pg_client.close()
            raise RuntimeError(f"Postgres unhealthy: {pg_health.get('error')}")

        embed_health = embedding_service.health_check()
        if embed_health["status"] != "healthy":
            pg_client.close()
            raise RuntimeError(f"OpenAI API unhealthy: {embed_health.get('error')}")

        logger.info(f"OpenAI API: OK (latency={embed_health.get('api_latency_ms')}ms)")

    store = EmbeddingStore(pg_client)
    chunking_service = ChunkingService(
        single_piece_max=config.chunk_single_piece_max_tokens,
        chunk_target=config.chunk_target_tokens
    )

    services = Services(
        config=config,
        pg_client=pg_client,
        store=store,
        embedding_service=embedding_service,
        chunking_service=chunking_service,
        backfill_service=BackfillService(
            store,
            embedding_service,
            max_batch_size=config.backfill_max_batch_size,
            default_batch_size=config.backfill_batch_size,
            chunking_service=chunking_service
        ),
        retrieval_service=RetrievalService(
            embedding_service,
            store,
            weights=HybridSearchWeights(
                semantic=config.hybrid_semantic_weight,
                keyword=config.hybrid_keyword_weight
            ),
            max_limit=config.search_max_limit,
            default_limit=config.search_default_limit,
            default_threshold=config.search_default_threshold
        ),
        connection_service=ConnectionService(store)
    )

    logger.info("Services ready")
    return services
