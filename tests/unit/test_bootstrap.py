"""Unit tests for service wiring."""

import logging
import pytest
from unittest.mock import patch

from bootstrap import build_services
from services.backfill_service import BackfillService
from services.connection_service import ConnectionService
from services.retrieval_service import RetrievalService


@pytest.fixture(autouse=True)
def reset_namespace_logger():
    yield
    logger = logging.getLogger("research-retrieval")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@patch("bootstrap.PostgresClient")
def test_build_services_wires_everything(mock_pg_class, test_config):
    services = build_services(test_config, check_health=False)

    mock_pg_class.assert_called_once_with(
        dsn=test_config.database_dsn, min_pool_size=2, max_pool_size=10
    )
    mock_pg_class.return_value.connect.assert_called_once()

    assert isinstance(services.backfill_service, BackfillService)
    assert isinstance(services.retrieval_service, RetrievalService)
    assert isinstance(services.connection_service, ConnectionService)
    assert services.store.pg_client is mock_pg_class.return_value
    assert services.backfill_service.max_batch_size == 100
    assert services.retrieval_service.max_limit == 50
    assert services.chunking_service.chunk_target == 500
    assert services.backfill_service.chunking_service is services.chunking_service
    assert services.retrieval_service.default_limit == 20
    assert services.retrieval_service.default_threshold == 0.7


@patch("bootstrap.PostgresClient")
def test_build_services_converts_retry_delays(mock_pg_class, test_config):
    services = build_services(test_config, check_health=False)

    embedding = services.embedding_service
    assert embedding.retry_base_delay == 1.0
    assert embedding.retry_max_jitter == 1.0
    assert embedding.retry_max_delay == 10.0
    assert embedding.dimensions == 1536
    assert embedding.max_input_chars == 8000


@patch("bootstrap.PostgresClient")
def test_build_services_fails_on_unhealthy_database(mock_pg_class, test_config):
    mock_pg_class.return_value.health_check.return_value = {
        "status": "unhealthy", "error": "Pool not initialized"
    }

    with pytest.raises(RuntimeError, match="Postgres unhealthy"):
        build_services(test_config)

    mock_pg_class.return_value.close.assert_called_once()


@patch("bootstrap.PostgresClient")
def test_services_close_releases_pool(mock_pg_class, test_config):
    services = build_services(test_config, check_health=False)

    services.close()

    mock_pg_class.return_value.close.assert_called_once()


@patch("bootstrap.PostgresClient")
def test_build_services_applies_search_defaults(mock_pg_class, test_config):
    test_config.search_default_limit = 5
    test_config.search_default_threshold = 0.4

    services = build_services(test_config, check_health=False)

    assert services.retrieval_service.default_limit == 5
    assert services.retrieval_service.default_threshold == 0.4
