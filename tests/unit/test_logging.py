"""Unit tests for structured logging."""

import io
import json
import logging

import pytest

from utils.logging import StructuredFormatter, StructuredLogger, setup_logging


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured():
    logger = logging.getLogger("research-retrieval.test-structured")
    logger.setLevel(logging.DEBUG)
    handler = ListHandler()
    logger.addHandler(handler)
    yield logger, handler
    logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def reset_namespace_logger():
    yield
    logger = logging.getLogger("research-retrieval")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def test_formatter_emits_json():
    record = logging.LogRecord(
        "research-retrieval.backfill", logging.INFO, "", 0, "Run finished", (), None
    )
    record.fields = {"processed": 25}

    data = json.loads(StructuredFormatter().format(record))

    assert data["level"] == "INFO"
    assert data["service"] == "research-retrieval"
    assert data["component"] == "research-retrieval.backfill"
    assert data["message"] == "Run finished"
    assert data["processed"] == 25
    assert data["timestamp"].endswith("Z")


def test_formatter_fields_do_not_replace_envelope():
    record = logging.LogRecord(
        "research-retrieval.backfill", logging.INFO, "", 0, "Run finished", (), None
    )
    record.fields = {"message": "overwritten", "kind": "summary"}

    data = json.loads(StructuredFormatter().format(record))

    assert data["message"] == "Run finished"
    assert data["kind"] == "summary"


def test_formatter_without_fields():
    record = logging.LogRecord(
        "research-retrieval.store", logging.WARNING, "", 0, "plain", (), None
    )

    data = json.loads(StructuredFormatter().format(record))

    assert data["message"] == "plain"
    assert set(data) == {"timestamp", "level", "service", "component", "message"}


def test_structured_logger_attaches_fields(captured):
    logger, handler = captured

    StructuredLogger(logger).info("event", kind="summary", processed=3)

    assert handler.records[0].fields == {"kind": "summary", "processed": 3}
    assert handler.records[0].levelno == logging.INFO


def test_structured_logger_warning_level(captured):
    logger, handler = captured

    StructuredLogger(logger).warning("deadline reached", processed=2)

    assert handler.records[0].levelno == logging.WARNING


def test_structured_logger_respects_level(captured):
    logger, handler = captured
    logger.setLevel(logging.WARNING)

    StructuredLogger(logger).info("hidden")

    assert handler.records == []


def test_setup_logging_configures_namespace(reset_namespace_logger):
    logger = setup_logging("debug")

    assert logger.name == "research-retrieval"
    assert logger.level == logging.DEBUG
    assert logger.propagate is False
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, StructuredFormatter)


def test_setup_logging_writes_json_lines(reset_namespace_logger):
    stream = io.StringIO()
    setup_logging("INFO", stream=stream)

    events = StructuredLogger(logging.getLogger("research-retrieval.backfill"))
    events.info("Summary backfill finished", processed=4, failed=1)

    data = json.loads(stream.getvalue().strip())
    assert data["component"] == "research-retrieval.backfill"
    assert data["processed"] == 4
    assert data["failed"] == 1
