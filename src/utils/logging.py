"""JSON logging for the research-retrieval logger namespace."""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO


LOGGER_NAMESPACE = "research-retrieval"


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per record.

    Fields attached by StructuredLogger are merged at the top level but never
    replace the envelope keys (timestamp, level, service, component, message).
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": _utc_timestamp(record.created),
            "level": record.levelname,
            "service": LOGGER_NAMESPACE,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in getattr(record, "fields", {}).items():
            payload.setdefault(key, value)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def _utc_timestamp(created: float) -> str:
    moment = datetime.fromtimestamp(created, timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def setup_logging(log_level: str = "INFO", stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Route the namespace logger to a JSON handler.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL), any case
        stream: Output stream (stdout by default)

    Returns:
        The configured namespace logger
    """
    level = getattr(logging, log_level.upper())

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(StructuredFormatter())

    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    return logger


class StructuredLogger:
    """Logs an event message with keyword fields for the JSON formatter."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def log(self, level: int, event: str, **fields: Any) -> None:
        if self.logger.isEnabledFor(level):
            self.logger.log(level, event, extra={"fields": fields})

    def info(self, event: str, **fields: Any) -> None:
        self.log(logging.INFO, event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.log(logging.WARNING, event, **fields)
