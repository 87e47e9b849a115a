"""Logging configuration utilities for the mock server."""

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from mockms.domain.correlation_id import CorrelationLoggerAdapter

LOGGER_NAME = "mock_ms"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s :: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5

EXTRA_KEYS = [
    "client",
    "method",
    "route",
    "status_code",
    "mode",
    "path",
    "bytes",
    "bytes_in",
    "bytes_out",
    "delay_seconds",
    "rps",
    "elapsed_seconds",
    "error",
    "error_type",
    "host",
    "port",
    "scheme",
    "url",
    "tls",
    "cipher",
    "remaining_workers",
    "service",
    "otel_endpoint",
    "log_destination",
    "log_level",
    "use_json",
    "destination",
    "message_type",
    "messages_sent",
    "socket_timeout",
    "shutdown_grace_seconds",
    "signal",
]


class CorrelationIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Ensure correlation_id field exists in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


class JsonFormatter(logging.Formatter):
    """JSON formatter with stable key ordering for structured logging."""

    def __init__(self, datefmt: Optional[str] = None, service: Optional[str] = None):
        super().__init__(datefmt=datefmt)
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON with stable key ordering."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }
        if self._service:
            log_data["service"] = self._service

        if hasattr(record, "event"):
            log_data["event"] = record.event

        for key in EXTRA_KEYS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, sort_keys=True, default=str)


def _resolve_level(level_name: str) -> int:
    """Translate text level names into logging module numeric levels."""
    level = getattr(logging, level_name.upper(), None)
    if isinstance(level, int):
        return level
    return logging.INFO


def _build_handler(
    destination: Optional[str],
    level: int,
    use_json: bool = True,
    service: Optional[str] = None,
) -> logging.Handler:
    """Create a stdout or rotating file handler for the configured logger."""
    if destination and destination.lower() != "stdout":
        target_path = Path(destination)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            target_path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT
        )
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    if use_json:
        handler.setFormatter(JsonFormatter(DATE_FORMAT, service))
    else:
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))

    handler.addFilter(CorrelationIdFilter())
    return handler


def configure_logging(
    level: str = "INFO",
    destination: Optional[str] = None,
    use_json: bool = True,
    service: Optional[str] = None,
) -> CorrelationLoggerAdapter:
    """Configure and return the project logger with the requested handler."""
    logger = logging.getLogger(LOGGER_NAME)
    numeric_level = _resolve_level(level)
    logger.setLevel(numeric_level)
    logger.propagate = False

    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    handler = _build_handler(destination, numeric_level, use_json, service)
    logger.addHandler(handler)
    adapter = CorrelationLoggerAdapter(logger, {})
    adapter.info(
        "Logging configured",
        extra={
            "event": "logging_configured",
            "destination": destination or "stdout",
            "log_level": logging.getLevelName(numeric_level),
            "use_json": use_json,
        },
    )
    return adapter
