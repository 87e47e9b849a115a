"""Tests for logging configuration helpers."""

import json
import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from mockms.bootstrap.logging_setup import CorrelationIdFilter, configure_logging


@pytest.fixture(autouse=True)
def restore_project_logger():
    """Put the project logger back the way the test found it."""
    logger = logging.getLogger("mock_ms")
    handlers = list(logger.handlers)
    level = logger.level
    yield
    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)


def test_configure_logging_stream_handler():
    """Configure stdout handler and validate formatter output."""
    logger = configure_logging("DEBUG", "stdout")

    assert logger.logger.name == "mock_ms"
    assert logger.logger.level == logging.DEBUG
    assert len(logger.logger.handlers) == 1

    handler = logger.logger.handlers[0]
    assert isinstance(handler, logging.StreamHandler)
    record = logging.LogRecord(
        name="mock_ms.server",
        level=logging.DEBUG,
        pathname=__file__,
        lineno=0,
        msg="format test",
        args=(),
        exc_info=None,
    )
    record.correlation_id = "test-id-123"
    record.component = "server"
    log_data = json.loads(handler.formatter.format(record))
    assert log_data["component"] == "server"
    assert log_data["message"] == "format test"
    assert log_data["correlation_id"] == "test-id-123"


def test_configure_logging_reconfigure_replaces_handler():
    """Repeated configuration keeps exactly one handler."""
    configure_logging("INFO", "stdout")
    logger = configure_logging("INFO", "stdout")

    assert len(logger.logger.handlers) == 1


def test_configure_logging_plain_text(capsys):
    """Text mode renders the human readable line format."""
    configure_logging("INFO", "stdout", use_json=False)

    logging.getLogger("mock_ms.server").info("Listening on http://127.0.0.1:8080")

    output = capsys.readouterr().out
    assert "INFO [-] mock_ms.server :: Listening on http://127.0.0.1:8080" in output


def test_configure_logging_file_destination(tmp_path: Path):
    """Configure file handler and verify writes are persisted."""
    destination = tmp_path / "logs" / "server.log"
    logger = configure_logging("WARNING", destination.as_posix(), service="svc")

    assert logger.logger.level == logging.WARNING
    handler = logger.logger.handlers[0]
    assert handler.baseFilename == destination.as_posix()

    logging.getLogger("mock_ms.server").warning("file log test")

    handler.flush()
    line = destination.read_text().strip().splitlines()[-1]
    log_data = json.loads(line)
    assert log_data["message"] == "file log test"
    assert log_data["service"] == "svc"


def test_unknown_level_falls_back_to_info():
    """Unrecognized level names resolve to INFO."""
    logger = configure_logging("CHATTY", "stdout")

    assert logger.logger.level == logging.INFO


def test_correlation_id_filter_inserts_placeholder_when_missing():
    """Filter should default correlation_id to '-' for bare records."""
    log_filter = CorrelationIdFilter()
    record = logging.LogRecord(
        name="mock_ms.server",
        level=logging.INFO,
        pathname=__file__,
        lineno=0,
        msg="missing id",
        args=(),
        exc_info=None,
    )

    assert not hasattr(record, "correlation_id")
    assert log_filter.filter(record)
    assert record.correlation_id == "-"


def test_configure_logging_emits_event():
    """configure_logging announces itself with a 'logging_configured' event."""
    with patch("mockms.bootstrap.logging_setup._build_handler") as mock_build:
        mock_handler = MagicMock()
        mock_handler.level = logging.INFO
        mock_build.return_value = mock_handler

        configure_logging("INFO", "stdout")

        assert mock_handler.handle.called
        record = mock_handler.handle.call_args[0][0]

        assert record.msg == "Logging configured"
        assert record.levelno == logging.INFO
        assert getattr(record, "event", None) == "logging_configured"
        assert getattr(record, "destination", None) == "stdout"
        assert getattr(record, "use_json", None) is True
