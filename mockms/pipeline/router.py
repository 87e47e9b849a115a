"""Selection of the single handler serving every HTTP request."""

import logging
from typing import Optional

from opentelemetry.trace import Tracer

from mockms.bootstrap.config import ServerConfig
from mockms.domain.correlation_id import CorrelationLoggerAdapter
from mockms.domain.http_types import Handler
from mockms.domain.modes import ResponseMode
from mockms.domain.request_counter import RequestCounter
from mockms.handlers.clock_handlers import make_sha_handler, make_time_handler
from mockms.handlers.file_handler import make_file_handler
from mockms.handlers.status_handler import make_status_handler
from mockms.handlers.upload_handler import make_upload_handler
from mockms.pipeline.middleware import apply_middleware, build_chain

ROUTER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("mock_ms.pipeline.router"), {}
)


def build_mode_handler(config: ServerConfig) -> Handler:
    """Return the bare handler for the configured HTTP mode."""
    mode = config.mode
    if mode is ResponseMode.TIME:
        return make_time_handler(config.verbose)
    if mode is ResponseMode.SHA:
        return make_sha_handler(config.verbose)
    if mode is ResponseMode.FIXED_STATUS:
        return make_status_handler(config.http_code, config.verbose)
    if mode is ResponseMode.UPLOAD:
        return make_upload_handler(config.upload_dir, config.verbose)
    if mode is ResponseMode.FILE:
        return make_file_handler(config.file, config.content_length, config.verbose)
    raise ValueError(f"{mode.value} mode is not served over plain HTTP")


def build_handler(
    config: ServerConfig,
    counter: Optional[RequestCounter] = None,
    tracer: Optional[Tracer] = None,
) -> Handler:
    """Return the mode handler wrapped in the configured middleware chain."""
    chain = build_chain(config, counter, tracer)
    ROUTER_LOGGER.info(
        "Handler selected",
        extra={"event": "handler_selected", "mode": config.mode.value},
    )
    return apply_middleware(build_mode_handler(config), chain)
