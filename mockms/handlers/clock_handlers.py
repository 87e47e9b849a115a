"""Handlers answering with the server clock: a timestamp or its SHA-256."""

import hashlib
import logging
from datetime import datetime
from typing import Callable, Optional

from mockms.domain.correlation_id import CorrelationLoggerAdapter
from mockms.domain.http_types import Handler, HttpRequest, HttpResponse
from mockms.domain.response_builders import text_response

CLOCK_LOGGER = CorrelationLoggerAdapter(logging.getLogger("mock_ms.handlers.clock"), {})

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
          "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def format_stamp(moment: datetime) -> str:
    """Format as ``Jan _2 15:04:05.000000``: space-padded day, microseconds."""
    return (
        f"{MONTHS[moment.month - 1]} {moment.day:>2} "
        f"{moment:%H:%M:%S}.{moment.microsecond:06d}"
    )


def current_stamp(now: Optional[Callable[[], datetime]] = None) -> str:
    return format_stamp((now or datetime.now)())


def sha_of_nanos(nanos: int) -> str:
    """Lowercase hex SHA-256 of the decimal nanosecond timestamp."""
    return hashlib.sha256(str(nanos).encode()).hexdigest()


def make_time_handler(verbose: bool = False) -> Handler:
    """Reply with the time the request arrived, before any configured delay."""

    def serve_time(request: HttpRequest) -> HttpResponse:
        if verbose:
            CLOCK_LOGGER.info(
                f"Serving Time to {request.client}",
                extra={"event": "time_serve", "client": request.client},
            )
        body = format_stamp(request.received_at) + "\n"
        headers = {
            "X-XSS-Protection": "1; mode=block",
            "Content-Length": str(len(body.encode())),
        }
        return text_response(body, request, headers)

    return serve_time


def make_sha_handler(verbose: bool = False) -> Handler:
    def serve_sha(request: HttpRequest) -> HttpResponse:
        nanos = request.received_ns
        if verbose:
            CLOCK_LOGGER.info(
                f"Serving SHA256 of {nanos} to {request.client}",
                extra={"event": "sha_serve", "client": request.client},
            )
        return text_response(sha_of_nanos(nanos), request)

    return serve_sha
