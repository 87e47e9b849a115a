"""Shared HTTP type definitions to avoid circular imports."""

import time
from dataclasses import dataclass, field
from datetime import datetime
from http import HTTPStatus
from typing import Callable, Iterable, Optional


class ResponseAborted(Exception):
    """Raised from a body iterator when a response cannot be completed."""


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request.

    ``headers`` is keyed by lowercase name for lookups; ``raw_headers`` keeps
    the names and order exactly as received for request dumps.
    ``received_ns`` is the wall clock (ns since the epoch) at which the
    request head was read, before any configured delay.
    """

    method: str
    path: str
    headers: dict[str, str]
    body: bytes
    target: str = ""
    version: str = "HTTP/1.1"
    raw_headers: list[tuple[str, str]] = field(default_factory=list)
    client: str = "-"
    received_ns: int = field(default_factory=time.time_ns)

    @property
    def received_at(self) -> datetime:
        """Local time at which the request arrived."""
        seconds, nanos = divmod(self.received_ns, 1_000_000_000)
        return datetime.fromtimestamp(seconds).replace(microsecond=nanos // 1000)


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client."""

    status_line: str
    headers: dict[str, str]
    body: bytes
    close_connection: bool
    body_iter: Optional[Iterable[bytes]] = None
    use_chunked: bool = False

    @property
    def status_code(self) -> int:
        """Numeric status parsed from the status line."""
        return int(self.status_line.split(" ", 2)[1])


Handler = Callable[[HttpRequest], HttpResponse]


def status_line(code: int) -> str:
    """Build an HTTP/1.1 status line for any code in 100..599."""
    try:
        reason = HTTPStatus(code).phrase
    except ValueError:
        reason = "Unknown Status"
    return f"HTTP/1.1 {code} {reason}"


def should_close(headers: dict[str, str]) -> bool:
    """Determine whether the connection should be closed after responding."""
    return headers.get("connection", "").lower() == "close"


def find_header(headers: dict[str, str], name: str) -> Optional[str]:
    """Return the actual key in ``headers`` matching ``name`` case-insensitively."""
    lowered = name.lower()
    for key in headers:
        if key.lower() == lowered:
            return key
    return None
