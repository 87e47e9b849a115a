"""HTTP Input/Output operations."""

import logging
import socket
import time
import urllib.parse
from typing import Optional, Tuple

from mockms.bootstrap.config import HEADER_DELIMITER
from mockms.domain.correlation_id import (
    CorrelationLoggerAdapter,
    get_correlation_id,
    set_correlation_id,
)
from mockms.domain.http_types import HttpRequest, HttpResponse
from mockms.domain.response_builders import omits_content_length

IO_LOGGER = CorrelationLoggerAdapter(logging.getLogger("mock_ms.io"), {})

CRLF = b"\r\n"
RECV_SIZE = 65536
CONTINUE_LINE = b"HTTP/1.1 100 Continue\r\n\r\n"


class RequestEntityTooLarge(Exception):
    """Raised when a request body exceeds configured limits."""


def parse_headers(lines: list[str]) -> Tuple[dict[str, str], list[tuple[str, str]]]:
    """Return lowercase-keyed headers plus the raw (name, value) pairs in order."""
    parsed: dict[str, str] = {}
    raw: list[tuple[str, str]] = []
    for line in lines:
        if ":" not in line:
            continue
        name, value = line.split(":", 1)
        name = name.strip()
        value = value.strip()
        raw.append((name, value))
        lowered = name.lower()
        if lowered in parsed:
            parsed[lowered] = f"{parsed[lowered]}, {value}"
        else:
            parsed[lowered] = value
    return parsed, raw


def parse_request_line(request_line: str) -> Tuple[str, str, str, str]:
    """Parse method, target, decoded path and version from the request line."""
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise ValueError("Invalid request line") from exc
    if not version.startswith("HTTP/"):
        raise ValueError("Invalid HTTP version")

    parsed_target = urllib.parse.urlsplit(target)
    path = urllib.parse.unquote(parsed_target.path) or "/"
    return method, target, path, version


def determine_content_length(headers: dict[str, str], max_body_bytes: int) -> int:
    """Validate and return the declared Content-Length for the request."""
    header_value = headers.get("content-length")
    if header_value is None:
        return 0
    try:
        content_length = int(header_value)
    except ValueError as exc:
        raise ValueError("Invalid Content-Length") from exc
    if content_length < 0:
        raise ValueError("Negative Content-Length")
    if content_length > max_body_bytes:
        raise RequestEntityTooLarge
    return content_length


def _fill(client_socket: socket.socket, buffer: bytes, minimum: int) -> Optional[bytes]:
    """Receive until ``buffer`` holds ``minimum`` bytes; None if the peer left."""
    while len(buffer) < minimum:
        chunk = client_socket.recv(RECV_SIZE)
        if not chunk:
            return None
        buffer += chunk
    return buffer


def _read_chunked_body(
    client_socket: socket.socket, buffer: bytes, max_body_bytes: int
) -> Tuple[Optional[bytes], bytes]:
    """Decode a chunked request body, returning (body, leftover)."""
    chunks: list[bytes] = []
    received = 0
    while True:
        while CRLF not in buffer:
            chunk = client_socket.recv(RECV_SIZE)
            if not chunk:
                return None, b""
            buffer += chunk
        size_line, buffer = buffer.split(CRLF, 1)
        try:
            size = int(size_line.split(b";", 1)[0].strip(), 16)
        except ValueError as exc:
            raise ValueError("Invalid chunk size") from exc
        if size == 0:
            while HEADER_DELIMITER not in CRLF + buffer:
                chunk = client_socket.recv(RECV_SIZE)
                if not chunk:
                    return None, b""
                buffer += chunk
            _, buffer = (CRLF + buffer).split(HEADER_DELIMITER, 1)
            return b"".join(chunks), buffer
        received += size
        if received > max_body_bytes:
            raise RequestEntityTooLarge
        filled = _fill(client_socket, buffer, size + len(CRLF))
        if filled is None:
            return None, b""
        chunks.append(filled[:size])
        buffer = filled[size + len(CRLF) :]


def receive_request(
    client_socket: socket.socket, buffer: bytes, max_body_bytes: int, client: str = "-"
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes from the socket until a complete request is available."""
    while HEADER_DELIMITER not in buffer:
        chunk = client_socket.recv(RECV_SIZE)
        if not chunk:
            return None, b""
        buffer += chunk
    received_ns = time.time_ns()

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    header_lines = header_block.decode("latin-1").split("\r\n")
    method, target, path, version = parse_request_line(header_lines[0])
    headers, raw_headers = parse_headers(header_lines[1:])

    incoming_correlation_id = headers.get("x-request-id")
    if incoming_correlation_id:
        set_correlation_id(incoming_correlation_id)

    chunked = "chunked" in headers.get("transfer-encoding", "").lower()
    content_length = 0 if chunked else determine_content_length(headers, max_body_bytes)
    expects_body = chunked or len(remainder) < content_length
    if expects_body and headers.get("expect", "").lower() == "100-continue":
        client_socket.sendall(CONTINUE_LINE)

    if chunked:
        body, leftover = _read_chunked_body(client_socket, remainder, max_body_bytes)
        if body is None:
            return None, b""
    else:
        filled = _fill(client_socket, remainder, content_length)
        if filled is None:
            return None, b""
        body, leftover = filled[:content_length], filled[content_length:]

    IO_LOGGER.debug(
        "Parsed request",
        extra={"event": "request_parsed", "method": method, "path": path, "bytes_in": len(body)},
    )
    request = HttpRequest(
        method,
        path,
        headers,
        body,
        target=target,
        version=version,
        raw_headers=raw_headers,
        client=client,
        received_ns=received_ns,
    )
    return request, leftover


def _close_body_iter(response: HttpResponse) -> None:
    close = getattr(response.body_iter, "close", None)
    if close is not None:
        close()


def send_response(
    client_socket: socket.socket, response: HttpResponse, include_body: bool = True
) -> None:
    """Serialize and send the HTTP response over the socket.

    Streaming responses use chunked framing unless the handler already set a
    Content-Length, in which case the chunks are written as-is.
    """
    headers = dict(response.headers)

    correlation_id = get_correlation_id()
    if correlation_id:
        headers["X-Request-ID"] = correlation_id

    declared_length = any(name.lower() == "content-length" for name in headers)
    streaming = response.body_iter is not None
    if response.use_chunked and not declared_length:
        headers["Transfer-Encoding"] = "chunked"
    elif omits_content_length(response.status_code):
        pass
    elif not streaming and not declared_length:
        headers["Content-Length"] = str(len(response.body))
    if response.close_connection:
        headers["Connection"] = "close"

    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    header_block = "\r\n".join(header_lines).encode("latin-1") + HEADER_DELIMITER

    if not include_body:
        client_socket.sendall(header_block)
        _close_body_iter(response)
    elif streaming:
        chunked = "Transfer-Encoding" in headers
        client_socket.sendall(header_block)
        try:
            for chunk in response.body_iter:
                if not chunk:
                    continue
                if chunked:
                    client_socket.sendall(f"{len(chunk):X}\r\n".encode() + chunk + CRLF)
                else:
                    client_socket.sendall(chunk)
        finally:
            _close_body_iter(response)
        if chunked:
            client_socket.sendall(b"0\r\n\r\n")
    else:
        client_socket.sendall(header_block + response.body)
    IO_LOGGER.debug(
        "Sent response",
        extra={"event": "response_sent", "status_code": response.status_code},
    )
