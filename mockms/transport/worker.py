"""Worker thread logic for handling individual client connections."""

import logging
import socket
import ssl
import threading
from dataclasses import dataclass
from typing import Optional

from mockms.domain.correlation_id import (
    CorrelationLoggerAdapter,
    clear_correlation_id,
    generate_correlation_id,
    set_correlation_id,
)
from mockms.domain.http_types import HttpRequest, ResponseAborted
from mockms.domain.response_builders import (
    bad_request_response,
    draining_response,
    entity_too_large_response,
    error_response,
)
from mockms.lifecycle.state import ServerLifecycle
from mockms.pipeline.io import RequestEntityTooLarge, receive_request, send_response
from mockms.transport.context import WorkerContext

WORKER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("mock_ms.transport.worker"), {}
)


def _read_request(
    client_socket: socket.socket,
    buffer: bytes,
    context: WorkerContext,
    client_addr_str: str,
) -> tuple[Optional[HttpRequest], bytes]:
    """Read one request, answering 413/400 itself when it cannot be parsed."""
    try:
        return receive_request(
            client_socket, buffer, context.config.max_body_bytes, client_addr_str
        )
    except RequestEntityTooLarge:
        WORKER_LOGGER.warning(
            "Request body size exceeded limit",
            extra={"event": "body_size_exceeded", "client": client_addr_str},
        )
        send_response(client_socket, entity_too_large_response())
    except ValueError:
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={"event": "malformed_request", "client": client_addr_str},
        )
        send_response(client_socket, bad_request_response())
    return None, b""


def _process_request(
    request: HttpRequest, context: WorkerContext, client_socket: socket.socket
) -> bool:
    """Run the handler and write its response; return True to close."""
    try:
        response = context.handler(request)
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Handler failed",
            extra={
                "event": "handler_error",
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )
        response = error_response(500, "Internal Server Error", request)
    if context.config.nokeepalive:
        response.close_connection = True
    send_response(client_socket, response, include_body=request.method != "HEAD")
    if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
        WORKER_LOGGER.debug(
            "Request processing complete",
            extra={
                "event": "request_complete",
                "client": request.client,
                "method": request.method,
                "route": request.path,
                "status_code": response.status_code,
            },
        )
    return response.close_connection


def _complete_tls_handshake(
    client_socket: socket.socket, client_addr_str: str, verbose: bool
) -> None:
    """Finish the TLS handshake in the worker so the accept loop never blocks."""
    if not isinstance(client_socket, ssl.SSLSocket):
        return
    client_socket.do_handshake()
    if verbose:
        cipher = client_socket.cipher()
        WORKER_LOGGER.info(
            "TLS connection established",
            extra={
                "event": "tls_established",
                "client": client_addr_str,
                "tls": client_socket.version(),
                "cipher": cipher[0] if cipher else "-",
            },
        )


def _prepare_worker(
    context: WorkerContext,
    client_socket: socket.socket,
    current_thread: threading.Thread,
) -> Optional[ServerLifecycle]:
    lifecycle = context.lifecycle
    if lifecycle is not None:
        lifecycle.register_worker(current_thread)
    client_socket.settimeout(context.config.socket_timeout)
    return lifecycle


@dataclass
class _WorkerResources:
    thread: threading.Thread
    client_socket: socket.socket
    client_addr_str: str


def _cleanup_worker(lifecycle: Optional[ServerLifecycle], resources: _WorkerResources):
    if lifecycle is not None:
        lifecycle.cleanup_worker(resources.thread)

    try:
        resources.client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    resources.client_socket.close()

    WORKER_LOGGER.debug(
        "Socket closed",
        extra={"event": "socket_closed", "client": resources.client_addr_str},
    )
    clear_correlation_id()


def handle_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Serve requests on a client socket until the connection is closed."""
    buffer = b""
    current_thread = threading.current_thread()
    lifecycle = _prepare_worker(context, client_socket, current_thread)
    client_addr_str = f"{client_address[0]}:{client_address[1]}"
    resources = _WorkerResources(current_thread, client_socket, client_addr_str)

    try:
        _complete_tls_handshake(client_socket, client_addr_str, context.config.verbose)
        while True:
            set_correlation_id(generate_correlation_id())

            if lifecycle is not None and lifecycle.is_draining():
                send_response(client_socket, draining_response())
                break

            request, buffer = _read_request(
                client_socket, buffer, context, client_addr_str
            )
            if request is None:
                if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                    WORKER_LOGGER.debug(
                        "Client disconnected",
                        extra={"event": "client_disconnected", "client": client_addr_str},
                    )
                break

            if _process_request(request, context, client_socket):
                break
            clear_correlation_id()
    except ResponseAborted as error:
        WORKER_LOGGER.error(
            "Response aborted mid-stream",
            extra={
                "event": "response_aborted",
                "client": client_addr_str,
                "error": str(error),
            },
        )
    except (ConnectionError, TimeoutError, OSError) as error:
        WORKER_LOGGER.warning(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": client_addr_str,
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )
    finally:
        _cleanup_worker(lifecycle, resources)
