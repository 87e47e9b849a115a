"""Main connection acceptance loop for the HTTP modes."""

import logging
import socket
import ssl
import threading
from typing import Optional

from opentelemetry.trace import Tracer

from mockms.bootstrap.config import ServerConfig
from mockms.bootstrap.socket_factory import create_server_socket, log_listen_banner
from mockms.domain.correlation_id import CorrelationLoggerAdapter
from mockms.domain.request_counter import RequestCounter
from mockms.lifecycle.state import ServerLifecycle
from mockms.pipeline.router import build_handler
from mockms.transport.context import WorkerContext
from mockms.transport.worker import handle_client

ACCEPT_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("mock_ms.transport.accept"), {}
)


def _spawn_worker(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={
                "event": "client_accepted",
                "client": f"{client_address[0]}:{client_address[1]}",
            },
        )
    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, context),
        daemon=False,
    )
    thread.start()


def run_server(
    config: ServerConfig,
    lifecycle: ServerLifecycle,
    tls_context: Optional[ssl.SSLContext] = None,
    counter: Optional[RequestCounter] = None,
    tracer: Optional[Tracer] = None,
) -> None:
    """Bind the listener and hand every connection to a worker thread."""
    server_socket = create_server_socket(config, tls_context)
    log_listen_banner(config)

    if config.nokeepalive:
        ACCEPT_LOGGER.info("Keep-alives disabled", extra={"event": "keepalive_disabled"})
    elif config.verbose:
        ACCEPT_LOGGER.info("Keep-alives enabled (default)", extra={"event": "keepalive_enabled"})

    context = WorkerContext(
        config=config,
        handler=build_handler(config, counter or RequestCounter(), tracer),
        lifecycle=lifecycle,
    )

    try:
        while True:
            try:
                client_socket, client_address = server_socket.accept()
            except socket.timeout:
                if lifecycle.should_stop():
                    break
                continue
            except OSError as error:
                if lifecycle.should_stop():
                    break
                ACCEPT_LOGGER.error(
                    "Socket accept failed",
                    extra={
                        "event": "accept_error",
                        "error_type": type(error).__name__,
                        "error": str(error),
                    },
                )
                continue

            if lifecycle.is_draining():
                client_socket.close()
                break

            _spawn_worker(client_socket, client_address, context)
    finally:
        server_socket.close()
        ACCEPT_LOGGER.info(
            "Waiting for active connections to complete",
            extra={
                "event": "shutdown_waiting",
                "shutdown_grace_seconds": config.shutdown_grace_seconds,
            },
        )
        lifecycle.wait_for_workers(config.shutdown_grace_seconds)
        ACCEPT_LOGGER.info("Server shutdown complete", extra={"event": "server_stopped"})
