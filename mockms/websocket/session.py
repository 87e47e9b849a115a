"""WebSocket echo and flood sessions served by the ``websockets`` sync server."""

import logging
import ssl
import threading
from typing import Callable, Optional, Union

from websockets.exceptions import ConnectionClosed
from websockets.protocol import State
from websockets.sync.server import Server, ServerConnection, serve

from mockms.bootstrap.config import ServerConfig
from mockms.bootstrap.socket_factory import StartupError, log_listen_banner
from mockms.domain.correlation_id import (
    CorrelationLoggerAdapter,
    clear_correlation_id,
    generate_correlation_id,
    set_correlation_id,
)
from mockms.handlers.clock_handlers import current_stamp
from mockms.lifecycle.state import ServerLifecycle

WS_LOGGER = CorrelationLoggerAdapter(logging.getLogger("mock_ms.websocket"), {})

EXIT_MESSAGE = "exit"

Message = Union[str, bytes]


def is_exit(message: Message) -> bool:
    """True for the text or binary sentinel that ends a session."""
    if isinstance(message, bytes):
        return message == EXIT_MESSAGE.encode()
    return message == EXIT_MESSAGE


def _same_frame_type(template: Message, text: str) -> Message:
    return text.encode() if isinstance(template, bytes) else text


def _message_type(message: Message) -> str:
    return "binary" if isinstance(message, bytes) else "text"


class WebSocketSession:
    """One upgraded connection running either the echo or the flood loop."""

    def __init__(
        self,
        connection: ServerConnection,
        flood: bool = False,
        verbose: bool = False,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.connection = connection
        self.flood = flood
        self.verbose = verbose
        self._should_stop = should_stop or (lambda: False)

    def run(self) -> None:
        """Serve the connection until it closes, errors or sends ``exit``."""
        try:
            while True:
                message = self.connection.recv()
                if self.verbose:
                    WS_LOGGER.info(
                        f"Received WebSocket message: {message!r}",
                        extra={
                            "event": "ws_message",
                            "message_type": _message_type(message),
                        },
                    )
                if is_exit(message):
                    return
                if self.flood:
                    self.flood_from(message)
                    return
                self.connection.send(message)
        except ConnectionClosed as error:
            WS_LOGGER.info(
                "WebSocket closed",
                extra={"event": "ws_closed", "error": str(error)},
            )
        except OSError as error:
            WS_LOGGER.warning(
                "WebSocket I/O error",
                extra={"event": "ws_io_error", "error_type": type(error).__name__},
            )

    def is_open(self) -> bool:
        return self.connection.protocol.state is State.OPEN

    def flood_from(self, trigger: Message) -> None:
        """Send timestamps without pause until the connection goes away.

        The peer is never read again, so its close frame goes unnoticed while
        a send is blocked on a full socket buffer. The loop ends on the first
        failed write, which follows once the peer drops the TCP connection,
        or when the connection leaves the OPEN state or the server drains.
        """
        sent = 0
        try:
            while self.is_open() and not self._should_stop():
                self.connection.send(_same_frame_type(trigger, current_stamp()))
                sent += 1
        finally:
            WS_LOGGER.info(
                "WebSocket flood ended",
                extra={"event": "ws_flood_ended", "messages_sent": sent},
            )


def make_connection_handler(
    config: ServerConfig, lifecycle: Optional[ServerLifecycle] = None
) -> Callable[[ServerConnection], None]:
    """Return the per-connection callback handed to the ``websockets`` server."""
    should_stop = lifecycle.should_stop if lifecycle is not None else None

    def handle_connection(connection: ServerConnection) -> None:
        set_correlation_id(generate_correlation_id())
        remote = connection.remote_address
        client = f"{remote[0]}:{remote[1]}" if remote else "-"
        WS_LOGGER.info(
            "WebSocket connection opened",
            extra={"event": "ws_opened", "client": client},
        )
        try:
            WebSocketSession(connection, config.wsflood, config.verbose, should_stop).run()
        finally:
            WS_LOGGER.info(
                "WebSocket connection closed",
                extra={"event": "ws_connection_closed", "client": client},
            )
            clear_correlation_id()

    return handle_connection


def create_websocket_server(
    config: ServerConfig,
    lifecycle: Optional[ServerLifecycle] = None,
    tls_context: Optional[ssl.SSLContext] = None,
) -> Server:
    """Bind the WebSocket listener; every request path is upgraded.

    Incoming messages have no size limit so echoes of any length round-trip.
    """
    try:
        return serve(
            make_connection_handler(config, lifecycle),
            config.host,
            config.port,
            ssl=tls_context,
            max_size=None,
        )
    except OSError as error:
        WS_LOGGER.critical(
            "Unable to serve on port",
            extra={"event": "bind_failed", "port": config.port, "error": str(error)},
        )
        raise StartupError(f"unable to serve on port {config.port}: {error}") from error


def run_websocket_server(
    config: ServerConfig,
    lifecycle: ServerLifecycle,
    tls_context: Optional[ssl.SSLContext] = None,
) -> None:
    """Serve WebSocket sessions until the lifecycle begins draining."""
    server = create_websocket_server(config, lifecycle, tls_context)
    log_listen_banner(config)
    serving = threading.Thread(target=server.serve_forever, name="ws-accept", daemon=True)
    serving.start()
    try:
        while not lifecycle.wait_for_stop(0.5):
            pass
    finally:
        server.shutdown()
        serving.join(timeout=config.shutdown_grace_seconds)
        WS_LOGGER.info("Server shutdown complete", extra={"event": "server_stopped"})
