"""Socket creation, TLS configuration and the startup banner."""

import logging
import socket
import ssl
from typing import Optional

import psutil

from mockms.bootstrap.config import ServerConfig
from mockms.domain.correlation_id import CorrelationLoggerAdapter

SOCKET_LOGGER = CorrelationLoggerAdapter(logging.getLogger("mock_ms.socket"), {})

WILDCARD_HOSTS = {"", "0.0.0.0"}


class StartupError(Exception):
    """Raised when the listener cannot be created."""


def create_tls_context(config: ServerConfig) -> Optional[ssl.SSLContext]:
    """Load the certificate pair into a server-side context, if configured."""
    if not config.tls:
        return None
    try:
        tls_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        tls_context.load_cert_chain(config.cert, config.key)
    except (ssl.SSLError, OSError) as error:
        SOCKET_LOGGER.critical(
            "Failed to load TLS certificates",
            extra={"event": "tls_load_failed", "error": str(error)},
        )
        raise StartupError(f"unable to load certificate pair: {error}") from error
    return tls_context


def create_server_socket(
    config: ServerConfig, tls_context: Optional[ssl.SSLContext]
) -> socket.socket:
    """Create the listening socket, optionally wrapped in TLS."""
    try:
        server_socket = socket.create_server((config.host, config.port), reuse_port=True)
    except OSError as error:
        SOCKET_LOGGER.critical(
            "Unable to serve on port",
            extra={"event": "bind_failed", "port": config.port, "error": str(error)},
        )
        raise StartupError(f"unable to serve on port {config.port}: {error}") from error
    server_socket.settimeout(0.5)
    if tls_context is not None:
        server_socket = tls_context.wrap_socket(
            server_socket, server_side=True, do_handshake_on_connect=False
        )
    return server_socket


def local_ipv4_addresses() -> list[str]:
    """Return the IPv4 address of every network interface, loopback first."""
    addresses = ["127.0.0.1"]
    for interface_addresses in psutil.net_if_addrs().values():
        for snic in interface_addresses:
            if snic.family == socket.AF_INET and snic.address not in addresses:
                addresses.append(snic.address)
    return addresses


def listen_urls(config: ServerConfig) -> list[str]:
    """Build the ``scheme://address:port`` URLs the server answers on."""
    if config.host in WILDCARD_HOSTS:
        hosts = local_ipv4_addresses()
    else:
        hosts = [config.host]
    return [f"{config.scheme}://{host}:{config.port}" for host in hosts]


def log_listen_banner(config: ServerConfig) -> None:
    """Log one ``Listening on`` line per reachable address."""
    for url in listen_urls(config):
        SOCKET_LOGGER.info(
            f"Listening on {url}",
            extra={"event": "listening", "url": url, "scheme": config.scheme},
        )
