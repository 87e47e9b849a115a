"""Configurable mock microservice serving one canned response behavior."""

import logging
import sys
from typing import Optional

from opentelemetry.sdk.trace import TracerProvider

from mockms.bootstrap.config import (
    ConfigError,
    ServerConfig,
    UsageError,
    build_parser,
    parse_cli_args,
    resolve_config,
)
from mockms.bootstrap.logging_setup import configure_logging
from mockms.bootstrap.socket_factory import StartupError, create_tls_context
from mockms.bootstrap.tracing import (
    INSTRUMENTATION_NAME,
    configure_tracing,
    shutdown_tracing,
)
from mockms.domain.correlation_id import CorrelationLoggerAdapter
from mockms.domain.request_counter import RequestCounter
from mockms.lifecycle.state import ServerLifecycle, install_signal_handlers
from mockms.transport.accept_loop import run_server
from mockms.websocket.session import run_websocket_server

SERVER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("mock_ms.server"), {})


def _log_startup(config: ServerConfig) -> None:
    SERVER_LOGGER.info(
        "Starting mock server",
        extra={
            "event": "server_starting",
            "mode": config.mode.value,
            "host": config.host,
            "port": config.port,
            "tls": config.tls,
            "delay_seconds": config.delay,
            "socket_timeout": config.socket_timeout,
            "shutdown_grace_seconds": config.shutdown_grace_seconds,
        },
    )


def serve(
    config: ServerConfig,
    lifecycle: ServerLifecycle,
    tracer_provider: Optional[TracerProvider] = None,
) -> None:
    """Run the listener matching the configured mode until shutdown.

    WebSocket sessions are not traced; HTTP requests get one span each when
    a tracer provider is configured.
    """
    tls_context = create_tls_context(config)
    if config.websocket:
        run_websocket_server(config, lifecycle, tls_context)
        return
    tracer = (
        tracer_provider.get_tracer(INSTRUMENTATION_NAME)
        if tracer_provider is not None
        else None
    )
    run_server(config, lifecycle, tls_context, RequestCounter(), tracer)


def main(argv: Optional[list[str]] = None) -> int:
    """Parse options, start the server and return the process exit code."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    configure_logging(
        "DEBUG" if args.verbose else args.log_level,
        args.log_destination,
        args.log_json,
        args.service_name,
    )

    try:
        config = resolve_config(args)
    except UsageError:
        build_parser().print_help(sys.stderr)
        return 1
    except ConfigError as error:
        SERVER_LOGGER.critical(str(error), extra={"event": "config_invalid"})
        print(f"mock-ms: {error}", file=sys.stderr)
        return 1

    lifecycle = ServerLifecycle()
    install_signal_handlers(lifecycle)
    _log_startup(config)
    tracer_provider = configure_tracing(config)
    try:
        serve(config, lifecycle, tracer_provider)
    except StartupError as error:
        print(f"mock-ms: {error}", file=sys.stderr)
        return 1
    finally:
        shutdown_tracing(tracer_provider)
    return 0


if __name__ == "__main__":
    sys.exit(main())
