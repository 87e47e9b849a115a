"""Server configuration and CLI argument parsing."""

import argparse
import os
from dataclasses import dataclass
from typing import Optional

from mockms.domain.duration import DurationError, parse_duration
from mockms.domain.headers import HeaderSpecError, parse_header_spec
from mockms.domain.modes import ResponseMode, select_mode


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


MAX_BODY_BYTES = _env_int("MOCK_MS_MAX_BODY_BYTES", 64 * 1024 * 1024)
DEFAULT_SOCKET_TIMEOUT = _env_int("MOCK_MS_SOCKET_TIMEOUT", 60)
DEFAULT_SHUTDOWN_GRACE_SECONDS = _env_int("MOCK_MS_SHUTDOWN_GRACE_SECONDS", 30)
DEFAULT_LOG_JSON = _env_bool("MOCK_MS_LOG_JSON", True)

HEADER_DELIMITER = b"\r\n\r\n"
FILE_BUFFER_BYTES = 10 * 1024 * 1024
DEFAULT_SERVICE_NAME = "mock-ms"


class ConfigError(Exception):
    """Raised when command-line options fail validation."""


class UsageError(ConfigError):
    """Raised when no response mode was selected at all."""


@dataclass(frozen=True)
class ServerConfig:
    """Immutable configuration resolved once at startup."""

    # pylint: disable=too-many-instance-attributes
    mode: ResponseMode
    host: str = "0.0.0.0"
    port: int = 8080
    file: str = ""
    content_type: str = "text/plain"
    headers: tuple[tuple[str, str], ...] = ()
    delay: float = 0.0
    cert: str = ""
    key: str = ""
    http_code: int = 0
    verbose: bool = False
    dump_req: bool = False
    keep_case: bool = False
    content_length: bool = False
    rps: bool = False
    nokeepalive: bool = False
    wsflood: bool = False
    upload_dir: str = "."
    otel_endpoint: str = ""
    service_name: str = DEFAULT_SERVICE_NAME
    socket_timeout: int = DEFAULT_SOCKET_TIMEOUT
    shutdown_grace_seconds: int = DEFAULT_SHUTDOWN_GRACE_SECONDS
    max_body_bytes: int = MAX_BODY_BYTES

    @property
    def tls(self) -> bool:
        """True when a certificate/key pair was supplied."""
        return bool(self.cert and self.key)

    @property
    def websocket(self) -> bool:
        """True when the WebSocket handler serves every connection."""
        return self.mode is ResponseMode.WEBSOCKET

    @property
    def scheme(self) -> str:
        """URL scheme advertised in the startup banner."""
        if self.websocket:
            return "wss" if self.tls else "ws"
        return "https" if self.tls else "http"


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser; every option takes one or two dashes."""
    parser = argparse.ArgumentParser(
        prog="mock-ms",
        description="Configurable mock microservice",
        allow_abbrev=False,
    )
    parser.add_argument("-port", "--port", default="8080", help="The port to listen on")
    parser.add_argument(
        "-host",
        "--host",
        default=os.getenv("MOCK_MS_HOST", "0.0.0.0"),
        help="The address to bind",
    )
    parser.add_argument("-file", "--file", default="", help="File to serve")
    parser.add_argument(
        "-contentType",
        "--contentType",
        dest="content_type",
        default="text/plain",
        help="The content type to put into the Content-Type header",
    )
    parser.add_argument("-verbose", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument(
        "-nokeepalive",
        "--nokeepalive",
        action="store_true",
        help="Disable keep-alives, closing each connection after one response",
    )
    parser.add_argument(
        "-dumpReq", "--dumpReq", dest="dump_req", action="store_true", help="Dump the request"
    )
    parser.add_argument(
        "-keepCase",
        "--keepCase",
        dest="keep_case",
        action="store_true",
        help="Do not canonicalize the case of injected header names",
    )
    parser.add_argument(
        "-contentLength",
        "--contentLength",
        dest="content_length",
        action="store_true",
        help="Populate the Content-Length header in the reply",
    )
    parser.add_argument(
        "-time",
        "--time",
        action="store_true",
        help="Return the timestamp rather than the contents of a file",
    )
    parser.add_argument(
        "-SHA", "--SHA", dest="sha", action="store_true", help="Return a sha256 of the time"
    )
    parser.add_argument(
        "-uploadFile",
        "--uploadFile",
        dest="upload_file",
        action="store_true",
        help=(
            "Accept a file via POST and save it locally. Expects 'Name' in the form."
            " Bodies over MOCK_MS_MAX_BODY_BYTES (default 64 MiB) are refused with 413"
        ),
    )
    parser.add_argument(
        "-rps",
        "--rps",
        action="store_true",
        help="Print the RPS every minute (provided there is a request)",
    )
    parser.add_argument(
        "-websocket", "--websocket", action="store_true", help="Enable WebSocket support"
    )
    parser.add_argument(
        "-wsflood",
        "--wsflood",
        action="store_true",
        help="Flood timestamps into the websocket once a message is received",
    )
    parser.add_argument(
        "-delay", "--delay", default="0s", help="Duration to wait before replying"
    )
    parser.add_argument(
        "-headers",
        "--headers",
        default="",
        help="Headers to add to the reply as Name:Value, separated by commas",
    )
    parser.add_argument(
        "-cert", "--cert", default="", help="PEM encoded certificate to use for https"
    )
    parser.add_argument(
        "-key", "--key", default="", help="PEM encoded key to use with certificate"
    )
    parser.add_argument(
        "-HttpCode",
        "--HttpCode",
        dest="http_code",
        type=int,
        default=0,
        help="HTTP code to return. Nothing else returned",
    )
    parser.add_argument(
        "-otel-endpoint",
        "--otel-endpoint",
        dest="otel_endpoint",
        default="",
        help="OpenTelemetry collector gRPC endpoint",
    )
    parser.add_argument(
        "-service-name",
        "--service-name",
        dest="service_name",
        default=DEFAULT_SERVICE_NAME,
        help="Service name for tracing and logs",
    )
    parser.add_argument(
        "-upload-dir",
        "--upload-dir",
        dest="upload_dir",
        default=".",
        help="Directory uploaded files are written to",
    )
    default_log_level = os.getenv("MOCK_MS_LOG_LEVEL", "INFO").upper()
    default_destination = os.getenv("MOCK_MS_LOG_DESTINATION", "stdout")
    parser.add_argument(
        "-log-level",
        "--log-level",
        dest="log_level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "-log-destination",
        "--log-destination",
        dest="log_destination",
        default=default_destination,
        help="stdout or a file path",
    )
    parser.add_argument(
        "--log-json",
        dest="log_json",
        action=argparse.BooleanOptionalAction,
        default=DEFAULT_LOG_JSON,
        help="Emit structured JSON log lines",
    )
    parser.add_argument(
        "-socket-timeout",
        "--socket-timeout",
        dest="socket_timeout",
        type=int,
        default=DEFAULT_SOCKET_TIMEOUT,
        help="Socket timeout in seconds for request processing",
    )
    parser.add_argument(
        "-shutdown-grace-seconds",
        "--shutdown-grace-seconds",
        dest="shutdown_grace_seconds",
        type=int,
        default=DEFAULT_SHUTDOWN_GRACE_SECONDS,
        help="Grace period in seconds for graceful shutdown",
    )
    return parser


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for server configuration."""
    return build_parser().parse_args(argv)


def _resolve_port(raw_port: str) -> int:
    try:
        port = int(raw_port)
    except ValueError as exc:
        raise ConfigError(f"invalid port {raw_port!r}") from exc
    if not 0 < port < 65536:
        raise ConfigError(f"port {port} out of range")
    return port


def resolve_config(args: argparse.Namespace) -> ServerConfig:
    """Validate parsed arguments and build the immutable server configuration."""
    if bool(args.cert) != bool(args.key):
        raise ConfigError("Either cert and key should both be given or neither")

    try:
        delay = parse_duration(args.delay)
    except DurationError as exc:
        raise ConfigError(str(exc)) from exc

    if args.http_code != 0 and not 100 <= args.http_code <= 599:
        raise ConfigError(f"HttpCode {args.http_code} is not in 100..599")

    try:
        headers = parse_header_spec(args.headers, keep_case=args.keep_case)
    except HeaderSpecError as exc:
        raise ConfigError(str(exc)) from exc

    websocket = args.websocket or args.wsflood
    mode: Optional[ResponseMode] = select_mode(
        websocket=websocket,
        time=args.time,
        sha=args.sha,
        http_code=args.http_code,
        upload_file=args.upload_file,
        file=args.file,
    )
    if mode is None:
        raise UsageError("no response mode selected and no file given")

    return ServerConfig(
        mode=mode,
        host=args.host,
        port=_resolve_port(args.port),
        file=args.file,
        content_type=args.content_type,
        headers=tuple(headers),
        delay=delay,
        cert=args.cert,
        key=args.key,
        http_code=args.http_code,
        verbose=args.verbose,
        dump_req=args.dump_req,
        keep_case=args.keep_case,
        content_length=args.content_length,
        rps=args.rps,
        nokeepalive=args.nokeepalive,
        wsflood=args.wsflood,
        upload_dir=args.upload_dir,
        otel_endpoint=args.otel_endpoint,
        service_name=args.service_name,
        socket_timeout=args.socket_timeout,
        shutdown_grace_seconds=args.shutdown_grace_seconds,
    )
