"""Cross-cutting request behaviors composed around the active handler.

Each middleware is a ``wrap(handler) -> handler`` callable. ``build_chain``
returns them outermost first: tracing, request dump, the upload method guard,
delay, header injection and RPS accounting.
"""

import logging
import time
from typing import Callable, Iterable, Optional

from opentelemetry.trace import SpanKind, Status, StatusCode, Tracer
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from mockms.bootstrap.config import ServerConfig
from mockms.domain.correlation_id import CorrelationLoggerAdapter
from mockms.domain.headers import build_injected_headers, merge_headers
from mockms.domain.http_types import Handler, HttpRequest, HttpResponse
from mockms.domain.modes import ResponseMode
from mockms.domain.request_counter import RequestCounter
from mockms.domain.response_builders import method_not_allowed_response
from mockms.handlers.upload_handler import ALLOWED_METHODS

MIDDLEWARE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("mock_ms.pipeline.middleware"), {}
)

Middleware = Callable[[Handler], Handler]

SPAN_NAME = "mock-ms-handler"
TRACE_PROPAGATOR = TraceContextTextMapPropagator()


def tracing_middleware(tracer: Tracer) -> Middleware:
    """Open a server span per request, continuing an inbound ``traceparent``."""

    def wrap(handler: Handler) -> Handler:
        def traced(request: HttpRequest) -> HttpResponse:
            parent = TRACE_PROPAGATOR.extract(carrier=request.headers)
            with tracer.start_as_current_span(
                SPAN_NAME,
                context=parent,
                kind=SpanKind.SERVER,
                attributes={
                    "http.request.method": request.method,
                    "url.path": request.path,
                },
            ) as span:
                response = handler(request)
                span.set_attribute("http.response.status_code", response.status_code)
                if response.status_code >= 500:
                    span.set_status(Status(StatusCode.ERROR))
                return response

        return traced

    return wrap


def format_request_dump(request: HttpRequest) -> str:
    """Render the request line, headers and body the way they arrived."""
    lines = [f"{request.method} {request.target or request.path} {request.version}"]
    lines.extend(f"{name}: {value}" for name, value in request.raw_headers)
    head = "\r\n".join(lines)
    return f"{head}\r\n\r\n{request.body.decode('utf-8', errors='replace')}"


def dump_request_middleware(handler: Handler) -> Handler:
    """Log the full inbound request before anything else runs."""

    def dump_request(request: HttpRequest) -> HttpResponse:
        try:
            dump = format_request_dump(request)
        except (AttributeError, TypeError, ValueError) as error:
            MIDDLEWARE_LOGGER.error(
                "Error dumping request",
                extra={"event": "request_dump_failed", "error": str(error)},
            )
        else:
            MIDDLEWARE_LOGGER.info(
                "Request dump\n%s",
                dump,
                extra={"event": "request_dump", "client": request.client},
            )
        return handler(request)

    return dump_request


def method_guard_middleware(allowed: set[str]) -> Middleware:
    """Answer 405 for other methods before any delay, header or RPS step."""

    def wrap(handler: Handler) -> Handler:
        def guarded(request: HttpRequest) -> HttpResponse:
            if request.method not in allowed:
                return method_not_allowed_response(request, allowed)
            return handler(request)

        return guarded

    return wrap


def delay_middleware(delay: float, verbose: bool = False) -> Middleware:
    """Sleep ``delay`` seconds in the worker thread before handling."""

    def wrap(handler: Handler) -> Handler:
        def delayed(request: HttpRequest) -> HttpResponse:
            if verbose:
                MIDDLEWARE_LOGGER.info(
                    "Waiting", extra={"event": "delay_started", "delay_seconds": delay}
                )
            time.sleep(delay)
            if verbose:
                MIDDLEWARE_LOGGER.info("Waiting over", extra={"event": "delay_finished"})
            return handler(request)

        return delayed

    return wrap


def header_middleware(injected: dict[str, str]) -> Middleware:
    """Apply configured headers; the handler's own headers take precedence."""

    def wrap(handler: Handler) -> Handler:
        def with_headers(request: HttpRequest) -> HttpResponse:
            response = handler(request)
            response.headers = merge_headers(injected, response.headers)
            return response

        return with_headers

    return wrap


def rps_middleware(counter: RequestCounter) -> Middleware:
    """Count every handled request and log the rate when a window closes."""

    def wrap(handler: Handler) -> Handler:
        def counted(request: HttpRequest) -> HttpResponse:
            try:
                return handler(request)
            finally:
                rate = counter.record()
                if rate is not None:
                    MIDDLEWARE_LOGGER.info(
                        "RPS: %.2f", rate, extra={"event": "rps", "rps": rate}
                    )

        return counted

    return wrap


def build_chain(
    config: ServerConfig,
    counter: Optional[RequestCounter] = None,
    tracer: Optional[Tracer] = None,
) -> list[Middleware]:
    """Return the middleware enabled by ``config``, outermost first."""
    chain: list[Middleware] = []
    if tracer is not None:
        chain.append(tracing_middleware(tracer))
    if config.dump_req:
        chain.append(dump_request_middleware)
    if config.mode is ResponseMode.UPLOAD:
        chain.append(method_guard_middleware(ALLOWED_METHODS))
    if config.delay > 0:
        chain.append(delay_middleware(config.delay, config.verbose))
    chain.append(
        header_middleware(build_injected_headers(list(config.headers), config.content_type))
    )
    if config.rps and counter is not None:
        chain.append(rps_middleware(counter))
    return chain


def apply_middleware(handler: Handler, chain: Iterable[Middleware]) -> Handler:
    """Wrap ``handler`` so the first middleware in ``chain`` runs first."""
    for middleware in reversed(list(chain)):
        handler = middleware(handler)
    return handler
