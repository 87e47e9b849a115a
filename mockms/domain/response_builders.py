"""Pure HTTP response builders."""

from typing import Optional

from mockms.domain.http_types import HttpRequest, HttpResponse, should_close, status_line

ERROR_CONTENT_TYPE = "text/plain; charset=utf-8"
BODYLESS_STATUS_CODES = frozenset({204, 304})


def _keep_alive_preference(request: Optional[HttpRequest]) -> bool:
    return should_close(request.headers) if request is not None else True


def text_response(
    message: str,
    request: HttpRequest,
    extra_headers: Optional[dict[str, str]] = None,
) -> HttpResponse:
    """Return a 200 response carrying ``message`` without setting Content-Type."""
    return HttpResponse(
        status_line(200),
        dict(extra_headers or {}),
        message.encode(),
        should_close(request.headers),
    )


def error_response(
    code: int, message: str, request: Optional[HttpRequest]
) -> HttpResponse:
    """Produce a plain-text error response with a trailing newline."""
    headers = {
        "Content-Type": ERROR_CONTENT_TYPE,
        "X-Content-Type-Options": "nosniff",
    }
    return HttpResponse(
        status_line(code),
        headers,
        f"{message}\n".encode(),
        _keep_alive_preference(request),
    )


def status_only_response(code: int, request: HttpRequest) -> HttpResponse:
    """Produce a response with the given status and an empty body."""
    return HttpResponse(status_line(code), {}, b"", should_close(request.headers))


def method_not_allowed_response(
    request: HttpRequest, allowed_methods: set[str]
) -> HttpResponse:
    """Produce a 405 response enumerating the supported HTTP methods."""
    response = error_response(405, "Method not allowed", request)
    response.headers["Allow"] = ", ".join(sorted(allowed_methods))
    return response


def bad_request_response(request: Optional[HttpRequest] = None) -> HttpResponse:
    """Produce a 400 response; without a parsed request the connection closes."""
    return error_response(400, "Bad Request", request)


def entity_too_large_response() -> HttpResponse:
    """Produce a 413 response that always closes the connection."""
    response = error_response(413, "Request Entity Too Large", None)
    response.close_connection = True
    return response


def draining_response() -> HttpResponse:
    """Produce a 503 response indicating the server is draining."""
    return HttpResponse(
        status_line(503),
        {"Connection": "close"},
        b"draining",
        True,
    )


def omits_content_length(code: int) -> bool:
    """Return True for statuses that must not carry a Content-Length header."""
    return code < 200 or code in BODYLESS_STATUS_CODES
