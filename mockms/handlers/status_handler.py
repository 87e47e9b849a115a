"""Fixed status code handler."""

import logging

from mockms.domain.correlation_id import CorrelationLoggerAdapter
from mockms.domain.http_types import Handler, HttpRequest, HttpResponse
from mockms.domain.response_builders import status_only_response

STATUS_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("mock_ms.handlers.status"), {}
)


def make_status_handler(code: int, verbose: bool = False) -> Handler:
    """Answer every request with ``code`` and an empty body."""

    def serve_status(request: HttpRequest) -> HttpResponse:
        if verbose:
            STATUS_LOGGER.info(
                f"Serving http code: {code} to {request.client}",
                extra={"event": "status_serve", "status_code": code},
            )
        return status_only_response(code, request)

    return serve_status
