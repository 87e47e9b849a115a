"""File serving handler."""

import logging
import os
from typing import BinaryIO, Iterator

from mockms.bootstrap.config import FILE_BUFFER_BYTES
from mockms.domain.correlation_id import CorrelationLoggerAdapter
from mockms.domain.http_types import (
    Handler,
    HttpRequest,
    HttpResponse,
    ResponseAborted,
    should_close,
    status_line,
)
from mockms.domain.response_builders import error_response

FILE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("mock_ms.handlers.file"), {}
)


class FileStream:
    """Iterable over an open file in fixed-size chunks.

    The file is closed when iteration ends or ``close`` is called, even if
    iteration never started. A read failure is logged and surfaces as
    ``ResponseAborted`` so only the current response is torn down.
    """

    def __init__(self, file_handle: BinaryIO, chunk_size: int = FILE_BUFFER_BYTES):
        self._file_handle = file_handle
        self._chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        try:
            while True:
                chunk = self._read()
                if not chunk:
                    break
                if FILE_LOGGER.logger.isEnabledFor(logging.DEBUG):
                    FILE_LOGGER.debug(
                        "File chunk sent",
                        extra={"event": "file_chunk_sent", "bytes": len(chunk)},
                    )
                yield chunk
        finally:
            self.close()

    def _read(self) -> bytes:
        try:
            return self._file_handle.read(self._chunk_size)
        except OSError as error:
            FILE_LOGGER.error(
                "Error reading file",
                extra={
                    "event": "file_read_failed",
                    "path": getattr(self._file_handle, "name", "-"),
                    "error": str(error),
                },
            )
            raise ResponseAborted(str(error)) from error

    def close(self) -> None:
        self._file_handle.close()


def make_file_handler(
    path: str, content_length: bool = False, verbose: bool = False
) -> Handler:
    """Build a handler that streams ``path`` on every request."""

    def serve_file(request: HttpRequest) -> HttpResponse:
        if verbose:
            FILE_LOGGER.info(
                f"Serving {path} to {request.client}",
                extra={"event": "file_serve", "path": path, "client": request.client},
            )
        headers: dict[str, str] = {}
        if content_length:
            try:
                size = os.stat(path).st_size
            except OSError as error:
                FILE_LOGGER.error(
                    "Unable to stat file",
                    extra={"event": "file_stat_failed", "path": path, "error": str(error)},
                )
                return error_response(
                    500, "Internal Server Error, can't stat file", request
                )
            headers["Content-Length"] = str(size)
        try:
            file_handle = open(path, "rb")  # pylint: disable=consider-using-with
        except OSError as error:
            FILE_LOGGER.error(
                "Unable to load file",
                extra={"event": "file_open_failed", "path": path, "error": str(error)},
            )
            return error_response(500, "Internal Server Error, can't open file", request)
        return HttpResponse(
            status_line(200),
            headers,
            b"",
            should_close(request.headers),
            body_iter=FileStream(file_handle),
            use_chunked=not content_length,
        )

    return serve_file
