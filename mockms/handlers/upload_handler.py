"""Multipart upload handler."""

import logging
import posixpath
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from pathlib import Path
from typing import Optional, Tuple

from mockms.domain.correlation_id import CorrelationLoggerAdapter
from mockms.domain.http_types import Handler, HttpRequest, HttpResponse
from mockms.domain.response_builders import (
    error_response,
    method_not_allowed_response,
    text_response,
)

UPLOAD_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("mock_ms.handlers.upload"), {}
)

FORM_FIELD = "Name"
MISSING_FIELD_MESSAGE = "Form name is missing use 'curl -X POST -F Name=@filename'"
ALLOWED_METHODS = {"POST"}


class MissingFormField(Exception):
    """Raised when the request carries no file part named ``Name``."""


def _parse_multipart(content_type: str, body: bytes) -> EmailMessage:
    head = f"Content-Type: {content_type}\r\nMIME-Version: 1.0\r\n\r\n".encode("latin-1")
    return BytesParser(policy=policy.HTTP).parsebytes(head + body)


def extract_upload(request: HttpRequest, field: str = FORM_FIELD) -> Tuple[str, bytes]:
    """Return (filename, payload) of the multipart file part named ``field``."""
    content_type = request.headers.get("content-type", "")
    if not content_type.lower().startswith("multipart/form-data"):
        raise MissingFormField("request is not multipart/form-data")
    message = _parse_multipart(content_type, request.body)
    if not message.is_multipart():
        raise MissingFormField("multipart body could not be parsed")
    for part in message.iter_parts():
        name = part.get_param("name", header="content-disposition")
        filename = part.get_filename()
        if name != field or filename is None:
            continue
        payload = part.get_payload(decode=True)
        return filename, payload if payload is not None else b""
    raise MissingFormField(f"no file field named {field!r}")


def safe_upload_name(filename: str) -> Optional[str]:
    """Strip directory components; None when nothing usable remains."""
    base = posixpath.basename(filename.replace("\\", "/"))
    if base in ("", ".", ".."):
        return None
    return base


def make_upload_handler(upload_dir: str = ".", verbose: bool = False) -> Handler:
    """Build a handler that stores the ``Name`` form file under ``upload_dir``.

    Concurrent uploads of the same filename race and the last writer wins.
    """
    target_dir = Path(upload_dir)

    def accept_upload(request: HttpRequest) -> HttpResponse:
        if request.method not in ALLOWED_METHODS:
            return method_not_allowed_response(request, ALLOWED_METHODS)
        try:
            filename, payload = extract_upload(request)
        except MissingFormField as error:
            UPLOAD_LOGGER.warning(
                MISSING_FIELD_MESSAGE,
                extra={"event": "upload_field_missing", "error": str(error)},
            )
            return error_response(400, MISSING_FIELD_MESSAGE, request)

        stored_name = safe_upload_name(filename)
        if stored_name is None:
            return error_response(400, f"invalid upload filename {filename!r}", request)
        if verbose:
            UPLOAD_LOGGER.info(
                f"Uploading {filename} from {request.client}",
                extra={"event": "upload_started", "client": request.client},
            )
        destination = target_dir / stored_name
        try:
            destination.write_bytes(payload)
        except OSError as error:
            UPLOAD_LOGGER.error(
                "Upload write failed",
                extra={
                    "event": "upload_write_failed",
                    "path": destination.as_posix(),
                    "error": str(error),
                },
            )
            return error_response(500, str(error), request)
        UPLOAD_LOGGER.info(
            "Upload stored",
            extra={
                "event": "upload_stored",
                "path": destination.as_posix(),
                "bytes": len(payload),
            },
        )
        return text_response("Upload successful", request)

    return accept_upload
