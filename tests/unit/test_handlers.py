"""Unit tests for the response mode handlers."""

import hashlib
import re
from datetime import datetime

import pytest

from mockms.bootstrap.config import FILE_BUFFER_BYTES, ServerConfig
from mockms.domain.http_types import HttpRequest, ResponseAborted
from mockms.domain.modes import ResponseMode
from mockms.handlers.clock_handlers import (
    format_stamp,
    make_sha_handler,
    make_time_handler,
    sha_of_nanos,
)
from mockms.handlers.file_handler import FileStream, make_file_handler
from mockms.handlers.status_handler import make_status_handler
from mockms.handlers.upload_handler import (
    MISSING_FIELD_MESSAGE,
    extract_upload,
    make_upload_handler,
    safe_upload_name,
)
from mockms.pipeline.router import build_handler, build_mode_handler

BOUNDARY = "----mockmsboundary"
STAMP_PATTERN = re.compile(r"^[A-Z][a-z]{2} [ \d]\d \d{2}:\d{2}:\d{2}\.\d{6}\n$")


def make_request(method="GET", headers=None, body=b""):
    return HttpRequest(method, "/", headers or {}, body, client="127.0.0.1:4000")


def multipart_body(field, filename, payload, content_type="text/plain"):
    """Encode one file part the way curl -F does."""
    return (
        f"--{BOUNDARY}\r\n"
        f'Content-Disposition: form-data; name="{field}"; filename="{filename}"\r\n'
        f"Content-Type: {content_type}\r\n\r\n"
    ).encode() + payload + f"\r\n--{BOUNDARY}--\r\n".encode()


def upload_request(body, method="POST"):
    return make_request(
        method,
        {"content-type": f"multipart/form-data; boundary={BOUNDARY}"},
        body,
    )


class TestFileHandler:
    """Streaming a file from disk."""

    @pytest.mark.parametrize(
        "size", [0, 1, FILE_BUFFER_BYTES, FILE_BUFFER_BYTES + 1]
    )
    def test_streams_whole_file_in_buffer_sized_chunks(self, tmp_path, size):
        """Content round-trips exactly and no chunk exceeds the buffer."""
        target = tmp_path / "payload.bin"
        data = bytes(range(256)) * (size // 256) + b"x" * (size % 256)
        target.write_bytes(data)

        response = make_file_handler(str(target))(make_request())
        chunks = list(response.body_iter)

        assert response.status_code == 200
        assert response.use_chunked is True
        assert "Content-Length" not in response.headers
        assert b"".join(chunks) == data
        assert all(0 < len(chunk) <= FILE_BUFFER_BYTES for chunk in chunks)

    def test_content_length_mode_declares_size(self, tmp_path):
        """The file size is declared and chunked framing is off."""
        target = tmp_path / "payload.txt"
        target.write_bytes(b"hello world")

        response = make_file_handler(str(target), content_length=True)(make_request())

        assert response.headers["Content-Length"] == "11"
        assert response.use_chunked is False
        assert b"".join(response.body_iter) == b"hello world"

    def test_missing_file_is_server_error(self, tmp_path):
        """An unreadable file yields 500 with the open error text."""
        handler = make_file_handler(str(tmp_path / "missing"))

        response = handler(make_request())

        assert response.status_code == 500
        assert response.body == b"Internal Server Error, can't open file\n"

    def test_missing_file_with_content_length_is_stat_error(self, tmp_path):
        """The stat failure is reported before the open is attempted."""
        handler = make_file_handler(str(tmp_path / "missing"), content_length=True)

        response = handler(make_request())

        assert response.status_code == 500
        assert response.body == b"Internal Server Error, can't stat file\n"

    def test_file_reopened_per_request(self, tmp_path):
        """Changes to the file are visible on the next request."""
        target = tmp_path / "payload.txt"
        target.write_bytes(b"one")
        handler = make_file_handler(str(target))
        first = b"".join(handler(make_request()).body_iter)
        target.write_bytes(b"two")

        assert first == b"one"
        assert b"".join(handler(make_request()).body_iter) == b"two"

    def test_file_stream_close_without_iterating(self, tmp_path):
        """Closing an unstarted stream still releases the file."""
        target = tmp_path / "payload.txt"
        target.write_bytes(b"data")
        handle = open(target, "rb")  # pylint: disable=consider-using-with

        FileStream(handle).close()

        assert handle.closed

    def test_read_failure_aborts_response(self):
        """A read error surfaces as ResponseAborted and closes the file."""

        class BrokenFile:
            name = "broken"
            closed = False

            def read(self, _size):
                raise OSError("disk gone")

            def close(self):
                self.closed = True

        broken = BrokenFile()
        with pytest.raises(ResponseAborted, match="disk gone"):
            list(FileStream(broken))
        assert broken.closed


class TestClockHandlers:
    """Time and SHA modes."""

    def test_format_stamp_pads_day_with_space(self):
        """Days below ten are space padded and microseconds have six digits."""
        moment = datetime(2024, 3, 7, 9, 5, 1, 42)

        assert format_stamp(moment) == "Mar  7 09:05:01.000042"

    def test_format_stamp_two_digit_day(self):
        moment = datetime(2024, 12, 25, 23, 59, 59, 999999)

        assert format_stamp(moment) == "Dec 25 23:59:59.999999"

    def test_time_handler_body_and_headers(self):
        """The body is the arrival stamp plus newline with a matching length."""
        arrival = datetime(2024, 1, 2, 3, 4, 5)
        request = make_request()
        request.received_ns = int(arrival.timestamp()) * 1_000_000_000 + 6_000

        response = make_time_handler()(request)

        assert response.status_code == 200
        assert response.body == b"Jan  2 03:04:05.000006\n"
        assert response.headers["X-XSS-Protection"] == "1; mode=block"
        assert response.headers["Content-Length"] == str(len(response.body))

    def test_time_handler_live_clock(self):
        body = make_time_handler()(make_request()).body.decode()

        assert STAMP_PATTERN.match(body)

    def test_sha_handler_hashes_nanosecond_clock(self):
        """The body is the hex digest of the decimal nanosecond time."""
        nanos = 1_700_000_000_123_456_789
        request = make_request()
        request.received_ns = nanos
        response = make_sha_handler()(request)

        expected = hashlib.sha256(b"1700000000123456789").hexdigest()
        assert response.body == expected.encode()
        assert sha_of_nanos(nanos) == expected

    def test_sha_handler_live_clock(self):
        body = make_sha_handler()(make_request()).body.decode()

        assert re.fullmatch(r"[0-9a-f]{64}", body)

    @pytest.mark.parametrize("mode", [ResponseMode.TIME, ResponseMode.SHA])
    def test_clock_is_read_before_delay(self, mode):
        """A delayed reply still reports the moment the request arrived."""
        config = ServerConfig(mode=mode, delay=0.2)
        handler = build_handler(config)
        request = make_request()

        body = handler(request).body.decode()

        if mode is ResponseMode.TIME:
            assert body == format_stamp(request.received_at) + "\n"
        else:
            assert body == sha_of_nanos(request.received_ns)


class TestStatusHandler:
    """Fixed status mode."""

    @pytest.mark.parametrize("code", [200, 204, 404, 418, 503, 599])
    def test_returns_code_with_empty_body(self, code):
        response = make_status_handler(code)(make_request())

        assert response.status_code == code
        assert response.body == b""

    def test_unknown_code_has_generic_reason(self):
        response = make_status_handler(599)(make_request())

        assert response.status_line == "HTTP/1.1 599 Unknown Status"


class TestUploadHandler:
    """Multipart upload mode."""

    def test_upload_stores_base_name(self, tmp_path):
        """Directory components in the filename are discarded."""
        handler = make_upload_handler(str(tmp_path))
        body = multipart_body("Name", "a/b/c.txt", b"hello\r\nworld")

        response = handler(upload_request(body))

        assert response.status_code == 200
        assert response.body == b"Upload successful"
        assert (tmp_path / "c.txt").read_bytes() == b"hello\r\nworld"
        assert not (tmp_path / "a").exists()

    def test_upload_overwrites_existing_file(self, tmp_path):
        (tmp_path / "c.txt").write_bytes(b"old")
        handler = make_upload_handler(str(tmp_path))

        handler(upload_request(multipart_body("Name", "c.txt", b"new")))

        assert (tmp_path / "c.txt").read_bytes() == b"new"

    def test_upload_binary_payload(self, tmp_path):
        payload = bytes(range(256))
        handler = make_upload_handler(str(tmp_path))

        response = handler(
            upload_request(
                multipart_body("Name", "blob.bin", payload, "application/octet-stream")
            )
        )

        assert response.status_code == 200
        assert (tmp_path / "blob.bin").read_bytes() == payload

    def test_non_post_is_method_not_allowed(self, tmp_path):
        handler = make_upload_handler(str(tmp_path))

        response = handler(make_request("GET"))

        assert response.status_code == 405
        assert response.headers["Allow"] == "POST"
        assert response.body == b"Method not allowed\n"

    def test_missing_field_is_bad_request(self, tmp_path):
        """A file under another field name is not accepted."""
        handler = make_upload_handler(str(tmp_path))

        response = handler(upload_request(multipart_body("Other", "c.txt", b"x")))

        assert response.status_code == 400
        assert response.body == f"{MISSING_FIELD_MESSAGE}\n".encode()
        assert not list(tmp_path.iterdir())

    def test_non_multipart_is_bad_request(self, tmp_path):
        handler = make_upload_handler(str(tmp_path))

        response = handler(
            make_request("POST", {"content-type": "application/json"}, b"{}")
        )

        assert response.status_code == 400

    def test_unwritable_directory_is_server_error(self, tmp_path):
        handler = make_upload_handler(str(tmp_path / "missing-dir"))

        response = handler(upload_request(multipart_body("Name", "c.txt", b"x")))

        assert response.status_code == 500

    def test_extract_upload_returns_filename_and_payload(self):
        filename, payload = extract_upload(
            upload_request(multipart_body("Name", "report.csv", b"a,b\n1,2\n"))
        )

        assert filename == "report.csv"
        assert payload == b"a,b\n1,2\n"

    @pytest.mark.parametrize(
        ("filename", "expected"),
        [
            ("c.txt", "c.txt"),
            ("a/b/c.txt", "c.txt"),
            ("..\\..\\evil.txt", "evil.txt"),
            ("/etc/passwd", "passwd"),
            ("..", None),
            ("dir/", None),
            ("", None),
        ],
    )
    def test_safe_upload_name(self, filename, expected):
        assert safe_upload_name(filename) == expected


class TestRouter:
    """Mode to handler wiring."""

    def test_build_mode_handler_rejects_websocket(self):
        with pytest.raises(ValueError):
            build_mode_handler(ServerConfig(mode=ResponseMode.WEBSOCKET))

    def test_build_handler_wraps_with_injected_headers(self):
        """The composed handler carries injected and default headers."""
        config = ServerConfig(
            mode=ResponseMode.FIXED_STATUS,
            http_code=202,
            headers=(("X-Mock", "1"),),
            content_type="application/json",
        )

        response = build_handler(config)(make_request())

        assert response.status_code == 202
        assert response.headers["X-Mock"] == "1"
        assert response.headers["Content-Type"] == "application/json"
