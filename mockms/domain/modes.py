"""Response mode selection."""

from enum import Enum


class ResponseMode(Enum):
    """The single response behavior a server instance runs with."""

    WEBSOCKET = "websocket"
    TIME = "time"
    SHA = "sha"
    FIXED_STATUS = "fixed_status"
    UPLOAD = "upload"
    FILE = "file"


def select_mode(
    *,
    websocket: bool,
    time: bool,
    sha: bool,
    http_code: int,
    upload_file: bool,
    file: str,
):
    """Pick the active mode by precedence, or None when nothing is selected.

    Precedence: websocket, time, sha, fixed status, upload, file.
    """
    # pylint: disable=too-many-arguments,too-many-return-statements
    if websocket:
        return ResponseMode.WEBSOCKET
    if time:
        return ResponseMode.TIME
    if sha:
        return ResponseMode.SHA
    if http_code != 0:
        return ResponseMode.FIXED_STATUS
    if upload_file:
        return ResponseMode.UPLOAD
    if file:
        return ResponseMode.FILE
    return None
