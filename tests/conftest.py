"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"
HOST = "127.0.0.1"


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    directory: Path
    process: subprocess.Popen[str]
    log_file: Path


def server_command(port: int, log_file: Path, extra_args: list[str]) -> list[str]:
    """Build the command line that starts the server on ``port``."""
    return [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "-host",
        HOST,
        "-port",
        str(port),
        "--log-destination",
        str(log_file),
        *extra_args,
    ]


def _stop(process: subprocess.Popen[str]) -> None:
    process.terminate()
    try:
        process.wait(timeout=5)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait(timeout=5)


@pytest.fixture(name="launch_server")
def _launch_server(
    tmp_path_factory: "TempPathFactory",
) -> Generator[Callable[..., ServerProcessInfo], None, None]:
    """Start servers with arbitrary flags; all are stopped at teardown.

    The working directory of each server is a fresh temporary directory, which
    is where uploads land.
    """
    started: list[subprocess.Popen[str]] = []

    def launch(*extra_args: str, scheme: str = "http") -> ServerProcessInfo:
        port = reserve_port(HOST)
        directory = tmp_path_factory.mktemp("mock-ms")
        log_file = directory / "server.log"
        # pylint: disable=consider-using-with
        process = subprocess.Popen(
            server_command(port, log_file, list(extra_args)),
            cwd=directory,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        started.append(process)
        try:
            wait_for_port(HOST, port)
        except Exception:
            _stop(process)
            stdout, stderr = process.communicate(timeout=1)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise
        return {
            "base_url": f"{scheme}://{HOST}:{port}",
            "host": HOST,
            "port": port,
            "directory": directory,
            "process": process,
            "log_file": log_file,
        }

    yield launch

    for process in started:
        if process.poll() is None:
            _stop(process)


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""
    return PROJECT_ROOT
