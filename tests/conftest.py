"""Pytest configuration and shared fixtures for ftptree tests."""

import io
import pytest
from pathlib import Path
from typing import Generator, Iterable, List
from unittest.mock import MagicMock

from ftptree.ftp.codec import Reply
from ftptree.ftp.connection import FTPConnectionConfig, FTPSession
from ftptree.ftp.transport import SocketTransport


# Test constants
TEST_FTP_HOST = "127.0.0.1"
TEST_FTP_PORT = 2121
TEST_FTP_USER = "testuser"
TEST_FTP_PASS = "testpass"


def make_reply(code: int, *lines: str) -> Reply:
    """Build a Reply without going through the wire."""
    lines = lines or ("OK",)
    return Reply(code=code, lines=tuple(lines), multiline=len(lines) > 1)


class FakeControlSocket:
    """
    Scripted control connection.

    Replies are served from a byte buffer through makefile(); every
    command sent is recorded in ``sent`` as a decoded line without CRLF.
    """

    family = 2  # socket.AF_INET

    def __init__(self, script: Iterable[bytes] = ()):
        self._buffer = io.BytesIO(b"".join(script))
        self.sent: List[str] = []
        self.closed = False

    def makefile(self, mode: str = "rb"):
        return self._buffer

    def sendall(self, data: bytes) -> None:
        self.sent.append(data.decode("utf-8").rstrip("\r\n"))

    def getsockname(self):
        return ("127.0.0.1", 50000)

    def getpeername(self):
        return ("127.0.0.1", 21)

    def close(self) -> None:
        self.closed = True


def connected_session(*replies: bytes, authenticated: bool = True):
    """
    Create an FTPSession driven by a FakeControlSocket.

    The greeting and, when authenticated, a 230 login reply are prepended.
    Returns (session, fake_socket).
    """
    script = [b"220 Service ready\r\n"]
    if authenticated:
        script.append(b"230 Logged in\r\n")
    script.extend(replies)

    fake = FakeControlSocket(script)
    transport = MagicMock(spec=SocketTransport)
    transport.open_connection.return_value = fake

    session = FTPSession(transport)
    session.connect(FTPConnectionConfig(host=TEST_FTP_HOST, port=TEST_FTP_PORT))
    if authenticated:
        session.login(TEST_FTP_USER, TEST_FTP_PASS)
    return session, fake


@pytest.fixture
def ftp_config() -> FTPConnectionConfig:
    """Provide a connection configuration for tests."""
    return FTPConnectionConfig(host=TEST_FTP_HOST, port=TEST_FTP_PORT, username=TEST_FTP_USER)


@pytest.fixture
def temp_settings_file(tmp_path: Path) -> Generator[Path, None, None]:
    """Provide a temporary settings file path for testing."""
    settings_file = tmp_path / "settings.json"
    yield settings_file
    # Cleanup handled by tmp_path fixture


@pytest.fixture
def local_tree(tmp_path: Path) -> Path:
    """Create a small local directory tree for upload tests."""
    root = tmp_path / "site"
    (root / "assets" / "img").mkdir(parents=True)
    (root / "index.html").write_text("<h1>home</h1>\n")
    (root / "assets" / "style.css").write_text("a { color: red; }\n")
    (root / "assets" / "img" / "logo.bin").write_bytes(bytes(range(256)) * 4)
    return root


@pytest.fixture
def ftp_server():
    """Provide a running mock FTP server."""
    from tests.integration.mock_ftp_server import MockFTPServer

    server = MockFTPServer()
    server.start()
    yield server
    server.stop()
