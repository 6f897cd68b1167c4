"""Unit tests for FtpClient.

Tests that the facade validates its arguments and routes each operation
to the session, transfer manager or tree engine.
"""

import io
import pytest
from datetime import datetime
from unittest.mock import MagicMock, patch

from ftptree.config.settings import ClientSettings
from ftptree.ftp.client import FtpClient
from ftptree.ftp.codec import EntryKind
from ftptree.ftp.connection import FTPConnectionConfig
from ftptree.ftp.exceptions import (
    FTPAuthenticationError,
    FTPCommandError,
    FTPNotConnectedError,
)
from ftptree.ftp.transfer import TransferMode
from ftptree.ftp.tree import reverse_sort

from tests.conftest import make_reply


@pytest.fixture
def client() -> FtpClient:
    """FtpClient with mocked collaborators."""
    client = FtpClient()
    client._session = MagicMock()
    client._session.encoding = "utf-8"
    client._transfers = MagicMock()
    client._tree = MagicMock()
    return client


class TestConnectAndLogin:
    """Tests for connect, login and close."""

    def test_connect_builds_config(self, client):
        """Test connect passes a validated configuration to the session."""
        result = client.connect("ftp.example.com", secure=True, port=990, timeout=15)

        assert result is client
        config = client._session.connect.call_args[0][0]
        assert isinstance(config, FTPConnectionConfig)
        assert (config.host, config.port, config.secure, config.timeout) == (
            "ftp.example.com", 990, True, 15
        )

    def test_connect_invalid_port(self, client):
        """Test invalid arguments are rejected before connecting."""
        with pytest.raises(ValueError, match="Port must be between"):
            client.connect("127.0.0.1", port=0)

        client._session.connect.assert_not_called()

    def test_login_returns_client(self, client):
        """Test login chains."""
        assert client.login("alice", "secret") is client
        client._session.login.assert_called_once_with("alice", "secret")

    def test_login_defaults_to_anonymous(self, client):
        """Test anonymous login by default."""
        client.login()
        client._session.login.assert_called_once_with("anonymous", "")

    def test_context_manager_closes(self, client):
        """Test close on exit, also after an error."""
        with pytest.raises(RuntimeError):
            with client:
                raise RuntimeError("boom")

        client._session.close.assert_called_once()

    def test_operations_before_login(self):
        """Test a fresh client refuses operations."""
        client = FtpClient()

        with pytest.raises(FTPNotConnectedError):
            client.current_directory()
        with pytest.raises(FTPNotConnectedError):
            client.send_raw_command("NOOP")
        with pytest.raises(FTPNotConnectedError):
            client.upload_from_buffer("a.txt", b"data")


class TestFromSettings:
    """Tests for from_settings."""

    @patch("ftptree.ftp.client.FTPSession")
    def test_password_from_credential_store(self, mock_session_cls):
        """Test the password is looked up in the credential store."""
        settings = ClientSettings(host="10.0.0.5", port=2121, username="alice", passive_mode=False)
        credentials = MagicMock()
        credentials.get_password.return_value = "stored"

        client = FtpClient.from_settings(settings, credentials=credentials)

        session = mock_session_cls.return_value
        config = session.connect.call_args[0][0]
        assert (config.host, config.port, config.username) == ("10.0.0.5", 2121, "alice")
        session.login.assert_called_once_with("alice", "stored")
        credentials.get_password.assert_called_once_with("10.0.0.5", "alice")
        assert client.passive_mode is False

    @patch("ftptree.ftp.client.FTPSession")
    def test_explicit_password_wins(self, mock_session_cls):
        """Test an explicit password skips the credential store."""
        credentials = MagicMock()

        FtpClient.from_settings(ClientSettings(host="10.0.0.5"), password="pw", credentials=credentials)

        credentials.get_password.assert_not_called()
        mock_session_cls.return_value.login.assert_called_once_with("anonymous", "pw")

    @patch("ftptree.ftp.client.FTPSession")
    def test_missing_password_is_empty(self, mock_session_cls):
        """Test no stored password means an empty one."""
        credentials = MagicMock()
        credentials.get_password.return_value = None

        FtpClient.from_settings(ClientSettings(host="10.0.0.5", username="bob"), credentials=credentials)

        mock_session_cls.return_value.login.assert_called_once_with("bob", "")

    @patch("ftptree.ftp.client.FTPSession")
    def test_login_failure_closes(self, mock_session_cls):
        """Test the connection is closed when login fails."""
        session = mock_session_cls.return_value
        session.login.side_effect = FTPAuthenticationError("bob", make_reply(530, "Login incorrect"))

        with pytest.raises(FTPAuthenticationError):
            FtpClient.from_settings(ClientSettings(host="10.0.0.5", username="bob"), password="x")

        session.close.assert_called_once()

    def test_invalid_settings(self):
        """Test settings without a host."""
        with pytest.raises(ValueError, match="Host is required"):
            FtpClient.from_settings(ClientSettings(), password="")

    @patch("ftptree.ftp.client.FTPSession")
    def test_text_transfer_mode_from_settings(self, mock_session_cls):
        """Test the configured transfer mode becomes the client default."""
        client = FtpClient.from_settings(
            ClientSettings(host="10.0.0.5", transfer_mode="text"), password=""
        )

        assert client.transfer_mode == TransferMode.TEXT

    @patch("ftptree.ftp.client.FTPSession")
    def test_configure_logging_from_settings(self, mock_session_cls):
        """Test logging is set up from the settings only when asked."""
        settings = ClientSettings(host="10.0.0.5", log_level="WARNING")

        with patch.object(ClientSettings, "apply_logging") as mock_apply:
            FtpClient.from_settings(settings, password="")
            mock_apply.assert_not_called()

            FtpClient.from_settings(settings, password="", configure_logging=True)
            mock_apply.assert_called_once_with()


class TestDelegation:
    """Tests for operations routed to the collaborators."""

    def test_list_files(self, client):
        """Test list_files passes through directory, recursion and sort."""
        client._tree.list_files.return_value = ["www/a"]

        assert client.list_files("www", recursive=True, sort=reverse_sort) == ["www/a"]
        client._tree.list_files.assert_called_once_with("www", True, reverse_sort)

    def test_count_with_kind(self, client):
        """Test count passes the kind filter."""
        client.count("www", EntryKind.FILE, recursive=False)
        client._tree.count.assert_called_once_with("www", EntryKind.FILE, False)

    def test_create_directory(self, client):
        """Test create_directory."""
        client.create_directory("a/b", recursive=True)
        client._tree.create_directory.assert_called_once_with("a/b", True)

    def test_delete_directory_default_recursive(self, client):
        """Test delete_directory defaults to recursive."""
        client.delete_directory("www")
        client._tree.delete_directory.assert_called_once_with("www", True)

    def test_is_directory(self, client):
        """Test is_directory goes through the session probe."""
        client._session.is_directory.return_value = False

        assert client.is_directory("notes.txt") is False

    @pytest.mark.parametrize("path", ["", "   ", "a\r\nDELE b"])
    def test_invalid_remote_path(self, client, path):
        """Test empty or multi-line remote paths are rejected."""
        with pytest.raises(ValueError):
            client.delete_file(path)

        client._tree.delete_file.assert_not_called()

    def test_cancel(self, client):
        """Test cancel reaches the tree engine."""
        client.cancel()
        client._tree.cancel.assert_called_once()

    def test_set_passive_mode(self, client):
        """Test passive mode toggling."""
        client.set_passive_mode(False)
        client._transfers.set_passive_mode.assert_called_once_with(False)


class TestTransfers:
    """Tests for the transfer helpers."""

    def test_upload_from_buffer_text(self, client):
        """Test str content is encoded with the session encoding."""
        client.upload_from_buffer("hello.txt", "héllo")

        args = client._transfers.upload.call_args[0]
        assert args == (b"h\xc3\xa9llo", "hello.txt", TransferMode.BINARY)

    def test_upload_file(self, client, tmp_path):
        """Test uploading a local file stream."""
        local = tmp_path / "data.bin"
        local.write_bytes(b"\x00\x01")
        client._transfers.upload.side_effect = lambda f, path, mode, cb: len(f.read())

        assert client.upload_file(local, "data.bin", TransferMode.TEXT) == 2
        assert client._transfers.upload.call_args[0][2] == TransferMode.TEXT

    def test_upload_missing_local_file(self, client, tmp_path):
        """Test a missing local file."""
        with pytest.raises(FileNotFoundError):
            client.upload_file(tmp_path / "missing.bin", "missing.bin")

    def test_download_to_buffer(self, client):
        """Test downloading into memory."""
        def fake_download(path, sink, mode):
            sink.write(b"payload")
            return 7

        client._transfers.download.side_effect = fake_download

        assert client.download_to_buffer("remote.bin") == b"payload"

    def test_download_file_resume(self, client, tmp_path):
        """Test resume restarts from the local file size and appends."""
        local = tmp_path / "partial.bin"
        local.write_bytes(b"12345")

        def fake_download(path, sink, mode, offset, callback):
            assert offset == 5
            sink.write(b"6789")
            return 4

        client._transfers.download.side_effect = fake_download

        assert client.download_file("big.bin", local, resume=True) == 4
        assert local.read_bytes() == b"123456789"

    def test_download_file_overwrites_without_resume(self, client, tmp_path):
        """Test a plain download truncates the local file."""
        local = tmp_path / "sub" / "file.bin"
        local.parent.mkdir()
        local.write_bytes(b"old content")

        def fake_download(path, sink, mode, offset, callback):
            assert offset == 0
            sink.write(b"new")
            return 3

        client._transfers.download.side_effect = fake_download
        client.download_file("file.bin", local)

        assert local.read_bytes() == b"new"


class TestServerCommands:
    """Tests for rename, chmod and the informational commands."""

    def test_rename(self, client):
        """Test RNFR/RNTO."""
        client._session.send_command.return_value = make_reply(350, "Ready for RNTO")

        client.rename("old.txt", "new.txt")

        client._session.send_command.assert_called_once_with("RNFR", "old.txt")
        client._session.void_command.assert_called_once_with("RNTO", "new.txt")

    def test_rename_missing_source(self, client):
        """Test RNFR refusal."""
        client._session.send_command.return_value = make_reply(550, "No such file")

        with pytest.raises(FTPCommandError, match="RNFR old.txt"):
            client.rename("old.txt", "new.txt")

        client._session.void_command.assert_not_called()

    def test_chmod_octal(self, client):
        """Test the mode is sent in octal."""
        client.chmod(0o755, "script.sh")
        client._session.void_command.assert_called_once_with("SITE", "CHMOD", "755", "script.sh")

    def test_get_size(self, client):
        """Test SIZE is asked in binary type."""
        client._session.void_command.side_effect = [make_reply(200), make_reply(213, "35")]

        assert client.get_size("www/index.html") == 35
        assert client._session.void_command.call_args_list[0][0] == ("TYPE", "I")

    def test_get_modified_time(self, client):
        """Test MDTM parsing."""
        client._session.send_command.return_value = make_reply(213, "20240131120000")

        assert client.get_modified_time("a.txt") == datetime(2024, 1, 31, 12, 0, 0)

    def test_get_modified_time_unsupported(self, client):
        """Test servers without MDTM for the path."""
        client._session.send_command.return_value = make_reply(550, "Not a plain file")

        assert client.get_modified_time("www") is None

    def test_system_type(self, client):
        """Test SYST text."""
        client._session.void_command.return_value = make_reply(215, "UNIX Type: L8")

        assert client.system_type() == "UNIX Type: L8"

    def test_help(self, client):
        """Test HELP returns the whole reply."""
        reply = make_reply(214, "Commands:", " USER PASS", "Help OK")
        client._session.void_command.return_value = reply

        assert client.help() is reply

    def test_send_raw_command(self, client):
        """Test the raw escape hatch returns the reply unchecked."""
        client._session.send_command.return_value = make_reply(502, "Not implemented")

        assert client.send_raw_command("feat").code == 502
        client._session.send_command.assert_called_once_with("feat")
