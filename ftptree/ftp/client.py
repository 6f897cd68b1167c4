"""Public FTP client for ftptree.

FtpClient composes the control session, the transfer manager and the
directory tree engine behind one explicit set of operations:

    with FtpClient() as client:
        client.connect("ftp.example.com").login("user", "secret")
        client.upload_from_buffer("notes/hello.txt", b"hello")
        print(client.list_files("notes", recursive=True))
"""

import io
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from ftptree.config.credentials import CredentialManager
from ftptree.config.settings import ClientSettings
from ftptree.ftp.codec import (
    DEFAULT_ENCODING,
    EntryKind,
    ListingEntry,
    Reply,
    parse_mdtm_reply,
    parse_size_reply,
)
from ftptree.ftp.connection import FTPConnectionConfig, FTPSession
from ftptree.ftp.exceptions import FTPCommandError, FTPError
from ftptree.ftp.transfer import DataTransferManager, ProgressCallback, TransferMode
from ftptree.ftp.transport import SocketTransport
from ftptree.ftp.tree import DirectoryTree, SortStrategy, TreeTransferResult, default_sort
from ftptree.utils.validators import validate_remote_path

logger = logging.getLogger("ftptree.client")


def _check_path(path: str) -> str:
    is_valid, error = validate_remote_path(path)
    if not is_valid:
        raise ValueError(error)
    return path


class FtpClient:
    """FTP client with recursive directory operations."""

    def __init__(
        self,
        transport: Optional[SocketTransport] = None,
        passive_mode: bool = True,
        transfer_mode: TransferMode = TransferMode.BINARY,
    ):
        """
        Initialize the client. No connection is made until connect().

        Args:
            transport: Socket transport, e.g. one carrying a custom SSLContext
            passive_mode: Initial data connection mode
            transfer_mode: Mode used when a transfer call passes none
        """
        self._session = FTPSession(transport)
        self._transfers = DataTransferManager(self._session, passive_mode)
        self._tree = DirectoryTree(self._session, self._transfers)
        self.transfer_mode = transfer_mode

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        password: Optional[str] = None,
        credentials: Optional[CredentialManager] = None,
        transport: Optional[SocketTransport] = None,
        configure_logging: bool = False,
    ) -> "FtpClient":
        """
        Connect and log in using saved settings.

        The password is taken from the argument, else from the credential
        store, else left empty. With configure_logging the "ftptree" logger
        is set up from the settings first.

        Raises:
            ValueError: If the settings are invalid
            FTPConnectionError: If the connection fails
            FTPAuthenticationError: If the login is rejected
        """
        config = settings.to_connection_config()
        if configure_logging:
            settings.apply_logging()
        if password is None:
            credentials = credentials or CredentialManager()
            password = credentials.get_password(settings.host, settings.username) or ""

        client = cls(transport, settings.passive_mode, settings.default_transfer_mode)
        try:
            client._session.connect(config)
            client.login(settings.username, password)
        except FTPError:
            client.close()
            raise
        return client

    # -- session ---------------------------------------------------------

    @property
    def session(self) -> FTPSession:
        """Underlying control session."""
        return self._session

    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    @property
    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    @property
    def passive_mode(self) -> bool:
        return self._transfers.passive_mode

    @property
    def welcome(self) -> Optional[str]:
        """Server greeting text, None before connect()."""
        reply = self._session.welcome
        return reply.message if reply else None

    def connect(
        self,
        host: str,
        secure: bool = False,
        port: int = 21,
        timeout: float = 90,
        encoding: str = DEFAULT_ENCODING,
    ) -> "FtpClient":
        """
        Open the control connection.

        Args:
            host: Server hostname or IP address
            secure: Negotiate explicit FTPS (AUTH TLS)
            port: Server port
            timeout: Seconds to wait for the connection and for each reply
            encoding: Text encoding for commands, replies and listings

        Returns:
            This client

        Raises:
            ValueError: If host, port or timeout are invalid
            FTPConnectionError: If the server cannot be reached
            FTPTimeoutError: If the connection times out
        """
        config = FTPConnectionConfig(
            host=host,
            port=port,
            secure=secure,
            passive_mode=self._transfers.passive_mode,
            timeout=timeout,
            encoding=encoding,
        )
        self._session.connect(config)
        return self

    def login(self, username: str = "anonymous", password: str = "") -> "FtpClient":
        """
        Authenticate, anonymously by default.

        Raises:
            FTPNotConnectedError: If connect() was not called
            FTPAuthenticationError: If the server rejects the credentials
        """
        self._session.login(username, password)
        if self._session.config is not None:
            self._session.config.username = username or "anonymous"
        return self

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        self._session.close()

    def set_passive_mode(self, enabled: bool) -> None:
        self._transfers.set_passive_mode(enabled)

    def cancel(self) -> None:
        """Stop the running recursive operation before its next command."""
        self._tree.cancel()

    # -- navigation ------------------------------------------------------

    def current_directory(self) -> str:
        return self._session.current_directory()

    def change_directory(self, path: str) -> None:
        self._session.change_directory(_check_path(path))

    def change_to_parent(self) -> None:
        self._session.change_to_parent()

    def is_directory(self, path: str) -> bool:
        """True if the path can be entered with CWD."""
        return self._session.is_directory(_check_path(path))

    # -- listing ---------------------------------------------------------

    def list_files(
        self,
        directory: str = ".",
        recursive: bool = False,
        sort: SortStrategy = default_sort,
    ) -> List[str]:
        return self._tree.list_files(_check_path(directory), recursive, sort)

    def scan_directory(
        self,
        directory: str = ".",
        recursive: bool = False,
    ) -> Dict[str, ListingEntry]:
        """Parsed listing keyed by ``kind#path``."""
        return self._tree.scan_directory(_check_path(directory), recursive)

    def raw_listing(self, directory: str = ".", recursive: bool = False) -> Dict[str, str]:
        return self._tree.raw_listing(_check_path(directory), recursive)

    def get_directory_size(self, directory: str = ".", recursive: bool = True) -> int:
        return self._tree.get_directory_size(_check_path(directory), recursive)

    def count(
        self,
        directory: str = ".",
        kind: Union[EntryKind, str, None] = None,
        recursive: bool = True,
    ) -> int:
        return self._tree.count(_check_path(directory), kind, recursive)

    def is_empty(self, directory: str) -> bool:
        return self._tree.is_empty(_check_path(directory))

    # -- mutation --------------------------------------------------------

    def create_directory(self, path: str, recursive: bool = False) -> None:
        self._tree.create_directory(_check_path(path), recursive)

    def delete_directory(self, path: str, recursive: bool = True) -> None:
        self._tree.delete_directory(_check_path(path), recursive)

    def clean_directory(self, path: str) -> bool:
        return self._tree.clean_directory(_check_path(path))

    def delete_file(self, path: str) -> None:
        self._tree.delete_file(_check_path(path))

    def rename(self, old_path: str, new_path: str) -> None:
        """
        Rename or move a remote file or directory.

        Raises:
            FTPCommandError: If the server refuses RNFR or RNTO
        """
        _check_path(old_path)
        _check_path(new_path)
        self._session.require_authenticated("Rename")
        with self._session.lock:
            reply = self._session.send_command("RNFR", old_path)
            if reply.code != 350:
                raise FTPCommandError(f"RNFR {old_path}", reply)
            self._session.void_command("RNTO", new_path)
        logger.info(f"Renamed {old_path} to {new_path}")

    def chmod(self, mode: int, path: str) -> Reply:
        """
        Change permissions with ``SITE CHMOD``.

        Args:
            mode: Permission bits, e.g. 0o755
            path: Remote path

        Raises:
            FTPCommandError: If the server does not support or refuses it
        """
        self._session.require_authenticated("Chmod")
        return self._session.void_command("SITE", "CHMOD", format(mode, "o"), _check_path(path))

    # -- transfers -------------------------------------------------------

    def upload_file(
        self,
        local_path: Union[str, Path],
        remote_path: str,
        mode: Optional[TransferMode] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """
        Upload a local file.

        Returns:
            Number of bytes sent

        Raises:
            FileNotFoundError: If the local file does not exist
            FTPTransferError: If the upload fails
        """
        _check_path(remote_path)
        with open(local_path, "rb") as f:
            return self._transfers.upload(f, remote_path, mode or self.transfer_mode, on_progress)

    def upload_from_buffer(
        self,
        remote_path: str,
        content: Union[bytes, bytearray, str],
        mode: Optional[TransferMode] = None,
    ) -> int:
        """
        Upload in-memory content. Text is encoded with the session encoding.

        Returns:
            Number of bytes sent
        """
        _check_path(remote_path)
        if isinstance(content, str):
            content = content.encode(self._session.encoding)
        return self._transfers.upload(content, remote_path, mode or self.transfer_mode)

    def download_file(
        self,
        remote_path: str,
        local_path: Union[str, Path],
        mode: Optional[TransferMode] = None,
        resume: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """
        Download a remote file to a local path.

        Args:
            remote_path: Remote file
            local_path: Local destination, parent directories are created
            mode: Transfer mode, the client default when None
            resume: Continue from the size of an existing local file
            on_progress: Optional callback for progress updates

        Returns:
            Number of bytes received by this call

        Raises:
            FTPTransferError: If the download or restart fails
        """
        _check_path(remote_path)
        local_path = Path(local_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)

        offset = local_path.stat().st_size if resume and local_path.exists() else 0
        with open(local_path, "ab" if offset else "wb") as f:
            return self._transfers.download(
                remote_path, f, mode or self.transfer_mode, offset, on_progress
            )

    def download_to_buffer(self, remote_path: str, mode: Optional[TransferMode] = None) -> bytes:
        """Download a remote file into memory."""
        _check_path(remote_path)
        buffer = io.BytesIO()
        self._transfers.download(remote_path, buffer, mode or self.transfer_mode)
        return buffer.getvalue()

    def upload_directory_tree(
        self,
        local_dir: Union[str, Path],
        remote_dir: str,
        mode: Optional[TransferMode] = None,
    ) -> TreeTransferResult:
        return self._tree.upload_directory_tree(
            local_dir, _check_path(remote_dir), mode or self.transfer_mode
        )

    def download_directory_tree(
        self,
        remote_dir: str,
        local_dir: Union[str, Path],
        mode: Optional[TransferMode] = None,
    ) -> TreeTransferResult:
        return self._tree.download_directory_tree(
            _check_path(remote_dir), local_dir, mode or self.transfer_mode
        )

    # -- server information ----------------------------------------------

    def get_size(self, path: str) -> int:
        """
        Size of a remote file in bytes, measured in binary type.

        Raises:
            FTPCommandError: If the server refuses SIZE
        """
        _check_path(path)
        self._session.require_authenticated("Size")
        with self._session.lock:
            self._session.void_command("TYPE", "I")
            reply = self._session.void_command("SIZE", path)
        return parse_size_reply(reply)

    def get_modified_time(self, path: str) -> Optional[datetime]:
        """
        Last modification time (UTC) of a remote file.

        Returns:
            Naive UTC datetime, or None if the server cannot report it
        """
        _check_path(path)
        self._session.require_authenticated("Modified time")
        reply = self._session.send_command("MDTM", path)
        if reply.code != 213:
            logger.debug(f"MDTM unavailable for {path}: {reply}")
            return None
        return parse_mdtm_reply(reply)

    def system_type(self) -> str:
        """Server system type as reported by SYST."""
        self._session.require_authenticated("System type")
        return self._session.void_command("SYST").message

    def help(self) -> Reply:
        self._session.require_authenticated("Help")
        return self._session.void_command("HELP")

    def send_raw_command(self, verb: str, *args: str) -> Reply:
        """
        Send any known FTP command and return the reply unchecked.

        Raises:
            FTPNotConnectedError: If not logged in
            FTPProtocolError: If the verb is not a known FTP command
        """
        self._session.require_authenticated(verb.upper())
        return self._session.send_command(verb, *args)

    def __enter__(self) -> "FtpClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
