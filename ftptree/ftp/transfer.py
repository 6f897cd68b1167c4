"""Data transfer manager for ftptree.

Negotiates a passive or active data connection per transfer and streams
bytes in binary or text mode. Each transfer runs command, data channel,
stream and completion reply back to back while holding the session lock.
"""

import io
import logging
import socket
import ssl
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Callable, Iterator, List, Optional, Tuple, Union

from ftptree.ftp.codec import (
    Reply,
    format_eprt_argument,
    format_port_argument,
    parse_epsv_reply,
    parse_pasv_reply,
    parse_transfer_size,
)
from ftptree.ftp.connection import FTPSession
from ftptree.ftp.exceptions import FTPError, FTPTransferError

logger = logging.getLogger("ftptree.transfer")


class TransferMode(Enum):
    """Representation type used on the data channel."""
    BINARY = "binary"
    TEXT = "text"

    @property
    def type_code(self) -> str:
        """Argument for the TYPE command."""
        return "I" if self is TransferMode.BINARY else "A"


@dataclass
class TransferProgress:
    """Progress information for a single transfer."""
    remote_path: str
    bytes_transferred: int
    bytes_total: Optional[int] = None

    @property
    def percent(self) -> float:
        """Transfer progress as percentage (0-100)."""
        if not self.bytes_total:
            return 0.0
        return (self.bytes_transferred / self.bytes_total) * 100.0


# Type alias for progress callback
ProgressCallback = Callable[[TransferProgress], None]

Source = Union[BinaryIO, bytes, bytearray, memoryview]


class DataTransferManager:
    """Runs uploads, downloads and listings over short-lived data connections."""

    # Block size for FTP transfers (8KB)
    BLOCK_SIZE = 8192

    # Use the address in a PASV reply instead of the control peer address
    trust_server_pasv_address = False

    def __init__(self, session: FTPSession, passive_mode: bool = True):
        """
        Initialize the transfer manager.

        Args:
            session: Control session the transfers run on
            passive_mode: Open data connections to the server (True)
                or accept them from the server (False)
        """
        self._session = session
        self._passive = passive_mode

    @property
    def passive_mode(self) -> bool:
        return self._passive

    def set_passive_mode(self, enabled: bool) -> None:
        """Toggle passive mode for subsequent transfers."""
        self._passive = bool(enabled)
        logger.debug(f"Passive mode {'enabled' if self._passive else 'disabled'}")

    def upload(
        self,
        source: Source,
        remote_path: str,
        mode: TransferMode = TransferMode.BINARY,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """
        Upload a stream or in-memory buffer with STOR.

        Args:
            source: Readable binary stream, or bytes-like content
            remote_path: Remote destination path
            mode: Transfer mode
            on_progress: Optional callback for progress updates

        Returns:
            Number of bytes written to the data channel

        Raises:
            FTPTransferError: If the data channel fails or the server
                does not confirm the transfer
        """
        if isinstance(source, (bytes, bytearray, memoryview)):
            source = io.BytesIO(bytes(source))
        total = _remaining_size(source)

        def pump(conn: socket.socket, announced: Optional[int]) -> int:
            sent = 0
            for chunk in self._read_source(source, mode):
                conn.sendall(chunk)
                sent += len(chunk)
                if on_progress:
                    on_progress(TransferProgress(remote_path, sent, total))
            return sent

        sent = self._run("STOR", remote_path, "upload", mode, pump)
        logger.info(f"Uploaded {sent} bytes to {remote_path}")
        return sent

    def download(
        self,
        remote_path: str,
        sink: BinaryIO,
        mode: TransferMode = TransferMode.BINARY,
        resume_offset: int = 0,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """
        Download a remote file with RETR into a writable binary stream.

        Args:
            remote_path: Remote source path
            sink: Writable binary stream
            mode: Transfer mode
            resume_offset: Byte position to restart from (sends REST)
            on_progress: Optional callback for progress updates

        Returns:
            Number of bytes written to the sink

        Raises:
            FTPTransferError: If the restart marker is rejected, the data
                channel fails, or the server does not confirm the transfer
        """
        def pump(conn: socket.socket, announced: Optional[int]) -> int:
            received = 0
            for chunk in self._read_channel(conn, mode):
                sink.write(chunk)
                received += len(chunk)
                if on_progress:
                    on_progress(TransferProgress(remote_path, received, announced))
            return received

        received = self._run(
            "RETR", remote_path, "download", mode, pump, rest=resume_offset or None
        )
        logger.info(f"Downloaded {received} bytes from {remote_path}")
        return received

    def retrieve_lines(self, verb: str, path: Optional[str] = None) -> List[str]:
        """
        Run a listing command (LIST, NLST, MLSD) and collect its lines.

        Raises:
            FTPTransferError: If the server rejects the listing
        """
        lines: List[str] = []
        encoding = self._session.encoding

        def pump(conn: socket.socket, announced: Optional[int]) -> int:
            with conn.makefile("rb") as reader:
                for raw in reader:
                    lines.append(raw.decode(encoding, errors="replace").rstrip("\r\n"))
            return len(lines)

        self._run(verb, path, "list", TransferMode.TEXT, pump)
        return lines

    def _run(
        self,
        verb: str,
        remote_path: Optional[str],
        operation: str,
        mode: TransferMode,
        pump: Callable[[socket.socket, Optional[int]], int],
        rest: Optional[int] = None,
    ) -> int:
        session = self._session
        session.require_authenticated(operation.capitalize())
        target = remote_path or "."

        with session.lock:
            reply = session.send_command("TYPE", mode.type_code)
            if not reply.is_success:
                raise FTPTransferError(target, operation, reply)

            conn, preliminary = self._open_data_channel(verb, remote_path, operation, rest)
            try:
                count = pump(conn, parse_transfer_size(preliminary))
            except OSError as e:
                _close_data(conn)
                raise FTPTransferError(
                    target, operation, self._drain_completion(target), e
                ) from e
            except BaseException:
                # Completion reply is still owed by the server
                _close_data(conn)
                self._drain_completion(target)
                raise

            _close_data(conn)
            reply = session.read_reply()
            if not reply.is_success:
                raise FTPTransferError(target, operation, reply)
            return count

    def _drain_completion(self, target: str) -> Optional[Reply]:
        """Read the completion reply of an aborted transfer, None if it never came."""
        try:
            return self._session.read_reply()
        except FTPError as e:
            logger.warning(f"No completion reply after failed transfer of {target}: {e}")
            return None

    def _open_data_channel(
        self,
        verb: str,
        remote_path: Optional[str],
        operation: str,
        rest: Optional[int],
    ) -> Tuple[socket.socket, Reply]:
        session = self._session
        target = remote_path or "."

        if self._passive:
            host, port = self._negotiate_passive(target, operation)
            try:
                conn = session.transport.open_connection(host, port, session.timeout)
            except OSError as e:
                raise FTPTransferError(target, operation, original_error=e)
            try:
                reply = self._start_transfer(verb, remote_path, operation, rest)
            except FTPError:
                conn.close()
                raise
        else:
            listener = self._negotiate_active(target, operation)
            try:
                reply = self._start_transfer(verb, remote_path, operation, rest)
                try:
                    conn, _ = listener.accept()
                except OSError as e:
                    raise FTPTransferError(
                        target, operation, self._drain_completion(target), e
                    ) from e
                conn.settimeout(session.timeout)
            finally:
                listener.close()

        if session.secure:
            try:
                conn = session.transport.wrap(
                    conn, session.config.host, session=session.tls_session
                )
            except OSError as e:
                conn.close()
                raise FTPTransferError(
                    target, operation, self._drain_completion(target), e
                ) from e

        return conn, reply

    def _negotiate_passive(self, target: str, operation: str) -> Tuple[str, int]:
        session = self._session
        if session.is_ipv6:
            reply = session.send_command("EPSV")
            if reply.code != 229:
                raise FTPTransferError(target, operation, reply)
            return session.peer_address, parse_epsv_reply(reply)

        reply = session.send_command("PASV")
        if reply.code != 227:
            raise FTPTransferError(target, operation, reply)
        host, port = parse_pasv_reply(reply)
        if not self.trust_server_pasv_address:
            host = session.peer_address
        return host, port

    def _negotiate_active(self, target: str, operation: str) -> socket.socket:
        session = self._session
        try:
            listener = session.transport.listen(session.local_address, session.timeout)
        except OSError as e:
            raise FTPTransferError(target, operation, original_error=e)

        host, port = listener.getsockname()[:2]
        if session.is_ipv6:
            reply = session.send_command("EPRT", format_eprt_argument(host, port, True))
        else:
            reply = session.send_command("PORT", format_port_argument(host, port))

        if not reply.is_success:
            listener.close()
            raise FTPTransferError(target, operation, reply)
        return listener

    def _start_transfer(
        self,
        verb: str,
        remote_path: Optional[str],
        operation: str,
        rest: Optional[int],
    ) -> Reply:
        session = self._session
        target = remote_path or "."

        if rest:
            reply = session.send_command("REST", str(rest))
            if reply.code != 350:
                raise FTPTransferError(target, operation, reply)

        args = (remote_path,) if remote_path else ()
        reply = session.send_command(verb, *args)
        if not reply.is_preliminary:
            raise FTPTransferError(target, operation, reply)
        return reply

    def _read_source(self, source: BinaryIO, mode: TransferMode) -> Iterator[bytes]:
        if mode is TransferMode.BINARY:
            while True:
                block = source.read(self.BLOCK_SIZE)
                if not block:
                    return
                yield block

        # Text mode: local line endings go out as CRLF
        while True:
            line = source.readline()
            if not line:
                return
            if line.endswith(b"\n") and not line.endswith(b"\r\n"):
                line = line[:-1] + b"\r\n"
            yield line

    def _read_channel(self, conn: socket.socket, mode: TransferMode) -> Iterator[bytes]:
        if mode is TransferMode.BINARY:
            while True:
                block = conn.recv(self.BLOCK_SIZE)
                if not block:
                    return
                yield block

        # Text mode: CRLF from the wire becomes a local newline
        with conn.makefile("rb") as reader:
            for line in reader:
                if line.endswith(b"\r\n"):
                    line = line[:-2] + b"\n"
                yield line


def _remaining_size(source: BinaryIO) -> Optional[int]:
    """Bytes left in a seekable stream, None if it cannot be determined."""
    try:
        position = source.tell()
        end = source.seek(0, io.SEEK_END)
        source.seek(position)
    except (AttributeError, OSError, ValueError):
        return None
    return end - position


def _close_data(conn: socket.socket) -> None:
    if isinstance(conn, ssl.SSLSocket):
        try:
            conn.unwrap()
        except (OSError, ValueError):
            # Peer may already have dropped the TLS layer
            pass
    conn.close()
