"""FTP control session for ftptree.

Provides ConnectionState enum, FTPConnectionConfig dataclass,
and FTPSession, which owns the control connection: it sends commands,
assembles replies and tracks connection, login and directory state.
"""

import logging
import socket
import ssl
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterator, Optional

from ftptree.ftp.codec import (
    DEFAULT_ENCODING,
    KNOWN_VERBS,
    MAXLINE,
    Reply,
    decode_reply,
    encode_command,
    parse_directory_reply,
)
from ftptree.ftp.exceptions import (
    FTPAuthenticationError,
    FTPCommandError,
    FTPConnectionError,
    FTPError,
    FTPNavigationError,
    FTPNotConnectedError,
    FTPProtocolError,
    FTPTimeoutError,
)
from ftptree.ftp.transport import SocketTransport
from ftptree.utils.validators import validate_host, validate_port, validate_timeout

logger = logging.getLogger("ftptree.connection")


class ConnectionState(Enum):
    """FTP connection state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


@dataclass
class FTPConnectionConfig:
    """FTP connection configuration."""
    host: str
    port: int = 21
    secure: bool = False
    username: str = "anonymous"
    passive_mode: bool = True
    timeout: float = 90
    encoding: str = DEFAULT_ENCODING

    def __post_init__(self):
        """Validate configuration after initialization."""
        for is_valid, error in (
            validate_host(self.host),
            validate_port(self.port),
            validate_timeout(self.timeout),
        ):
            if not is_valid:
                raise ValueError(error)


class FTPSession:
    """Owns one control connection and serializes its command/reply exchanges."""

    def __init__(self, transport: Optional[SocketTransport] = None):
        """
        Initialize the session.

        Args:
            transport: Socket transport, a plain SocketTransport by default
        """
        self._transport = transport or SocketTransport()
        self._sock: Optional[socket.socket] = None
        self._file = None
        self._config: Optional[FTPConnectionConfig] = None
        self._state = ConnectionState.DISCONNECTED
        self._connected_at: Optional[datetime] = None
        self._last_activity: Optional[datetime] = None
        self._error_message: Optional[str] = None
        self._welcome: Optional[Reply] = None
        self._cwd: Optional[str] = None
        self._lock = threading.RLock()

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """True if the control connection is open and healthy."""
        return self._state in (ConnectionState.CONNECTED, ConnectionState.AUTHENTICATED)

    @property
    def is_authenticated(self) -> bool:
        """True once login succeeded."""
        return self._state == ConnectionState.AUTHENTICATED

    @property
    def config(self) -> Optional[FTPConnectionConfig]:
        """Current connection configuration."""
        return self._config

    @property
    def connected_at(self) -> Optional[datetime]:
        """Timestamp when connection was established."""
        return self._connected_at

    @property
    def last_activity(self) -> Optional[datetime]:
        """Timestamp of last reply received."""
        return self._last_activity

    @property
    def error_message(self) -> Optional[str]:
        """Last error message if state is ERROR."""
        return self._error_message

    @property
    def welcome(self) -> Optional[Reply]:
        """Greeting sent by the server on connect."""
        return self._welcome

    @property
    def working_directory(self) -> Optional[str]:
        """Last known working directory, None if unknown."""
        return self._cwd

    @property
    def transport(self) -> SocketTransport:
        return self._transport

    @property
    def lock(self) -> threading.RLock:
        """Lock held for the duration of each exchange or transfer."""
        return self._lock

    @property
    def timeout(self) -> float:
        return self._config.timeout if self._config else 90

    @property
    def encoding(self) -> str:
        return self._config.encoding if self._config else DEFAULT_ENCODING

    @property
    def secure(self) -> bool:
        """True if the control channel is TLS-wrapped."""
        return isinstance(self._sock, ssl.SSLSocket)

    @property
    def tls_session(self) -> Optional[ssl.SSLSession]:
        """TLS session to resume on data channels."""
        return self._sock.session if self.secure else None

    @property
    def is_ipv6(self) -> bool:
        return self._sock is not None and self._sock.family == socket.AF_INET6

    @property
    def local_address(self) -> str:
        """Local address of the control connection."""
        return self._require_socket("Data connection").getsockname()[0]

    @property
    def peer_address(self) -> str:
        """Server address of the control connection."""
        return self._require_socket("Data connection").getpeername()[0]

    def connect(self, config: FTPConnectionConfig) -> "FTPSession":
        """
        Open the control connection and read the server greeting.

        Args:
            config: Connection configuration

        Returns:
            This session

        Raises:
            FTPConnectionError: If the connection or TLS negotiation fails
            FTPTimeoutError: If the connection times out
        """
        if self._sock is not None:
            self.close()

        self._config = config
        self._state = ConnectionState.CONNECTING
        self._error_message = None

        try:
            try:
                self._sock = self._transport.open_connection(
                    config.host, config.port, config.timeout
                )
            except socket.timeout:
                raise FTPTimeoutError("Connection", config.timeout, config.host, config.port)
            except OSError as e:
                raise FTPConnectionError(config.host, config.port, e)

            self._file = self._sock.makefile("rb")
            self._welcome = self.read_reply()
            if not self._welcome.is_success:
                raise FTPConnectionError(
                    config.host, config.port,
                    FTPProtocolError(f"Unexpected greeting: {self._welcome}")
                )

            if config.secure:
                self._negotiate_tls()

        except FTPConnectionError as e:
            self._fail(e)
            raise
        except FTPError as e:
            self._fail(e)
            raise FTPConnectionError(config.host, config.port, e)

        self._state = ConnectionState.CONNECTED
        self._connected_at = datetime.now()
        self._last_activity = self._connected_at
        logger.info(f"Connected to {config.host}:{config.port}")
        return self

    def _negotiate_tls(self) -> None:
        """Upgrade the control channel with AUTH TLS."""
        reply = self.send_command("AUTH", "TLS")
        if reply.code != 234:
            raise FTPCommandError("AUTH TLS", reply)

        self._file.close()
        try:
            self._sock = self._transport.wrap(self._sock, server_hostname=self._config.host)
        except OSError as e:
            raise FTPConnectionError(self._config.host, self._config.port, e)
        self._file = self._sock.makefile("rb")
        logger.debug("Control channel secured with TLS")

    def login(self, username: str = "anonymous", password: str = "") -> Reply:
        """
        Authenticate with USER/PASS (and ACCT if the server asks for it).

        Args:
            username: FTP username, anonymous if empty
            password: FTP password

        Returns:
            Final login reply

        Raises:
            FTPNotConnectedError: If not connected
            FTPAuthenticationError: If the server rejects the login
        """
        if not self.is_connected:
            raise FTPNotConnectedError("Login")

        username = username or "anonymous"
        with self._lock:
            reply = self.send_command("USER", username)
            if reply.is_intermediate:
                reply = self.send_command("PASS", password or "")
            if reply.is_intermediate:
                reply = self.send_command("ACCT", "")
            if not reply.is_success:
                raise FTPAuthenticationError(username, reply)

            if self.secure:
                self.void_command("PBSZ", "0")
                self.void_command("PROT", "P")

            self._state = ConnectionState.AUTHENTICATED
            logger.info(f"Logged in as '{username}'")
            return reply

    def send_command(self, verb: str, *args: str) -> Reply:
        """
        Send a command and return the reply, whatever its code.

        Raises:
            FTPProtocolError: For an unrecognized verb or malformed reply
            FTPNotConnectedError: If there is no control connection
            FTPConnectionError: If the connection breaks or times out
        """
        verb = verb.upper()
        if verb not in KNOWN_VERBS:
            raise FTPProtocolError(f"Unrecognized FTP command: {verb}")

        with self._lock:
            self._write(verb, args)
            return self.read_reply()

    def void_command(self, verb: str, *args: str) -> Reply:
        """
        Send a command that must succeed with a 2xx reply.

        Raises:
            FTPCommandError: If the reply is not 2xx
        """
        reply = self.send_command(verb, *args)
        if not reply.is_success:
            raise FTPCommandError(" ".join((verb.upper(),) + args), reply)
        return reply

    def _write(self, verb: str, args: tuple) -> None:
        sock = self._require_socket(verb)
        data = encode_command(verb, *args, encoding=self.encoding)
        if verb == "PASS":
            logger.debug("-> PASS ****")
        else:
            logger.debug(f"-> {data.decode(self.encoding).rstrip()}")

        try:
            sock.sendall(data)
        except socket.timeout:
            self._mark_error("send timed out")
            raise FTPTimeoutError(verb, self.timeout, self._config.host, self._config.port)
        except OSError as e:
            self._mark_error(str(e))
            raise FTPConnectionError(self._config.host, self._config.port, e)

    def read_reply(self) -> Reply:
        """
        Read the next complete reply from the control connection.

        Raises:
            FTPTimeoutError: If no complete reply arrives within the timeout
            FTPConnectionError: If the connection breaks
            FTPProtocolError: If the reply is malformed or cut short
        """
        if self._file is None:
            raise FTPNotConnectedError("Reading a reply")

        try:
            reply = decode_reply(self._lines(), self.encoding)
        except socket.timeout:
            self._mark_error("reply timed out")
            raise FTPTimeoutError("Reply", self.timeout, self._config.host, self._config.port)
        except OSError as e:
            self._mark_error(str(e))
            raise FTPConnectionError(self._config.host, self._config.port, e)
        except FTPProtocolError as e:
            self._mark_error(str(e))
            raise

        self._update_activity()
        logger.debug(f"<- {reply}")
        return reply

    def _lines(self) -> Iterator[bytes]:
        while True:
            line = self._file.readline(MAXLINE + 1)
            if not line:
                return
            if len(line) > MAXLINE:
                raise FTPProtocolError(f"Reply line longer than {MAXLINE} bytes")
            yield line

    def require_authenticated(self, operation: str = "Operation") -> None:
        """
        Raises:
            FTPNotConnectedError: If login has not succeeded
        """
        if not self.is_authenticated:
            raise FTPNotConnectedError(operation)

    def _require_socket(self, operation: str) -> socket.socket:
        if self._sock is None:
            raise FTPNotConnectedError(operation)
        return self._sock

    def keep_alive(self) -> Reply:
        """Send NOOP to verify the connection is still alive."""
        return self.void_command("NOOP")

    def current_directory(self) -> str:
        """
        Get current working directory.

        Raises:
            FTPNotConnectedError: If not logged in
            FTPCommandError: If PWD fails
        """
        self.require_authenticated("Current directory")
        reply = self.void_command("PWD")
        self._cwd = parse_directory_reply(reply)
        return self._cwd

    def change_directory(self, path: str) -> None:
        """
        Change current working directory.

        Raises:
            FTPNotConnectedError: If not logged in
            FTPNavigationError: If the path does not exist or is not a directory
        """
        self.require_authenticated("Change directory")
        reply = self.send_command("CWD", path or ".")
        if not reply.is_success:
            raise FTPNavigationError(path, reply)
        self._cwd = path if path.startswith("/") else None

    def change_to_parent(self) -> None:
        """
        Change to the parent directory.

        Raises:
            FTPNavigationError: If the server refuses CDUP
        """
        self.require_authenticated("Change to parent")
        reply = self.send_command("CDUP")
        if not reply.is_success:
            raise FTPNavigationError("..", reply)
        self._cwd = None

    def is_directory(self, path: str) -> bool:
        """
        Check whether a path is a directory by changing into it.

        The working directory is restored whether or not the probe succeeds.

        Raises:
            FTPNavigationError: If the original directory cannot be restored
        """
        with self._lock:
            original = self.current_directory()
            try:
                self.change_directory(path)
                return True
            except FTPNavigationError:
                return False
            finally:
                self.change_directory(original)

    def resolve_directory(self, path: str) -> Optional[str]:
        """
        Absolute directory the server reports after changing into path.

        Returns:
            PWD inside path, or None if path is not a directory
        """
        with self._lock:
            original = self.current_directory()
            try:
                self.change_directory(path)
                return self.current_directory()
            except FTPNavigationError:
                return None
            finally:
                self.change_directory(original)

    def close(self) -> None:
        """Close the control connection gracefully. Safe to call repeatedly."""
        with self._lock:
            if self._sock is not None:
                try:
                    if self.is_connected:
                        self._write("QUIT", ())
                        self.read_reply()
                except FTPError as e:
                    # Best effort close
                    logger.debug(f"QUIT failed during close: {e}")
                finally:
                    self._release()
                logger.info("Disconnected")

            self._state = ConnectionState.DISCONNECTED
            self._connected_at = None
            self._cwd = None

    def _release(self) -> None:
        file, self._file = self._file, None
        sock, self._sock = self._sock, None
        try:
            if file is not None:
                file.close()
        finally:
            if sock is not None:
                sock.close()

    def _fail(self, error: Exception) -> None:
        self._release()
        self._state = ConnectionState.ERROR
        self._error_message = str(error)

    def _mark_error(self, message: str) -> None:
        self._state = ConnectionState.ERROR
        self._error_message = message

    def _update_activity(self) -> None:
        """Update last activity timestamp."""
        self._last_activity = datetime.now()

    def __enter__(self) -> "FTPSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
