"""Socket transport for ftptree.

Supplies the byte streams the protocol layer runs on: the control
connection, short-lived data connections, listening sockets for active
mode, and TLS wrapping for explicit FTPS.
"""

import socket
import ssl
from typing import Optional


class SocketTransport:
    """Opens TCP connections and wraps them in TLS on request."""

    def __init__(self, ssl_context: Optional[ssl.SSLContext] = None):
        """
        Initialize the transport.

        Args:
            ssl_context: Context used for FTPS; the default context
                is created lazily when none is given
        """
        self._ssl_context = ssl_context

    @property
    def ssl_context(self) -> ssl.SSLContext:
        """TLS context for secured control and data channels."""
        if self._ssl_context is None:
            self._ssl_context = ssl.create_default_context()
        return self._ssl_context

    def open_connection(self, host: str, port: int, timeout: float) -> socket.socket:
        """
        Open a TCP connection.

        Raises:
            OSError: If the connection cannot be established
            socket.timeout: If it is not established within timeout
        """
        return socket.create_connection((host, port), timeout=timeout)

    def listen(self, host: str, timeout: float) -> socket.socket:
        """
        Bind a listening socket on an ephemeral port for active mode.

        Args:
            host: Local address the server should connect back to
            timeout: Accept timeout in seconds
        """
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.bind((host, 0))
            sock.listen(1)
            sock.settimeout(timeout)
        except OSError:
            sock.close()
            raise
        return sock

    def wrap(
        self,
        sock: socket.socket,
        server_hostname: str,
        session: Optional[ssl.SSLSession] = None,
    ) -> ssl.SSLSocket:
        """
        Wrap a connected socket in TLS.

        Args:
            sock: Connected socket
            server_hostname: Host name for SNI and certificate matching
            session: TLS session of the control channel to resume on a
                data channel
        """
        return self.ssl_context.wrap_socket(
            sock, server_hostname=server_hostname, session=session
        )
