"""FTP-specific exceptions for ftptree.

Custom exception hierarchy for FTP operations to provide
clear error handling and messages that name the failing path.
"""

from typing import List, Optional


class FTPError(Exception):
    """Base exception for all FTP-related errors."""

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


def _describe(reply) -> str:
    """Render a server reply for inclusion in an error message."""
    if reply is None:
        return ""
    return f" ({reply})"


class FTPConnectionError(FTPError):
    """Failed to establish or keep the FTP control connection."""

    def __init__(self, host: str, port: int, original_error: Exception = None):
        self.host = host
        self.port = port
        message = f"Failed to connect to {host}:{port}"
        super().__init__(message, original_error)


class FTPTimeoutError(FTPConnectionError):
    """FTP operation timed out."""

    def __init__(
        self,
        operation: str = "Operation",
        timeout: float = 90,
        host: str = "",
        port: int = 0,
    ):
        self.operation = operation
        self.timeout = timeout
        self.host = host
        self.port = port
        message = f"{operation} timed out after {timeout} seconds"
        FTPError.__init__(self, message)


class FTPNotConnectedError(FTPError):
    """Operation attempted without an authenticated FTP session."""

    def __init__(self, operation: str = "Operation"):
        message = f"{operation} requires an authenticated FTP connection"
        super().__init__(message)


class FTPAuthenticationError(FTPError):
    """FTP authentication (login) failed."""

    def __init__(self, username: str, reply=None, original_error: Exception = None):
        self.username = username
        self.reply = reply
        message = f"Authentication failed for user '{username}'{_describe(reply)}"
        super().__init__(message, original_error)


class FTPNavigationError(FTPError):
    """Path does not exist or is not a directory."""

    def __init__(self, path: str, reply=None, original_error: Exception = None):
        self.path = path
        self.reply = reply
        message = f"Cannot change to directory '{path}'{_describe(reply)}"
        super().__init__(message, original_error)


class FTPAlreadyExistsError(FTPError):
    """Directory already exists on the server."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Directory '{path}' already exists")


class FTPNotFoundError(FTPError):
    """Directory does not exist on the server."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Directory '{path}' does not exist")


class FTPProtocolError(FTPError):
    """Malformed wire data or an unsupported command."""


class FTPCommandError(FTPError):
    """Server rejected a command."""

    def __init__(self, command: str, reply=None, original_error: Exception = None):
        self.command = command
        self.reply = reply
        message = f"Command '{command}' failed{_describe(reply)}"
        super().__init__(message, original_error)


class FTPTransferError(FTPError):
    """Data-channel failure or unsuccessful transfer confirmation."""

    def __init__(
        self,
        remote_path: str,
        operation: str = "transfer",
        reply=None,
        original_error: Exception = None,
    ):
        self.remote_path = remote_path
        self.operation = operation
        self.reply = reply
        message = f"Failed to {operation} '{remote_path}'{_describe(reply)}"
        super().__init__(message, original_error)


class FTPCancelledError(FTPError):
    """Recursive operation cancelled between commands."""

    def __init__(self, operation: str, completed: Optional[List[str]] = None):
        self.operation = operation
        self.completed = list(completed or [])
        message = f"{operation} cancelled after {len(self.completed)} item(s)"
        super().__init__(message)
