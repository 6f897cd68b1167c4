"""ftptree: FTP client with recursive directory operations."""

from ftptree.ftp.client import FtpClient
from ftptree.ftp.codec import EntryKind, ListingEntry, Reply
from ftptree.ftp.exceptions import (
    FTPAlreadyExistsError,
    FTPAuthenticationError,
    FTPCancelledError,
    FTPCommandError,
    FTPConnectionError,
    FTPError,
    FTPNavigationError,
    FTPNotConnectedError,
    FTPNotFoundError,
    FTPProtocolError,
    FTPTimeoutError,
    FTPTransferError,
)
from ftptree.ftp.transfer import TransferMode, TransferProgress
from ftptree.ftp.tree import TreeTransferResult, default_sort, reverse_sort

__version__ = "1.0.0"

__all__ = [
    "FtpClient",
    "EntryKind",
    "ListingEntry",
    "Reply",
    "TransferMode",
    "TransferProgress",
    "TreeTransferResult",
    "default_sort",
    "reverse_sort",
    "FTPError",
    "FTPConnectionError",
    "FTPTimeoutError",
    "FTPNotConnectedError",
    "FTPAuthenticationError",
    "FTPNavigationError",
    "FTPAlreadyExistsError",
    "FTPNotFoundError",
    "FTPProtocolError",
    "FTPCommandError",
    "FTPTransferError",
    "FTPCancelledError",
]
