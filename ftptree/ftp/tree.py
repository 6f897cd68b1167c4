"""Directory tree engine for ftptree.

Recursive listing, size and count aggregation, recursive create, delete
and clean, and whole-tree upload and download, built on the control
session, the transfer manager and the listing parser. Every call lists
the server afresh; nothing is cached between calls.
"""

import logging
import posixpath
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Set, Tuple, Union

from ftptree.ftp.codec import (
    EntryKind,
    ListingEntry,
    PathHeader,
    join_remote_path,
    parse_listing_line,
)
from ftptree.ftp.connection import FTPSession
from ftptree.ftp.exceptions import (
    FTPAlreadyExistsError,
    FTPCancelledError,
    FTPNavigationError,
    FTPNotFoundError,
    FTPTransferError,
)
from ftptree.ftp.transfer import DataTransferManager, TransferMode

logger = logging.getLogger("ftptree.tree")


SortStrategy = Callable[[List[str]], List[str]]


def default_sort(paths: List[str]) -> List[str]:
    """Lexical ascending order. Returns a new list."""
    return sorted(paths)


def reverse_sort(paths: List[str]) -> List[str]:
    """Lexical descending order, which puts children before their parents."""
    return sorted(paths, reverse=True)


@dataclass
class TreeTransferResult:
    """Summary of a recursive upload or download."""
    source: str
    target: str
    files: List[str] = field(default_factory=list)
    directories_created: List[str] = field(default_factory=list)
    bytes_transferred: int = 0
    duration_seconds: float = 0.0

    @property
    def file_count(self) -> int:
        return len(self.files)


class DirectoryTree:
    """Recursive operations over a remote directory tree."""

    def __init__(self, session: FTPSession, transfers: DataTransferManager):
        """
        Initialize the tree engine.

        Args:
            session: Authenticated control session
            transfers: Transfer manager bound to the same session
        """
        self._session = session
        self._transfers = transfers
        self._cancelled = threading.Event()

    @property
    def is_cancelled(self) -> bool:
        """True if the current operation was cancelled."""
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Cancel the running recursive operation before its next command."""
        self._cancelled.set()
        logger.info("Cancellation requested")

    def reset_cancel(self) -> None:
        """Reset cancellation flag for new operation."""
        self._cancelled.clear()

    def _checkpoint(self, operation: str, completed: List[str]) -> None:
        if self._cancelled.is_set():
            self._cancelled.clear()
            raise FTPCancelledError(operation, completed)

    # -- listing ---------------------------------------------------------

    def list_files(
        self,
        directory: str = ".",
        recursive: bool = False,
        sort: SortStrategy = default_sort,
    ) -> List[str]:
        """
        List the paths below a directory.

        Args:
            directory: Remote directory, the working directory by default
            recursive: Descend into subdirectories, entering each one once
                and listing links without following them
            sort: Ordering function applied to the result

        Returns:
            New list of paths, never containing ``.`` or ``..``

        Raises:
            FTPNavigationError: If directory is not a directory
        """
        if not self._session.is_directory(directory):
            raise FTPNavigationError(directory)

        if recursive:
            return sort([path for path, _ in self._walk(directory, "List")])

        names = self._child_names(directory)
        return sort([join_remote_path(directory, name) for name in names])

    def _child_names(self, directory: str) -> List[str]:
        """
        Names of the entries in a directory, via NLST.

        Falls back to names parsed from LIST when the server rejects NLST.
        """
        try:
            lines = self._transfers.retrieve_lines("NLST", directory)
        except FTPTransferError as e:
            if e.reply is None or not e.reply.is_permanent_error:
                raise
            logger.warning(f"NLST rejected for {directory} ({e.reply}), using LIST")
            return [entry.name for entry, _ in self._parse_listing(directory)]

        names = []
        for line in lines:
            name = posixpath.basename(line.strip().rstrip("/"))
            if name and name not in (".", ".."):
                names.append(name)
        return names

    def raw_listing(self, directory: str = ".", recursive: bool = False) -> Dict[str, str]:
        """
        Raw LIST lines keyed by ``kind#path``.

        Raises:
            FTPNavigationError: If directory is not a directory
        """
        return {
            key: raw for key, (_, raw) in self._scan(directory, recursive).items()
        }

    def scan_directory(
        self,
        directory: str = ".",
        recursive: bool = False,
    ) -> Dict[str, ListingEntry]:
        """
        Detailed listing of a directory, keyed by ``kind#path``.

        Args:
            directory: Remote directory, the working directory by default
            recursive: Descend into every entry classified as a directory

        Raises:
            FTPNavigationError: If directory is not a directory
        """
        return {
            key: entry for key, (entry, _) in self._scan(directory, recursive).items()
        }

    def _scan(
        self,
        directory: str,
        recursive: bool,
    ) -> Dict[str, Tuple[ListingEntry, str]]:
        if not self._session.is_directory(directory):
            raise FTPNavigationError(directory)

        items: Dict[str, Tuple[ListingEntry, str]] = {}
        for entry, raw in self._parse_listing(directory):
            items[entry.key] = (entry, raw)
            if recursive and entry.kind == EntryKind.DIRECTORY:
                self._checkpoint("Scan", list(items))
                items.update(self._scan(entry.path, True))

        return items

    def _parse_listing(self, directory: str) -> List[Tuple[ListingEntry, str]]:
        entries = []
        base = directory
        for raw in self._transfers.retrieve_lines("LIST", directory):
            parsed = parse_listing_line(raw, base)
            if isinstance(parsed, PathHeader):
                base = parsed.path
            elif parsed is not None:
                entries.append((parsed, raw))
        return entries

    def get_directory_size(self, directory: str = ".", recursive: bool = True) -> int:
        """Total of the reported sizes of every entry in a directory, in bytes."""
        entries = self.scan_directory(directory, recursive)
        return sum(entry.size for entry in entries.values())

    def count(
        self,
        directory: str = ".",
        kind: Union[EntryKind, str, None] = None,
        recursive: bool = True,
    ) -> int:
        """
        Count the entries in a directory.

        Args:
            directory: Remote directory
            kind: Only count entries of this kind; every path when None
            recursive: Include nested entries
        """
        if kind is None:
            return len(self.list_files(directory, recursive))

        kind = EntryKind(kind)
        entries = self.scan_directory(directory, recursive)
        return sum(1 for entry in entries.values() if entry.kind == kind)

    def is_empty(self, directory: str) -> bool:
        """True if the directory has no entries."""
        return self.count(directory, None, recursive=False) == 0

    # -- mutation --------------------------------------------------------

    def create_directory(self, path: str, recursive: bool = False) -> None:
        """
        Create a directory.

        Args:
            path: Directory to create
            recursive: Create missing parents, component by component

        Raises:
            FTPAlreadyExistsError: If path is already a directory
            FTPCommandError: If the server refuses to create a component
        """
        session = self._session
        with session.lock:
            if session.is_directory(path):
                raise FTPAlreadyExistsError(path)

            if not recursive:
                session.void_command("MKD", path)
                logger.info(f"Created directory {path}")
                return

            original = session.current_directory()
            try:
                if path.startswith("/"):
                    session.change_directory("/")
                for part in path.split("/"):
                    if not part:
                        continue
                    try:
                        session.change_directory(part)
                    except FTPNavigationError:
                        session.void_command("MKD", part)
                        session.change_directory(part)
            finally:
                session.change_directory(original)

            logger.info(f"Created directory tree {path}")

    def delete_file(self, path: str) -> None:
        """
        Delete a remote file.

        Raises:
            FTPCommandError: If the server refuses DELE
        """
        self._session.require_authenticated("Delete file")
        self._session.void_command("DELE", path)
        logger.debug(f"Deleted {path}")

    def delete_directory(self, path: str, recursive: bool = True) -> None:
        """
        Remove a directory.

        Args:
            path: Directory to remove
            recursive: Remove its contents first, deepest entries first

        Raises:
            FTPNotFoundError: If path is not a directory
            FTPCommandError: If a DELE or RMD is refused
            FTPCancelledError: If cancelled between deletions
        """
        with self._session.lock:
            if not self._session.is_directory(path):
                raise FTPNotFoundError(path)

            if recursive:
                self._delete_children(path, "Delete directory")

            self._session.void_command("RMD", path)
            logger.info(f"Removed directory {path}")

    def clean_directory(self, path: str) -> bool:
        """
        Delete everything inside a directory but keep the directory.

        Returns:
            True once the directory is confirmed empty

        Raises:
            FTPNotFoundError: If path is not a directory
        """
        with self._session.lock:
            if not self._session.is_directory(path):
                raise FTPNotFoundError(path)

            self._delete_children(path, "Clean directory")
            return self.is_empty(path)

    def _delete_children(self, path: str, operation: str) -> None:
        entries = dict(self._walk(path, operation))

        completed: List[str] = []
        for child in reverse_sort(list(entries)):
            self._checkpoint(operation, completed)
            if entries[child] == EntryKind.DIRECTORY:
                self._session.void_command("RMD", child)
            else:
                self.delete_file(child)
            completed.append(child)

    def _walk(self, directory: str, operation: str) -> List[Tuple[str, EntryKind]]:
        """
        Every path below a directory with its kind.

        Directory-ness is probed with CWD, which works on servers whose
        LIST output cannot be parsed. Each directory is entered once, keyed
        on the PWD the server reports inside it. Links, and directories
        reached again under another name, come back as LINK and are not
        descended into.
        """
        found: List[Tuple[str, EntryKind]] = []
        visited = {self._session.resolve_directory(directory)}
        pending = [directory]
        while pending:
            current = pending.pop()
            links = self._link_names(current)
            for name in self._child_names(current):
                self._checkpoint(operation, [p for p, _ in found])
                child = join_remote_path(current, name)
                if name in links:
                    found.append((child, EntryKind.LINK))
                    continue

                resolved = self._session.resolve_directory(child)
                if resolved is None:
                    found.append((child, EntryKind.FILE))
                elif resolved in visited:
                    logger.warning(f"Not descending into {child}, already visited as {resolved}")
                    found.append((child, EntryKind.LINK))
                else:
                    visited.add(resolved)
                    found.append((child, EntryKind.DIRECTORY))
                    pending.append(child)
        return found

    def _link_names(self, directory: str) -> Set[str]:
        """Names the LIST output marks as symbolic links."""
        return {
            entry.name
            for entry, _ in self._parse_listing(directory)
            if entry.kind == EntryKind.LINK
        }

    # -- whole-tree transfers --------------------------------------------

    def upload_directory_tree(
        self,
        local_dir: Union[str, Path],
        remote_dir: str,
        mode: TransferMode = TransferMode.BINARY,
    ) -> TreeTransferResult:
        """
        Mirror a local directory tree onto the server.

        Remote directories are created before anything is uploaded into them.

        Raises:
            NotADirectoryError: If local_dir is not a local directory
            FTPCommandError: If a remote directory cannot be created
            FTPTransferError: If a file upload fails
            FTPCancelledError: If cancelled between files
        """
        local_dir = Path(local_dir)
        if not local_dir.is_dir():
            raise NotADirectoryError(f"Not a local directory: {local_dir}")

        start_time = time.time()
        result = TreeTransferResult(source=str(local_dir), target=remote_dir)

        with self._session.lock:
            if not self._session.is_directory(remote_dir):
                self.create_directory(remote_dir, recursive=True)
                result.directories_created.append(remote_dir)
            self._upload_level(local_dir, remote_dir, mode, result)

        result.duration_seconds = time.time() - start_time
        logger.info(
            f"Uploaded {result.file_count} files ({result.bytes_transferred} bytes) "
            f"from {local_dir} to {remote_dir}"
        )
        return result

    def _upload_level(
        self,
        local_dir: Path,
        remote_dir: str,
        mode: TransferMode,
        result: TreeTransferResult,
    ) -> None:
        for entry in sorted(local_dir.iterdir()):
            self._checkpoint("Upload directory tree", result.files)
            remote_path = join_remote_path(remote_dir, entry.name)

            if entry.is_dir():
                if not self._session.is_directory(remote_path):
                    self._session.void_command("MKD", remote_path)
                    result.directories_created.append(remote_path)
                self._upload_level(entry, remote_path, mode, result)
            else:
                with open(entry, "rb") as f:
                    result.bytes_transferred += self._transfers.upload(f, remote_path, mode)
                result.files.append(remote_path)

    def download_directory_tree(
        self,
        remote_dir: str,
        local_dir: Union[str, Path],
        mode: TransferMode = TransferMode.BINARY,
    ) -> TreeTransferResult:
        """
        Mirror a remote directory tree into a local directory.

        Raises:
            FTPNavigationError: If remote_dir is not a directory
            FTPTransferError: If a file download fails
            FTPCancelledError: If cancelled between files
        """
        local_dir = Path(local_dir)
        start_time = time.time()
        result = TreeTransferResult(source=remote_dir, target=str(local_dir))

        with self._session.lock:
            if not self._session.is_directory(remote_dir):
                raise FTPNavigationError(remote_dir)

            local_dir.mkdir(parents=True, exist_ok=True)
            prefix = join_remote_path(remote_dir, "")
            operation = "Download directory tree"
            entries = sorted(self._walk(remote_dir, operation), key=lambda item: item[0])
            for remote_path, kind in entries:
                self._checkpoint(operation, result.files)
                relative = remote_path[len(prefix):]
                local_path = local_dir.joinpath(*relative.split("/"))

                if kind == EntryKind.DIRECTORY:
                    local_path.mkdir(parents=True, exist_ok=True)
                    result.directories_created.append(str(local_path))
                    continue

                if kind == EntryKind.LINK and self._session.is_directory(remote_path):
                    logger.info(f"Skipping directory link {remote_path}")
                    continue

                local_path.parent.mkdir(parents=True, exist_ok=True)
                with open(local_path, "wb") as f:
                    result.bytes_transferred += self._transfers.download(remote_path, f, mode)
                result.files.append(remote_path)

        result.duration_seconds = time.time() - start_time
        logger.info(
            f"Downloaded {result.file_count} files ({result.bytes_transferred} bytes) "
            f"from {remote_dir} to {local_dir}"
        )
        return result
