"""Wire codec for ftptree.

Encodes commands, assembles (possibly multi-line) replies, and parses
Unix ``ls -l`` style listing lines and the payloads of PASV, EPSV, PWD,
MDTM and SIZE replies.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterator, List, Optional, Tuple, Union

from ftptree.ftp.exceptions import FTPProtocolError


CRLF = "\r\n"
DEFAULT_ENCODING = "utf-8"

# Longest reply line accepted before the stream is considered garbage
MAXLINE = 8192

# RFC 959, 2228, 2389, 2428, 3659 and 4217 verbs plus common extensions
KNOWN_VERBS = frozenset({
    "ABOR", "ACCT", "ALLO", "APPE", "AUTH", "CCC", "CDUP", "CWD", "DELE",
    "EPRT", "EPSV", "FEAT", "HELP", "LIST", "MDTM", "MFMT", "MKD", "MLSD",
    "MLST", "MODE", "NLST", "NOOP", "OPTS", "PASS", "PASV", "PBSZ", "PORT",
    "PROT", "PWD", "QUIT", "REIN", "REST", "RETR", "RMD", "RNFR", "RNTO",
    "SITE", "SIZE", "SMNT", "STAT", "STOR", "STOU", "STRU", "SYST", "TYPE",
    "USER", "XCUP", "XCWD", "XMKD", "XPWD", "XRMD",
})

_REPLY_PREFIX = re.compile(r"^(\d{3})([ -]|$)")
_PASV_NUMBERS = re.compile(r"(\d+),(\d+),(\d+),(\d+),(\d+),(\d+)")
_EPSV_PORT = re.compile(r"\((.)\1\1(\d+)\1\)")
_TRANSFER_SIZE = re.compile(r"\((\d+) bytes\)", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_LINK_MARKER = re.compile(r"\s+->(?:\s+|$)")


@dataclass(frozen=True)
class Reply:
    """A complete server reply."""
    code: int
    lines: List[str] = field(default_factory=list)
    multiline: bool = False

    @property
    def message(self) -> str:
        """Reply text with lines joined by newlines."""
        return "\n".join(self.lines)

    @property
    def is_preliminary(self) -> bool:
        return 100 <= self.code < 200

    @property
    def is_success(self) -> bool:
        return 200 <= self.code < 300

    @property
    def is_intermediate(self) -> bool:
        return 300 <= self.code < 400

    @property
    def is_transient_error(self) -> bool:
        return 400 <= self.code < 500

    @property
    def is_permanent_error(self) -> bool:
        return 500 <= self.code < 600

    def __str__(self) -> str:
        return f"{self.code} {self.message}".rstrip()


class EntryKind(Enum):
    """Kind of a listing entry, taken from the permissions string."""
    FILE = "file"
    DIRECTORY = "directory"
    LINK = "link"
    UNKNOWN = "unknown"


@dataclass
class ListingEntry:
    """One parsed row of a directory listing."""
    permissions: str
    links: int
    owner: str
    group: str
    size: int
    month: str
    day: str
    time: str
    name: str
    kind: EntryKind
    path: str
    target: Optional[str] = None

    @property
    def key(self) -> str:
        """Composite ``kind#path`` key used by directory scans."""
        return f"{self.kind.value}#{self.path}"

    @property
    def is_directory(self) -> bool:
        return self.kind == EntryKind.DIRECTORY


@dataclass(frozen=True)
class PathHeader:
    """Base path announced by a recursive listing (``some/dir:``)."""
    path: str


def encode_command(verb: str, *args: str, encoding: str = DEFAULT_ENCODING) -> bytes:
    """
    Serialize a command line.

    Args:
        verb: Command verb, e.g. ``RETR``
        *args: Arguments joined with single spaces
        encoding: Wire encoding

    Returns:
        Encoded ``VERB arg1 arg2\\r\\n``

    Raises:
        FTPProtocolError: If the verb is empty or contains whitespace or
            control characters, or an argument contains CR/LF
    """
    if not verb or any(ch.isspace() or ord(ch) < 32 or ord(ch) == 127 for ch in verb):
        raise FTPProtocolError(f"Invalid command verb: {verb!r}")

    parts = [verb.upper()]
    for arg in args:
        arg = str(arg)
        if "\r" in arg or "\n" in arg:
            raise FTPProtocolError(f"Line break in argument to {verb.upper()}")
        parts.append(arg)

    return (" ".join(parts) + CRLF).encode(encoding)


def decode_reply(
    lines: Iterator[Union[str, bytes]],
    encoding: str = DEFAULT_ENCODING,
) -> Reply:
    """
    Read lines until a complete reply is assembled.

    A multi-line reply starts with ``NNN-`` and ends at the first line
    that starts with the same code followed by a space (or nothing).
    Lines in between are kept verbatim unless they repeat the
    ``NNN-`` prefix, which is stripped.

    Args:
        lines: Iterator yielding raw reply lines
        encoding: Encoding used for bytes lines

    Returns:
        Reply instance

    Raises:
        FTPProtocolError: On a malformed status prefix or if the
            iterator is exhausted before the reply is complete
    """
    first = _next_line(lines, encoding)
    match = _REPLY_PREFIX.match(first)
    if not match:
        raise FTPProtocolError(f"Malformed reply line: {first!r}")

    code = match.group(1)
    message = [first[4:]]
    if match.group(2) != "-":
        return Reply(code=int(code), lines=message, multiline=False)

    while True:
        line = _next_line(lines, encoding)
        if line[:3] == code and line[3:4] != "-":
            message.append(line[4:])
            break
        if line[:4] == code + "-":
            line = line[4:]
        message.append(line)

    return Reply(code=int(code), lines=message, multiline=True)


def _next_line(lines: Iterator[Union[str, bytes]], encoding: str) -> str:
    try:
        line = next(lines)
    except StopIteration:
        raise FTPProtocolError("Connection closed before the reply was complete") from None
    if isinstance(line, bytes):
        line = line.decode(encoding, errors="replace")
    return line.rstrip("\r\n")


def kind_from_permissions(permissions: str) -> EntryKind:
    """
    Classify a listing entry from the first permissions character.

    Args:
        permissions: Permissions column, e.g. ``drwx---r-x``

    Returns:
        EntryKind (UNKNOWN for empty or unrecognised input)
    """
    if not permissions:
        return EntryKind.UNKNOWN
    return {
        "-": EntryKind.FILE,
        "d": EntryKind.DIRECTORY,
        "l": EntryKind.LINK,
    }.get(permissions[0], EntryKind.UNKNOWN)


def join_remote_path(directory: str, name: str) -> str:
    """
    Join a remote directory and a child name.

    A leading ``./`` is stripped, and joining onto ``/`` does not
    produce a doubled slash.
    """
    if not directory or directory == ".":
        path = name
    elif directory.endswith("/"):
        path = directory + name
    else:
        path = f"{directory}/{name}"

    while path.startswith("./"):
        path = path[2:]
    return path


def _to_int(value: str) -> int:
    return int(value) if value.isdigit() else 0


def parse_listing_line(
    raw_line: Union[str, bytes],
    base_path: str = "",
    encoding: str = DEFAULT_ENCODING,
) -> Union[ListingEntry, PathHeader, None]:
    """
    Parse one ``ls -l`` style listing line.

    Example lines::

        drwx---r-x 3 32385 users 5 Nov 24 17:25 www
        lrwxrwxrwx 1 0 users 38 Nov 16 14:57 index.html -> /var/www/shared/index.html

    Args:
        raw_line: Line as received from the data channel
        base_path: Directory the entry lives in
        encoding: Encoding used for bytes lines

    Returns:
        ListingEntry, PathHeader for a ``path:`` line, or None for lines
        to skip (blank, ``total N``, ``.`` and ``..``)
    """
    if isinstance(raw_line, bytes):
        raw_line = raw_line.decode(encoding, errors="replace")
    line = raw_line.strip("\r\n").strip()

    # The ninth field keeps its internal spacing
    chunks = _WHITESPACE.split(line, maxsplit=8) if line else []
    if len(chunks) < 9:
        if line.endswith(":"):
            return PathHeader(line[:-1])
        return None

    permissions, links, owner, group, size, month, day, time, name = chunks
    kind = kind_from_permissions(permissions)

    target = None
    if kind == EntryKind.LINK:
        parts = _LINK_MARKER.split(name, maxsplit=1)
        name = parts[0]
        target = parts[1].strip() if len(parts) > 1 else ""

    if name in (".", ".."):
        return None

    return ListingEntry(
        permissions=permissions,
        links=_to_int(links),
        owner=owner,
        group=group,
        size=_to_int(size),
        month=month,
        day=day,
        time=time,
        name=name,
        kind=kind,
        path=join_remote_path(base_path, name),
        target=target,
    )


def parse_pasv_reply(reply: Reply) -> Tuple[str, int]:
    """
    Extract the data endpoint from a ``227 Entering Passive Mode`` reply.

    Raises:
        FTPProtocolError: If the reply is not a parseable 227
    """
    if reply.code != 227:
        raise FTPProtocolError(f"Unexpected reply to PASV: {reply}")
    match = _PASV_NUMBERS.search(reply.message)
    if not match:
        raise FTPProtocolError(f"Error parsing PASV reply: {reply}")
    numbers = [int(n) for n in match.groups()]
    if any(n > 255 for n in numbers):
        raise FTPProtocolError(f"Error parsing PASV reply: {reply}")
    host = ".".join(str(n) for n in numbers[:4])
    port = (numbers[4] << 8) + numbers[5]
    return host, port


def parse_epsv_reply(reply: Reply) -> int:
    """
    Extract the data port from a ``229 Entering Extended Passive Mode``
    reply of the form ``(|||port|)``.

    Raises:
        FTPProtocolError: If the reply is not a parseable 229
    """
    if reply.code != 229:
        raise FTPProtocolError(f"Unexpected reply to EPSV: {reply}")
    match = _EPSV_PORT.search(reply.message)
    if not match:
        raise FTPProtocolError(f"Error parsing EPSV reply: {reply}")
    return int(match.group(2))


def parse_directory_reply(reply: Reply) -> str:
    """
    Extract the quoted path from a 257 reply (PWD/MKD).

    Doubled quotes inside the path stand for one literal quote.
    Returns an empty string when no quoted path is present.
    """
    text = reply.message
    start = text.find('"')
    if start < 0:
        return ""

    path = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        i += 1
        if ch == '"':
            if i < len(text) and text[i] == '"':
                i += 1
            else:
                break
        path.append(ch)
    return "".join(path)


def parse_mdtm_reply(reply: Reply) -> datetime:
    """
    Parse a ``213 YYYYMMDDHHMMSS[.sss]`` MDTM reply into a naive UTC datetime.

    Raises:
        FTPProtocolError: If the timestamp cannot be parsed
    """
    value = reply.message.strip().split(".")[0]
    try:
        return datetime.strptime(value, "%Y%m%d%H%M%S")
    except ValueError as e:
        raise FTPProtocolError(f"Error parsing MDTM reply: {reply}", e)


def parse_size_reply(reply: Reply) -> int:
    """Parse a ``213 <bytes>`` SIZE reply."""
    value = reply.message.strip()
    if not value.isdigit():
        raise FTPProtocolError(f"Error parsing SIZE reply: {reply}")
    return int(value)


def parse_transfer_size(reply: Reply) -> Optional[int]:
    """Byte count announced by a 150 reply such as ``150 Opening (1234 bytes)``."""
    match = _TRANSFER_SIZE.search(reply.message)
    return int(match.group(1)) if match else None


def format_port_argument(host: str, port: int) -> str:
    """Format an IPv4 endpoint as the ``h1,h2,h3,h4,p1,p2`` PORT argument."""
    return ",".join(host.split(".") + [str(port // 256), str(port % 256)])


def format_eprt_argument(host: str, port: int, ipv6: bool) -> str:
    """Format an endpoint as the ``|af|host|port|`` EPRT argument."""
    family = "2" if ipv6 else "1"
    return f"|{family}|{host}|{port}|"
