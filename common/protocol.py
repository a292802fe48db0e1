# common/protocol.py
import ntpath
import os
import struct
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

HOST = 'localhost'
PORT = 5001
CHUNK_SIZE = 1024 * 1024  # 1MB
FILES_DIR = 'server_files'
RECV_BUFFER_SIZE = 64 * 1024

# Commands (case-insensitive on the wire)
CMD_LIST_FILES = "LIST"
CMD_GET_FILES = "GET"
CMD_QUIT = "QUIT"

# Server Responses
RESP_OK = "OK"
RESP_ERROR = "ERROR"
RESP_UNKNOWN = "UNKNOWN"

# Big-endian, no padding
_INT = struct.Struct(">i")
_LONG = struct.Struct(">q")
_USHORT = struct.Struct(">H")
_CHUNK_HEADER = struct.Struct(">ii")

MAX_STRING_BYTES = 0xFFFF
INT_MIN = -2 ** 31
INT_MAX = 2 ** 31 - 1  # largest client ID or chunk length a frame can carry


class ProtocolError(Exception):
    """Raised when the peer sends a frame that cannot be decoded."""


class ConnectionClosedError(ConnectionError):
    """Raised when the peer closes the connection in the middle of a frame."""


@dataclass
class Command:
    keyword: str
    args: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join([self.keyword.lower()] + self.args)


@dataclass
class FileTransfer:
    name: str
    size: int


@dataclass
class Chunk:
    part: int
    data: memoryview


# --- Primitives ---

def recv_exact(sock, n: int) -> bytes:
    data = bytearray()
    while len(data) < n:
        part = sock.recv(min(n - len(data), RECV_BUFFER_SIZE))
        if not part:
            raise ConnectionClosedError(f"Connection closed ({len(data)}/{n} bytes of frame received)")
        data.extend(part)
    return bytes(data)


def recv_into_file(sock, n: int, fileobj, buffer: bytearray) -> None:
    """Copy exactly ``n`` bytes from the socket to ``fileobj`` through ``buffer``."""
    view = memoryview(buffer)
    remaining = n
    while remaining > 0:
        got = sock.recv_into(view, min(remaining, len(buffer)))
        if not got:
            raise ConnectionClosedError(f"Connection closed ({n - remaining}/{n} bytes of chunk received)")
        if fileobj is not None:
            fileobj.write(view[:got])
        remaining -= got


def send_int(sock, value: int) -> None:
    sock.sendall(_INT.pack(value))


def recv_int(sock) -> int:
    return _INT.unpack(recv_exact(sock, _INT.size))[0]


def send_long(sock, value: int) -> None:
    sock.sendall(_LONG.pack(value))


def recv_long(sock) -> int:
    return _LONG.unpack(recv_exact(sock, _LONG.size))[0]


def send_string(sock, text: str) -> None:
    try:
        encoded = text.encode("utf-8")
    except UnicodeEncodeError as e:
        raise ProtocolError(f"String is not encodable as UTF-8: {e}") from e
    if len(encoded) > MAX_STRING_BYTES:
        raise ProtocolError(f"String too long for frame: {len(encoded)} bytes")
    sock.sendall(_USHORT.pack(len(encoded)) + encoded)


def recv_string(sock) -> str:
    length = _USHORT.unpack(recv_exact(sock, _USHORT.size))[0]
    raw = recv_exact(sock, length)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Invalid UTF-8 in string frame: {e}") from e


# --- Messages ---

def send_handshake(sock, client_id: int) -> None:
    send_int(sock, client_id)


def recv_handshake(sock) -> int:
    return recv_int(sock)


def parse_command(line: str) -> Command:
    parts = line.split()
    if not parts:
        return Command(keyword="")
    return Command(keyword=parts[0].upper(), args=parts[1:])


def send_command(sock, line: str) -> None:
    send_string(sock, line)


def recv_command(sock) -> Command:
    return parse_command(recv_string(sock))


def send_listing(sock, names: List[str]) -> None:
    send_int(sock, len(names))
    for name in names:
        send_string(sock, name)


def recv_listing(sock) -> List[str]:
    count = recv_int(sock)
    if count < 0:
        raise ProtocolError(f"Negative file count: {count}")
    return [recv_string(sock) for _ in range(count)]


def send_status(sock, status: str, detail: str) -> None:
    send_string(sock, status)
    send_string(sock, detail)


def send_file_header(sock, transfer: FileTransfer) -> None:
    send_string(sock, RESP_OK)
    send_string(sock, transfer.name)
    send_long(sock, transfer.size)


def recv_file_header(sock) -> Tuple[str, str, Optional[int]]:
    """
    Read the start of one GET response.

    Returns (status, name, size); size is None unless status is OK.
    """
    status = recv_string(sock)
    name = recv_string(sock)
    if status != RESP_OK:
        return status, name, None
    size = recv_long(sock)
    if size < 0:
        raise ProtocolError(f"Negative file size for '{name}': {size}")
    return status, name, size


def send_chunk(sock, part: int, data) -> None:
    sock.sendall(_CHUNK_HEADER.pack(part, len(data)))
    sock.sendall(data)


def recv_chunk_header(sock) -> Tuple[int, int]:
    return _CHUNK_HEADER.unpack(recv_exact(sock, _CHUNK_HEADER.size))


def iter_chunks(fileobj, chunk_size: int = CHUNK_SIZE, limit: Optional[int] = None) -> Iterator[Chunk]:
    """
    Yield the file as 1-based, part-numbered chunks of at most ``chunk_size`` bytes.

    One buffer is reused for every chunk, so the yielded view is only valid
    until the next iteration. ``limit`` caps the total number of bytes read.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    buffer = bytearray(chunk_size)
    view = memoryview(buffer)
    remaining = limit
    part = 1
    while remaining is None or remaining > 0:
        want = chunk_size if remaining is None else min(chunk_size, remaining)
        filled = 0
        while filled < want:
            n = fileobj.readinto(view[filled:want])
            if not n:
                break
            filled += n
        if filled == 0:
            return
        yield Chunk(part=part, data=view[:filled])
        if filled < want:
            return
        if remaining is not None:
            remaining -= filled
        part += 1


# --- Helpers ---

def is_safe_name(name: str) -> bool:
    """A name is safe when it names a single entry directly inside a directory."""
    if not name or name in (".", ".."):
        return False
    if "/" in name or "\\" in name or "\x00" in name:
        return False
    if os.path.isabs(name) or ntpath.splitdrive(name)[0]:
        return False
    return os.path.basename(name) == name


def progress_percent(received: int, total: int) -> int:
    if total <= 0:
        return 100
    return (received * 100) // total
