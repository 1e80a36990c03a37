# cbz.py - store-only ZIP/CBZ archive builder
#
# Layout written by build_archive():
#   [local header + name + data] * n
#   [central directory record + name] * n
#   end of central directory record
# Every entry is "stored" (method 0); pages go in exactly as downloaded.

import struct
import zlib
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urlparse

# ---------- format constants ----------
LOCAL_FILE_HEADER_SIG = 0x04034B50
CENTRAL_DIR_HEADER_SIG = 0x02014B50
END_OF_CENTRAL_DIR_SIG = 0x06054B50

ZIP_VERSION = 20  # 2.0, no zip64 / encryption / data descriptors
COMP_STORED = 0

LOCAL_HEADER_STRUCT = struct.Struct("<IHHHHHIIIHH")
CENTRAL_HEADER_STRUCT = struct.Struct("<IHHHHHHIIIHHHHHII")
END_RECORD_STRUCT = struct.Struct("<IHHHHIIH")

LOCAL_HEADER_SIZE = LOCAL_HEADER_STRUCT.size  # 30
CENTRAL_HEADER_SIZE = CENTRAL_HEADER_STRUCT.size  # 46
END_RECORD_SIZE = END_RECORD_STRUCT.size  # 22

MAX_NAME_LENGTH = 0xFFFF
MAX_ENTRIES = 0xFFFF
MAX_UINT32 = 0xFFFFFFFF

IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}
DEFAULT_EXTENSION = "jpg"


# ---------- errors ----------
class ArchiveError(Exception):
    """Base class for archive construction failures."""


class EmptyInputError(ArchiveError):
    """build_archive() was called without any entries."""


class InvalidEntryNameError(ArchiveError):
    """An entry name cannot be encoded into a ZIP header."""


class ArchiveTooLargeError(ArchiveError):
    """A size, offset or count does not fit the classic (non-zip64) fields."""


# ---------- checksum engine ----------
CRC32_POLYNOMIAL = 0xEDB88320


def make_crc32_table() -> List[int]:
    table = []
    for i in range(256):
        c = i
        for _ in range(8):
            c = (c >> 1) ^ CRC32_POLYNOMIAL if c & 1 else c >> 1
        table.append(c)
    return table


# built once, read-only afterwards
CRC32_TABLE = make_crc32_table()


def crc32(data: bytes, table: Optional[Sequence[int]] = None) -> int:
    """
    CRC-32 (ZIP/PKZIP variant) of ``data`` as an unsigned 32-bit integer.

    With ``table`` the reflected byte-wise algorithm runs in Python; without
    it zlib's C implementation is used. Both give identical results.
    """
    if table is None:
        return zlib.crc32(data) & MAX_UINT32
    crc = 0xFFFFFFFF
    for b in data:
        crc = table[(crc ^ b) & 0xFF] ^ (crc >> 8)
    return (crc ^ 0xFFFFFFFF) & MAX_UINT32


# ---------- entries ----------
@dataclass(frozen=True)
class ArchiveEntry:
    name: str
    data: bytes

    def __post_init__(self):
        if not isinstance(self.data, bytes):
            object.__setattr__(self, "data", bytes(self.data))

    @property
    def size(self) -> int:
        return len(self.data)


def encode_name(name: str) -> bytes:
    if not name:
        raise InvalidEntryNameError("entry name is empty")
    try:
        raw = name.encode("ascii")
    except UnicodeEncodeError:
        raise InvalidEntryNameError(f"entry name is not ASCII: {name!r}") from None
    if len(raw) > MAX_NAME_LENGTH:
        raise InvalidEntryNameError(f"entry name is {len(raw)} bytes, limit is {MAX_NAME_LENGTH}")
    return raw


def local_header(name: bytes, checksum: int, size: int) -> bytes:
    return LOCAL_HEADER_STRUCT.pack(
        LOCAL_FILE_HEADER_SIG,
        ZIP_VERSION,       # version needed to extract
        0,                 # flags
        COMP_STORED,
        0, 0,              # mod time, mod date
        checksum,
        size, size,        # compressed, uncompressed
        len(name),
        0,                 # extra field length
    ) + name


def central_header(name: bytes, checksum: int, size: int, offset: int) -> bytes:
    return CENTRAL_HEADER_STRUCT.pack(
        CENTRAL_DIR_HEADER_SIG,
        ZIP_VERSION,       # version made by
        ZIP_VERSION,       # version needed to extract
        0,
        COMP_STORED,
        0, 0,
        checksum,
        size, size,
        len(name),
        0, 0,              # extra field, comment length
        0,                 # disk number start
        0, 0,              # internal, external attributes
        offset,
    ) + name


def end_record(count: int, cd_size: int, cd_offset: int) -> bytes:
    return END_RECORD_STRUCT.pack(
        END_OF_CENTRAL_DIR_SIG,
        0, 0,              # this disk, disk holding the central directory
        count, count,
        cd_size,
        cd_offset,
        0,                 # comment length
    )


# ---------- builder ----------
def build_archive(entries: Iterable[ArchiveEntry]) -> bytes:
    entries = list(entries)
    if not entries:
        raise EmptyInputError("cannot build an archive without entries")
    if len(entries) > MAX_ENTRIES:
        raise ArchiveTooLargeError(f"{len(entries)} entries, limit is {MAX_ENTRIES}")

    # validate everything up front so a bad entry fails before any output
    names = [encode_name(e.name) for e in entries]

    chunks = []
    pending = []
    offset = 0
    for entry, name in zip(entries, names):
        size = len(entry.data)
        if size > MAX_UINT32 or offset > MAX_UINT32:
            raise ArchiveTooLargeError(f"{entry.name} does not fit a 32-bit ZIP archive")
        checksum = crc32(entry.data)
        chunks.append(local_header(name, checksum, size))
        chunks.append(entry.data)
        pending.append((name, checksum, size, offset))
        offset += LOCAL_HEADER_SIZE + len(name) + size

    cd_offset = offset
    if cd_offset > MAX_UINT32:
        raise ArchiveTooLargeError("central directory offset exceeds 32 bits")

    cd_size = 0
    for name, checksum, size, entry_offset in pending:
        record = central_header(name, checksum, size, entry_offset)
        chunks.append(record)
        cd_size += len(record)
    if cd_size > MAX_UINT32:
        raise ArchiveTooLargeError("central directory size exceeds 32 bits")

    chunks.append(end_record(len(entries), cd_size, cd_offset))
    return b"".join(chunks)


def archive_size(entries: Iterable[ArchiveEntry]) -> int:
    """Exact byte length build_archive() will produce for ``entries``."""
    total = END_RECORD_SIZE
    for e in entries:
        name_len = len(encode_name(e.name))
        total += LOCAL_HEADER_SIZE + CENTRAL_HEADER_SIZE + 2 * name_len + len(e.data)
    return total


# ---------- naming ----------
def infer_extension(url: str) -> str:
    path = urlparse(url or "").path
    last = path.rsplit("/", 1)[-1]
    if "." not in last:
        return DEFAULT_EXTENSION
    ext = last.rsplit(".", 1)[-1].lower()
    return ext if ext in IMAGE_EXTENSIONS else DEFAULT_EXTENSION


def page_file_name(index: int, url: str, total: int = 0) -> str:
    """Zero-padded 1-based name such as ``001.jpg`` so readers sort pages correctly."""
    width = max(3, len(str(total)))
    return f"{index:0{width}d}.{infer_extension(url)}"
