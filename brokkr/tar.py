"""Index of the payload entries in a tar archive (ustar, GNU and PAX)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import BinaryIO, Optional, Union

from brokkr.errors import BrokkrError

log = logging.getLogger(__name__)

BLOCK_SIZE = 512

_CHKSUM_OFFSET = 148
_CHKSUM_LEN = 8
_MAX_META_PAYLOAD = 8 * 1024 * 1024
_U64_MAX = (1 << 64) - 1
_STREAMOFF_MAX = (1 << 63) - 1

_PAYLOAD_TYPES = (b"0", b"\0", b"7")

PathLike = Union[str, "os.PathLike[str]"]


@dataclass(frozen=True)
class TarEntry:
    """A regular file inside an archive and where its data starts."""

    name: str
    size: int = 0
    data_offset: int = 0


@dataclass
class PaxValues:
    """The PAX extended-header keys this reader honours."""

    path: Optional[str] = None
    size: Optional[int] = None

    def merge_from(self, other: "PaxValues") -> None:
        """Take every value that ``other`` sets."""
        if other.path is not None:
            self.path = other.path
        if other.size is not None:
            self.size = other.size

    def clear(self) -> None:
        """Forget both values."""
        self.path = None
        self.size = None


def _as_bytes(s: Union[str, bytes, bytearray, memoryview]) -> bytes:
    if isinstance(s, str):
        return s.encode("latin-1")
    return bytes(s)


def _round_up_512(n: int) -> int:
    return (n + BLOCK_SIZE - 1) & ~(BLOCK_SIZE - 1)


def _basename_of(name: str) -> str:
    pos = max(name.rfind("/"), name.rfind("\\"))
    return name if pos < 0 else name[pos + 1 :]


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", errors="surrogateescape")


def _trim_cstr_field(raw: bytes) -> str:
    nul = raw.find(b"\0")
    if nul >= 0:
        raw = raw[:nul]
    return _decode(raw.rstrip(b" \t\r\n"))


def _all_zero(block: bytes) -> bool:
    return not any(block)


def _parse_u64_dec(raw: bytes) -> int:
    text = raw.lstrip(b" \t").rstrip(b"\n\r \t")
    if not text or not all(0x30 <= c <= 0x39 for c in text):
        raise BrokkrError("PAX: invalid decimal number")
    value = int(text)
    if value > _U64_MAX:
        raise BrokkrError("PAX: invalid decimal number")
    return value


def parse_octal(s: Union[str, bytes]) -> int:
    """Parse an octal tar field, stopping at the first non-octal digit."""
    raw = _as_bytes(s).lstrip(b" \t\0").rstrip(b" \t\0\r\n")
    value = 0
    for c in raw:
        if not 0x30 <= c <= 0x37:
            break
        value = (value << 3) + (c - 0x30)
    return value


def parse_tar_number(field: bytes) -> int:
    """Parse a numeric header field in octal or GNU base-256 form."""
    raw = bytes(field)
    if not raw:
        return 0
    first = raw[0]
    if not first & 0x80:
        return parse_octal(raw)
    if first & 0x40:
        raise BrokkrError("Tar: negative base-256 numeric field")
    value = first & 0x3F
    for byte in raw[1:]:
        if value > (_U64_MAX >> 8):
            raise BrokkrError("Tar: base-256 numeric field too large for uint64")
        value = (value << 8) | byte
    return value


def validate_header_checksum(header: bytes) -> bool:
    """Check a 512-byte header against its unsigned or signed checksum."""
    block = bytes(header)
    if len(block) != BLOCK_SIZE:
        raise ValueError(f"tar header must be {BLOCK_SIZE} bytes, got {len(block)}")
    expected = parse_octal(block[_CHKSUM_OFFSET : _CHKSUM_OFFSET + _CHKSUM_LEN])
    masked = block[:_CHKSUM_OFFSET] + b" " * _CHKSUM_LEN + block[_CHKSUM_OFFSET + _CHKSUM_LEN :]
    unsigned_sum = sum(masked)
    signed_sum = sum(c - 256 if c >= 0x80 else c for c in masked) & _U64_MAX
    return expected in (unsigned_sum, signed_sum)


def parse_pax_payload(payload: Union[str, bytes]) -> PaxValues:
    """Extract ``path`` and ``size`` from a PAX extended-header payload."""
    data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
    values = PaxValues()
    pos = 0
    while pos < len(data):
        sp = data.find(b" ", pos)
        if sp < 0:
            break
        rec_len = _parse_u64_dec(data[pos:sp])
        if rec_len == 0 or pos + rec_len > len(data):
            break
        record = data[pos : pos + rec_len]
        pos += rec_len

        sp2 = record.find(b" ")
        if sp2 < 0:
            continue
        kv = record[sp2 + 1 :]
        if kv.endswith(b"\n"):
            kv = kv[:-1]
        key, eq, val = kv.partition(b"=")
        if not eq:
            continue
        if key == b"path":
            values.path = _decode(val)
        elif key == b"size":
            values.size = _parse_u64_dec(val)
    return values


def join_ustar_name(prefix: str, name: str) -> str:
    """Join a ustar prefix field and name field into one path."""
    if not prefix:
        return name
    return prefix if prefix.endswith("/") else prefix + "/" + name if False else (
        prefix + name if prefix.endswith("/") else prefix + "/" + name
    )


class _Reader:
    """Tracks the stream position while scanning an archive."""

    def __init__(self, stream: BinaryIO, path: str) -> None:
        self._stream = stream
        self._path = path
        self.pos = 0

    def read_exact(self, n: int) -> bytes:
        data = self._stream.read(n)
        if len(data) != n:
            raise BrokkrError(f"TarArchive: short read: {self._path}")
        self.pos += n
        return data

    def read_some(self, n: int) -> bytes:
        data = self._stream.read(n)
        self.pos += len(data)
        return data

    def skip(self, n: int) -> None:
        if n == 0:
            return
        if n > _STREAMOFF_MAX:
            raise BrokkrError("TarArchive: entry too large for seekg")
        try:
            self._stream.seek(n, os.SEEK_CUR)
        except (OSError, OverflowError) as exc:
            raise BrokkrError(f"TarArchive: seek failed: {self._path}") from exc
        self.pos += n


class TarArchive:
    """The payload entries of a tar file, scanned once on open."""

    def __init__(self, path: str, entries: list[TarEntry], payload_size_bytes: Optional[int]) -> None:
        self._path = path
        self._entries = entries
        self._payload_size_bytes = payload_size_bytes

    @property
    def path(self) -> str:
        """The archive's file path."""
        return self._path

    @property
    def entries(self) -> list[TarEntry]:
        """Regular files, then resolved hard links, in archive order."""
        return list(self._entries)

    @property
    def payload_size_bytes(self) -> Optional[int]:
        """Bytes up to and including the end-of-archive blocks, if both were present."""
        return self._payload_size_bytes

    @classmethod
    def open(cls, path: PathLike, validate_header_checksums: bool = True) -> "TarArchive":
        """Scan the archive at ``path``; raise BrokkrError if it is malformed."""
        path_str = os.fspath(path)
        try:
            stream = open(path_str, "rb")
        except OSError as exc:
            raise BrokkrError(f"TarArchive: cannot open: {path_str}") from exc
        with stream:
            entries, payload_size = _scan(stream, path_str, validate_header_checksums)
        log.debug("TarArchive: scanned %d entries in %s", len(entries), path_str)
        return cls(path_str, entries, payload_size)

    @staticmethod
    def is_tar_file(path: PathLike) -> bool:
        """Return True if the file starts with a valid, non-empty tar header."""
        try:
            with open(os.fspath(path), "rb") as stream:
                header = stream.read(BLOCK_SIZE)
        except OSError:
            return False
        if len(header) != BLOCK_SIZE or _all_zero(header):
            return False
        return validate_header_checksum(header)

    def find_by_basename(self, base: str) -> Optional[TarEntry]:
        """Return the first entry whose last path component is ``base``."""
        return next((e for e in self._entries if _basename_of(e.name) == base), None)


def _scan(stream: BinaryIO, path: str, validate: bool) -> tuple[list[TarEntry], Optional[int]]:
    reader = _Reader(stream, path)
    entries: list[TarEntry] = []
    payload_size: Optional[int] = None

    pax_global = PaxValues()
    pax_next = PaxValues()
    longname_next: Optional[str] = None

    payload_by_name: dict[str, TarEntry] = {}
    pending_hardlinks: list[tuple[str, str]] = []

    def read_meta_payload(size: int, what: str) -> bytes:
        if size > _MAX_META_PAYLOAD:
            raise BrokkrError(f"TarArchive: refusing huge {what} header")
        data = reader.read_exact(size) if size else b""
        reader.skip(_round_up_512(size) - size)
        return data

    while True:
        header = reader.read_exact(BLOCK_SIZE)

        if _all_zero(header):
            second = reader.read_some(BLOCK_SIZE)
            if len(second) == BLOCK_SIZE and _all_zero(second):
                payload_size = reader.pos
            break

        if validate and not validate_header_checksum(header):
            raise BrokkrError(f"TarArchive: invalid header checksum in: {path}")

        name = _trim_cstr_field(header[0:100])
        prefix = _trim_cstr_field(header[345:500])
        typeflag = header[156:157]
        size = parse_tar_number(header[124:136])

        if typeflag in (b"x", b"g"):
            values = parse_pax_payload(read_meta_payload(size, "PAX"))
            (pax_global if typeflag == b"g" else pax_next).merge_from(values)
            continue

        if typeflag == b"L":
            payload = read_meta_payload(size, "GNU longname")
            nul = payload.find(b"\0")
            if nul >= 0:
                payload = payload[:nul]
            longname_next = _decode(payload) if payload else None
            continue

        full_name = join_ustar_name(prefix, name)
        if longname_next is not None:
            full_name = longname_next
            longname_next = None

        effective = PaxValues(pax_global.path, pax_global.size)
        effective.merge_from(pax_next)
        pax_next.clear()
        if effective.path is not None:
            full_name = effective.path
        if effective.size is not None:
            size = effective.size

        data_offset = reader.pos

        if typeflag in _PAYLOAD_TYPES and full_name:
            entry = TarEntry(full_name, size, data_offset)
            entries.append(entry)
            payload_by_name.setdefault(entry.name, entry)
        elif typeflag == b"1":
            target = _trim_cstr_field(header[157:257])
            if full_name and target:
                pending_hardlinks.append((full_name, target))

        reader.skip(_round_up_512(size))

    for link_name, target in pending_hardlinks:
        found = payload_by_name.get(target)
        if found is not None:
            entries.append(TarEntry(link_name, found.size, found.data_offset))

    return entries, payload_size