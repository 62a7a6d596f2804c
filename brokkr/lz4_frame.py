"""Reader for standard LZ4 frames made of independent blocks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import lz4.block

from brokkr.errors import BrokkrError
from brokkr.source import ByteSource, read_exact

log = logging.getLogger(__name__)

ONE_MIB = 1024 * 1024

_MAGIC = b"\x04\x22\x4d\x18"
_UNCOMPRESSED_FLAG = 0x80000000
_SIZE_MASK = 0x7FFFFFFF

_BLOCK_SIZES = {4: 64 * 1024, 5: 256 * 1024, 6: 1024 * 1024, 7: 4 * 1024 * 1024}


@dataclass(frozen=True)
class Lz4FrameHeader:
    """The fields of an LZ4 frame descriptor."""

    content_size: int = 0
    flg: int = 0
    bd: int = 0
    block_independence: bool = False
    block_checksum: bool = False
    content_checksum: bool = False
    has_content_size: bool = False
    has_dict_id: bool = False
    max_block_size: int = 0
    header_bytes: int = 0


def parse_lz4_frame_header(source: ByteSource) -> Lz4FrameHeader:
    """Read and validate a frame header; raise BrokkrError if unsupported."""
    if read_exact(source, 4) != _MAGIC:
        raise BrokkrError("LZ4: bad magic (not standard LZ4 frame)")

    flg, bd = read_exact(source, 2)
    if (flg >> 6) & 0x03 != 1:
        raise BrokkrError("LZ4: unsupported frame version")

    block_independence = bool(flg & 0x20)
    block_checksum = bool(flg & 0x10)
    has_content_size = bool(flg & 0x08)
    content_checksum = bool(flg & 0x04)
    has_dict_id = bool(flg & 0x01)

    if not block_independence:
        raise BrokkrError("LZ4: frame must use independent blocks")
    if block_checksum:
        raise BrokkrError("LZ4: block checksum not supported")
    if has_dict_id:
        raise BrokkrError("LZ4: dictionary ID not supported")
    if not has_content_size:
        raise BrokkrError("LZ4: content size missing (compress with --content-size)")

    max_block_size = _BLOCK_SIZES.get((bd >> 4) & 0x07, 0)
    if max_block_size == 0:
        raise BrokkrError("LZ4: invalid BD/max block size")
    if max_block_size > ONE_MIB:
        raise BrokkrError("LZ4: max block size > 1MiB not supported")

    content_size = int.from_bytes(read_exact(source, 8), "little")
    if content_size > ONE_MIB and max_block_size != ONE_MIB:
        raise BrokkrError("LZ4: content > 1MiB requires 1MiB blocks (compress with -B6)")

    read_exact(source, 1)

    return Lz4FrameHeader(
        content_size=content_size,
        flg=flg,
        bd=bd,
        block_independence=block_independence,
        block_checksum=block_checksum,
        content_checksum=content_checksum,
        has_content_size=has_content_size,
        has_dict_id=has_dict_id,
        max_block_size=max_block_size,
        header_bytes=4 + 1 + 1 + 8 + 1,
    )


def _read_block_word(source: ByteSource, context: str) -> int:
    word = int.from_bytes(read_exact(source, 4), "little")
    if word == 0:
        raise BrokkrError(f"LZ4: encountered endmark unexpectedly{context}")
    return word


class Lz4BlockStreamReader:
    """Hands out the raw blocks of a frame, size prefixes included."""

    def __init__(self, source: ByteSource, header: Lz4FrameHeader) -> None:
        self._source = source
        self._header = header
        self._blocks_read = 0

    @classmethod
    def open(cls, source: ByteSource) -> "Lz4BlockStreamReader":
        """Parse the frame header of ``source`` and return a reader."""
        if source is None:
            raise BrokkrError("LZ4: null source")
        return cls(source, parse_lz4_frame_header(source))

    @property
    def display_name(self) -> str:
        """Name of the underlying source."""
        return self._source.display_name()

    @property
    def content_size(self) -> int:
        """Decompressed size stored in the frame header."""
        return self._header.content_size

    @property
    def header(self) -> Lz4FrameHeader:
        """The parsed frame header."""
        return self._header

    def total_blocks_1m(self) -> int:
        """Number of 1 MiB blocks the content spans."""
        return -(-self._header.content_size // ONE_MIB)

    def blocks_read_1m(self) -> int:
        """Number of blocks handed out so far."""
        return self._blocks_read

    def blocks_remaining_1m(self) -> int:
        """Number of blocks not yet handed out."""
        return max(0, self.total_blocks_1m() - self._blocks_read)

    def read_n_blocks(self, n: int) -> bytes:
        """Return the next ``n`` blocks, each with its 4-byte size prefix."""
        if n == 0:
            return b""
        if self._blocks_read + n > self.total_blocks_1m():
            raise BrokkrError("LZ4: too many blocks requested")
        parts: list[bytes] = []
        for _ in range(n):
            word = _read_block_word(self._source, "")
            parts.append(word.to_bytes(4, "little"))
            payload = word & _SIZE_MASK
            if payload:
                parts.append(read_exact(self._source, payload))
            self._blocks_read += 1
        return b"".join(parts)

    def close(self) -> None:
        """Close the underlying source."""
        self._source.close()


class Lz4DecompressedSource(ByteSource):
    """The decompressed content of an LZ4 frame as a byte source."""

    def __init__(self, source: ByteSource, header: Lz4FrameHeader) -> None:
        self._source = source
        self._display = source.display_name()
        self._header = header
        self._total = header.content_size
        self._produced = 0
        self._block = b""
        self._block_off = 0
        self._error: Optional[BrokkrError] = None

    @classmethod
    def open(cls, source: ByteSource) -> "Lz4DecompressedSource":
        """Parse the frame header of ``source`` and wrap it."""
        if source is None:
            raise BrokkrError("LZ4: null source")
        return cls(source, parse_lz4_frame_header(source))

    def display_name(self) -> str:
        return self._display

    def size(self) -> int:
        return self._total

    def check(self) -> None:
        if self._error is not None:
            raise self._error

    def close(self) -> None:
        self._source.close()

    def read(self, n: int) -> bytes:
        if self._error is not None or n <= 0:
            return b""
        if self._produced >= self._total and self._block_off >= len(self._block):
            return b""

        parts: list[bytes] = []
        written = 0
        while written < n:
            if self._block_off >= len(self._block):
                self._block = b""
                self._block_off = 0
                if self._produced >= self._total:
                    break
                try:
                    self._fill_next_block()
                except BrokkrError as exc:
                    self._error = exc
                    log.error("LZ4 read error: %s", exc)
                    break
            want = min(len(self._block) - self._block_off, n - written)
            parts.append(self._block[self._block_off : self._block_off + want])
            self._block_off += want
            written += want
        return b"".join(parts)

    def _fill_next_block(self) -> None:
        if self._produced >= self._total:
            raise BrokkrError("LZ4: internal: produced >= total")
        expected = min(self._total - self._produced, ONE_MIB)

        word = _read_block_word(self._source, " while decoding")
        payload_len = word & _SIZE_MASK
        payload = read_exact(self._source, payload_len) if payload_len else b""

        if word & _UNCOMPRESSED_FLAG:
            if payload_len != expected:
                raise BrokkrError("LZ4: uncompressed block size mismatch")
            block = payload
        else:
            try:
                block = lz4.block.decompress(payload, uncompressed_size=expected)
            except lz4.block.LZ4BlockError as exc:
                raise BrokkrError("LZ4: decompression failed (LZ4_decompress_safe)") from exc
            if len(block) != expected:
                raise BrokkrError("LZ4: decompression produced unexpected size")

        self._produced += expected
        self._block = block
        self._block_off = 0


def open_lz4_decompressed(source: ByteSource) -> Lz4DecompressedSource:
    """Wrap ``source`` so that reads yield its decompressed content."""
    return Lz4DecompressedSource.open(source)