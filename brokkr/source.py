"""Readable byte sources: plain files and entries inside a tar archive."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import BinaryIO, Union

from brokkr.errors import BrokkrError
from brokkr.tar import TarEntry

PathLike = Union[str, "os.PathLike[str]"]

_STREAMOFF_MAX = (1 << 63) - 1


class ByteSource(ABC):
    """A sized stream of bytes with a name for messages."""

    @abstractmethod
    def display_name(self) -> str:
        """Return a name that identifies the source in messages."""

    @abstractmethod
    def size(self) -> int:
        """Return the total number of bytes the source yields."""

    @abstractmethod
    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes; an empty result means end of data or failure."""

    def check(self) -> None:
        """Raise the error that stopped reading, if any."""

    def close(self) -> None:
        """Release any resources held by the source."""

    def __enter__(self) -> "ByteSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class RawFileSource(ByteSource):
    """A whole file read from the start."""

    def __init__(self, path: PathLike, size: int) -> None:
        self._path = os.fspath(path)
        self._size = size
        try:
            self._stream: BinaryIO = open(self._path, "rb")
        except OSError as exc:
            raise BrokkrError(f"open_raw_file: cannot open: {self._path}") from exc

    def display_name(self) -> str:
        return self._path

    def size(self) -> int:
        return self._size

    def read(self, n: int) -> bytes:
        if n <= 0:
            return b""
        return self._stream.read(n)

    def close(self) -> None:
        self._stream.close()


class TarEntrySource(ByteSource):
    """The data of one entry inside a tar archive."""

    def __init__(self, tar_path: PathLike, entry: TarEntry) -> None:
        self._tar_path = os.fspath(tar_path)
        self._entry = entry
        self._remaining = entry.size
        try:
            self._stream: BinaryIO = open(self._tar_path, "rb")
        except OSError as exc:
            raise BrokkrError(f"open_tar_entry: cannot open tar: {self._tar_path}") from exc
        try:
            if entry.data_offset > _STREAMOFF_MAX:
                raise OverflowError(entry.data_offset)
            self._stream.seek(entry.data_offset, os.SEEK_SET)
        except (OSError, OverflowError, ValueError) as exc:
            self._stream.close()
            raise BrokkrError(f"open_tar_entry: seek failed: {self._tar_path}") from exc

    def display_name(self) -> str:
        return f"{self._tar_path}:{self._entry.name}"

    def size(self) -> int:
        return self._entry.size

    def read(self, n: int) -> bytes:
        if self._remaining == 0 or n <= 0:
            return b""
        data = self._stream.read(min(self._remaining, n))
        self._remaining -= len(data)
        return data

    def close(self) -> None:
        self._stream.close()


def open_raw_file(path: PathLike) -> RawFileSource:
    """Open a plain file as a source; raise BrokkrError if that fails."""
    path_str = os.fspath(path)
    try:
        size = os.stat(path_str).st_size
    except OSError as exc:
        raise BrokkrError(f"open_raw_file: stat failed: {path_str}") from exc
    return RawFileSource(path_str, size)


def open_tar_entry(tar_path: PathLike, entry: TarEntry) -> TarEntrySource:
    """Open one entry of a tar archive as a source."""
    return TarEntrySource(tar_path, entry)


def read_exact(source: ByteSource, n: int) -> bytes:
    """Read exactly ``n`` bytes or raise BrokkrError."""
    chunks: list[bytes] = []
    got = 0
    while got < n:
        chunk = source.read(n - got)
        if not chunk:
            source.check()
            raise BrokkrError(f"Short read: {source.display_name()}")
        chunks.append(chunk)
        got += len(chunk)
    return b"".join(chunks)


def basename(path_like: str) -> str:
    """Return the last component of a path."""
    return os.path.basename(path_like)