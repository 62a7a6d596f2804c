"""MD5 trailer detection and verification for firmware tar packages."""

from __future__ import annotations

import hashlib
import logging
import os
import string
import threading
from dataclasses import dataclass
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Callable, Iterable, Optional, Union

from brokkr.errors import BrokkrError
from brokkr.prefetcher import TwoSlotPrefetcher
from brokkr.tar import TarArchive
from brokkr.thread_pool import ThreadPool

log = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]

TRAILER_MAX_BYTES = 16 * 1024
MD5_HEX_CHARS = 32
_READ_CHUNK = 8 * 1024 * 1024
_HEX_BYTES = frozenset(string.hexdigits.encode("ascii"))


@dataclass(frozen=True)
class Md5Job:
    """A file whose leading ``bytes_to_hash`` bytes must hash to ``expected``."""

    path: Path
    bytes_to_hash: int
    expected: bytes


@dataclass
class VerifyObserver:
    """Optional callbacks that report verification progress."""

    on_stage: Optional[Callable[[str], Any]] = None
    on_plan: Optional[Callable[[list, int], Any]] = None
    on_item_active: Optional[Callable[[int], Any]] = None
    on_progress: Optional[Callable[[int, int, int, int], Any]] = None
    on_item_done: Optional[Callable[[int], Any]] = None


def _find_trailer_delimiter(tail: bytes) -> int:
    """Return the index of the last "  " preceded by 32 hex digits, or -1."""
    i = tail.rfind(b"  ")
    while i >= 0:
        start = i - MD5_HEX_CHARS
        if start >= 0 and all(c in _HEX_BYTES for c in tail[start:i]):
            return i
        if i == 0:
            break
        i = tail.rfind(b"  ", 0, i + 1)
    return -1


def detect_md5_job(path: PathLike) -> Optional[Md5Job]:
    """Look for an MD5 trailer at the end of ``path``; None if there is none."""
    p = Path(path)
    try:
        file_size = p.stat().st_size
    except OSError as exc:
        raise BrokkrError(f"Cannot stat file: {p}") from exc
    if file_size < MD5_HEX_CHARS + 2:
        return None

    tail_off = max(0, file_size - TRAILER_MAX_BYTES)
    tail_len = file_size - tail_off

    try:
        stream = open(p, "rb")
    except OSError as exc:
        raise BrokkrError(f"Cannot open for MD5: {p}") from exc
    with stream:
        try:
            stream.seek(tail_off)
        except OSError as exc:
            raise BrokkrError(f"Seek failed: {p}") from exc
        try:
            tail = stream.read(tail_len)
        except OSError as exc:
            raise BrokkrError(f"Read failed: {p}") from exc
    if len(tail) != tail_len:
        raise BrokkrError(f"Read failed: {p}")

    delim = _find_trailer_delimiter(tail)
    if delim < 0:
        return None

    expected = bytes.fromhex(tail[delim - MD5_HEX_CHARS : delim].decode("ascii"))
    bytes_to_hash = tail_off + delim - MD5_HEX_CHARS
    if file_size - bytes_to_hash > TRAILER_MAX_BYTES:
        raise BrokkrError(f"MD5 trailer too large: {p}")
    return Md5Job(path=p, bytes_to_hash=bytes_to_hash, expected=expected)


def md5_jobs(inputs: Iterable[PathLike]) -> list[Md5Job]:
    """Return a job for every tar input that carries an MD5 trailer."""
    jobs: list[Md5Job] = []
    for p in inputs:
        if not TarArchive.is_tar_file(p):
            continue
        job = detect_md5_job(p)
        if job is not None:
            jobs.append(job)
    return jobs


class _Progress:
    """Byte counter shared by all hashing workers."""

    def __init__(self, total: int, observer: VerifyObserver) -> None:
        self._lock = threading.Lock()
        self._done = 0
        self._total = total
        self._observer = observer

    def add(self, n: int) -> None:
        with self._lock:
            self._done += n
            done = self._done
        if self._observer.on_progress:
            self._observer.on_progress(done, self._total, done, self._total)


def _hash_prefix(path: Path, bytes_to_hash: int, progress: _Progress) -> bytes:
    try:
        stream = open(path, "rb")
    except OSError as exc:
        raise BrokkrError(f"Cannot open for MD5: {path}") from exc

    remaining = bytes_to_hash

    def fill(slot: SimpleNamespace, stop: threading.Event) -> bool:
        nonlocal remaining
        if stop.is_set() or not remaining:
            return False
        want = min(remaining, _READ_CHUNK)
        data = stream.read(want)
        if len(data) != want:
            raise BrokkrError(f"Short read while hashing: {path}")
        slot.data = data
        remaining -= want
        return True

    digest = hashlib.md5()
    processed = 0
    with stream, TwoSlotPrefetcher(fill, lambda: SimpleNamespace(data=b"")) as prefetcher:
        while processed < bytes_to_hash:
            lease = prefetcher.next()
            if lease is None:
                break
            with lease:
                data = lease.get().data
                if not data:
                    break
                digest.update(data)
            processed += len(data)
            progress.add(len(data))
        prefetcher.check()

    if processed != bytes_to_hash:
        raise BrokkrError(
            f"MD5 hashing terminated early: {path} (processed {processed}, expected {bytes_to_hash})"
        )
    return digest.digest()


def md5_verify(jobs: list[Md5Job], observer: Optional[VerifyObserver] = None) -> None:
    """Hash every job in parallel; raise BrokkrError on the first mismatch."""
    if not jobs:
        return
    obs = observer if observer is not None else VerifyObserver()

    total = sum(j.bytes_to_hash for j in jobs)

    if obs.on_stage:
        obs.on_stage("Checking package MD5")
    log.debug("Checking MD5 on %d package(s), %d bytes total", len(jobs), total)

    if obs.on_plan:
        item = {
            "kind": "part",
            "part_id": 0,
            "dev_type": 0,
            "part_name": "MD5",
            "source_base": f"{len(jobs)} package(s)",
            "size": total,
        }
        obs.on_plan([item], total)
    if obs.on_item_active:
        obs.on_item_active(0)
    if obs.on_progress:
        obs.on_progress(0, total, 0, total)

    threads = min(len(jobs), max(1, os.cpu_count() or 1))
    progress = _Progress(total, obs)

    with ThreadPool(threads) as pool:

        def make_task(job: Md5Job) -> Callable[[], None]:
            def task() -> None:
                if pool.cancelled():
                    return
                digest = _hash_prefix(job.path, job.bytes_to_hash, progress)
                if digest != job.expected:
                    raise BrokkrError(
                        f"MD5 mismatch: {job.path}\n  expected:   {job.expected.hex()}"
                        f"\n  calculated: {digest.hex()}\n  byte count: {job.bytes_to_hash}"
                    )

            return task

        for job in jobs:
            pool.submit(make_task(job))
        pool.wait()

    if obs.on_item_done:
        obs.on_item_done(0)
    log.info("MD5 OK")