# brokkr

Building blocks for handling firmware packages in Python: a streaming tar
scanner, byte sources for plain files and tar members, an LZ4 frame reader,
and MD5 trailer verification of `.tar.md5` packages.

Every failure is raised as `brokkr.errors.BrokkrError`, whose `message`
attribute holds the text.

## Installation

```
pip install .
```

## Scanning a tar archive

```python
from brokkr.tar import TarArchive

archive = TarArchive.open("firmware.tar.md5")
for entry in archive.entries:
    print(entry.name, entry.size, entry.data_offset)

boot = archive.find_by_basename("boot.img.lz4")
```

`TarArchive.open(path, validate_header_checksums=True)` reads the archive once
and records its regular files (type `0`, NUL or `7`) as `TarEntry` values,
followed by hard links that point at one of those files. It understands ustar
prefixes, PAX `path`/`size` records (global and per-entry) and GNU long names.
`payload_size_bytes` is the length up to and including the two zero blocks
that end the archive, or `None` if they are missing.

`TarArchive.is_tar_file(path)` tells whether a file starts with a non-empty
header whose checksum (unsigned or signed) is valid. The header helpers
`parse_octal`, `parse_tar_number` (octal or GNU base-256),
`validate_header_checksum`, `parse_pax_payload` and `join_ustar_name` are
available from `brokkr.tar` as well.

## Reading members

```python
from brokkr.source import open_tar_entry, read_exact
from brokkr.lz4_frame import open_lz4_decompressed

with open_tar_entry("firmware.tar.md5", boot) as src:
    image = open_lz4_decompressed(src)
    head = read_exact(image, 4096)
```

`open_raw_file(path)` gives the same `ByteSource` interface over a plain file.
A `ByteSource` has `display_name()`, `size()`, `read(n)`, `check()` and
`close()`, and works as a context manager. `read_exact(source, n)` returns
exactly `n` bytes or raises.

LZ4 frames must use independent blocks, carry a content size, and have no
block checksums or dictionary id; blocks larger than 1 MiB are refused, and
content larger than 1 MiB must use 1 MiB blocks. `parse_lz4_frame_header`
returns the parsed `Lz4FrameHeader`. `Lz4BlockStreamReader.open(source)` hands
out the raw blocks without decompressing them: `read_n_blocks(n)` returns the
next `n` blocks, each with its 4-byte size prefix, and `total_blocks_1m()`,
`blocks_read_1m()` and `blocks_remaining_1m()` count them.

## Verifying MD5 trailers

```python
from pathlib import Path
from brokkr.md5_verify import md5_jobs, md5_verify

jobs = md5_jobs([Path("BL.tar.md5"), Path("AP.tar.md5")])
md5_verify(jobs)
```

`md5_jobs` skips inputs that are not tar files and, for the rest, looks in the
last 16 KiB for 32 hex digits followed by two spaces; each file that has such
a trailer becomes an `Md5Job` (see also `detect_md5_job`). `md5_verify` hashes
the jobs in parallel and raises `BrokkrError` on the first mismatch or failed
read. Pass a `VerifyObserver` to receive `on_stage`, `on_plan`,
`on_item_active`, `on_progress` and `on_item_done` callbacks.

## Utilities

- `brokkr.thread_pool.ThreadPool` runs tasks on worker threads, keeps the first
  error, skips the tasks that have not started yet, and raises that error from
  `wait()`.
- `brokkr.prefetcher.TwoSlotPrefetcher` fills two slots on a background
  thread while the caller uses the other one; `next()` returns a `Lease`.
- `brokkr.text.ascii_lower` and `brokkr.text.ends_with_ci` fold ASCII case only.
- `brokkr.endian` provides `byteswap`, `le_to_host`, `host_to_le` and `as_u8`.
- `brokkr.version.version_string()` returns the display version, e.g.
  `1.3.10-rel`.

## What this package does not do

It has no command-line program and no graphical interface, and it does not
talk to devices. `brokkr.transport.ByteTransport` is only an abstract
interface; no USB or TCP transport comes with the package, and there is no
flashing protocol on top of it.

## Running the tests

```
pip install .[test]
pytest
```