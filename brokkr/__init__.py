"""Firmware package tooling: tar scanning, LZ4 frame streaming and MD5 trailer checks."""

__version__ = "1.3.10"

__all__ = [
    "endian",
    "errors",
    "lz4_frame",
    "md5_verify",
    "prefetcher",
    "source",
    "tar",
    "text",
    "thread_pool",
    "transport",
    "version",
]