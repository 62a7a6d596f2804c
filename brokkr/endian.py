"""Little-endian conversion and byte-view helpers."""

from __future__ import annotations

import sys


def _check(value: int, width: int) -> None:
    if width <= 0:
        raise ValueError(f"width must be positive: {width}")
    if not 0 <= value < (1 << (8 * width)):
        raise ValueError(f"value {value} does not fit in {width} byte(s)")


def byteswap(value: int, width: int) -> int:
    """Reverse the byte order of an unsigned integer of ``width`` bytes."""
    _check(value, width)
    return int.from_bytes(value.to_bytes(width, "little"), "big")


def le_to_host(value: int, width: int) -> int:
    """Convert a little-endian integer to host byte order."""
    _check(value, width)
    return value if sys.byteorder == "little" else byteswap(value, width)


def host_to_le(value: int, width: int) -> int:
    """Convert a host-order integer to little-endian byte order."""
    _check(value, width)
    return value if sys.byteorder == "little" else byteswap(value, width)


def as_u8(data) -> memoryview:
    """View any contiguous buffer as unsigned bytes without copying."""
    return memoryview(data).cast("B")