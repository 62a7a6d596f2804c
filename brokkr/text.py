"""ASCII-only string helpers."""

from __future__ import annotations

import string

_TO_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)


def ascii_lower(c: str | int) -> str | int:
    """Lower-case a single character or byte value, touching only A-Z."""
    if isinstance(c, int):
        if not 0 <= c <= 0xFF:
            raise ValueError(f"byte value out of range: {c}")
        return c + 32 if ord("A") <= c <= ord("Z") else c
    if len(c) != 1:
        raise ValueError("expected a single character")
    return c.translate(_TO_LOWER)


def ends_with_ci(s: str, suffix: str) -> bool:
    """Return True if ``s`` ends with ``suffix``, ignoring ASCII case."""
    if len(s) < len(suffix):
        return False
    return s.translate(_TO_LOWER).endswith(suffix.translate(_TO_LOWER))