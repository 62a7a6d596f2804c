"""Version string of the application."""

from __future__ import annotations

from typing import Optional

VERSION = "1.3.10"


def version_string(build_type: Optional[str] = None, commit_count: str = "0", debug: bool = False) -> str:
    """Return the display version; debug builds include the commit count."""
    if build_type is None:
        build_type = "dbg" if debug else "rel"
    if debug:
        return f"{VERSION}-{build_type}+{commit_count}"
    return f"{VERSION}-{build_type}"