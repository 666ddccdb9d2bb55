"""Path helpers."""

from __future__ import annotations

import os
from pathlib import PurePosixPath


def basename(path: str | os.PathLike) -> str | None:
    """Return the last normal component of ``path``, or None if there is none."""
    parts = PurePosixPath(os.fspath(path)).parts
    if not parts:
        return None
    last = parts[-1]
    if last == ".." or last.startswith("/"):
        return None
    return last