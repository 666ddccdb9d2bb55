"""A CPIO archive stored in the cache directory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .errors import FsError, UncachableError
from .files import basename

CACHE_SUFFIX = ".cpio.zstd"


@dataclass(frozen=True)
class Cpio:
    """A cached, compressed CPIO file and its size on disk."""

    size: int
    path: Path

    @classmethod
    def from_path(cls, path: str | os.PathLike) -> Cpio:
        """Describe the cached CPIO at ``path``, reading its size from disk."""
        path = Path(path)
        try:
            size = path.stat().st_size
        except OSError as exc:
            raise FsError("Reading the CPIO's file metadata", path, exc) from exc
        return cls(size=size, path=path)


def cached_path_for(src: str | os.PathLike, cache_dir: str | os.PathLike) -> Path:
    """Return where the CPIO for the store path ``src`` lives in ``cache_dir``."""
    name = basename(src)
    if name is None:
        raise UncachableError(f"Cannot calculate a cache path for: {os.fspath(src)!r}")
    return Path(cache_dir) / f"{name}{CACHE_SUFFIX}"